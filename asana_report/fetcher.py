"""Fetches the sections -> tasks -> subtasks hierarchy from Asana."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .asana_client import AsanaClient
from .models import Assignee, Report, Section, Subtask, Task

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class FetchResult:
    """A fully fetched hierarchy plus the roster used to resolve it."""

    report: Report
    total_tasks: int = 0
    total_subtasks: int = 0
    directory: dict[str, Assignee] = field(default_factory=dict)


async def fetch_complete_hierarchy(
    client: AsanaClient,
    team_id: str | None = None,
) -> FetchResult:
    """Fetch every section, task, subtask and roster profile of the project.

    Tasks of all sections, subtasks of all tasks and roster profiles are each
    fetched concurrently. Any failure aborts the whole fetch and the original
    exception propagates; nothing partial is returned.
    """
    started = time.monotonic()
    logger.info("Fetching sections for project %s ...", client.project_id)
    raw_sections = await client.list_sections()
    sections = [_parse_section(raw) for raw in raw_sections]
    logger.info("Fetched %d sections", len(sections))

    task_lists = await gather_all(client.list_tasks(s.gid) for s in sections)
    for section, raw_tasks in zip(sections, task_lists):
        section.tasks = [_parse_task(raw, section.gid) for raw in raw_tasks]

    all_tasks = [task for section in sections for task in section.tasks]
    logger.info("Fetching subtasks for %d tasks ...", len(all_tasks))
    subtask_lists = await gather_all(client.list_subtasks(t.gid) for t in all_tasks)
    for task, raw_subtasks in zip(all_tasks, subtask_lists):
        task.subtasks = [_parse_subtask(raw, task.gid) for raw in raw_subtasks]

    directory = await fetch_directory(client, team_id)

    report = Report(sections=sections).with_directory(directory)
    total_subtasks = sum(len(t.subtasks) for t in all_tasks)
    logger.info(
        "Complete report fetch finished in %.1fs: %d sections, %d tasks, %d subtasks",
        time.monotonic() - started,
        len(sections),
        len(all_tasks),
        total_subtasks,
    )
    return FetchResult(
        report=report,
        total_tasks=len(all_tasks),
        total_subtasks=total_subtasks,
        directory=directory,
    )


async def fetch_directory(
    client: AsanaClient, team_id: str | None
) -> dict[str, Assignee]:
    """Resolve full profiles (name, email) for every member of the team roster."""
    if not team_id:
        logger.warning("No team configured; assignee profiles will not be resolved")
        return {}
    members = await client.list_team_users(team_id)
    logger.info("Fetched %d team members", len(members))
    profiles = await gather_all(client.get_user(m["gid"]) for m in members if m.get("gid"))
    directory: dict[str, Assignee] = {}
    for profile in profiles:
        assignee = _parse_assignee(profile)
        if assignee is not None:
            directory[assignee.gid] = assignee
    return directory


async def gather_all(aws: Iterable[Awaitable[T]]) -> list[T]:
    """Await all of ``aws`` concurrently, in order.

    On the first failure the remaining awaitables are cancelled and the
    failure is re-raised.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------


def _parse_assignee(raw: dict[str, Any] | None) -> Assignee | None:
    if not raw or not raw.get("gid"):
        return None
    return Assignee(gid=raw["gid"], name=raw.get("name") or "", email=raw.get("email") or None)


def _parse_section(raw: dict[str, Any]) -> Section:
    return Section(gid=raw["gid"], name=raw.get("name") or "")


def _parse_task(raw: dict[str, Any], section_gid: str) -> Task:
    projects = raw.get("projects") or []
    project = projects[0].get("name") if projects and isinstance(projects[0], dict) else None
    return Task(
        gid=raw["gid"],
        name=raw.get("name") or "",
        section_gid=section_gid,
        assignee=_parse_assignee(raw.get("assignee")),
        completed=bool(raw.get("completed")),
        completed_at=raw.get("completed_at"),
        due_on=raw.get("due_on"),
        created_at=raw.get("created_at"),
        project=project,
    )


def _parse_subtask(raw: dict[str, Any], task_gid: str) -> Subtask:
    followers = [
        a for a in (_parse_assignee(f) for f in raw.get("followers") or []) if a is not None
    ]
    return Subtask(
        gid=raw["gid"],
        name=raw.get("name") or "",
        parent_task_gid=task_gid,
        assignee=_parse_assignee(raw.get("assignee")),
        completed=bool(raw.get("completed")),
        created_at=raw.get("created_at"),
        completed_at=raw.get("completed_at"),
        due_on=raw.get("due_on"),
        followers=followers,
    )
