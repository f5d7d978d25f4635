"""Per-assignee KPIs and weekly time series, computed from subtasks only.

Every subtask is attributed to its owner ("owned") and to each follower
other than the owner ("collaboration"). Scalar metrics use the owned set;
the weekly series counts owned work in the ``assigned``/``completed``/
``overdue`` channels and followed work in ``collab``.

Nothing here does I/O or mutates the input report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from .dates import (
    iso_week_label,
    iter_week_starts,
    parse_day,
    parse_timestamp,
    utc_today,
    week_start,
    week_start_timestamp,
)
from .models import Assignee, Report, Subtask

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_WEEKS = 52
SECONDS_PER_DAY = 86400.0


@dataclass(frozen=True)
class WeekWindow:
    """An inclusive range of ISO weeks, given by any day inside the first and last week."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Window end {self.end} is before start {self.start}")


@dataclass
class WeeklyBucket:
    week: str
    week_start: datetime
    assigned: int = 0
    completed: int = 0
    overdue: int = 0
    collab: int = 0

    def to_dict(self) -> dict:
        return {
            "week": self.week,
            "week_start": self.week_start.isoformat(),
            "assigned": self.assigned,
            "completed": self.completed,
            "overdue": self.overdue,
            "collab": self.collab,
        }


@dataclass
class AssigneeMetrics:
    assignee: Assignee
    total: int = 0
    completed: int = 0
    overdue: int = 0
    completion_rate: float = 0.0
    avg_lead_time_days: float = 0.0
    weekly: list[WeeklyBucket] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "assignee": {
                "gid": self.assignee.gid,
                "name": self.assignee.name,
                "email": self.assignee.email,
            },
            "total": self.total,
            "completed": self.completed,
            "overdue": self.overdue,
            "completion_rate": self.completion_rate,
            "avg_lead_time_days": self.avg_lead_time_days,
            "weekly": [b.to_dict() for b in self.weekly],
        }


@dataclass(frozen=True)
class _Normalized:
    """A subtask with its timestamps parsed to UTC."""

    subtask: Subtask
    created_at: datetime | None
    completed_at: datetime | None
    due_on: date | None


@dataclass
class ReportSummary:
    total: int = 0
    completed: int = 0
    overdue: int = 0
    avg_lead_time_days: float = 0.0
    unique_assignees: int = 0
    active_sections: int = 0


def _normalize(subtask: Subtask) -> _Normalized:
    return _Normalized(
        subtask=subtask,
        created_at=parse_timestamp(subtask.created_at),
        completed_at=parse_timestamp(subtask.completed_at),
        due_on=parse_day(subtask.due_on),
    )


def _overdue(item: _Normalized, today: date) -> bool:
    return not item.subtask.completed and item.due_on is not None and item.due_on < today


def _lead_time(item: _Normalized) -> float | None:
    if item.created_at is None or item.completed_at is None:
        return None
    return (item.completed_at - item.created_at).total_seconds() / SECONDS_PER_DAY


def is_overdue(subtask: Subtask, today: date | None = None) -> bool:
    """True if the subtask is open and its due date is strictly before today (UTC)."""
    return _overdue(_normalize(subtask), today or utc_today())


def lead_time_days(subtask: Subtask) -> float | None:
    """Fractional days from creation to completion, or None if either is missing."""
    return _lead_time(_normalize(subtask))


def weekly_window(today: date | None = None, weeks: int = DEFAULT_WINDOW_WEEKS) -> WeekWindow:
    """The ``weeks`` ISO weeks ending with the week containing ``today``."""
    end = week_start(today or utc_today())
    return WeekWindow(start=end - timedelta(weeks=weeks - 1), end=end)


def _empty_series(window: WeekWindow) -> dict[date, WeeklyBucket]:
    return {
        monday: WeeklyBucket(week=iso_week_label(monday), week_start=week_start_timestamp(monday))
        for monday in iter_week_starts(window.start, window.end)
    }


def _bump(series: dict[date, WeeklyBucket], when: date | datetime | None, channel: str) -> None:
    if when is None:
        return
    bucket = series.get(week_start(when))
    if bucket is not None:
        setattr(bucket, channel, getattr(bucket, channel) + 1)


def _build_metrics(
    assignee: Assignee,
    owned: list[_Normalized],
    collaboration: list[_Normalized],
    today: date,
    window: WeekWindow,
) -> AssigneeMetrics:
    metrics = AssigneeMetrics(assignee=assignee)
    metrics.total = len(owned)
    metrics.completed = sum(1 for item in owned if item.subtask.completed)
    metrics.overdue = sum(1 for item in owned if _overdue(item, today))
    metrics.completion_rate = metrics.completed / metrics.total if metrics.total else 0.0

    lead_times = [
        lt for lt in (_lead_time(item) for item in owned if item.subtask.completed)
        if lt is not None
    ]
    metrics.avg_lead_time_days = sum(lead_times) / len(lead_times) if lead_times else 0.0

    series = _empty_series(window)
    for item in owned:
        # Each channel is bucketed by its own timestamp.
        _bump(series, item.created_at, "assigned")
        _bump(series, item.completed_at, "completed")
        if _overdue(item, today):
            _bump(series, item.due_on, "overdue")
    for item in collaboration:
        _bump(series, item.created_at, "collab")
    metrics.weekly = list(series.values())
    return metrics


def compute_metrics(
    report: Report,
    today: date | None = None,
    window: WeekWindow | None = None,
) -> dict[str, AssigneeMetrics]:
    """Compute metrics for every assignee who owns or follows at least one subtask.

    Args:
        report: The hierarchy to aggregate. It is not modified.
        today: The UTC date overdue checks compare against (defaults to now).
        window: Weeks to emit in the series (defaults to the 52 weeks ending
                with the current week). Every week is emitted, empty or not.
    """
    today = today or utc_today()
    window = window or weekly_window(today)

    profiles: dict[str, Assignee] = {}
    owned: dict[str, list[_Normalized]] = {}
    collaboration: dict[str, list[_Normalized]] = {}

    for subtask in report.all_subtasks():
        item = _normalize(subtask)
        owner_gid = subtask.assignee.gid if subtask.assignee else None
        if subtask.assignee is not None:
            profiles.setdefault(owner_gid, subtask.assignee)
            owned.setdefault(owner_gid, []).append(item)
            collaboration.setdefault(owner_gid, [])
        for follower in subtask.followers:
            if follower.gid == owner_gid:
                continue
            profiles.setdefault(follower.gid, follower)
            owned.setdefault(follower.gid, [])
            collaboration.setdefault(follower.gid, []).append(item)

    result = {
        gid: _build_metrics(profiles[gid], owned[gid], collaboration[gid], today, window)
        for gid in profiles
        if owned[gid] or collaboration[gid]
    }
    logger.debug("Processed metrics for %d assignees", len(result))
    return result


def assignee_metrics(
    report: Report,
    assignee_gid: str,
    today: date | None = None,
    window: WeekWindow | None = None,
) -> AssigneeMetrics | None:
    return compute_metrics(report, today=today, window=window).get(assignee_gid)


def report_summary(report: Report, today: date | None = None) -> ReportSummary:
    """Totals across all assigned subtasks of the report."""
    today = today or utc_today()
    summary = ReportSummary()
    lead_times: list[float] = []
    assignees: set[str] = set()

    for section in report.sections:
        active = False
        for task in section.tasks:
            for subtask in task.subtasks:
                if subtask.assignee is None:
                    continue
                active = True
                item = _normalize(subtask)
                summary.total += 1
                assignees.add(subtask.assignee.gid)
                if subtask.completed:
                    summary.completed += 1
                if _overdue(item, today):
                    summary.overdue += 1
                lt = _lead_time(item)
                if lt is not None:
                    lead_times.append(lt)
        if active:
            summary.active_sections += 1

    summary.unique_assignees = len(assignees)
    summary.avg_lead_time_days = sum(lead_times) / len(lead_times) if lead_times else 0.0
    return summary
