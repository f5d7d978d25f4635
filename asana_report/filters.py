"""Ad-hoc subtask filters and flat projections for export and task tables."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone

from .dates import parse_day, parse_timestamp, utc_today
from .metrics import is_overdue, lead_time_days
from .models import Assignee, Report, Section, Subtask, Task


class StatusFilter(str, enum.Enum):
    ALL = "all"
    COMPLETED = "completed"
    PENDING = "pending"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class FilterCriteria:
    """Conjunctive filter; every unset criterion matches everything.

    ``start``/``end`` are inclusive UTC instants. ``assignees`` is an
    allowlist of assignee gids.
    """

    start: datetime | None = None
    end: datetime | None = None
    status: StatusFilter = StatusFilter.ALL
    assignees: tuple[str, ...] = ()


@dataclass
class ExportRow:
    task_name: str
    section: str
    project: str
    assignee: str
    assignee_email: str
    status: str
    created: str
    completed: str
    due: str
    lead_time_days: float
    is_overdue: bool
    owner: str | None = None
    is_follower: bool = False

    def to_dict(self) -> dict:
        return {
            "task_name": self.task_name,
            "section": self.section,
            "project": self.project,
            "assignee": self.assignee,
            "assignee_email": self.assignee_email,
            "status": self.status,
            "created": self.created,
            "completed": self.completed,
            "due": self.due,
            "lead_time_days": self.lead_time_days,
            "is_overdue": self.is_overdue,
            "owner": self.owner,
            "is_follower": self.is_follower,
        }


@dataclass
class TaskRow:
    """A subtask as shown in a person's current-tasks table."""

    gid: str
    name: str
    week: str
    created_at: str | None
    due_on: str | None
    status: str
    type: str
    followers: list[str] = field(default_factory=list)


@dataclass
class TaskPage:
    rows: list[TaskRow]
    total: int
    page_size: int


def _utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _in_range(value: str | None, start: datetime | None, end: datetime | None) -> bool:
    when = parse_timestamp(value)
    if when is None:
        return False
    start, end = _utc(start), _utc(end)
    if start is not None and when < start:
        return False
    if end is not None and when > end:
        return False
    return True


def matches(subtask: Subtask, criteria: FilterCriteria, today: date | None = None) -> bool:
    """True if ``subtask`` passes every criterion."""
    if criteria.start is not None or criteria.end is not None:
        if not (
            _in_range(subtask.created_at, criteria.start, criteria.end)
            or _in_range(subtask.completed_at, criteria.start, criteria.end)
        ):
            return False

    status = StatusFilter(criteria.status)
    if status is StatusFilter.COMPLETED and not subtask.completed:
        return False
    if status is StatusFilter.PENDING and subtask.completed:
        return False
    if status is StatusFilter.OVERDUE and not is_overdue(subtask, today):
        return False

    if criteria.assignees:
        if subtask.assignee is None or subtask.assignee.gid not in criteria.assignees:
            return False
    return True


def filter_subtasks(
    subtasks: list[Subtask], criteria: FilterCriteria, today: date | None = None
) -> list[Subtask]:
    today = today or utc_today()
    return [st for st in subtasks if matches(st, criteria, today)]


def _export_row(
    section: Section,
    task: Task,
    subtask: Subtask,
    person: Assignee,
    today: date,
    owner: Assignee | None = None,
    is_follower: bool = False,
) -> ExportRow:
    return ExportRow(
        task_name=f"{task.name} - {subtask.name}",
        section=section.name,
        project=task.project or "Unknown",
        assignee=person.display_name,
        assignee_email=person.email or "",
        status="Completed" if subtask.completed else "Pending",
        created=subtask.created_at or "",
        completed=subtask.completed_at or "",
        due=subtask.due_on or "",
        lead_time_days=lead_time_days(subtask) or 0.0,
        is_overdue=is_overdue(subtask, today),
        owner=owner.display_name if owner else None,
        is_follower=is_follower,
    )


def generate_export_rows(
    report: Report,
    criteria: FilterCriteria | None = None,
    today: date | None = None,
) -> list[ExportRow]:
    """Flatten the report into one row per person per subtask.

    The owner gets one row, and every follower gets an extra row with
    ``is_follower`` set and ``owner`` naming the real owner. Followers are
    filtered as if they were the subtask's assignee.
    """
    today = today or utc_today()
    criteria = criteria or FilterCriteria()
    rows: list[ExportRow] = []
    for section in report.sections:
        for task in section.tasks:
            for subtask in task.subtasks:
                if subtask.assignee is not None and matches(subtask, criteria, today):
                    rows.append(_export_row(section, task, subtask, subtask.assignee, today))
                for follower in subtask.followers:
                    as_follower = replace(subtask, assignee=follower, followers=[])
                    if not matches(as_follower, criteria, today):
                        continue
                    rows.append(
                        _export_row(
                            section, task, subtask, follower, today,
                            owner=subtask.assignee, is_follower=True,
                        )
                    )
    return rows


_STATUS_RANK = {"Completed": 0, "Overdue": 1, "Pending": 2}


def _row_status(subtask: Subtask, today: date) -> str:
    if subtask.completed:
        return "Completed"
    if is_overdue(subtask, today):
        return "Overdue"
    return "Pending"


def current_task_rows(
    report: Report,
    assignee_gid: str,
    status: StatusFilter = StatusFilter.ALL,
    page: int = 1,
    page_size: int = 10,
    today: date | None = None,
) -> TaskPage:
    """Subtasks a person owns or follows, newest due date first, one page at a time."""
    today = today or utc_today()
    status = StatusFilter(status)
    rows: list[TaskRow] = []
    for task in report.all_tasks():
        for subtask in task.subtasks:
            if subtask.assignee is not None and subtask.assignee.gid == assignee_gid:
                kind = "Owner"
            elif any(f.gid == assignee_gid for f in subtask.followers):
                kind = "Collaborator"
            else:
                continue
            rows.append(
                TaskRow(
                    gid=subtask.gid,
                    name=subtask.name,
                    week=task.name,
                    created_at=subtask.created_at,
                    due_on=subtask.due_on,
                    status=_row_status(subtask, today),
                    type=kind,
                    followers=[f.display_name for f in subtask.followers],
                )
            )

    if status is not StatusFilter.ALL:
        rows = [r for r in rows if r.status.lower() == status.value]

    def _sort_key(row: TaskRow):
        due = parse_day(row.due_on)
        return (-(due.toordinal() if due else 0), _STATUS_RANK[row.status])

    rows.sort(key=_sort_key)
    page = max(page, 1)
    begin = (page - 1) * page_size
    return TaskPage(rows=rows[begin:begin + page_size], total=len(rows), page_size=page_size)
