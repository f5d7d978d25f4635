"""Data models for the Asana project hierarchy mirrored by the dashboard."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class Assignee:
    """A person who owns or follows work in Asana."""

    gid: str
    name: str = ""
    email: str | None = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.email:
            return self.email.split("@")[0]
        return self.gid


@dataclass(frozen=True)
class FollowerLink:
    """Association row between a subtask and a non-owning collaborator."""

    subtask_gid: str
    assignee_gid: str


@dataclass
class Subtask:
    """The unit of work all metrics are computed from."""

    gid: str
    name: str
    parent_task_gid: str
    assignee: Assignee | None = None
    completed: bool = False
    created_at: str | None = None
    completed_at: str | None = None
    due_on: str | None = None
    followers: list[Assignee] = field(default_factory=list)

    def __post_init__(self) -> None:
        # Followers never include the owner and never repeat.
        owner_gid = self.assignee.gid if self.assignee else None
        seen: set[str] = set()
        cleaned: list[Assignee] = []
        for follower in self.followers:
            if follower.gid == owner_gid or follower.gid in seen:
                continue
            seen.add(follower.gid)
            cleaned.append(follower)
        self.followers = cleaned

    @property
    def follower_links(self) -> list[FollowerLink]:
        return [FollowerLink(self.gid, f.gid) for f in self.followers]


@dataclass
class Task:
    """A coarse container of subtasks inside a section."""

    gid: str
    name: str
    section_gid: str
    assignee: Assignee | None = None
    completed: bool = False
    completed_at: str | None = None
    due_on: str | None = None
    created_at: str | None = None
    project: str | None = None
    subtasks: list[Subtask] = field(default_factory=list)


@dataclass
class Section:
    """A grouping of tasks (a department or a week, depending on the project)."""

    gid: str
    name: str
    tasks: list[Task] = field(default_factory=list)


@dataclass
class Report:
    """The full sections -> tasks -> subtasks hierarchy."""

    sections: list[Section] = field(default_factory=list)
    directory: dict[str, Assignee] = field(default_factory=dict)

    def all_tasks(self) -> list[Task]:
        return [task for section in self.sections for task in section.tasks]

    def all_subtasks(self) -> list[Subtask]:
        return [st for task in self.all_tasks() for st in task.subtasks]

    def all_assignees(self) -> list[Assignee]:
        """Return every assignee referenced as task owner, subtask owner or follower.

        Deduplicated by gid. A later reference replaces an earlier one only
        when it carries an email the earlier one lacked.
        """
        found: dict[str, Assignee] = {}

        def _add(assignee: Assignee | None) -> None:
            if assignee is None:
                return
            known = found.get(assignee.gid)
            if known is None or (not known.email and assignee.email):
                found[assignee.gid] = assignee

        for task in self.all_tasks():
            _add(task.assignee)
            for subtask in task.subtasks:
                _add(subtask.assignee)
                for follower in subtask.followers:
                    _add(follower)
        return list(found.values())

    def subtasks_for_assignee(self, assignee_gid: str) -> list[Subtask]:
        return [
            st for st in self.all_subtasks()
            if st.assignee is not None and st.assignee.gid == assignee_gid
        ]

    def tasks_for_assignee(self, assignee_gid: str) -> list[Task]:
        return [
            task for task in self.all_tasks()
            if any(st.assignee and st.assignee.gid == assignee_gid for st in task.subtasks)
        ]

    def with_directory(self, directory: dict[str, Assignee]) -> Report:
        """Return a copy where roster members are replaced by their full profiles.

        References to people outside ``directory`` are kept as they are.
        """

        def _resolve(assignee: Assignee | None) -> Assignee | None:
            if assignee is None:
                return None
            return directory.get(assignee.gid, assignee)

        sections: list[Section] = []
        for section in self.sections:
            tasks: list[Task] = []
            for task in section.tasks:
                subtasks = [
                    replace(
                        st,
                        assignee=_resolve(st.assignee),
                        followers=[_resolve(f) for f in st.followers],
                    )
                    for st in task.subtasks
                ]
                tasks.append(replace(task, assignee=_resolve(task.assignee), subtasks=subtasks))
            sections.append(replace(section, tasks=tasks))
        return Report(sections=sections, directory=dict(directory))


class SyncStatus(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"
    IN_PROGRESS = "in-progress"


@dataclass(frozen=True)
class SyncMetadata:
    """Latest state of one sync stream."""

    key: str
    updated_at: str
    status: SyncStatus
    message: str | None = None
    record_count: int | None = None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "updated_at": self.updated_at,
            "status": self.status.value,
            "message": self.message,
            "record_count": self.record_count,
        }
