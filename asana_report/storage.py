"""Relational storage for the mirrored hierarchy and sync metadata.

One table per model (assignees, sections, tasks, subtasks, followers) plus
``sync_metadata`` with one row per sync stream. Writes upsert by primary key.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    Engine,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .errors import ConfigurationError, PersistenceError
from .models import (
    Assignee,
    Report,
    Section,
    Subtask,
    SyncMetadata,
    SyncStatus,
    Task,
)

logger = logging.getLogger(__name__)

metadata = MetaData()

assignees_table = Table(
    "assignees",
    metadata,
    Column("gid", String, primary_key=True),
    Column("name", String, nullable=True),
    Column("email", String, nullable=True, index=True),
)

sections_table = Table(
    "sections",
    metadata,
    Column("gid", String, primary_key=True),
    Column("name", String, nullable=True),
    Column("position", Integer, nullable=False, default=0),
)

tasks_table = Table(
    "tasks",
    metadata,
    Column("gid", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("section_gid", String, ForeignKey("sections.gid"), nullable=False, index=True),
    Column("assignee_gid", String, ForeignKey("assignees.gid"), nullable=True),
    Column("completed", Boolean, nullable=False, default=False),
    Column("completed_at", String, nullable=True),
    Column("due_on", String, nullable=True),
    Column("created_at", String, nullable=True),
    Column("project", String, nullable=True),
    Column("position", Integer, nullable=False, default=0),
)

subtasks_table = Table(
    "subtasks",
    metadata,
    Column("gid", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("parent_task_gid", String, ForeignKey("tasks.gid"), nullable=False, index=True),
    Column("assignee_gid", String, ForeignKey("assignees.gid"), nullable=True, index=True),
    Column("completed", Boolean, nullable=False, default=False),
    Column("created_at", String, nullable=True),
    Column("completed_at", String, nullable=True),
    Column("due_on", String, nullable=True),
    Column("position", Integer, nullable=False, default=0),
)

followers_table = Table(
    "followers",
    metadata,
    Column("subtask_gid", String, ForeignKey("subtasks.gid"), primary_key=True),
    Column("assignee_gid", String, ForeignKey("assignees.gid"), primary_key=True),
    Column("position", Integer, nullable=False, default=0),
)

sync_metadata_table = Table(
    "sync_metadata",
    metadata,
    Column("key", String, primary_key=True),
    Column("updated_at", String, nullable=False),
    Column("status", String, nullable=False),
    Column("message", String, nullable=True),
    Column("record_count", Integer, nullable=True),
)


def make_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    try:
        if url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_engine(url)
    except SQLAlchemyError as e:
        raise ConfigurationError(f"Invalid database URL {url!r}: {e}") from e


@dataclass
class PersistResult:
    """Row counts written by ``ReportStore.persist``."""

    assignees: int = 0
    sections: int = 0
    tasks: int = 0
    subtasks: int = 0
    followers: int = 0

    @property
    def record_count(self) -> int:
        return self.assignees + self.sections + self.tasks + self.subtasks


class ReportStore:
    """Persistence gateway for reports.

    ``persist`` replaces the hierarchy tables with a freshly fetched report
    (assignees are upserted and never deleted). Each batch runs in its own
    transaction: a failing batch aborts the ones after it, and the batches
    before it stay written.
    """

    def __init__(self, engine: Engine | str) -> None:
        if isinstance(engine, str):
            engine = make_engine(engine)
        self.engine = engine

    def create_schema(self) -> None:
        self._run_batch("schema", metadata.create_all)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def persist(self, report: Report) -> PersistResult:
        """Write ``report`` in the order assignees, sections, tasks, subtasks, followers."""
        assignee_rows = [_assignee_row(a) for a in report.all_assignees()]
        section_rows = [_section_row(s, i) for i, s in enumerate(report.sections)]
        task_rows: list[dict[str, Any]] = []
        subtask_rows: list[dict[str, Any]] = []
        follower_rows: list[dict[str, Any]] = []
        for section in report.sections:
            for i, task in enumerate(section.tasks):
                task_rows.append(_task_row(task, i))
                for j, subtask in enumerate(task.subtasks):
                    subtask_rows.append(_subtask_row(subtask, j))
                    follower_rows.extend(
                        {"subtask_gid": link.subtask_gid, "assignee_gid": link.assignee_gid,
                         "position": k}
                        for k, link in enumerate(subtask.follower_links)
                    )

        logger.info(
            "Preparing to upsert: %d assignees, %d sections, %d tasks, %d subtasks, "
            "%d followers",
            len(assignee_rows), len(section_rows), len(task_rows),
            len(subtask_rows), len(follower_rows),
        )

        self._run_batch("existing rows", self._clear_hierarchy)
        self._upsert("assignees", assignees_table, assignee_rows, ["gid"])
        self._upsert("sections", sections_table, section_rows, ["gid"])
        self._upsert("tasks", tasks_table, task_rows, ["gid"])
        self._upsert("subtasks", subtasks_table, subtask_rows, ["gid"])
        self._upsert(
            "followers", followers_table, follower_rows, ["subtask_gid", "assignee_gid"]
        )

        result = PersistResult(
            assignees=len(assignee_rows),
            sections=len(section_rows),
            tasks=len(task_rows),
            subtasks=len(subtask_rows),
            followers=len(follower_rows),
        )
        logger.info("Persisted report: %d records", result.record_count)
        return result

    def clear_all(self) -> None:
        """Delete every mirrored row, assignees included."""
        def _clear(conn) -> None:
            self._clear_hierarchy(conn)
            conn.execute(delete(assignees_table))

        self._run_batch("all data", _clear)
        logger.info("All data cleared from database")

    @staticmethod
    def _clear_hierarchy(conn) -> None:
        # Children first so foreign keys stay valid.
        conn.execute(delete(followers_table))
        conn.execute(delete(subtasks_table))
        conn.execute(delete(tasks_table))
        conn.execute(delete(sections_table))

    def _run_batch(self, batch: str, fn) -> None:
        try:
            with self.engine.begin() as conn:
                fn(conn)
        except SQLAlchemyError as e:
            logger.error("Batch '%s' failed: %s", batch, e)
            raise PersistenceError(batch, str(e)) from e

    def _upsert(
        self,
        batch: str,
        table: Table,
        rows: list[dict[str, Any]],
        key: list[str],
    ) -> None:
        if not rows:
            return

        def _write(conn) -> None:
            stmt = self._insert(table)
            update_cols = {
                c.name: stmt.excluded[c.name] for c in table.columns if c.name not in key
            }
            if update_cols:
                stmt = stmt.on_conflict_do_update(index_elements=key, set_=update_cols)
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=key)
            conn.execute(stmt, rows)

        self._run_batch(batch, _write)
        logger.debug("Upserted %d %s", len(rows), batch)

    def _insert(self, table: Table):
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise PersistenceError(table.name, f"Unsupported database dialect: {dialect}")

    # ------------------------------------------------------------------
    # Sync metadata
    # ------------------------------------------------------------------

    def set_sync_metadata(
        self,
        key: str,
        status: SyncStatus,
        message: str | None = None,
        record_count: int | None = None,
    ) -> SyncMetadata:
        """Overwrite the metadata row for ``key``."""
        row = {
            "key": key,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "status": status.value,
            "message": message,
            "record_count": record_count,
        }
        self._upsert("sync_metadata", sync_metadata_table, [row], ["key"])
        return _row_to_metadata(row)

    def get_sync_metadata(self, key: str) -> SyncMetadata | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(sync_metadata_table).where(sync_metadata_table.c.key == key)
            ).mappings().first()
        return _row_to_metadata(row) if row else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def has_data(self) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(subtasks_table)).scalar()
        return bool(count)

    def list_assignees(self) -> list[Assignee]:
        """Every stored assignee, ordered by display name then gid."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(assignees_table)).mappings().all()
        assignees = [_row_to_assignee(r) for r in rows]
        return sorted(assignees, key=lambda a: (a.display_name.lower(), a.gid))

    def find_assignee_gid(self, email: str) -> str | None:
        """Return the gid of the assignee with ``email``, if any."""
        if not email:
            return None
        with self.engine.connect() as conn:
            return conn.execute(
                select(assignees_table.c.gid).where(
                    func.lower(assignees_table.c.email) == email.lower()
                )
            ).scalars().first()

    def load(self, assignee_gid: str | None = None) -> Report:
        """Rebuild the report from the tables.

        With ``assignee_gid`` only subtasks that person owns or follows are
        kept, and tasks and sections left empty are dropped.
        """
        with self.engine.connect() as conn:
            assignee_rows = conn.execute(select(assignees_table)).mappings().all()
            section_rows = conn.execute(
                select(sections_table).order_by(sections_table.c.position)
            ).mappings().all()
            task_rows = conn.execute(
                select(tasks_table).order_by(tasks_table.c.position)
            ).mappings().all()
            subtask_rows = conn.execute(
                select(subtasks_table).order_by(subtasks_table.c.position)
            ).mappings().all()
            follower_rows = conn.execute(
                select(followers_table).order_by(followers_table.c.position)
            ).mappings().all()

        assignees = {r["gid"]: _row_to_assignee(r) for r in assignee_rows}

        def _lookup(gid: str | None) -> Assignee | None:
            if gid is None:
                return None
            return assignees.get(gid) or Assignee(gid=gid, name=gid)

        followers_by_subtask: dict[str, list[Assignee]] = defaultdict(list)
        for r in follower_rows:
            followers_by_subtask[r["subtask_gid"]].append(_lookup(r["assignee_gid"]))

        subtasks_by_task: dict[str, list[Subtask]] = defaultdict(list)
        for r in subtask_rows:
            subtask = Subtask(
                gid=r["gid"],
                name=r["name"],
                parent_task_gid=r["parent_task_gid"],
                assignee=_lookup(r["assignee_gid"]),
                completed=bool(r["completed"]),
                created_at=r["created_at"],
                completed_at=r["completed_at"],
                due_on=r["due_on"],
                followers=followers_by_subtask.get(r["gid"], []),
            )
            if assignee_gid and not _involves(subtask, assignee_gid):
                continue
            subtasks_by_task[r["parent_task_gid"]].append(subtask)

        tasks_by_section: dict[str, list[Task]] = defaultdict(list)
        for r in task_rows:
            subtasks = subtasks_by_task.get(r["gid"], [])
            if assignee_gid and not subtasks:
                continue
            tasks_by_section[r["section_gid"]].append(
                Task(
                    gid=r["gid"],
                    name=r["name"],
                    section_gid=r["section_gid"],
                    assignee=_lookup(r["assignee_gid"]),
                    completed=bool(r["completed"]),
                    completed_at=r["completed_at"],
                    due_on=r["due_on"],
                    created_at=r["created_at"],
                    project=r["project"],
                    subtasks=subtasks,
                )
            )

        sections: list[Section] = []
        for r in section_rows:
            tasks = tasks_by_section.get(r["gid"], [])
            if assignee_gid and not tasks:
                continue
            sections.append(Section(gid=r["gid"], name=r["name"] or "", tasks=tasks))

        logger.debug(
            "Loaded %d sections from storage%s",
            len(sections),
            f" for assignee {assignee_gid}" if assignee_gid else "",
        )
        return Report(sections=sections)


def _involves(subtask: Subtask, assignee_gid: str) -> bool:
    if subtask.assignee is not None and subtask.assignee.gid == assignee_gid:
        return True
    return any(f.gid == assignee_gid for f in subtask.followers)


# ----------------------------------------------------------------------
# Row conversion
# ----------------------------------------------------------------------


def _assignee_row(assignee: Assignee) -> dict[str, Any]:
    return {"gid": assignee.gid, "name": assignee.name or None, "email": assignee.email}


def _section_row(section: Section, position: int) -> dict[str, Any]:
    return {"gid": section.gid, "name": section.name, "position": position}


def _task_row(task: Task, position: int) -> dict[str, Any]:
    return {
        "gid": task.gid,
        "name": task.name,
        "section_gid": task.section_gid,
        "assignee_gid": task.assignee.gid if task.assignee else None,
        "completed": task.completed,
        "completed_at": task.completed_at,
        "due_on": task.due_on,
        "created_at": task.created_at,
        "project": task.project,
        "position": position,
    }


def _subtask_row(subtask: Subtask, position: int) -> dict[str, Any]:
    return {
        "gid": subtask.gid,
        "name": subtask.name,
        "parent_task_gid": subtask.parent_task_gid,
        "assignee_gid": subtask.assignee.gid if subtask.assignee else None,
        "completed": subtask.completed,
        "created_at": subtask.created_at,
        "completed_at": subtask.completed_at,
        "due_on": subtask.due_on,
        "position": position,
    }


def _row_to_assignee(row) -> Assignee:
    return Assignee(gid=row["gid"], name=row["name"] or "", email=row["email"] or None)


def _row_to_metadata(row) -> SyncMetadata:
    return SyncMetadata(
        key=row["key"],
        updated_at=row["updated_at"],
        status=SyncStatus(row["status"]),
        message=row["message"],
        record_count=row["record_count"],
    )

