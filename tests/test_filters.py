"""Tests for subtask filtering and the export/task-table projections."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from asana_report.filters import (
    FilterCriteria,
    StatusFilter,
    current_task_rows,
    filter_subtasks,
    generate_export_rows,
)
from asana_report.models import Assignee, Report, Section, Subtask, Task

TODAY = date(2025, 1, 15)

ALICE = Assignee("A", "Alice", "alice@example.com")
BOB = Assignee("B", "Bob", "bob@example.com")
CAROL = Assignee("C", "", "carol@example.com")


def _subtask(gid, assignee=None, followers=None, task_gid="T1", **kwargs):
    return Subtask(
        gid=gid,
        name=f"Subtask {gid}",
        parent_task_gid=task_gid,
        assignee=assignee,
        followers=list(followers or []),
        **kwargs,
    )


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


# ===================================================================
# filter_subtasks
# ===================================================================


class TestFilterSubtasks:
    def test_no_criteria_keeps_everything(self):
        subtasks = [_subtask("1"), _subtask("2", ALICE)]
        assert filter_subtasks(subtasks, FilterCriteria(), today=TODAY) == subtasks

    def test_time_window_matches_created_or_completed(self):
        created_inside = _subtask("1", created_at="2025-01-05T00:00:00Z")
        completed_inside = _subtask(
            "2", created_at="2024-11-01T00:00:00Z", completed_at="2025-01-10T00:00:00Z"
        )
        outside = _subtask("3", created_at="2024-11-01T00:00:00Z")
        undated = _subtask("4")
        criteria = FilterCriteria(start=_utc(2025, 1, 1), end=_utc(2025, 1, 31))

        result = filter_subtasks(
            [created_inside, completed_inside, outside, undated], criteria, today=TODAY
        )

        assert [s.gid for s in result] == ["1", "2"]

    def test_time_window_bounds_are_inclusive(self):
        at_start = _subtask("1", created_at="2025-01-01T00:00:00Z")
        at_end = _subtask("2", created_at="2025-01-31T00:00:00Z")
        criteria = FilterCriteria(start=_utc(2025, 1, 1), end=_utc(2025, 1, 31))

        assert len(filter_subtasks([at_start, at_end], criteria, today=TODAY)) == 2

    def test_naive_bounds_are_treated_as_utc(self):
        subtask = _subtask("1", created_at="2025-01-01T00:00:00Z")
        criteria = FilterCriteria(start=datetime(2025, 1, 1), end=datetime(2025, 1, 2))
        assert filter_subtasks([subtask], criteria, today=TODAY) == [subtask]

    @pytest.mark.parametrize(
        "status, expected",
        [
            (StatusFilter.ALL, ["done", "open", "late"]),
            (StatusFilter.COMPLETED, ["done"]),
            (StatusFilter.PENDING, ["open", "late"]),
            (StatusFilter.OVERDUE, ["late"]),
        ],
    )
    def test_status(self, status, expected):
        subtasks = [
            _subtask("done", completed=True, due_on="2024-01-01"),
            _subtask("open", due_on="2025-02-01"),
            _subtask("late", due_on="2025-01-14"),
        ]
        result = filter_subtasks(subtasks, FilterCriteria(status=status), today=TODAY)
        assert [s.gid for s in result] == expected

    def test_overdue_excludes_subtask_due_today(self):
        subtask = _subtask("1", due_on="2025-01-15")
        criteria = FilterCriteria(status=StatusFilter.OVERDUE)
        assert filter_subtasks([subtask], criteria, today=TODAY) == []

    def test_assignee_allowlist(self):
        subtasks = [_subtask("1", ALICE), _subtask("2", BOB), _subtask("3")]
        criteria = FilterCriteria(assignees=("A",))
        assert [s.gid for s in filter_subtasks(subtasks, criteria, today=TODAY)] == ["1"]

    def test_criteria_are_conjunctive(self):
        subtasks = [
            _subtask("1", ALICE, completed=True, completed_at="2025-01-05T00:00:00Z"),
            _subtask("2", ALICE, created_at="2025-01-05T00:00:00Z"),
            _subtask("3", BOB, completed=True, completed_at="2025-01-05T00:00:00Z"),
        ]
        criteria = FilterCriteria(
            start=_utc(2025, 1, 1), status=StatusFilter.COMPLETED, assignees=("A",)
        )
        assert [s.gid for s in filter_subtasks(subtasks, criteria, today=TODAY)] == ["1"]


# ===================================================================
# generate_export_rows
# ===================================================================


def _export_report():
    task = Task(
        gid="T1",
        name="Week 2",
        section_gid="S1",
        project="Roadmap",
        subtasks=[
            _subtask(
                "1", ALICE, followers=[BOB, CAROL], completed=True,
                created_at="2025-01-06T00:00:00Z", completed_at="2025-01-08T00:00:00Z",
            ),
            _subtask("2", None, followers=[BOB], due_on="2025-01-10"),
            _subtask("3", BOB),
        ],
    )
    return Report(sections=[Section(gid="S1", name="Engineering", tasks=[task])])


class TestExportRows:
    def test_one_row_per_role(self):
        rows = generate_export_rows(_export_report(), today=TODAY)

        assert [(r.assignee, r.is_follower) for r in rows] == [
            ("Alice", False),
            ("Bob", True),
            ("carol", True),
            ("Bob", True),
            ("Bob", False),
        ]

    def test_owner_row_fields(self):
        row = generate_export_rows(_export_report(), today=TODAY)[0]

        assert row.task_name == "Week 2 - Subtask 1"
        assert row.section == "Engineering"
        assert row.project == "Roadmap"
        assert row.assignee_email == "alice@example.com"
        assert row.status == "Completed"
        assert row.lead_time_days == pytest.approx(2.0)
        assert row.is_overdue is False
        assert row.owner is None

    def test_follower_rows_name_the_owner(self):
        rows = generate_export_rows(_export_report(), today=TODAY)

        assert rows[1].owner == "Alice"
        assert rows[3].owner is None
        assert rows[3].is_overdue is True
        assert rows[3].project == "Roadmap"

    def test_filter_applies_to_follower_as_assignee(self):
        criteria = FilterCriteria(assignees=("B",))

        rows = generate_export_rows(_export_report(), criteria, today=TODAY)

        assert all(r.assignee == "Bob" for r in rows)
        assert [r.is_follower for r in rows] == [True, True, False]

    def test_unknown_project(self):
        report = Report(sections=[Section("S1", "Ops", tasks=[
            Task("T1", "Week 1", "S1", subtasks=[_subtask("1", ALICE)]),
        ])])
        assert generate_export_rows(report, today=TODAY)[0].project == "Unknown"


# ===================================================================
# current_task_rows
# ===================================================================


def _task_report():
    return Report(sections=[Section("S1", "Eng", tasks=[
        Task("T1", "Week 1", "S1", subtasks=[
            _subtask("own-done", ALICE, completed=True, due_on="2025-01-20"),
            _subtask("own-late", ALICE, due_on="2025-01-10"),
            _subtask("follow", BOB, followers=[ALICE], due_on="2025-01-20", task_gid="T1"),
            _subtask("other", BOB),
        ]),
        Task("T2", "Week 2", "S1", subtasks=[
            _subtask("own-open", ALICE, task_gid="T2"),
        ]),
    ])])


class TestCurrentTaskRows:
    def test_rows_typed_and_sorted(self):
        page = current_task_rows(_task_report(), "A", today=TODAY)

        assert page.total == 4
        assert [(r.gid, r.type, r.status) for r in page.rows] == [
            ("own-done", "Owner", "Completed"),
            ("follow", "Collaborator", "Pending"),
            ("own-late", "Owner", "Overdue"),
            ("own-open", "Owner", "Pending"),
        ]
        assert page.rows[-1].week == "Week 2"

    def test_status_filter(self):
        page = current_task_rows(_task_report(), "A", status=StatusFilter.OVERDUE, today=TODAY)
        assert [r.gid for r in page.rows] == ["own-late"]

    def test_pagination(self):
        page = current_task_rows(_task_report(), "A", page=2, page_size=3, today=TODAY)
        assert page.total == 4
        assert page.page_size == 3
        assert [r.gid for r in page.rows] == ["own-open"]
