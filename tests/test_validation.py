"""Tests for report data-quality checks."""

from asana_report.models import Assignee, Report, Section, Subtask, Task
from asana_report.validation import validate_report

ALICE = Assignee("A", "Alice")


def _report(*subtasks, extra_sections=()):
    task = Task("T1", "Week 1", "S1", subtasks=list(subtasks))
    return Report(sections=[Section("S1", "Eng", tasks=[task]), *extra_sections])


def test_empty_report_is_an_error_not_a_crash():
    result = validate_report(Report())

    assert result.errors == ["No sections found"]
    assert not result.is_valid


def test_clean_report_is_valid():
    result = validate_report(
        _report(Subtask("1", "Docs", "T1", assignee=ALICE, created_at="2025-01-06T00:00:00Z"))
    )

    assert result.is_valid
    assert result.warnings == []


def test_missing_assignee_and_created_date_are_warnings():
    result = validate_report(
        _report(
            Subtask("1", "Docs", "T1"),
            Subtask("2", "Tests", "T1"),
        )
    )

    assert result.is_valid
    assert "2 subtasks have no assignee" in result.warnings
    assert "2 subtasks have no created date" in result.warnings


def test_empty_section_and_task_are_warnings():
    result = validate_report(
        _report(
            Subtask("1", "Docs", "T1", assignee=ALICE, created_at="2025-01-06"),
            extra_sections=[
                Section("S2", "Ops"),
                Section("S3", "Design", tasks=[Task("T3", "Week 2", "S3")]),
            ],
        )
    )

    assert 'Section "Ops" has no tasks' in result.warnings
    assert 'Task "Week 2" in section "Design" has no subtasks' in result.warnings
    assert result.is_valid


def test_invalid_dates_are_errors():
    result = validate_report(
        _report(
            Subtask("1", "Docs", "T1", assignee=ALICE, created_at="yesterday",
                    completed_at="soon"),
        )
    )

    assert len(result.errors) == 2
    assert result.errors[0].startswith("Invalid created_at date")
    assert 'subtask "Docs"' in result.errors[1]


def test_no_subtasks_anywhere_is_an_error():
    result = validate_report(_report())

    assert "No subtasks found" in result.errors
