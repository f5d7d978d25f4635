"""Data-quality checks for a fetched or loaded report."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .dates import is_valid_timestamp
from .models import Report

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    """Warnings are informational; any error means the report is unusable."""

    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_report(report: Report) -> ValidationReport:
    result = ValidationReport()

    if not report.sections:
        result.errors.append("No sections found")
        return result

    total_tasks = 0
    total_subtasks = 0
    without_assignee = 0
    without_created = 0

    for section in report.sections:
        if not section.tasks:
            result.warnings.append(f'Section "{section.name}" has no tasks')

        for task in section.tasks:
            total_tasks += 1
            if not task.subtasks:
                result.warnings.append(
                    f'Task "{task.name}" in section "{section.name}" has no subtasks'
                )
                continue

            for subtask in task.subtasks:
                total_subtasks += 1
                if subtask.assignee is None:
                    without_assignee += 1
                if not subtask.created_at:
                    without_created += 1
                where = f'subtask "{subtask.name}" of task "{task.name}" in section "{section.name}"'
                if subtask.created_at and not is_valid_timestamp(subtask.created_at):
                    result.errors.append(f"Invalid created_at date in {where}")
                if subtask.completed_at and not is_valid_timestamp(subtask.completed_at):
                    result.errors.append(f"Invalid completed_at date in {where}")

    if without_assignee:
        result.warnings.append(f"{without_assignee} subtasks have no assignee")
    if without_created:
        result.warnings.append(f"{without_created} subtasks have no created date")
    if total_subtasks == 0:
        result.errors.append("No subtasks found")

    logger.info(
        "Report validation: %d tasks, %d subtasks. %d warnings, %d errors",
        total_tasks, total_subtasks, len(result.warnings), len(result.errors),
    )
    return result
