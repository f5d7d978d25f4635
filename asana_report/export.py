"""Writers for export rows."""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path

from .filters import ExportRow

logger = logging.getLogger(__name__)

CSV_HEADERS = [
    ("task_name", "Task"),
    ("section", "Section"),
    ("project", "Project"),
    ("assignee", "Assignee"),
    ("assignee_email", "Email"),
    ("owner", "Owner"),
    ("is_follower", "Follower"),
    ("status", "Status"),
    ("created", "Created"),
    ("completed", "Completed"),
    ("due", "Due"),
    ("lead_time_days", "Lead Time (days)"),
    ("is_overdue", "Overdue"),
]


def write_csv(rows: list[ExportRow], path: Path) -> None:
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow([label for _, label in CSV_HEADERS])
        for row in rows:
            data = row.to_dict()
            writer.writerow(
                [_cell(data[key], key) for key, _ in CSV_HEADERS]
            )
    logger.info("Wrote %d rows to %s", len(rows), path)


def write_json(rows: list[ExportRow], path: Path) -> None:
    path.write_text(json.dumps([r.to_dict() for r in rows], indent=2), encoding="utf-8")
    logger.info("Wrote %d rows to %s", len(rows), path)


def _cell(value: object, key: str) -> object:
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if value is None:
        return ""
    if key == "lead_time_days":
        return f"{value:.2f}"
    return value
