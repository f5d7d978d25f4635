"""Tests for the CSV/JSON export writers."""

import csv
import json

from asana_report.export import write_csv, write_json
from asana_report.filters import ExportRow


def _make_row(**kwargs):
    defaults = dict(
        task_name="Week 1 - Docs",
        section="Eng",
        project="Unknown",
        assignee="Alice",
        assignee_email="",
        status="Pending",
        created="",
        completed="",
        due="2025-01-10",
        lead_time_days=0.0,
        is_overdue=True,
    )
    defaults.update(kwargs)
    return ExportRow(**defaults)


def test_csv_formats_flags_and_lead_time(tmp_path):
    path = tmp_path / "out.csv"

    write_csv([_make_row(), _make_row(lead_time_days=1.5, is_overdue=False, owner="Bob",
                                      is_follower=True)], path)

    with path.open(newline="", encoding="utf-8") as f:
        first, second = list(csv.DictReader(f))
    assert first["Overdue"] == "Yes"
    assert first["Follower"] == "No"
    assert first["Owner"] == ""
    assert first["Lead Time (days)"] == "0.00"
    assert second["Lead Time (days)"] == "1.50"
    assert second["Owner"] == "Bob"


def test_json_keeps_native_types(tmp_path):
    path = tmp_path / "out.json"

    write_json([_make_row(lead_time_days=2.25)], path)

    data = json.loads(path.read_text())
    assert data[0]["lead_time_days"] == 2.25
    assert data[0]["is_overdue"] is True
    assert data[0]["owner"] is None
