"""CLI entry point for asana-report."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from .config import Settings
from .errors import AsanaReportError
from .export import write_csv, write_json
from .filters import FilterCriteria, StatusFilter, current_task_rows, generate_export_rows
from .metrics import report_summary
from .service import ReportService, Requester
from .storage import ReportStore
from .validation import validate_report


def _parse_when(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Not an ISO date/time: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="asana-report",
        description="Mirror an Asana project into a database and report per-person metrics.",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=None,
        help="Asana personal access token (or set ASANA_TOKEN env var)",
    )
    parser.add_argument(
        "--project",
        type=str,
        default=None,
        help="Asana project GID (or set ASANA_PROJECT_ID env var)",
    )
    parser.add_argument(
        "--team",
        type=str,
        default=None,
        help="Asana team GID used to resolve assignee profiles (or set ASANA_TEAM_ID)",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="SQLAlchemy database URL (or set DATABASE_URL)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sync", help="Fetch the project from Asana and store it")
    sub.add_parser("status", help="Show the latest sync status")
    sub.add_parser("validate", help="Check the stored data for quality problems")

    metrics = sub.add_parser("metrics", help="Show per-assignee metrics")
    metrics.add_argument("--assignee", type=str, default=None, help="Only this assignee GID")
    metrics.add_argument(
        "--output-json",
        type=str,
        default=None,
        help="Write metrics to a JSON file",
    )

    export = sub.add_parser("export", help="Export one row per person per subtask")
    export.add_argument("output", type=str, help="Destination file")
    export.add_argument("--format", choices=["csv", "json"], default="csv")
    export.add_argument(
        "--status", choices=[s.value for s in StatusFilter], default=StatusFilter.ALL.value
    )
    export.add_argument(
        "--assignee", action="append", default=[], help="Assignee GID (repeatable)"
    )
    export.add_argument("--start", type=_parse_when, default=None, help="ISO start (inclusive)")
    export.add_argument("--end", type=_parse_when, default=None, help="ISO end (inclusive)")

    tasks = sub.add_parser("tasks", help="List the subtasks a person owns or follows")
    tasks.add_argument("assignee", type=str, help="Assignee GID")
    tasks.add_argument(
        "--status", choices=[s.value for s in StatusFilter], default=StatusFilter.ALL.value
    )
    tasks.add_argument("--page", type=int, default=1)
    tasks.add_argument("--page-size", type=int, default=10)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(message)s",
    )

    settings = Settings.from_env().with_overrides(
        token=args.token,
        project_id=args.project,
        team_id=args.team,
        database_url=args.database_url,
    )
    try:
        store = ReportStore(settings.database_url)
        store.create_schema()
        service = ReportService(settings, store)
        return _COMMANDS[args.command](args, service)
    except AsanaReportError as e:
        logging.error("%s", e)
        return 1


def _cmd_sync(args: argparse.Namespace, service: ReportService) -> int:
    # The CLI runs with the operator's authority.
    result = asyncio.run(service.start_sync(Requester(is_admin=True)))
    if result.success:
        logging.info("%s (%d records)", result.message, result.record_count)
        return 0
    logging.error("Sync failed: %s", result.message)
    return 1


def _cmd_status(args: argparse.Namespace, service: ReportService) -> int:
    status = service.get_sync_status()
    if status is None:
        logging.info("No sync has run yet")
        return 0
    print(json.dumps(status.to_dict(), indent=2))
    return 0


def _cmd_validate(args: argparse.Namespace, service: ReportService) -> int:
    report = service.store.load()
    validation = validate_report(report)
    for warning in validation.warnings:
        logging.warning("  - %s", warning)
    for error in validation.errors:
        logging.error("  - %s", error)
    summary = report_summary(report)
    logging.info(
        "%d subtasks (%d completed, %d overdue) across %d assignees and %d sections",
        summary.total, summary.completed, summary.overdue,
        summary.unique_assignees, summary.active_sections,
    )
    return 0 if validation.is_valid else 1


def _cmd_metrics(args: argparse.Namespace, service: ReportService) -> int:
    if args.assignee:
        found = service.get_metrics_for_assignee(args.assignee)
        metrics = [found] if found else []
    else:
        metrics = service.get_all_metrics()

    if not metrics:
        logging.info("No data yet. Run 'asana-report sync' first.")
    for m in metrics:
        logging.info(
            "%s: %d subtasks, %d completed (%.0f%%), %d overdue, avg lead time %.2f days",
            m.assignee.display_name, m.total, m.completed, m.completion_rate * 100,
            m.overdue, m.avg_lead_time_days,
        )

    if args.output_json:
        Path(args.output_json).write_text(json.dumps([m.to_dict() for m in metrics], indent=2))
        logging.info("Metrics written to %s", args.output_json)
    return 0


def _cmd_export(args: argparse.Namespace, service: ReportService) -> int:
    criteria = FilterCriteria(
        start=args.start,
        end=args.end,
        status=StatusFilter(args.status),
        assignees=tuple(args.assignee),
    )
    rows = generate_export_rows(service.store.load(), criteria)
    path = Path(args.output)
    if args.format == "json":
        write_json(rows, path)
    else:
        write_csv(rows, path)
    return 0


def _cmd_tasks(args: argparse.Namespace, service: ReportService) -> int:
    page = current_task_rows(
        service.store.load(args.assignee),
        args.assignee,
        status=StatusFilter(args.status),
        page=args.page,
        page_size=args.page_size,
    )
    for row in page.rows:
        print(f"{row.status:<10} {row.type:<12} {row.due_on or '-':<12} {row.week} / {row.name}")
    logging.info("Showing %d of %d", len(page.rows), page.total)
    return 0


_COMMANDS = {
    "sync": _cmd_sync,
    "status": _cmd_status,
    "validate": _cmd_validate,
    "metrics": _cmd_metrics,
    "export": _cmd_export,
    "tasks": _cmd_tasks,
}


if __name__ == "__main__":
    sys.exit(main())
