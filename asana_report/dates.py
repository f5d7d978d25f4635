"""UTC timestamp parsing and ISO week arithmetic."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp or date into an aware UTC datetime.

    Date-only values (``2025-01-10``) become midnight UTC. Naive timestamps
    are taken to be UTC. Missing or unparseable values return None.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except (ValueError, TypeError, AttributeError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_day(value: str | None) -> date | None:
    """Return the UTC calendar date of a timestamp or date string."""
    parsed = parse_timestamp(value)
    return parsed.date() if parsed else None


def is_valid_timestamp(value: str | None) -> bool:
    return parse_timestamp(value) is not None


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def week_start(day: date | datetime) -> date:
    """Monday of the ISO week containing ``day``."""
    if isinstance(day, datetime):
        day = day.astimezone(timezone.utc).date()
    return day - timedelta(days=day.isoweekday() - 1)


def iso_week_label(day: date | datetime) -> str:
    """ISO week identifier in ``YYYY-Www`` form (ISO year, not calendar year)."""
    if isinstance(day, datetime):
        day = day.astimezone(timezone.utc).date()
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def week_start_timestamp(monday: date) -> datetime:
    return datetime.combine(monday, time.min, tzinfo=timezone.utc)


def iter_week_starts(start: date, end: date):
    """Yield the Monday of every ISO week from ``start``'s week to ``end``'s week."""
    current = week_start(start)
    last = week_start(end)
    while current <= last:
        yield current
        current += timedelta(weeks=1)
