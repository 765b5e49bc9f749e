"""
Time and date utilities.

All timestamps inside Project Pulse are timezone-aware UTC ``datetime``
objects. Naive values coming from the event log are interpreted as UTC.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

DAY_SECONDS = 86_400.0


def utcnow() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime, or convert an aware one to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_ts(value: object) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) as UTC.

    Returns ``None`` for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def iso_z(value: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DDTHH:MM:SSZ`` (UTC, no fraction)."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional days from ``earlier`` to ``later`` (negative if reversed)."""
    return (ensure_utc(later) - ensure_utc(earlier)).total_seconds() / DAY_SECONDS


def day_key(value: datetime) -> str:
    """Return the UTC calendar day of ``value`` as ``YYYY-MM-DD``."""
    return ensure_utc(value).date().isoformat()


def end_of_day(day: date) -> datetime:
    """Return ``day`` at 23:59:59 UTC (a label, not a window bound; see ``day_bounds``)."""
    return datetime.combine(day, time(23, 59, 59), tzinfo=timezone.utc)


def start_of_day(day: date) -> datetime:
    """Return ``day`` at 00:00:00 UTC."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def day_bounds(first: date, last: Optional[date] = None) -> tuple[datetime, datetime]:
    """Half-open ``[start, end)`` covering the days ``first..last`` (UTC).

    ``end`` is midnight after ``last``, so sub-second timestamps late on the
    last day stay inside.
    """
    last = first if last is None else last
    return start_of_day(first), start_of_day(last + timedelta(days=1))


def window_dates(as_of: date, window_days: int) -> tuple[date, date]:
    """Return the inclusive ``(start, end)`` dates of a window ending on ``as_of``."""
    return as_of - timedelta(days=window_days - 1), as_of
