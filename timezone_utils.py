"""
Fleet Tracker - Timezone Utilities

Provides consistent timezone handling across the application.

IMPORTANT: All internal timestamps should be UTC.
Naive datetimes coming from the store or from trackers are assumed to be UTC.
"""

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to timezone-aware UTC

    Args:
        dt: naive (assumed UTC) or aware datetime

    Returns:
        Timezone-aware datetime in UTC
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def as_utc_datetime(value) -> datetime:
    """Accept a date or datetime and return an aware UTC datetime (dates at midnight)."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    raise TypeError(f"Expected date or datetime, got {type(value).__name__}")


def days_between(start, end) -> int:
    """
    Whole days elapsed from start to end, truncated toward zero

    A service done 6 days 23 hours ago counts as 6 days.
    """
    delta = as_utc_datetime(end) - as_utc_datetime(start)
    return int(delta.total_seconds() / 86400)


def minutes_between(start: datetime, end: datetime) -> float:
    """Elapsed minutes (fractional) from start to end."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 60.0
