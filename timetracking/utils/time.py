"""UTC clock helpers.

Timestamps are stored as naive UTC datetimes, which is what Motor hands back
by default, so everything entering the service is normalized to that form.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Convert a datetime to naive UTC.

    Aware datetimes are shifted to UTC; naive ones are assumed to already be UTC.

    Examples:
        >>> to_naive_utc(datetime(2025, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2))))
        datetime.datetime(2025, 1, 1, 10, 0)
    """
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def current_week(today: Optional[date] = None) -> tuple[date, date]:
    """Return (monday, sunday) of the ISO week containing ``today``."""
    today = today or utcnow().date()
    monday = today - timedelta(days=today.weekday())
    return monday, monday + timedelta(days=6)


def whole_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes elapsed from start to end, truncated and never negative."""
    return max(0, (end - start) // timedelta(minutes=1))
