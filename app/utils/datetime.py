"""Datetime utilities for handling timezone-aware datetime objects."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: datetime | None) -> datetime | None:
    """
    Convert naive datetime to aware UTC datetime.

    Datetimes read back from the database are typically naive (SQLite drops
    the offset) but always represent UTC, so the UTC tzinfo is attached.
    Aware datetimes are converted to UTC.

    Args:
        dt: A datetime object, which may be naive or aware.

    Returns:
        A timezone-aware datetime in UTC, or None if input is None.

    Examples:
        >>> naive_dt = datetime(2025, 1, 1, 12, 0)
        >>> ensure_aware(naive_dt).tzinfo
        datetime.timezone.utc
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_or_none(dt: datetime | None) -> str | None:
    aware = ensure_aware(dt)
    return aware.isoformat() if aware else None
