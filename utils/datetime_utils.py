"""
Timezone-aware datetime utilities for Omnidesk.

All functions return timezone-aware datetime objects in UTC. Stored timestamps
are normalised through these helpers so comparisons never mix naive and aware
values.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional, Union


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def utc_from_timestamp(timestamp: Union[int, float]) -> datetime:
    """
    Convert a Unix timestamp to a timezone-aware UTC datetime.

    Channel providers deliver either seconds or milliseconds; values larger
    than any plausible seconds timestamp are treated as milliseconds.

    Args:
        timestamp: Unix timestamp (seconds or milliseconds since epoch)

    Returns:
        datetime: Timezone-aware datetime in UTC
    """
    if timestamp > 10_000_000_000:
        timestamp = timestamp / 1000.0
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime object is timezone-aware and in UTC.

    If the datetime is naive (no timezone), it assumes UTC.
    If the datetime has a different timezone, it converts to UTC.

    Args:
        dt: Datetime object (may be naive or timezone-aware)

    Returns:
        datetime: Timezone-aware datetime in UTC, or None when dt is None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    elif dt.tzinfo != timezone.utc:
        return dt.astimezone(timezone.utc)
    return dt


def utc_minutes_from_now(minutes: int, now: Optional[datetime] = None) -> datetime:
    """Get a UTC datetime `minutes` after `now` (defaults to current time)."""
    base = ensure_utc(now) if now else utc_now()
    return base + timedelta(minutes=minutes)


def format_utc_iso(dt: Optional[datetime] = None) -> str:
    """
    Format a datetime as an ISO 8601 string in UTC.

    Args:
        dt: Datetime to format (defaults to current UTC time)

    Returns:
        str: ISO 8601 formatted string with UTC timezone
    """
    utc_dt = ensure_utc(dt) if dt else utc_now()
    return utc_dt.isoformat()


def parse_utc_iso(iso_string: str) -> datetime:
    """
    Parse an ISO 8601 string to a timezone-aware UTC datetime.

    Args:
        iso_string: ISO 8601 formatted datetime string

    Returns:
        datetime: Timezone-aware datetime in UTC
    """
    if iso_string.endswith('Z'):
        iso_string = iso_string[:-1] + '+00:00'
    return ensure_utc(datetime.fromisoformat(iso_string))


def to_epoch_ms(dt: Optional[datetime]) -> Optional[int]:
    """Milliseconds since epoch for a datetime, or None."""
    if dt is None:
        return None
    return int(ensure_utc(dt).timestamp() * 1000)
