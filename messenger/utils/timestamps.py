"""
Canonical timestamp encoding for stored message and summary dates.

Dates are written as ISO-8601 strings in UTC and parsed back with
``datetime.fromisoformat``, so stored values never depend on a locale.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Get current UTC datetime (timezone-aware)"""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    # Naive datetimes are taken to be UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """
    Parse a stored date string.

    Raises:
        ValueError: If the string is not an ISO-8601 timestamp
    """
    if not isinstance(value, str):
        raise ValueError(f"Expected a date string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def try_parse_timestamp(value) -> Optional[datetime]:
    try:
        return parse_timestamp(value)
    except ValueError:
        return None
