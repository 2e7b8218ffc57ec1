"""Shared utilities used across the booking tracker."""

from datetime import datetime, timezone
from typing import Any, Optional


def ensure_aware(value: datetime) -> datetime:
    """Return ``value`` as a timezone-aware datetime, assuming UTC when naive."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from a wire payload into an aware datetime.

    Accepts the trailing ``Z`` form used by realtime row payloads. Returns
    None for empty or unparseable values.

    Examples:
        >>> parse_timestamp("2025-03-15T09:30:00Z")
        datetime.datetime(2025, 3, 15, 9, 30, tzinfo=datetime.timezone.utc)
        >>> parse_timestamp("not a date") is None
        True
    """
    if isinstance(value, datetime):
        return ensure_aware(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return ensure_aware(datetime.fromisoformat(value))
    except ValueError:
        return None


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
