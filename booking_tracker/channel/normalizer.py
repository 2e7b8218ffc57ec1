"""
Normalization of raw realtime payloads into StatusChangeEvents.

Two payload shapes are accepted:
    row change:  {"eventType": "UPDATE", "new": {"id": ..., "status": ..., "updated_at": ...}}
    flat:        {"booking_id": ..., "status": ..., "occurred_at": ...}

Anything that does not describe a status for the subscribed booking is
dropped with a log line rather than raised.
"""

from datetime import datetime
from typing import Any, Callable, Optional

from booking_tracker.lifecycle.status_model import parse_status
from booking_tracker.logging_context import get_booking_logger
from booking_tracker.schemas.booking_schema import StatusChangeEvent
from booking_tracker.utils import parse_timestamp, utc_now

logger = get_booking_logger(__name__)

_ID_KEYS = ("booking_id", "id")
_TIME_KEYS = ("occurred_at", "updated_at", "status_changed_at")


def _row(raw: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Extract the booking row from a payload, or None for deletes."""
    event_type = str(raw.get("eventType", raw.get("type", ""))).upper()
    if event_type == "DELETE":
        return None
    new = raw.get("new")
    if isinstance(new, dict):
        return new
    if "new" in raw:
        return None
    return raw


def _first(row: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return None


def normalize_change(
    raw: Any,
    booking_id: str,
    clock: Callable[[], datetime] = utc_now,
) -> Optional[StatusChangeEvent]:
    """Convert one raw payload into an event for ``booking_id``.

    Returns None when the payload is malformed, a delete, for another
    booking, or carries an unknown status. A missing timestamp is
    stamped with ``clock()`` at receipt.
    """
    if not isinstance(raw, dict):
        logger.warning("Dropping non-object payload: %r", raw)
        return None

    row = _row(raw)
    if row is None:
        logger.warning("Dropping payload without a booking row (event %s)", raw.get("eventType"))
        return None

    row_id = _first(row, _ID_KEYS)
    if row_id is not None and str(row_id) != booking_id:
        logger.debug("Dropping payload for booking %s", row_id)
        return None

    status = parse_status(row.get("status"))
    if status is None:
        logger.warning("Dropping payload with unknown status %r", row.get("status"))
        return None

    occurred_at = parse_timestamp(_first(row, _TIME_KEYS)) or clock()
    return StatusChangeEvent(booking_id=booking_id, new_status=status, occurred_at=occurred_at)
