"""
Diagnostics for status change events the view model refused to apply.

Discards are expected under network reordering and are never shown to
the user. They are kept here, bounded, so support tooling can tell a
reordering feed from a broken one.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from booking_tracker.config import settings
from booking_tracker.lifecycle.status_model import (
    BookingStatus,
    canonical_order,
    is_terminal,
)
from booking_tracker.schemas.booking_schema import StatusChangeEvent
from booking_tracker.logging_context import get_booking_logger
from booking_tracker.utils import utc_now

logger = get_booking_logger(__name__)


class DiscardReason(str, Enum):
    """Why an event was not applied."""

    REGRESSION = "regression"
    SKIPPED_STEP = "skipped_step"
    AFTER_TERMINAL = "after_terminal"
    WRONG_BOOKING = "wrong_booking"


@dataclass(frozen=True)
class DiscardedEvent:
    """A refused event with the status it was compared against."""

    event: StatusChangeEvent
    current_status: BookingStatus
    reason: DiscardReason
    recorded_at: datetime = field(default_factory=utc_now)


def classify_discard(
    current: BookingStatus, event: StatusChangeEvent, booking_id: Optional[str] = None
) -> DiscardReason:
    """Pick the reason an invalid event from ``current`` is being refused."""
    if booking_id is not None and event.booking_id != booking_id:
        return DiscardReason.WRONG_BOOKING
    if is_terminal(current):
        return DiscardReason.AFTER_TERMINAL
    if canonical_order(event.new_status) <= canonical_order(current):
        return DiscardReason.REGRESSION
    return DiscardReason.SKIPPED_STEP


class DiagnosticsLog:
    """Bounded log of discarded events."""

    def __init__(self, max_entries: Optional[int] = None) -> None:
        self._entries: deque[DiscardedEvent] = deque(
            maxlen=max_entries or settings.diagnostics_max_entries
        )
        self._counts: dict[DiscardReason, int] = {reason: 0 for reason in DiscardReason}

    def record(
        self,
        event: StatusChangeEvent,
        current_status: BookingStatus,
        reason: DiscardReason,
    ) -> DiscardedEvent:
        entry = DiscardedEvent(event=event, current_status=current_status, reason=reason)
        self._entries.append(entry)
        self._counts[reason] += 1
        logger.info(
            "Discarded event for %s: %s -> %s (%s)",
            event.booking_id, current_status.value, event.new_status.value, reason.value,
        )
        return entry

    def entries(self) -> list[DiscardedEvent]:
        return list(self._entries)

    def get_stats(self) -> dict[str, Any]:
        """Discard counts for support tooling."""
        return {
            "total_discarded": sum(self._counts.values()),
            "by_reason": {reason.value: count for reason, count in self._counts.items()},
            "retained": len(self._entries),
        }

    def clear(self) -> None:
        self._entries.clear()
        self._counts = {reason: 0 for reason in DiscardReason}
