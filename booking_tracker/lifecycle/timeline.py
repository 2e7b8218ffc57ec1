"""
Timeline derivation for booking tracking screens.

Turns a booking snapshot into the six-step progress list shown on the
tracking and order detail screens. Cancellation is not a step: a
cancelled booking keeps the steps it reached and gets a separate banner.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from booking_tracker.lifecycle.status_model import (
    CANONICAL_ORDER,
    STATUS_PRESENTATION,
    BookingStatus,
    canonical_order,
)
from booking_tracker.schemas.booking_schema import Booking

_LAST_RANK = len(CANONICAL_ORDER) - 1


@dataclass(frozen=True)
class TimelineStep:
    """A single render-ready step."""
    status: BookingStatus
    label: str
    completed: bool
    current: bool
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class Timeline:
    """Ordered steps plus the cancellation banner state."""
    steps: tuple[TimelineStep, ...]
    cancelled: bool = False
    cancelled_at: Optional[datetime] = None
    progress: float = 0.0

    @property
    def current_step(self) -> Optional[TimelineStep]:
        for step in self.steps:
            if step.current:
                return step
        return None

    @property
    def completed_count(self) -> int:
        return sum(1 for step in self.steps if step.completed)


def derive_timeline(booking: Booking) -> Timeline:
    """Build the timeline for ``booking``.

    Deterministic: reads only the booking's status and history.
    """
    reached_rank = canonical_order(booking.last_progress_status)
    cancelled_entry = booking.entry_for(BookingStatus.CANCELLED)

    steps = []
    for status in CANONICAL_ORDER:
        entry = booking.entry_for(status)
        steps.append(TimelineStep(
            status=status,
            label=STATUS_PRESENTATION[status].label,
            completed=canonical_order(status) <= reached_rank,
            current=status == booking.status,
            timestamp=entry.occurred_at if entry else None,
        ))

    return Timeline(
        steps=tuple(steps),
        cancelled=cancelled_entry is not None,
        cancelled_at=cancelled_entry.occurred_at if cancelled_entry else None,
        progress=round(reached_rank / _LAST_RANK * 100, 1),
    )
