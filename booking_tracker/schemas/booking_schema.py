"""Booking aggregate, status history and change event models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from booking_tracker.lifecycle.status_model import BookingStatus, canonical_order
from booking_tracker.utils import ensure_aware


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class ProviderInfo(BaseModel):
    """Assigned provider, for display only."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    phone: Optional[str] = None
    rating: Optional[float] = None


class StatusEntry(BaseModel):
    """One status the booking entered, and when."""
    model_config = ConfigDict(frozen=True)

    status: BookingStatus
    occurred_at: datetime

    @field_validator("occurred_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)


class StatusChangeEvent(BaseModel):
    """Normalized status change delivered by the live update channel."""
    model_config = ConfigDict(frozen=True)

    booking_id: str
    new_status: BookingStatus
    occurred_at: datetime

    @field_validator("occurred_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)


class Booking(BaseModel):
    """
    Immutable snapshot of a booking.

    Built from fetched data, the history is checked against the lifecycle
    rules. The view model derives new snapshots with ``advance`` and
    ``with_schedule`` after it has validated the change itself.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    status: BookingStatus
    status_history: tuple[StatusEntry, ...]
    scheduled_at: datetime
    total_amount: Decimal = Decimal("0")
    payment_status: PaymentStatus = PaymentStatus.PENDING
    provider: Optional[ProviderInfo] = None
    service_name: str = ""
    customer_name: str = ""
    review_submitted: bool = False

    @field_validator("scheduled_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @model_validator(mode="after")
    def _check_history(self) -> "Booking":
        history = self.status_history
        if not history:
            raise ValueError("status_history must contain at least one entry")
        if history[0].status != BookingStatus.PENDING:
            raise ValueError(
                f"status_history must start with 'pending', not '{history[0].status.value}'"
            )
        if history[-1].status != self.status:
            raise ValueError(
                f"status '{self.status.value}' does not match last history entry "
                f"'{history[-1].status.value}'"
            )
        for prev, entry in zip(history, history[1:]):
            if entry.occurred_at < prev.occurred_at:
                raise ValueError("status_history must be ordered by occurred_at")

        progression = [e.status for e in history if e.status != BookingStatus.CANCELLED]
        for expected_rank, status in enumerate(progression):
            if canonical_order(status) != expected_rank:
                raise ValueError(
                    f"status_history skips or repeats a step at '{status.value}'"
                )
        for entry in history[:-1]:
            if entry.status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
                raise ValueError(f"'{entry.status.value}' may only be the last entry")
        return self

    def entry_for(self, status: BookingStatus) -> Optional[StatusEntry]:
        """Return the history entry for ``status``, if it was ever reached."""
        for entry in self.status_history:
            if entry.status == status:
                return entry
        return None

    @property
    def last_progress_status(self) -> BookingStatus:
        """Furthest non-cancelled status reached."""
        for entry in reversed(self.status_history):
            if entry.status != BookingStatus.CANCELLED:
                return entry.status
        return BookingStatus.PENDING

    @property
    def last_changed_at(self) -> datetime:
        return self.status_history[-1].occurred_at

    def advance(self, status: BookingStatus, occurred_at: datetime) -> "Booking":
        """Return a copy with ``status`` appended to the history."""
        entry = StatusEntry(status=status, occurred_at=occurred_at)
        return self.model_copy(
            update={"status": status, "status_history": self.status_history + (entry,)}
        )

    def with_schedule(self, scheduled_at: datetime) -> "Booking":
        return self.model_copy(update={"scheduled_at": ensure_aware(scheduled_at)})
