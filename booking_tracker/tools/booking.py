"""
Mock booking data service.

In production, this is the marketplace REST backend (bookings table plus
the cancel/reschedule/review endpoints). The provider-side status
updates that normally come from the business app are driven here with
``advance_status``, which also publishes to an attached change feed.
"""

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from booking_tracker.lifecycle.status_model import (
    BookingStatus,
    InvalidTransitionError,
    assert_transition,
)
from booking_tracker.ports import ActionResult, BookingService
from booking_tracker.schemas.booking_schema import Booking, ProviderInfo, StatusEntry
from booking_tracker.tools.realtime_feed import InMemoryChangeFeed
from booking_tracker.utils import ensure_aware, utc_now

logger = logging.getLogger(__name__)

RESCHEDULABLE = (BookingStatus.PENDING, BookingStatus.CONFIRMED)
MIN_RESCHEDULE_LEAD = timedelta(hours=1)


class InMemoryBookingService(BookingService):
    """Dictionary-backed booking backend with failure injection.

    ``offline`` makes every call raise ConnectionError; ``reject_next``
    makes the next write return an unsuccessful result with that message.
    """

    def __init__(self, feed: Optional[InMemoryChangeFeed] = None) -> None:
        self._bookings: dict[str, Booking] = {}
        self._reviews: dict[str, tuple[int, Optional[str]]] = {}
        self._feed = feed
        self.offline = False
        self.reject_next: Optional[str] = None
        self.fetch_count = 0

    # ------------------------------------------------------------------ #
    # Setup helpers
    # ------------------------------------------------------------------ #

    def create_booking(
        self,
        service_name: str,
        scheduled_at: datetime,
        total_amount: Decimal = Decimal("0"),
        customer_name: str = "",
        booking_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Booking:
        """Create a booking in ``pending``, as the booking form would."""
        ref = booking_id or f"BK-{uuid.uuid4().hex[:6].upper()}"
        booking = Booking(
            id=ref,
            status=BookingStatus.PENDING,
            status_history=(
                StatusEntry(status=BookingStatus.PENDING, occurred_at=created_at or utc_now()),
            ),
            scheduled_at=scheduled_at,
            total_amount=total_amount,
            service_name=service_name,
            customer_name=customer_name,
        )
        self._bookings[ref] = booking
        logger.info("Booking created: %s for %s at %s", ref, service_name, booking.scheduled_at)
        return booking

    def put(self, booking: Booking) -> None:
        """Store a booking as-is, replacing any existing record."""
        self._bookings[booking.id] = booking

    def get(self, booking_id: str) -> Optional[Booking]:
        return self._bookings.get(booking_id)

    def get_review(self, booking_id: str) -> Optional[tuple[int, Optional[str]]]:
        return self._reviews.get(booking_id)

    def advance_status(
        self,
        booking_id: str,
        status: BookingStatus,
        occurred_at: Optional[datetime] = None,
        provider: Optional[ProviderInfo] = None,
        publish: bool = True,
    ) -> Booking:
        """Provider-side status update.

        Raises:
            KeyError: If the booking does not exist.
            InvalidTransitionError: If the move breaks the lifecycle rules.
        """
        booking = self._bookings[booking_id]
        assert_transition(booking.status, status)
        when = max(ensure_aware(occurred_at or utc_now()), booking.last_changed_at)
        updated = booking.advance(status, when)
        if provider is not None:
            updated = updated.model_copy(update={"provider": provider})
        self._bookings[booking_id] = updated
        logger.info("Booking %s advanced to %s", booking_id, status.value)
        if publish and self._feed is not None:
            self._feed.publish_status(booking_id, status, when)
        return updated

    def reset(self) -> None:
        """Clear all bookings. Used by test fixtures for isolation."""
        self._bookings.clear()
        self._reviews.clear()

    # ------------------------------------------------------------------ #
    # BookingService
    # ------------------------------------------------------------------ #

    def _check_online(self) -> None:
        if self.offline:
            raise ConnectionError("Booking service unreachable")

    def _take_rejection(self) -> Optional[str]:
        message, self.reject_next = self.reject_next, None
        return message

    async def fetch_booking(self, booking_id: str) -> Booking:
        self._check_online()
        self.fetch_count += 1
        if booking_id not in self._bookings:
            raise LookupError(f"Booking {booking_id} not found")
        return self._bookings[booking_id]

    async def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> ActionResult:
        self._check_online()
        if booking_id not in self._bookings:
            return {"success": False, "message": f"Booking {booking_id} not found."}
        rejection = self._take_rejection()
        if rejection:
            return {"success": False, "booking_id": booking_id, "message": rejection}
        try:
            booking = self.advance_status(booking_id, BookingStatus.CANCELLED)
        except InvalidTransitionError:
            current = self._bookings[booking_id].status.value
            return {
                "success": False,
                "booking_id": booking_id,
                "message": f"Booking {booking_id} is already {current}.",
            }
        logger.info("Booking cancelled: %s (%s)", booking_id, reason or "no reason given")
        return {
            "success": True,
            "booking_id": booking_id,
            "message": f"Booking {booking_id} has been cancelled.",
            "booking": booking,
        }

    async def reschedule_booking(self, booking_id: str, new_time: datetime) -> ActionResult:
        self._check_online()
        if booking_id not in self._bookings:
            return {"success": False, "message": f"Booking {booking_id} not found."}
        rejection = self._take_rejection()
        if rejection:
            return {"success": False, "booking_id": booking_id, "message": rejection}
        booking = self._bookings[booking_id]
        if booking.status not in RESCHEDULABLE:
            return {
                "success": False,
                "booking_id": booking_id,
                "message": f"Booking {booking_id} can't be rescheduled once {booking.status.value}.",
            }
        new_time = ensure_aware(new_time)
        if new_time < utc_now() + MIN_RESCHEDULE_LEAD:
            return {
                "success": False,
                "booking_id": booking_id,
                "message": "Please pick a time at least one hour from now.",
            }
        updated = booking.with_schedule(new_time)
        self._bookings[booking_id] = updated
        logger.info("Booking rescheduled: %s to %s", booking_id, new_time.isoformat())
        return {
            "success": True,
            "booking_id": booking_id,
            "message": f"Booking {booking_id} rescheduled to {new_time:%b %d, %Y %I:%M %p}.",
            "booking": updated,
        }

    async def submit_review(
        self, booking_id: str, rating: int, comment: Optional[str] = None
    ) -> ActionResult:
        self._check_online()
        booking = self._bookings.get(booking_id)
        if booking is None:
            return {"success": False, "message": f"Booking {booking_id} not found."}
        rejection = self._take_rejection()
        if rejection:
            return {"success": False, "booking_id": booking_id, "message": rejection}
        if booking.status != BookingStatus.COMPLETED or booking.review_submitted:
            return {
                "success": False,
                "booking_id": booking_id,
                "message": "Only completed bookings can be reviewed, once.",
            }
        self._reviews[booking_id] = (rating, comment)
        updated = booking.model_copy(update={"review_submitted": True})
        self._bookings[booking_id] = updated
        logger.info("Review submitted for %s: %d stars", booking_id, rating)
        return {
            "success": True,
            "booking_id": booking_id,
            "message": "Thanks for your review!",
            "booking": updated,
        }
