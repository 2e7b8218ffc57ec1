"""External collaborators the booking tracker depends on.

The REST data service and the realtime service are out of scope; the
tracker talks to them only through these ports.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncIterator, Optional, TypedDict

from booking_tracker.schemas.booking_schema import Booking


class ActionResult(TypedDict, total=False):
    """Result of a write against the booking service."""

    success: bool
    message: str
    booking_id: str
    booking: Booking


class BookingService(ABC):
    @abstractmethod
    async def fetch_booking(self, booking_id: str) -> Booking:
        """Return the current booking. Raises LookupError or ConnectionError."""
        raise NotImplementedError

    @abstractmethod
    async def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> ActionResult:
        """Cancel the booking. On success ``booking`` holds the updated record."""
        raise NotImplementedError

    @abstractmethod
    async def reschedule_booking(self, booking_id: str, new_time: datetime) -> ActionResult:
        """Move the booking to ``new_time``. Never changes its status."""
        raise NotImplementedError

    @abstractmethod
    async def submit_review(
        self, booking_id: str, rating: int, comment: Optional[str] = None
    ) -> ActionResult:
        """Submit the customer's review for a completed booking."""
        raise NotImplementedError


class FeedConnection(ABC):
    """One open realtime connection for a single booking id."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        """Yield raw change payloads. Raises ConnectionError when dropped."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Release the connection. Must be synchronous and idempotent."""
        raise NotImplementedError


class ChangeFeed(ABC):
    @abstractmethod
    async def connect(self, booking_id: str) -> FeedConnection:
        """Open a change subscription. Raises ConnectionError on failure."""
        raise NotImplementedError
