"""Exceptions surfaced to screens by the booking tracker."""

from typing import Optional


class BookingTrackerError(Exception):
    """Base class for user-actionable booking tracker failures."""

    def __init__(self, message: str, booking_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.booking_id = booking_id


class BookingFetchError(BookingTrackerError):
    """Initial hydrate or refresh failed. The screen may retry."""


class BookingActionError(BookingTrackerError):
    """A cancel, reschedule or review write was rejected or could not be sent."""

    def __init__(self, message: str, booking_id: Optional[str] = None, action: str = "") -> None:
        super().__init__(message, booking_id)
        self.action = action


class BookingNotLoadedError(BookingTrackerError):
    """An operation needed booking state before the first successful fetch."""
