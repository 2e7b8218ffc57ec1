"""Booking ID logging context for tracing one booking across modules.

Provides a booking_id-aware logger that attaches the booking being
tracked to every log message, so a single booking's journey through
the channel and the view model can be followed in the logs.

Usage:
    from booking_tracker.logging_context import get_booking_logger, set_booking_id

    set_booking_id("BK-4F2A91")
    logger = get_booking_logger(__name__)
    logger.info("Event applied")  # record.booking_id == "BK-4F2A91"
"""

import logging
from contextvars import ContextVar

_booking_id: ContextVar[str] = ContextVar("booking_id", default="NO_BOOKING_ID")


def set_booking_id(booking_id: str) -> None:
    """Set the correlation ID for the current async context."""
    _booking_id.set(booking_id)


def get_booking_id() -> str:
    """Retrieve the current correlation ID."""
    return _booking_id.get()


class BookingIdFilter(logging.Filter):
    """Injects booking_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.booking_id = _booking_id.get()  # type: ignore[attr-defined]
        return True


def get_booking_logger(name: str) -> logging.Logger:
    """Return a logger with the BookingIdFilter attached.

    The filter adds ``booking_id`` to each record so formatters can
    include ``%(booking_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, BookingIdFilter) for f in logger.filters):
        logger.addFilter(BookingIdFilter())
    return logger
