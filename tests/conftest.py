"""Shared test fixtures and helpers."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

from booking_tracker.channel.adapter import BookingChannel
from booking_tracker.config import ChannelConfig
from booking_tracker.lifecycle.diagnostics import DiagnosticsLog
from booking_tracker.lifecycle.status_model import BookingStatus
from booking_tracker.schemas.booking_schema import Booking, StatusChangeEvent, StatusEntry
from booking_tracker.tools.booking import InMemoryBookingService
from booking_tracker.tools.realtime_feed import InMemoryChangeFeed

T0 = datetime(2025, 3, 15, 9, 0, tzinfo=timezone.utc)
BOOKING_ID = "BK-TEST01"

# Zero backoff so reconnect tests only need to yield to the loop
FAST_CHANNEL_CONFIG = ChannelConfig(
    reconnect_base_delay_sec=0.0,
    reconnect_max_delay_sec=0.0,
    max_reconnect_attempts=3,
)


def at(minutes: float) -> datetime:
    """Timestamp ``minutes`` after T0."""
    return T0 + timedelta(minutes=minutes)


def make_booking(
    *statuses: BookingStatus,
    booking_id: str = BOOKING_ID,
    scheduled_at: Optional[datetime] = None,
    total_amount: Decimal = Decimal("1499.00"),
    review_submitted: bool = False,
) -> Booking:
    """Build a booking whose history walks ``statuses``, 15 minutes apart."""
    statuses = statuses or (BookingStatus.PENDING,)
    history = tuple(
        StatusEntry(status=status, occurred_at=at(15 * i))
        for i, status in enumerate(statuses)
    )
    return Booking(
        id=booking_id,
        status=statuses[-1],
        status_history=history,
        scheduled_at=scheduled_at or T0 + timedelta(days=2),
        total_amount=total_amount,
        service_name="AC Deep Cleaning",
        customer_name="Priya Sharma",
        review_submitted=review_submitted,
    )


def make_event(
    status: BookingStatus,
    occurred_at: Optional[datetime] = None,
    booking_id: str = BOOKING_ID,
) -> StatusChangeEvent:
    return StatusChangeEvent(
        booking_id=booking_id,
        new_status=status,
        occurred_at=occurred_at or at(120),
    )


async def flush(rounds: int = 20) -> None:
    """Let background channel tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class Recorder:
    """Observer callback that keeps every snapshot it receives."""

    def __init__(self):
        self.snapshots = []

    def __call__(self, snapshot):
        self.snapshots.append(snapshot)

    @property
    def last(self):
        return self.snapshots[-1] if self.snapshots else None

    @property
    def statuses(self):
        return [s.status for s in self.snapshots]


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
def service(feed):
    return InMemoryBookingService(feed)


@pytest.fixture
def channel(feed):
    return BookingChannel(feed, FAST_CHANNEL_CONFIG)


@pytest.fixture
def diagnostics():
    return DiagnosticsLog(max_entries=50)
