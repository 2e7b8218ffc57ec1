"""
Live update channel adapter: one push subscription per booking id.

The adapter owns the realtime connection for a booking, turns raw
payloads into StatusChangeEvents, strips consecutive duplicates, and
reconnects with exponential backoff when the connection drops. Ordering
is not checked here; the view model rejects stale transitions.

Usage:
    channel = BookingChannel(feed)
    sub = channel.subscribe("BK-4F2A91", view_model.apply_event, view_model.set_live_status)
    ...
    sub.unsubscribe()  # no callback runs after this returns
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from booking_tracker.channel.normalizer import normalize_change
from booking_tracker.config import ChannelConfig, settings
from booking_tracker.lifecycle.status_model import BookingStatus
from booking_tracker.logging_context import get_booking_logger, set_booking_id
from booking_tracker.ports import ChangeFeed, FeedConnection
from booking_tracker.schemas.booking_schema import StatusChangeEvent
from booking_tracker.utils import utc_now

logger = get_booking_logger(__name__)

# Returning False means the subscriber rejected the event; it may be redelivered.
EventCallback = Callable[[StatusChangeEvent], Optional[bool]]
StatusCallback = Callable[["LiveStatus"], None]


class LiveStatus(str, Enum):
    """Connection state reported to the subscriber."""
    CONNECTING = "connecting"
    LIVE = "live"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


def backoff_delay(attempt: int, config: ChannelConfig) -> float:
    """Delay before reconnect attempt number ``attempt`` (0-based)."""
    return min(config.reconnect_base_delay_sec * (2 ** attempt), config.reconnect_max_delay_sec)


class Subscription:
    """
    Handle for one booking id's live updates.

    Delivery runs in a background task on the current event loop.
    ``unsubscribe()`` is synchronous: it closes the open connection,
    cancels the task, and guarantees no further callbacks.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        booking_id: str,
        on_event: EventCallback,
        on_status: Optional[StatusCallback] = None,
        last_status: Optional[BookingStatus] = None,
        config: Optional[ChannelConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        on_release: Optional[Callable[["Subscription"], None]] = None,
    ) -> None:
        self.booking_id = booking_id
        self._feed = feed
        self._on_event = on_event
        self._on_status = on_status
        self._on_release = on_release
        self._config = config or settings.channel
        self._clock = clock
        self._last_status = last_status
        self._status = LiveStatus.CONNECTING
        self._closed = False
        self._connection: Optional[FeedConnection] = None
        self._task: Optional[asyncio.Task[None]] = None
        self.delivered_count = 0
        self.reconnect_count = 0

    @property
    def status(self) -> LiveStatus:
        return self._status

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_stale(self) -> bool:
        """True while live updates are paused for a reconnect."""
        return self._status == LiveStatus.RECONNECTING

    def start(self) -> None:
        """Start delivery. Must be called from a running event loop."""
        if self._closed:
            raise RuntimeError(f"Subscription for {self.booking_id} is closed")
        if self._task is not None and not self._task.done():
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name=f"booking-channel-{self.booking_id}")
        self._task.add_done_callback(self._on_task_done)

    def reconnect(self) -> None:
        """Restart after the subscription gave up with DISCONNECTED."""
        if self._closed or (self._task is not None and not self._task.done()):
            return
        logger.info("Manual reconnect requested for %s", self.booking_id)
        self._set_status(LiveStatus.CONNECTING)
        self.start()

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._status = LiveStatus.CLOSED
        if self._connection is not None:
            self._connection.close()
            self._connection = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if self._on_release is not None:
            self._on_release(self)
        logger.info("Unsubscribed from %s", self.booking_id)

    def _set_status(self, status: LiveStatus) -> None:
        if self._closed or status == self._status:
            return
        self._status = status
        if self._on_status is not None:
            self._on_status(status)

    def _deliver(self, event: StatusChangeEvent) -> None:
        if self._closed:
            return
        if event.new_status == self._last_status:
            logger.debug("Duplicate %s stripped for %s", event.new_status.value, self.booking_id)
            return
        self.delivered_count += 1
        if self._on_event(event) is not False:
            self._last_status = event.new_status

    async def _run(self) -> None:
        set_booking_id(self.booking_id)
        failures = 0
        while not self._closed:
            if await self._listen():
                failures = 0
            if self._closed:
                return
            if failures >= self._config.max_reconnect_attempts:
                logger.error(
                    "Giving up on live updates for %s after %d attempts",
                    self.booking_id, failures,
                )
                self._set_status(LiveStatus.DISCONNECTED)
                return
            delay = backoff_delay(failures, self._config)
            failures += 1
            self.reconnect_count += 1
            self._set_status(LiveStatus.RECONNECTING)
            logger.warning(
                "Live updates paused for %s, reconnecting in %.1fs (attempt %d/%d)",
                self.booking_id, delay, failures, self._config.max_reconnect_attempts,
            )
            await asyncio.sleep(delay)

    async def _listen(self) -> bool:
        """Open one connection and pump it until it ends.

        Returns True if the connection was established.
        """
        try:
            connection = await self._feed.connect(self.booking_id)
        except ConnectionError as exc:
            logger.warning("Connect failed for %s: %s", self.booking_id, exc)
            return False
        if self._closed:
            connection.close()
            return True

        self._connection = connection
        self._set_status(LiveStatus.LIVE)
        try:
            async for raw in connection:
                if self._closed:
                    break
                event = normalize_change(raw, self.booking_id, self._clock)
                if event is not None:
                    self._deliver(event)
            if not self._closed:
                logger.warning("Feed for %s ended", self.booking_id)
        except ConnectionError as exc:
            logger.warning("Connection dropped for %s: %s", self.booking_id, exc)
        finally:
            connection.close()
            if self._connection is connection:
                self._connection = None
        return True

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Live update task for %s failed", self.booking_id, exc_info=exc,
            )
            self._set_status(LiveStatus.DISCONNECTED)


class BookingChannel:
    """Creates and tracks subscriptions, at most one per booking id."""

    def __init__(
        self,
        feed: ChangeFeed,
        config: Optional[ChannelConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._feed = feed
        self._config = config or settings.channel
        self._clock = clock
        self._subscriptions: dict[str, Subscription] = {}

    def subscribe(
        self,
        booking_id: str,
        on_event: EventCallback,
        on_status: Optional[StatusCallback] = None,
        last_status: Optional[BookingStatus] = None,
    ) -> Subscription:
        """Subscribe to ``booking_id`` and return immediately.

        Raises:
            ValueError: If the booking id already has an open subscription.
        """
        if booking_id in self._subscriptions:
            raise ValueError(f"Booking {booking_id} already has a live subscription")
        subscription = Subscription(
            self._feed,
            booking_id,
            on_event,
            on_status=on_status,
            last_status=last_status,
            config=self._config,
            clock=self._clock,
            on_release=self._release,
        )
        subscription.start()
        self._subscriptions[booking_id] = subscription
        logger.info("Subscribed to live updates for %s", booking_id)
        return subscription

    def get(self, booking_id: str) -> Optional[Subscription]:
        return self._subscriptions.get(booking_id)

    def active_subscriptions(self) -> list[str]:
        return list(self._subscriptions.keys())

    def close_all(self) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.unsubscribe()

    def _release(self, subscription: Subscription) -> None:
        if self._subscriptions.get(subscription.booking_id) is subscription:
            del self._subscriptions[subscription.booking_id]
