"""
In-memory realtime change feed.

In production this is the realtime service's row-change channel for the
bookings table. Here every open connection gets its own queue, and tests
or the console demo can publish payloads, drop connections, and make
connects fail.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Union

from booking_tracker.lifecycle.status_model import BookingStatus
from booking_tracker.ports import ChangeFeed, FeedConnection
from booking_tracker.utils import utc_now

logger = logging.getLogger(__name__)

_DROP = object()
_CLOSED = object()


class FeedDisconnectedError(ConnectionError):
    """The realtime connection was lost."""


class InMemoryConnection(FeedConnection):
    def __init__(self, feed: "InMemoryChangeFeed", booking_id: str) -> None:
        self.booking_id = booking_id
        self._feed = feed
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    def push(self, item: Any) -> None:
        if not self.closed:
            self._queue.put_nowait(item)

    async def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            if item is _DROP:
                raise FeedDisconnectedError(f"Connection for {self.booking_id} dropped")
            yield item

    def close(self) -> None:
        if self.closed:
            return
        self._queue.put_nowait(_CLOSED)
        self.closed = True
        self._feed._detach(self)


class InMemoryChangeFeed(ChangeFeed):
    """Per-booking broadcast to every open connection."""

    def __init__(self) -> None:
        self._connections: dict[str, list[InMemoryConnection]] = {}
        self.connect_count = 0
        self.fail_connects = 0

    async def connect(self, booking_id: str) -> InMemoryConnection:
        self.connect_count += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise FeedDisconnectedError(f"Realtime service unavailable for {booking_id}")
        connection = InMemoryConnection(self, booking_id)
        self._connections.setdefault(booking_id, []).append(connection)
        logger.debug("Feed connection opened for %s", booking_id)
        return connection

    def open_connections(self, booking_id: str) -> int:
        return len(self._connections.get(booking_id, []))

    def publish(self, booking_id: str, payload: dict[str, Any]) -> int:
        """Send a raw payload to every open connection; returns the count reached."""
        connections = list(self._connections.get(booking_id, []))
        for connection in connections:
            connection.push(payload)
        return len(connections)

    def publish_status(
        self,
        booking_id: str,
        status: Union[BookingStatus, str],
        occurred_at: Optional[datetime] = None,
    ) -> int:
        """Publish a row-change payload the way the realtime service shapes it."""
        value = status.value if isinstance(status, BookingStatus) else status
        payload = {
            "eventType": "UPDATE",
            "table": "bookings",
            "new": {
                "id": booking_id,
                "status": value,
                "updated_at": (occurred_at or utc_now()).isoformat(),
            },
        }
        return self.publish(booking_id, payload)

    def drop(self, booking_id: str) -> None:
        """Simulate a network drop on every open connection for ``booking_id``."""
        for connection in list(self._connections.get(booking_id, [])):
            connection.push(_DROP)
            self._detach(connection)
        logger.debug("Dropped feed connections for %s", booking_id)

    def _detach(self, connection: InMemoryConnection) -> None:
        connections = self._connections.get(connection.booking_id, [])
        if connection in connections:
            connections.remove(connection)
        if not connections:
            self._connections.pop(connection.booking_id, None)
