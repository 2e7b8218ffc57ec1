from booking_tracker.tools.booking import InMemoryBookingService
from booking_tracker.tools.realtime_feed import FeedDisconnectedError, InMemoryChangeFeed

__all__ = ["InMemoryBookingService", "InMemoryChangeFeed", "FeedDisconnectedError"]
