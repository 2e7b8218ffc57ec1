from booking_tracker.channel.adapter import BookingChannel, LiveStatus, Subscription
from booking_tracker.channel.normalizer import normalize_change

__all__ = ["BookingChannel", "LiveStatus", "Subscription", "normalize_change"]
