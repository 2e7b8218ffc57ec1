from booking_tracker.lifecycle.status_model import (
    CANONICAL_ORDER,
    STATUS_PRESENTATION,
    BookingStatus,
    InvalidTransitionError,
    canonical_order,
    is_valid_transition,
)

__all__ = [
    "BookingStatus",
    "CANONICAL_ORDER",
    "STATUS_PRESENTATION",
    "InvalidTransitionError",
    "canonical_order",
    "is_valid_transition",
]
