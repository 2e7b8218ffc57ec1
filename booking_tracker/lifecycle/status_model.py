"""
Booking status model: canonical ordering and transition rules.

A booking advances one step at a time through the canonical progression
and may be cancelled from any non-terminal status. Every screen reads
status labels, colors and icons from ``STATUS_PRESENTATION`` instead of
keeping its own mapping.

Usage:
    assert is_valid_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED)
    assert not is_valid_transition(BookingStatus.PENDING, BookingStatus.EN_ROUTE)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Protocol, TypeVar


class BookingStatus(str, Enum):
    """All statuses a booking can be in."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROVIDER_ASSIGNED = "provider_assigned"
    EN_ROUTE = "en_route"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


CANONICAL_ORDER: tuple[BookingStatus, ...] = (
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.PROVIDER_ASSIGNED,
    BookingStatus.EN_ROUTE,
    BookingStatus.IN_PROGRESS,
    BookingStatus.COMPLETED,
)

TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})

_RANKS: dict[BookingStatus, int] = {status: rank for rank, status in enumerate(CANONICAL_ORDER)}

# Legacy spellings still sent by older clients and the provider app
STATUS_ALIASES: dict[str, BookingStatus] = {
    "in-progress": BookingStatus.IN_PROGRESS,
    "on_site": BookingStatus.IN_PROGRESS,
    "on-the-way": BookingStatus.EN_ROUTE,
    "on_the_way": BookingStatus.EN_ROUTE,
    "service_provider_en_route": BookingStatus.EN_ROUTE,
    "assigned": BookingStatus.PROVIDER_ASSIGNED,
    "accepted": BookingStatus.CONFIRMED,
    "canceled": BookingStatus.CANCELLED,
}


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed from the current status."""


@dataclass(frozen=True)
class StatusPresentation:
    """Display attributes for a status badge or timeline step."""
    label: str
    color: str
    icon: str


STATUS_PRESENTATION: dict[BookingStatus, StatusPresentation] = {
    BookingStatus.PENDING: StatusPresentation("Booking Requested", "#F59E0B", "time-outline"),
    BookingStatus.CONFIRMED: StatusPresentation(
        "Booking Confirmed", "#6366F1", "checkmark-circle-outline"
    ),
    BookingStatus.PROVIDER_ASSIGNED: StatusPresentation(
        "Provider Assigned", "#415D43", "person-outline"
    ),
    BookingStatus.EN_ROUTE: StatusPresentation("On the Way", "#3B82F6", "car-outline"),
    BookingStatus.IN_PROGRESS: StatusPresentation(
        "Service Started", "#10B981", "play-circle-outline"
    ),
    BookingStatus.COMPLETED: StatusPresentation(
        "Service Completed", "#059669", "checkmark-done-outline"
    ),
    BookingStatus.CANCELLED: StatusPresentation(
        "Booking Cancelled", "#EF4444", "close-circle-outline"
    ),
}


def canonical_order(status: BookingStatus) -> int:
    """Rank of a non-cancelled status in the canonical progression (0..5).

    Raises:
        ValueError: For ``cancelled``, which sits outside the progression.
    """
    try:
        return _RANKS[status]
    except KeyError:
        raise ValueError(f"'{status.value}' has no canonical rank") from None


def is_terminal(status: BookingStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_active(status: BookingStatus) -> bool:
    """Active bookings are listed under the "Active" tab."""
    return status not in TERMINAL_STATUSES


def is_valid_transition(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    """Whether ``to_status`` may directly follow ``from_status``.

    Cancellation is allowed from any non-terminal status. Otherwise the
    move must be exactly one step forward. A repeat of the same status
    is not a transition.
    """
    if is_terminal(from_status):
        return False
    if to_status == BookingStatus.CANCELLED:
        return True
    return _RANKS[to_status] == _RANKS[from_status] + 1


def assert_transition(from_status: BookingStatus, to_status: BookingStatus) -> None:
    """Raise InvalidTransitionError unless the move is allowed."""
    if not is_valid_transition(from_status, to_status):
        valid = [s.value for s in next_statuses(from_status)]
        raise InvalidTransitionError(
            f"Invalid booking transition: {from_status.value} -> {to_status.value}. "
            f"Valid next statuses: {valid}"
        )


def next_statuses(status: BookingStatus) -> list[BookingStatus]:
    """Return all statuses reachable in one step from ``status``."""
    return [s for s in BookingStatus if is_valid_transition(status, s)]


def parse_status(value: object) -> Optional[BookingStatus]:
    """Map a raw wire value onto a BookingStatus, or None if unrecognized."""
    if isinstance(value, BookingStatus):
        return value
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if normalized in STATUS_ALIASES:
        return STATUS_ALIASES[normalized]
    try:
        return BookingStatus(normalized.replace("-", "_"))
    except ValueError:
        return None


class _HasStatus(Protocol):
    @property
    def status(self) -> BookingStatus: ...


B = TypeVar("B", bound=_HasStatus)


def split_active_history(bookings: Iterable[B]) -> tuple[list[B], list[B]]:
    """Partition bookings into (active, history), keeping the input order."""
    active: list[B] = []
    history: list[B] = []
    for booking in bookings:
        (active if is_active(booking.status) else history).append(booking)
    return active, history
