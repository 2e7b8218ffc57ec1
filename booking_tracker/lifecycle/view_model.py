"""
Booking view model: the single source of truth for one open booking.

Merges the initial fetch and the live event stream into one snapshot,
recomputes the timeline and action flags on every accepted change, and
hands the same snapshot object to every observing screen.

Usage:
    vm = BookingViewModel("BK-4F2A91", service, channel)
    handle = vm.observe(render)
    await vm.start()          # fetch, then subscribe to live updates
    ...
    handle.close()
    vm.close()
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Awaitable, Callable, Optional

from booking_tracker.channel.adapter import BookingChannel, LiveStatus, Subscription
from booking_tracker.errors import BookingActionError, BookingFetchError, BookingNotLoadedError
from booking_tracker.lifecycle.cancellation_policy import RefundQuote, quote_refund
from booking_tracker.lifecycle.diagnostics import DiagnosticsLog, DiscardReason, classify_discard
from booking_tracker.lifecycle.status_model import (
    STATUS_PRESENTATION,
    BookingStatus,
    StatusPresentation,
    canonical_order,
    is_terminal,
    is_valid_transition,
)
from booking_tracker.lifecycle.timeline import Timeline, derive_timeline
from booking_tracker.logging_context import get_booking_logger
from booking_tracker.ports import ActionResult, BookingService
from booking_tracker.schemas.booking_schema import Booking, StatusChangeEvent
from booking_tracker.utils import ensure_aware, utc_now

logger = get_booking_logger(__name__)

ObserverCallback = Callable[["BookingSnapshot"], None]

RESCHEDULABLE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})
MIN_RATING = 1
MAX_RATING = 5


@dataclass(frozen=True)
class BookingSnapshot:
    """Everything a screen renders for one booking at one point in time."""

    booking: Booking
    timeline: Timeline
    is_cancellable: bool
    is_reschedulable: bool
    is_reviewable: bool
    live_status: LiveStatus = LiveStatus.CONNECTING
    version: int = 0

    @property
    def status(self) -> BookingStatus:
        return self.booking.status

    @property
    def is_stale(self) -> bool:
        """Show the "live updates paused, reconnecting" indicator."""
        return self.live_status == LiveStatus.RECONNECTING

    @property
    def presentation(self) -> StatusPresentation:
        return STATUS_PRESENTATION[self.booking.status]

    @property
    def show_cancellation_banner(self) -> bool:
        return self.timeline.cancelled


def build_snapshot(
    booking: Booking, live_status: LiveStatus = LiveStatus.CONNECTING, version: int = 0
) -> BookingSnapshot:
    status = booking.status
    return BookingSnapshot(
        booking=booking,
        timeline=derive_timeline(booking),
        is_cancellable=not is_terminal(status),
        is_reschedulable=status in RESCHEDULABLE_STATUSES,
        is_reviewable=status == BookingStatus.COMPLETED and not booking.review_submitted,
        live_status=live_status,
        version=version,
    )


def _is_behind(fetched: Booking, current: Booking) -> bool:
    """Whether a fetched booking is older than the local state."""
    if fetched.status == current.status:
        return False
    if is_terminal(current.status):
        return True
    if fetched.status == BookingStatus.CANCELLED:
        return False
    return canonical_order(fetched.status) < canonical_order(current.status)


class ObserverHandle:
    """Detaches one observer from a view model."""

    def __init__(self, view_model: "BookingViewModel", callback: ObserverCallback) -> None:
        self._view_model = view_model
        self._callback = callback
        self._closed = False

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._view_model._remove_observer(self._callback)


class BookingViewModel:
    """
    Per-booking aggregate shared by every screen showing that booking.

    Out-of-order and duplicate events are expected from the live channel
    and are discarded quietly; only failed fetches and failed writes are
    raised to the caller.
    """

    def __init__(
        self,
        booking_id: str,
        service: BookingService,
        channel: Optional[BookingChannel] = None,
        diagnostics: Optional[DiagnosticsLog] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.booking_id = booking_id
        self._service = service
        self._channel = channel
        self._diagnostics = diagnostics or DiagnosticsLog()
        self._clock = clock
        self._snapshot: Optional[BookingSnapshot] = None
        self._observers: list[ObserverCallback] = []
        self._pending_events: list[StatusChangeEvent] = []
        self._subscription: Optional[Subscription] = None
        self._live_status = LiveStatus.CONNECTING if channel else LiveStatus.CLOSED
        self._version = 0
        self._closed = False
        self._load_lock = asyncio.Lock()
        self.load_error: Optional[BookingFetchError] = None

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def snapshot(self) -> Optional[BookingSnapshot]:
        return self._snapshot

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def live_status(self) -> LiveStatus:
        return self._live_status

    @property
    def diagnostics(self) -> DiagnosticsLog:
        return self._diagnostics

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    # ------------------------------------------------------------------ #
    # Observers
    # ------------------------------------------------------------------ #

    def observe(self, callback: ObserverCallback, emit_current: bool = True) -> ObserverHandle:
        """Register a screen. It receives the current snapshot right away if loaded."""
        if self._closed:
            raise RuntimeError(f"View model for {self.booking_id} is closed")
        self._observers.append(callback)
        if emit_current and self._snapshot is not None:
            callback(self._snapshot)
        return ObserverHandle(self, callback)

    def _remove_observer(self, callback: ObserverCallback) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def _publish(self) -> None:
        snapshot = self._snapshot
        if snapshot is None or self._closed:
            return
        for callback in list(self._observers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Observer failed for %s (v%d)", self.booking_id, snapshot.version)

    def _commit(self, booking: Booking, notify: bool = True) -> BookingSnapshot:
        self._version += 1
        self._snapshot = build_snapshot(booking, self._live_status, self._version)
        if notify:
            self._publish()
        return self._snapshot

    def _require_snapshot(self) -> BookingSnapshot:
        if self._snapshot is None:
            raise BookingNotLoadedError(
                f"Booking {self.booking_id} has not been loaded", self.booking_id
            )
        return self._snapshot

    # ------------------------------------------------------------------ #
    # Hydration
    # ------------------------------------------------------------------ #

    async def _fetch(self) -> Booking:
        try:
            booking = await self._service.fetch_booking(self.booking_id)
        except (LookupError, OSError, asyncio.TimeoutError, ValueError) as exc:
            error = BookingFetchError(
                f"Could not load booking {self.booking_id}: {exc}", self.booking_id
            )
            self.load_error = error
            logger.warning("Fetch failed for %s: %s", self.booking_id, exc)
            raise error from exc
        if booking.id != self.booking_id:
            error = BookingFetchError(
                f"Fetched booking {booking.id} while loading {self.booking_id}", self.booking_id
            )
            self.load_error = error
            raise error
        self.load_error = None
        return booking

    async def load(self) -> BookingSnapshot:
        """Hydrate from the booking service; a no-op once loaded.

        Raises:
            BookingFetchError: The fetch failed; the view model stays unloaded.
        """
        async with self._load_lock:
            if self._snapshot is not None:
                return self._snapshot
            booking = await self._fetch()
            if self._closed:
                raise BookingFetchError(f"View model for {self.booking_id} was closed", self.booking_id)
            self._commit(booking, notify=False)

            pending, self._pending_events = self._pending_events, []
            replayed = sum(1 for event in pending if self._apply(event, notify=False))
            logger.info(
                "Loaded %s in '%s' (%d of %d buffered events applied)",
                self.booking_id, booking.status.value, replayed, len(pending),
            )
            self._publish()
            return self._require_snapshot()

    async def start(self) -> BookingSnapshot:
        """Load, then subscribe to live updates if a channel is configured."""
        snapshot = await self.load()
        if self._channel is not None and self._subscription is None and not self._closed:
            self._subscription = self._channel.subscribe(
                self.booking_id,
                self.apply_event,
                on_status=self.set_live_status,
                last_status=snapshot.status,
            )
        return self._require_snapshot()

    async def refresh(self) -> BookingSnapshot:
        """Pull-to-refresh fallback. Ignores a fetch that is behind local state."""
        if self._snapshot is None:
            return await self.load()
        fetched = await self._fetch()
        current = self._require_snapshot()
        if self._closed or fetched == current.booking:
            return current
        if _is_behind(fetched, current.booking):
            logger.info(
                "Ignoring stale refresh for %s: fetched '%s', local '%s'",
                self.booking_id, fetched.status.value, current.status.value,
            )
            return current
        return self._commit(fetched)

    # ------------------------------------------------------------------ #
    # Live events
    # ------------------------------------------------------------------ #

    def apply_event(self, event: StatusChangeEvent) -> bool:
        """Merge one status change. Returns True if the snapshot changed."""
        if self._closed:
            logger.debug("Dropping event for closed view model %s", self.booking_id)
            return False
        if event.booking_id != self.booking_id:
            if self._snapshot is not None:
                self._diagnostics.record(
                    event, self._snapshot.status, DiscardReason.WRONG_BOOKING
                )
            return False
        if self._snapshot is None:
            self._pending_events.append(event)
            return False
        return self._apply(event, notify=True)

    def _apply(self, event: StatusChangeEvent, notify: bool) -> bool:
        booking = self._require_snapshot().booking
        current = booking.status
        if event.new_status == current:
            return False
        if not is_valid_transition(current, event.new_status):
            self._diagnostics.record(event, current, classify_discard(current, event))
            return False

        occurred_at = max(event.occurred_at, booking.last_changed_at)
        self._commit(booking.advance(event.new_status, occurred_at), notify=notify)
        logger.info(
            "Booking %s: %s -> %s", self.booking_id, current.value, event.new_status.value,
        )
        return True

    def set_live_status(self, status: LiveStatus) -> None:
        """Channel status callback; refreshes the stale flag on the snapshot."""
        if self._closed or status == self._live_status:
            return
        self._live_status = status
        if self._snapshot is not None:
            self._version += 1
            self._snapshot = replace(self._snapshot, live_status=status, version=self._version)
            self._publish()

    def reconnect(self) -> None:
        """User-initiated retry after a persistent disconnect."""
        if self._subscription is not None:
            self._subscription.reconnect()

    # ------------------------------------------------------------------ #
    # Outbound actions
    # ------------------------------------------------------------------ #

    async def _write(self, action: str, call: Awaitable[ActionResult]) -> ActionResult:
        try:
            result = await call
        except (LookupError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("%s failed for %s: %s", action, self.booking_id, exc)
            raise BookingActionError(
                f"Could not {action} booking {self.booking_id}: {exc}", self.booking_id, action
            ) from exc
        if not result.get("success"):
            message = result.get("message") or f"Could not {action} booking {self.booking_id}"
            logger.warning("%s rejected for %s: %s", action, self.booking_id, message)
            raise BookingActionError(message, self.booking_id, action)
        return result

    async def cancel(self, reason: Optional[str] = None) -> BookingSnapshot:
        """Cancel via the service; reflected locally only once it succeeds."""
        snapshot = self._require_snapshot()
        if not snapshot.is_cancellable:
            raise BookingActionError(
                f"Booking {self.booking_id} is already {snapshot.status.value}",
                self.booking_id,
                "cancel",
            )
        result = await self._write("cancel", self._service.cancel_booking(self.booking_id, reason))
        confirmed = result.get("booking")
        entry = confirmed.entry_for(BookingStatus.CANCELLED) if confirmed else None
        event = StatusChangeEvent(
            booking_id=self.booking_id,
            new_status=BookingStatus.CANCELLED,
            occurred_at=entry.occurred_at if entry else self._clock(),
        )
        self.apply_event(event)
        return self._require_snapshot()

    async def reschedule(self, new_time: datetime) -> BookingSnapshot:
        """Move the scheduled time via the service. Status is not touched."""
        snapshot = self._require_snapshot()
        if not snapshot.is_reschedulable:
            raise BookingActionError(
                f"Booking {self.booking_id} can't be rescheduled while {snapshot.status.value}",
                self.booking_id,
                "reschedule",
            )
        new_time = ensure_aware(new_time)
        result = await self._write(
            "reschedule", self._service.reschedule_booking(self.booking_id, new_time)
        )
        if self._closed:
            return self._require_snapshot()
        confirmed = result.get("booking")
        scheduled_at = confirmed.scheduled_at if confirmed else new_time
        logger.info("Booking %s rescheduled to %s", self.booking_id, scheduled_at.isoformat())
        return self._commit(self._require_snapshot().booking.with_schedule(scheduled_at))

    async def submit_review(self, rating: int, comment: Optional[str] = None) -> BookingSnapshot:
        snapshot = self._require_snapshot()
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValueError(f"rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}")
        if not snapshot.is_reviewable:
            raise BookingActionError(
                f"Booking {self.booking_id} can't be reviewed", self.booking_id, "review"
            )
        await self._write("review", self._service.submit_review(self.booking_id, rating, comment))
        if self._closed:
            return self._require_snapshot()
        booking = self._require_snapshot().booking.model_copy(update={"review_submitted": True})
        return self._commit(booking)

    def quote_cancellation(self, now: Optional[datetime] = None) -> RefundQuote:
        return quote_refund(self._require_snapshot().booking, now or self._clock())

    # ------------------------------------------------------------------ #
    # Teardown
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        """Stop live updates and observers. Nothing is delivered afterwards."""
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._observers.clear()
        self._pending_events.clear()
        self._live_status = LiveStatus.CLOSED
        logger.info("Closed view model for %s", self.booking_id)
