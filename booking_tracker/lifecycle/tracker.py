"""
Booking tracker: one view model per booking id, shared by all screens.

A view model is created on the first observation of a booking id and
discarded when its last observer goes away, so navigating between
screens never leaks a live subscription and two screens on the same
booking always render the same snapshot.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional

from booking_tracker.channel.adapter import BookingChannel
from booking_tracker.lifecycle.diagnostics import DiagnosticsLog
from booking_tracker.logging_context import get_booking_logger
from booking_tracker.lifecycle.view_model import (
    BookingSnapshot,
    BookingViewModel,
    ObserverCallback,
    ObserverHandle,
)
from booking_tracker.ports import BookingService
from booking_tracker.utils import utc_now

logger = get_booking_logger(__name__)


class Observation:
    """A screen's hold on a tracked booking."""

    def __init__(
        self,
        tracker: "BookingTracker",
        view_model: BookingViewModel,
        handle: ObserverHandle,
    ) -> None:
        self._tracker = tracker
        self.view_model = view_model
        self._handle = handle
        self._closed = False

    @property
    def booking_id(self) -> str:
        return self.view_model.booking_id

    @property
    def snapshot(self) -> Optional[BookingSnapshot]:
        return self.view_model.snapshot

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._handle.close()
        self._tracker._release(self.view_model)


class BookingTracker:
    """Registry of open view models keyed by booking id."""

    def __init__(
        self,
        service: BookingService,
        channel: Optional[BookingChannel] = None,
        diagnostics: Optional[DiagnosticsLog] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._service = service
        self._channel = channel
        self._diagnostics = diagnostics or DiagnosticsLog()
        self._clock = clock
        self._view_models: dict[str, BookingViewModel] = {}

    @property
    def diagnostics(self) -> DiagnosticsLog:
        return self._diagnostics

    def get(self, booking_id: str) -> Optional[BookingViewModel]:
        return self._view_models.get(booking_id)

    def active_ids(self) -> list[str]:
        return list(self._view_models.keys())

    async def observe(self, booking_id: str, callback: ObserverCallback) -> Observation:
        """Start observing ``booking_id``, loading it if nobody else is.

        Raises:
            BookingFetchError: The initial load failed. Nothing is kept
                for this booking unless another screen is observing it.
        """
        view_model = self._view_models.get(booking_id)
        if view_model is None:
            view_model = BookingViewModel(
                booking_id,
                self._service,
                self._channel,
                diagnostics=self._diagnostics,
                clock=self._clock,
            )
            self._view_models[booking_id] = view_model
            logger.debug("Created view model for %s", booking_id)

        # Already loaded: the callback gets the current snapshot now.
        # Otherwise the load publishes to it.
        handle = view_model.observe(callback)
        try:
            await view_model.start()
        except BaseException:
            handle.close()
            self._release(view_model)
            raise
        return Observation(self, view_model, handle)

    def _release(self, view_model: BookingViewModel) -> None:
        if view_model.observer_count > 0:
            return
        if self._view_models.get(view_model.booking_id) is view_model:
            del self._view_models[view_model.booking_id]
        view_model.close()
        logger.debug("Discarded view model for %s", view_model.booking_id)

    def close_all(self) -> None:
        for view_model in list(self._view_models.values()):
            view_model.close()
        self._view_models.clear()

    async def refresh_all(self) -> None:
        """Re-fetch every tracked booking, e.g. when the app returns to the foreground."""
        await asyncio.gather(*(vm.refresh() for vm in self._view_models.values()))
