"""Tests for the booking view model."""

from datetime import timedelta
from decimal import Decimal

import pytest

from booking_tracker.channel.adapter import LiveStatus
from booking_tracker.errors import BookingActionError, BookingFetchError, BookingNotLoadedError
from booking_tracker.lifecycle.diagnostics import DiscardReason
from booking_tracker.lifecycle.status_model import CANONICAL_ORDER, BookingStatus
from booking_tracker.lifecycle.view_model import BookingViewModel, build_snapshot
from booking_tracker.schemas.booking_schema import Booking
from booking_tracker.tools.booking import InMemoryBookingService
from booking_tracker.utils import utc_now
from tests.conftest import (
    BOOKING_ID,
    T0,
    Recorder,
    at,
    flush,
    make_booking,
    make_event,
)


@pytest.fixture
def make_view_model(service, diagnostics):
    """Store a booking in the service and return an unloaded view model for it."""

    def _make(*statuses, channel=None, **kwargs):
        service.put(make_booking(*statuses, **kwargs))
        return BookingViewModel(BOOKING_ID, service, channel, diagnostics=diagnostics)

    return _make


class TestSnapshotFlags:
    @pytest.mark.parametrize("length", range(1, 6))
    def test_non_terminal_is_cancellable(self, length):
        snapshot = build_snapshot(make_booking(*CANONICAL_ORDER[:length]))
        assert snapshot.is_cancellable

    def test_reschedulable_only_before_assignment(self):
        assert build_snapshot(make_booking(*CANONICAL_ORDER[:1])).is_reschedulable
        assert build_snapshot(make_booking(*CANONICAL_ORDER[:2])).is_reschedulable
        assert not build_snapshot(make_booking(*CANONICAL_ORDER[:3])).is_reschedulable

    def test_completed_flags(self):
        snapshot = build_snapshot(make_booking(*CANONICAL_ORDER))
        assert not snapshot.is_cancellable
        assert not snapshot.is_reschedulable
        assert snapshot.is_reviewable

    def test_reviewed_booking_not_reviewable(self):
        snapshot = build_snapshot(make_booking(*CANONICAL_ORDER, review_submitted=True))
        assert not snapshot.is_reviewable

    def test_presentation_follows_status(self):
        snapshot = build_snapshot(make_booking(*CANONICAL_ORDER[:4]))
        assert snapshot.presentation.label == "On the Way"


class TestLoad:
    @pytest.mark.asyncio
    async def test_load_publishes_once(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING, BookingStatus.CONFIRMED)
        recorder = Recorder()
        vm.observe(recorder)
        assert recorder.snapshots == []

        snapshot = await vm.load()

        assert recorder.snapshots == [snapshot]
        assert snapshot.status == BookingStatus.CONFIRMED
        assert vm.is_loaded
        assert vm.load_error is None

    @pytest.mark.asyncio
    async def test_load_is_idempotent(self, make_view_model, service):
        vm = make_view_model()
        first = await vm.load()
        second = await vm.load()
        assert first is second
        assert service.fetch_count == 1

    @pytest.mark.asyncio
    async def test_unknown_booking(self, service, diagnostics):
        vm = BookingViewModel("BK-MISSING", service, diagnostics=diagnostics)
        with pytest.raises(BookingFetchError, match="BK-MISSING"):
            await vm.load()
        assert not vm.is_loaded
        assert vm.snapshot is None
        assert vm.load_error is not None

    @pytest.mark.asyncio
    async def test_retry_after_offline(self, make_view_model, service):
        vm = make_view_model()
        service.offline = True
        with pytest.raises(BookingFetchError):
            await vm.load()
        service.offline = False
        snapshot = await vm.load()
        assert snapshot.status == BookingStatus.PENDING
        assert vm.load_error is None

    @pytest.mark.asyncio
    async def test_malformed_booking_is_a_fetch_error(self, diagnostics):
        class CorruptService(InMemoryBookingService):
            async def fetch_booking(self, booking_id):
                return Booking(
                    id=booking_id,
                    status=BookingStatus.EN_ROUTE,
                    status_history=(),
                    scheduled_at=T0,
                )

        vm = BookingViewModel(BOOKING_ID, CorruptService(), diagnostics=diagnostics)
        with pytest.raises(BookingFetchError, match="status_history"):
            await vm.load()
        assert not vm.is_loaded

    @pytest.mark.asyncio
    async def test_timeout_is_a_fetch_error(self, diagnostics):
        class SlowService(InMemoryBookingService):
            async def fetch_booking(self, booking_id):
                raise TimeoutError("service did not answer")

        vm = BookingViewModel(BOOKING_ID, SlowService(), diagnostics=diagnostics)
        with pytest.raises(BookingFetchError, match="did not answer"):
            await vm.load()
        assert vm.load_error is not None

    @pytest.mark.asyncio
    async def test_actions_need_loaded_state(self, make_view_model):
        vm = make_view_model()
        with pytest.raises(BookingNotLoadedError):
            await vm.cancel()


class TestLiveEvents:
    @pytest.mark.asyncio
    async def test_in_order_progress(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING)
        await vm.load()

        assert vm.apply_event(make_event(BookingStatus.CONFIRMED, at(20)))
        assert vm.apply_event(make_event(BookingStatus.PROVIDER_ASSIGNED, at(25)))
        assert vm.apply_event(make_event(BookingStatus.EN_ROUTE, at(30)))

        snapshot = vm.snapshot
        assert snapshot.status == BookingStatus.EN_ROUTE
        steps = snapshot.timeline.steps
        for step in steps[:3]:
            assert step.completed and not step.current
        assert steps[3].current
        assert not steps[4].completed and not steps[5].completed
        assert [e.status for e in snapshot.booking.status_history] == list(CANONICAL_ORDER[:4])

    @pytest.mark.asyncio
    async def test_reordered_stale_event_discarded(self, make_view_model, diagnostics):
        vm = make_view_model(*CANONICAL_ORDER[:3])
        await vm.load()

        assert vm.apply_event(make_event(BookingStatus.EN_ROUTE, at(40)))
        assert not vm.apply_event(make_event(BookingStatus.CONFIRMED, at(35)))

        assert vm.snapshot.status == BookingStatus.EN_ROUTE
        [entry] = diagnostics.entries()
        assert entry.reason == DiscardReason.REGRESSION
        assert entry.current_status == BookingStatus.EN_ROUTE

    @pytest.mark.asyncio
    async def test_cancel_event(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING, BookingStatus.CONFIRMED)
        await vm.load()

        assert vm.apply_event(make_event(BookingStatus.CANCELLED, at(60)))

        snapshot = vm.snapshot
        assert snapshot.status == BookingStatus.CANCELLED
        assert snapshot.show_cancellation_banner
        assert snapshot.timeline.cancelled_at == at(60)
        assert [s.completed for s in snapshot.timeline.steps[:3]] == [True, True, False]
        assert not snapshot.is_cancellable
        assert not snapshot.is_reschedulable

    @pytest.mark.asyncio
    async def test_skipped_step_discarded(self, make_view_model, diagnostics):
        vm = make_view_model(BookingStatus.PENDING)
        await vm.load()
        assert not vm.apply_event(make_event(BookingStatus.EN_ROUTE))
        assert vm.snapshot.status == BookingStatus.PENDING
        assert diagnostics.entries()[0].reason == DiscardReason.SKIPPED_STEP

    @pytest.mark.asyncio
    async def test_events_after_terminal_discarded(self, make_view_model, diagnostics):
        vm = make_view_model(*CANONICAL_ORDER)
        await vm.load()
        assert not vm.apply_event(make_event(BookingStatus.CANCELLED))
        assert vm.snapshot.status == BookingStatus.COMPLETED
        assert diagnostics.entries()[0].reason == DiscardReason.AFTER_TERMINAL

    @pytest.mark.asyncio
    async def test_repeat_is_a_quiet_noop(self, make_view_model, diagnostics):
        vm = make_view_model(BookingStatus.PENDING, BookingStatus.CONFIRMED)
        await vm.load()
        recorder = Recorder()
        vm.observe(recorder, emit_current=False)
        before = vm.snapshot

        assert not vm.apply_event(make_event(BookingStatus.CONFIRMED))

        assert vm.snapshot is before
        assert recorder.snapshots == []
        assert diagnostics.entries() == []

    @pytest.mark.asyncio
    async def test_applying_twice_equals_once(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING)
        await vm.load()
        event = make_event(BookingStatus.CONFIRMED, at(20))
        vm.apply_event(event)
        once = vm.snapshot.booking
        vm.apply_event(event)
        assert vm.snapshot.booking == once

    @pytest.mark.asyncio
    async def test_wrong_booking_discarded(self, make_view_model, diagnostics):
        vm = make_view_model(BookingStatus.PENDING)
        await vm.load()
        assert not vm.apply_event(make_event(BookingStatus.CONFIRMED, booking_id="BK-OTHER"))
        assert vm.snapshot.status == BookingStatus.PENDING
        assert diagnostics.entries()[0].reason == DiscardReason.WRONG_BOOKING

    @pytest.mark.asyncio
    async def test_early_timestamp_clamped_to_history(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING, BookingStatus.CONFIRMED)
        await vm.load()
        vm.apply_event(make_event(BookingStatus.PROVIDER_ASSIGNED, at(5)))
        history = vm.snapshot.booking.status_history
        assert history[-1].occurred_at == at(15)
        assert all(a.occurred_at <= b.occurred_at for a, b in zip(history, history[1:]))

    @pytest.mark.asyncio
    async def test_versions_increase(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING)
        await vm.load()
        v1 = vm.snapshot.version
        vm.apply_event(make_event(BookingStatus.CONFIRMED))
        assert vm.snapshot.version > v1


class TestBufferedEvents:
    @pytest.mark.asyncio
    async def test_events_before_load_are_replayed(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING)
        recorder = Recorder()
        vm.observe(recorder)

        assert not vm.apply_event(make_event(BookingStatus.CONFIRMED, at(20)))
        assert not vm.apply_event(make_event(BookingStatus.PROVIDER_ASSIGNED, at(25)))
        await vm.load()

        assert vm.snapshot.status == BookingStatus.PROVIDER_ASSIGNED
        assert recorder.statuses == [BookingStatus.PROVIDER_ASSIGNED]

    @pytest.mark.asyncio
    async def test_buffered_stale_event_discarded(self, make_view_model, diagnostics):
        vm = make_view_model(*CANONICAL_ORDER[:3])
        vm.apply_event(make_event(BookingStatus.CONFIRMED, at(10)))
        await vm.load()
        assert vm.snapshot.status == BookingStatus.PROVIDER_ASSIGNED
        assert diagnostics.entries()[0].reason == DiscardReason.REGRESSION


class TestObservers:
    @pytest.mark.asyncio
    async def test_all_observers_get_same_snapshot(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING)
        first, second = Recorder(), Recorder()
        vm.observe(first)
        vm.observe(second)
        await vm.load()
        vm.apply_event(make_event(BookingStatus.CONFIRMED))

        assert first.last is second.last
        assert first.last.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_late_observer_gets_current_snapshot(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING)
        await vm.load()
        recorder = Recorder()
        vm.observe(recorder)
        assert recorder.snapshots == [vm.snapshot]

    @pytest.mark.asyncio
    async def test_closed_handle_stops_notifications(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING)
        await vm.load()
        recorder = Recorder()
        handle = vm.observe(recorder, emit_current=False)
        handle.close()
        handle.close()
        vm.apply_event(make_event(BookingStatus.CONFIRMED))
        assert recorder.snapshots == []
        assert vm.observer_count == 0

    @pytest.mark.asyncio
    async def test_raising_observer_does_not_starve_others(self, make_view_model, channel, service):
        vm = make_view_model(BookingStatus.PENDING, channel=channel)
        calls = []

        def faulty(snapshot):
            calls.append(snapshot)
            raise RuntimeError("screen crashed")

        recorder = Recorder()
        vm.observe(faulty)
        vm.observe(recorder)
        await vm.start()
        await flush()

        service.advance_status(BOOKING_ID, BookingStatus.CONFIRMED)
        service.advance_status(BOOKING_ID, BookingStatus.PROVIDER_ASSIGNED)
        await flush()

        assert recorder.last.status == BookingStatus.PROVIDER_ASSIGNED
        assert BookingStatus.CONFIRMED in recorder.statuses
        assert calls[-1].status == BookingStatus.PROVIDER_ASSIGNED
        assert vm.live_status == LiveStatus.LIVE
        assert channel.get(BOOKING_ID).status == LiveStatus.LIVE
        vm.close()

    @pytest.mark.asyncio
    async def test_observe_after_close_rejected(self, make_view_model):
        vm = make_view_model()
        vm.close()
        with pytest.raises(RuntimeError, match="closed"):
            vm.observe(Recorder())


class TestLiveChannel:
    @pytest.mark.asyncio
    async def test_events_flow_from_feed(self, make_view_model, channel, service):
        vm = make_view_model(BookingStatus.PENDING, channel=channel)
        recorder = Recorder()
        vm.observe(recorder)
        await vm.start()
        await flush()

        service.advance_status(BOOKING_ID, BookingStatus.CONFIRMED)
        service.advance_status(BOOKING_ID, BookingStatus.PROVIDER_ASSIGNED)
        await flush()

        assert vm.snapshot.status == BookingStatus.PROVIDER_ASSIGNED
        assert vm.live_status == LiveStatus.LIVE
        vm.close()

    @pytest.mark.asyncio
    async def test_stale_flag_during_reconnect(self, make_view_model, channel, feed):
        vm = make_view_model(BookingStatus.PENDING, channel=channel)
        recorder = Recorder()
        vm.observe(recorder)
        await vm.start()
        await flush()

        feed.drop(BOOKING_ID)
        await flush()

        live = [s.live_status for s in recorder.snapshots]
        assert live == [
            LiveStatus.CONNECTING,
            LiveStatus.LIVE,
            LiveStatus.RECONNECTING,
            LiveStatus.LIVE,
        ]
        assert [s.is_stale for s in recorder.snapshots] == [False, False, True, False]
        assert all(s.status == BookingStatus.PENDING for s in recorder.snapshots)
        vm.close()

    @pytest.mark.asyncio
    async def test_close_stops_everything(self, make_view_model, channel, feed, service):
        vm = make_view_model(BookingStatus.PENDING, channel=channel)
        recorder = Recorder()
        vm.observe(recorder)
        await vm.start()
        await flush()
        seen = len(recorder.snapshots)

        vm.close()
        assert feed.open_connections(BOOKING_ID) == 0
        assert channel.active_subscriptions() == []
        assert vm.live_status == LiveStatus.CLOSED

        service.advance_status(BOOKING_ID, BookingStatus.CONFIRMED)
        await flush()
        assert len(recorder.snapshots) == seen
        assert not vm.apply_event(make_event(BookingStatus.CONFIRMED))

    @pytest.mark.asyncio
    async def test_manual_reconnect(self, make_view_model, channel, feed):
        feed.fail_connects = 10
        vm = make_view_model(BookingStatus.PENDING, channel=channel)
        await vm.start()
        await flush(50)
        assert vm.live_status == LiveStatus.DISCONNECTED

        feed.fail_connects = 0
        vm.reconnect()
        await flush()
        assert vm.live_status == LiveStatus.LIVE
        vm.close()

    @pytest.mark.asyncio
    async def test_without_channel(self, make_view_model):
        vm = make_view_model()
        snapshot = await vm.start()
        assert snapshot.live_status == LiveStatus.CLOSED
        assert not snapshot.is_stale


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_adopts_newer_state(self, make_view_model, service):
        vm = make_view_model(BookingStatus.PENDING)
        await vm.load()
        service.advance_status(BOOKING_ID, BookingStatus.CONFIRMED, publish=False)

        snapshot = await vm.refresh()

        assert snapshot.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_refresh_ignores_stale_fetch(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING)
        await vm.load()
        vm.apply_event(make_event(BookingStatus.CONFIRMED, at(20)))
        vm.apply_event(make_event(BookingStatus.PROVIDER_ASSIGNED, at(25)))
        before = vm.snapshot

        assert await vm.refresh() is before

    @pytest.mark.asyncio
    async def test_refresh_unchanged_does_not_publish(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING)
        await vm.load()
        recorder = Recorder()
        vm.observe(recorder, emit_current=False)
        await vm.refresh()
        assert recorder.snapshots == []

    @pytest.mark.asyncio
    async def test_refresh_adopts_remote_cancel(self, make_view_model, service):
        vm = make_view_model(*CANONICAL_ORDER[:4])
        await vm.load()
        service.advance_status(BOOKING_ID, BookingStatus.CANCELLED, publish=False)
        snapshot = await vm.refresh()
        assert snapshot.status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_snapshot(self, make_view_model, service):
        vm = make_view_model(BookingStatus.PENDING)
        before = await vm.load()
        service.offline = True
        with pytest.raises(BookingFetchError):
            await vm.refresh()
        assert vm.snapshot is before

    @pytest.mark.asyncio
    async def test_refresh_before_load_loads(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING)
        snapshot = await vm.refresh()
        assert vm.is_loaded
        assert snapshot.status == BookingStatus.PENDING


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_success(self, make_view_model, service):
        vm = make_view_model(BookingStatus.PENDING, BookingStatus.CONFIRMED)
        await vm.load()

        snapshot = await vm.cancel("Changed plans")

        assert snapshot.status == BookingStatus.CANCELLED
        assert snapshot.show_cancellation_banner
        assert service.get(BOOKING_ID).status == BookingStatus.CANCELLED
        assert (
            snapshot.timeline.cancelled_at
            == service.get(BOOKING_ID).entry_for(BookingStatus.CANCELLED).occurred_at
        )

    @pytest.mark.asyncio
    async def test_rejected_cancel_leaves_state(self, make_view_model, service):
        vm = make_view_model(BookingStatus.PENDING, BookingStatus.CONFIRMED)
        await vm.load()
        service.reject_next = "Provider is already on the way"

        with pytest.raises(BookingActionError, match="already on the way") as exc:
            await vm.cancel()

        assert exc.value.action == "cancel"
        assert exc.value.booking_id == BOOKING_ID
        assert vm.snapshot.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_cancel_while_offline(self, make_view_model, service):
        vm = make_view_model(BookingStatus.PENDING)
        await vm.load()
        service.offline = True
        with pytest.raises(BookingActionError):
            await vm.cancel()
        assert vm.snapshot.status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancel_timeout_is_an_action_error(self, diagnostics):
        class SlowService(InMemoryBookingService):
            async def cancel_booking(self, booking_id, reason=None):
                raise TimeoutError("service did not answer")

        service = SlowService()
        service.put(make_booking())
        vm = BookingViewModel(BOOKING_ID, service, diagnostics=diagnostics)
        await vm.load()

        with pytest.raises(BookingActionError, match="did not answer") as exc:
            await vm.cancel()

        assert exc.value.action == "cancel"
        assert vm.snapshot.status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_cannot_cancel_completed(self, make_view_model, service):
        vm = make_view_model(*CANONICAL_ORDER)
        await vm.load()
        service.reject_next = "unused"
        with pytest.raises(BookingActionError, match="already completed"):
            await vm.cancel()
        assert service.reject_next == "unused"

    @pytest.mark.asyncio
    async def test_quote_cancellation(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING, scheduled_at=T0 + timedelta(days=2))
        await vm.load()
        quote = vm.quote_cancellation(now=T0 + timedelta(days=2) - timedelta(hours=18))
        assert quote.percentage == Decimal("90")
        assert quote.amount == Decimal("1349.10")


class TestReschedule:
    @pytest.mark.asyncio
    async def test_reschedule_moves_time_only(self, make_view_model, service):
        vm = make_view_model(BookingStatus.PENDING, BookingStatus.CONFIRMED)
        before = await vm.load()
        new_time = (utc_now() + timedelta(days=3)).replace(microsecond=0)

        snapshot = await vm.reschedule(new_time)

        assert snapshot.booking.scheduled_at == new_time
        assert snapshot.status == BookingStatus.CONFIRMED
        assert snapshot.booking.status_history == before.booking.status_history
        assert service.get(BOOKING_ID).scheduled_at == new_time

    @pytest.mark.asyncio
    async def test_reschedule_too_soon_rejected(self, make_view_model):
        vm = make_view_model(BookingStatus.PENDING)
        before = await vm.load()
        with pytest.raises(BookingActionError, match="one hour"):
            await vm.reschedule(utc_now() + timedelta(minutes=10))
        assert vm.snapshot.booking.scheduled_at == before.booking.scheduled_at

    @pytest.mark.asyncio
    async def test_cannot_reschedule_once_en_route(self, make_view_model):
        vm = make_view_model(*CANONICAL_ORDER[:4])
        await vm.load()
        with pytest.raises(BookingActionError) as exc:
            await vm.reschedule(utc_now() + timedelta(days=3))
        assert exc.value.action == "reschedule"


class TestReview:
    @pytest.mark.asyncio
    async def test_review_completed_booking(self, make_view_model, service):
        vm = make_view_model(*CANONICAL_ORDER)
        await vm.load()

        snapshot = await vm.submit_review(5, "Spotless work")

        assert snapshot.booking.review_submitted
        assert not snapshot.is_reviewable
        assert service.get_review(BOOKING_ID) == (5, "Spotless work")

    @pytest.mark.asyncio
    async def test_rating_out_of_range(self, make_view_model):
        vm = make_view_model(*CANONICAL_ORDER)
        await vm.load()
        with pytest.raises(ValueError, match="between 1 and 5"):
            await vm.submit_review(6)

    @pytest.mark.asyncio
    async def test_cannot_review_unfinished(self, make_view_model):
        vm = make_view_model(*CANONICAL_ORDER[:4])
        await vm.load()
        with pytest.raises(BookingActionError):
            await vm.submit_review(4)
