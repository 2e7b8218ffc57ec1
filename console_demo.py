"""
Offline console demo: plays booking tracking scenarios in the terminal.

Uses the real view model, channel adapter and timeline deriver on top of
the in-memory booking service and change feed. No backend, no network.

Usage:
    python console_demo.py
    python console_demo.py --scenario reorder
    python console_demo.py --scenario cancel
    python console_demo.py --scenario reconnect
"""

import argparse
import asyncio
from datetime import timedelta
from decimal import Decimal

from booking_tracker.channel.adapter import BookingChannel
from booking_tracker.config import ChannelConfig, settings
from booking_tracker.lifecycle.status_model import BookingStatus
from booking_tracker.lifecycle.tracker import BookingTracker
from booking_tracker.lifecycle.view_model import BookingSnapshot
from booking_tracker.schemas.booking_schema import ProviderInfo
from booking_tracker.tools.booking import InMemoryBookingService
from booking_tracker.tools.realtime_feed import InMemoryChangeFeed
from booking_tracker.utils import utc_now

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

DEMO_PROVIDER = ProviderInfo(id="PRV-17", name="Rajesh Kumar", phone="+91 98765 43210", rating=4.8)

# Demo reconnects should not make the audience wait
DEMO_CHANNEL_CONFIG = ChannelConfig(
    reconnect_base_delay_sec=0.2,
    reconnect_max_delay_sec=1.0,
    max_reconnect_attempts=3,
)


def render(screen: str, snapshot: BookingSnapshot) -> None:
    """Print one screen's view of a snapshot."""
    color = YELLOW if snapshot.is_stale else GREEN
    print(
        f"{color}{BOLD}[{screen}]{RESET} {color}{snapshot.presentation.label}"
        f" (v{snapshot.version}, {snapshot.live_status.value}){RESET}"
    )
    for step in snapshot.timeline.steps:
        mark = ">" if step.current else ("x" if step.completed else " ")
        when = f" {step.timestamp:%H:%M:%S}" if step.timestamp else ""
        print(f"{DIM}    [{mark}] {step.label}{when}{RESET}")
    if snapshot.show_cancellation_banner:
        print(f"{RED}    Booking cancelled{RESET}")
    flags = []
    if snapshot.is_cancellable:
        flags.append("cancel")
    if snapshot.is_reschedulable:
        flags.append("reschedule")
    if snapshot.is_reviewable:
        flags.append("review")
    print(f"{DIM}    actions: {', '.join(flags) or 'none'}{RESET}")


class ConsoleSession:
    """Runs one scripted scenario against in-memory collaborators."""

    SCENARIOS = ("tracking", "reorder", "cancel", "reconnect")

    def __init__(self) -> None:
        self.feed = InMemoryChangeFeed()
        self.service = InMemoryBookingService(self.feed)
        self.channel = BookingChannel(self.feed, DEMO_CHANNEL_CONFIG)
        self.tracker = BookingTracker(self.service, self.channel)
        self.booking = self.service.create_booking(
            "AC Deep Cleaning",
            scheduled_at=utc_now() + timedelta(days=2),
            total_amount=Decimal("1499.00"),
            customer_name="Priya Sharma",
        )

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    async def settle(self, seconds: float = 0.05) -> None:
        await asyncio.sleep(seconds)

    async def run(self, scenario: str) -> None:
        if scenario not in self.SCENARIOS:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return

        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  BOOKING TRACKER - Scenario: {scenario}{RESET}")
        print(f"{BOLD}  App: {settings.app_name}  Booking: {self.booking.id}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")

        tracking = await self.tracker.observe(
            self.booking.id, lambda s: render("Tracking", s)
        )
        details = await self.tracker.observe(
            self.booking.id, lambda s: render("Order Details", s)
        )
        await self.settle()

        await getattr(self, f"_scenario_{scenario}")()

        view_model = tracking.view_model
        details.close()
        tracking.close()
        self.system_log(f"Open subscriptions after close: {self.channel.active_subscriptions()}")
        self.system_log(f"Diagnostics: {view_model.diagnostics.get_stats()}")
        print(f"{BOLD}{'=' * 60}{RESET}")

    async def _push(self, status: BookingStatus) -> None:
        print(f"\n{BLUE}[Provider] {RESET}{status.value}")
        provider = DEMO_PROVIDER if status == BookingStatus.PROVIDER_ASSIGNED else None
        self.service.advance_status(self.booking.id, status, provider=provider)
        await self.settle()

    async def _scenario_tracking(self) -> None:
        for status in (
            BookingStatus.CONFIRMED,
            BookingStatus.PROVIDER_ASSIGNED,
            BookingStatus.EN_ROUTE,
            BookingStatus.IN_PROGRESS,
            BookingStatus.COMPLETED,
        ):
            await self._push(status)

    async def _scenario_reorder(self) -> None:
        await self._push(BookingStatus.CONFIRMED)
        await self._push(BookingStatus.PROVIDER_ASSIGNED)
        await self._push(BookingStatus.EN_ROUTE)
        print(f"\n{BLUE}[Network] {RESET}late 'confirmed' delivered again")
        self.feed.publish_status(self.booking.id, BookingStatus.CONFIRMED)
        await self.settle()

    async def _scenario_cancel(self) -> None:
        await self._push(BookingStatus.CONFIRMED)
        view_model = self.tracker.get(self.booking.id)
        quote = view_model.quote_cancellation()
        self.system_log(f"Refund if cancelled now: {quote.percentage}% ({quote.amount})")
        print(f"\n{BLUE}[Customer] {RESET}cancel booking")
        await view_model.cancel("Schedule conflict")
        await self.settle()

    async def _scenario_reconnect(self) -> None:
        await self._push(BookingStatus.CONFIRMED)
        print(f"\n{BLUE}[Network] {RESET}connection dropped")
        self.feed.fail_connects = 1
        self.feed.drop(self.booking.id)
        await self.settle(0.1)
        self.service.advance_status(self.booking.id, BookingStatus.PROVIDER_ASSIGNED, publish=False)
        await self.settle(1.0)
        print(f"\n{BLUE}[Customer] {RESET}pull to refresh")
        await self.tracker.get(self.booking.id).refresh()


def main() -> None:
    parser = argparse.ArgumentParser(description="Booking tracker console demo")
    parser.add_argument(
        "--scenario",
        default="tracking",
        choices=ConsoleSession.SCENARIOS,
        help="Scenario to play",
    )
    args = parser.parse_args()
    asyncio.run(ConsoleSession().run(args.scenario))


if __name__ == "__main__":
    main()
