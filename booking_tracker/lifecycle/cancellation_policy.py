"""Cancellation refund policy.

Tiers, measured from the cancellation time to the scheduled service time:
- 24h or more before: full refund
- 12 to 24h before: 90% refund
- under 12h before (or after the scheduled time): 50% refund
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from booking_tracker.config import PolicyConfig, settings
from booking_tracker.schemas.booking_schema import Booking
from booking_tracker.utils import ensure_aware


@dataclass(frozen=True)
class RefundQuote:
    """Refund the customer would get for cancelling now."""

    percentage: Decimal
    amount: Decimal
    hours_before: float


def _rules(policy: PolicyConfig) -> list[tuple[int, Decimal]]:
    # (min hours before scheduled time, refund percentage), first match wins
    return [
        (policy.full_refund_hours, Decimal("100")),
        (policy.partial_refund_hours, Decimal(policy.partial_refund_percent)),
    ]


def refund_percentage(
    scheduled_at: datetime,
    cancelled_at: datetime,
    policy: Optional[PolicyConfig] = None,
) -> Decimal:
    """Refund percentage (0-100) for cancelling at ``cancelled_at``."""
    policy = policy or settings.policy
    lead = ensure_aware(scheduled_at) - ensure_aware(cancelled_at)
    for min_hours, pct in _rules(policy):
        if lead >= timedelta(hours=min_hours):
            return pct
    return Decimal(policy.late_refund_percent)


def quote_refund(
    booking: Booking,
    now: datetime,
    policy: Optional[PolicyConfig] = None,
) -> RefundQuote:
    """Quote the refund for cancelling ``booking`` at ``now``."""
    pct = refund_percentage(booking.scheduled_at, now, policy)
    amount = (booking.total_amount * pct / Decimal("100")).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )
    hours_before = (booking.scheduled_at - ensure_aware(now)).total_seconds() / 3600
    return RefundQuote(percentage=pct, amount=amount, hours_before=round(hours_before, 2))
