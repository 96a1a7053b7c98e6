"""Time-tiered refund policy for cancelled bookings."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from tutormarket.shared.utils import quantize_money

# (hours before session start, refund percentage); first matching tier wins.
REFUND_TIERS: tuple[tuple[int, int], ...] = (
    (24, 50),
    (48, 75),
)
FULL_REFUND_PERCENTAGE = 100


def hours_until(session_start: datetime, now: datetime) -> float:
    return (session_start - now).total_seconds() / 3600


def refund_percentage(hours_before_start: float) -> int:
    """Percentage of the paid amount returned when cancelling this far ahead."""
    for threshold, percentage in REFUND_TIERS:
        if hours_before_start < threshold:
            return percentage
    return FULL_REFUND_PERCENTAGE


def refund_amount(amount_paid: Decimal, percentage: int) -> Decimal:
    return quantize_money(Decimal(amount_paid) * percentage / 100)
