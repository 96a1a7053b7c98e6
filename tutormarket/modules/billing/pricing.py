"""Deterministic session pricing."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from tutormarket.shared.utils import quantize_money

DEFAULT_GROUP_DISCOUNT_RATE = Decimal("0.20")
DEFAULT_PLATFORM_FEE_RATE = Decimal("0.20")


@dataclass(frozen=True, slots=True)
class PriceQuote:
    base_price: Decimal
    slot_count: int
    session_price: Decimal
    total_amount: Decimal
    platform_fee: Decimal
    tutor_earnings: Decimal


def calculate_price(
    base_price: Decimal,
    slot_count: int,
    *,
    is_group_session: bool = False,
    group_size: int = 1,
    is_recurring: bool = False,
    recurring_weeks: int = 1,
    group_discount_rate: Decimal = DEFAULT_GROUP_DISCOUNT_RATE,
    platform_fee_rate: Decimal = DEFAULT_PLATFORM_FEE_RATE,
) -> PriceQuote:
    """Price a session request.

    A group session with more than one participant is charged per head with a
    flat discount; a recurring request multiplies the session price by the
    number of weeks. The platform fee is taken from the total.
    """
    if slot_count < 1:
        raise ValueError("slot_count must be positive")

    session_price = Decimal(base_price) * slot_count
    if is_group_session and group_size > 1:
        session_price = session_price * group_size * (Decimal(1) - group_discount_rate)

    total = session_price * recurring_weeks if is_recurring else session_price
    total = quantize_money(total)
    platform_fee = quantize_money(total * platform_fee_rate)
    return PriceQuote(
        base_price=quantize_money(Decimal(base_price)),
        slot_count=slot_count,
        session_price=quantize_money(session_price),
        total_amount=total,
        platform_fee=platform_fee,
        tutor_earnings=total - platform_fee,
    )


def is_within_tolerance(expected: Decimal, declared: Decimal, tolerance_rate: Decimal) -> bool:
    """True when the declared amount is within tolerance_rate of itself from the expected one."""
    return abs(expected - declared) <= declared * tolerance_rate


def split_evenly(total: Decimal, parts: int) -> list[Decimal]:
    """Split a money amount into parts in cents; the remainder goes to the first part."""
    if parts < 1:
        raise ValueError("parts must be positive")
    total_cents = int(quantize_money(total) * 100)
    share, remainder = divmod(total_cents, parts)
    cents = [share] * parts
    cents[0] += remainder
    return [(Decimal(value) / 100).quantize(Decimal("0.01")) for value in cents]
