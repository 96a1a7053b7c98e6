from __future__ import annotations

from decimal import Decimal

import pytest

from tutormarket.modules.billing.pricing import calculate_price, is_within_tolerance, split_evenly


def test_single_slot_price_takes_platform_fee_from_total() -> None:
    quote = calculate_price(Decimal("40.00"), 1)

    assert quote.session_price == Decimal("40.00")
    assert quote.total_amount == Decimal("40.00")
    assert quote.platform_fee == Decimal("8.00")
    assert quote.tutor_earnings == Decimal("32.00")


def test_multi_slot_price_scales_with_slot_count() -> None:
    quote = calculate_price(Decimal("40.00"), 2)

    assert quote.slot_count == 2
    assert quote.total_amount == Decimal("80.00")


def test_recurring_price_multiplies_by_weeks() -> None:
    quote = calculate_price(Decimal("40.00"), 1, is_recurring=True, recurring_weeks=2)

    assert quote.session_price == Decimal("40.00")
    assert quote.total_amount == Decimal("80.00")
    assert quote.platform_fee == Decimal("16.00")
    assert quote.tutor_earnings == Decimal("64.00")


def test_group_price_is_per_head_with_discount() -> None:
    quote = calculate_price(Decimal("40.00"), 1, is_group_session=True, group_size=3)

    assert quote.session_price == Decimal("96.00")
    assert quote.total_amount == Decimal("96.00")


def test_group_of_one_pays_the_plain_price() -> None:
    quote = calculate_price(Decimal("40.00"), 1, is_group_session=True, group_size=1)

    assert quote.total_amount == Decimal("40.00")


def test_recurring_group_combines_both_rules() -> None:
    quote = calculate_price(
        Decimal("25.00"),
        2,
        is_group_session=True,
        group_size=2,
        is_recurring=True,
        recurring_weeks=4,
    )

    # 25 * 2 slots * 2 heads * 0.8 = 80 per week
    assert quote.session_price == Decimal("80.00")
    assert quote.total_amount == Decimal("320.00")
    assert quote.platform_fee + quote.tutor_earnings == quote.total_amount


def test_non_recurring_request_ignores_weeks() -> None:
    quote = calculate_price(Decimal("40.00"), 1, is_recurring=False, recurring_weeks=5)

    assert quote.total_amount == Decimal("40.00")


def test_price_rejects_empty_slot_count() -> None:
    with pytest.raises(ValueError):
        calculate_price(Decimal("40.00"), 0)


def test_fee_rounding_keeps_total_consistent() -> None:
    quote = calculate_price(Decimal("33.33"), 1, platform_fee_rate=Decimal("0.15"))

    assert quote.platform_fee == Decimal("5.00")
    assert quote.tutor_earnings == Decimal("28.33")


def test_split_evenly_gives_remainder_to_first_part() -> None:
    parts = split_evenly(Decimal("100.00"), 3)

    assert parts == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]
    assert sum(parts) == Decimal("100.00")


def test_split_evenly_rejects_zero_parts() -> None:
    with pytest.raises(ValueError):
        split_evenly(Decimal("10.00"), 0)


def test_amount_tolerance_is_relative_to_declared_amount() -> None:
    assert is_within_tolerance(Decimal("40.00"), Decimal("40.00"), Decimal("0.01"))
    assert is_within_tolerance(Decimal("40.00"), Decimal("40.30"), Decimal("0.01"))
    assert not is_within_tolerance(Decimal("40.00"), Decimal("45.00"), Decimal("0.01"))
    assert not is_within_tolerance(Decimal("40.00"), Decimal("35.00"), Decimal("0.01"))
