"""Explicit status transition tables for bookings and payment transactions."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import TypeVar

from tutormarket.core.enums import BookingStatusEnum, TransactionStatusEnum
from tutormarket.shared.exceptions import InvalidTransitionException

StatusT = TypeVar("StatusT", bound=StrEnum)

BOOKING_TRANSITIONS: Mapping[BookingStatusEnum, frozenset[BookingStatusEnum]] = {
    BookingStatusEnum.PENDING: frozenset({BookingStatusEnum.CONFIRMED, BookingStatusEnum.CANCELLED}),
    BookingStatusEnum.CONFIRMED: frozenset(
        {BookingStatusEnum.COMPLETED, BookingStatusEnum.CANCELLED, BookingStatusEnum.NO_SHOW},
    ),
    BookingStatusEnum.NO_SHOW: frozenset({BookingStatusEnum.COMPLETED_FOR_PAYOUT}),
    BookingStatusEnum.COMPLETED: frozenset(),
    BookingStatusEnum.CANCELLED: frozenset(),
    BookingStatusEnum.COMPLETED_FOR_PAYOUT: frozenset(),
}

TRANSACTION_TRANSITIONS: Mapping[TransactionStatusEnum, frozenset[TransactionStatusEnum]] = {
    TransactionStatusEnum.PENDING: frozenset(
        {TransactionStatusEnum.COMPLETED, TransactionStatusEnum.FAILED},
    ),
    # A later attempt on the same reservation may still succeed.
    TransactionStatusEnum.FAILED: frozenset({TransactionStatusEnum.COMPLETED}),
    TransactionStatusEnum.COMPLETED: frozenset({TransactionStatusEnum.REFUNDED}),
    TransactionStatusEnum.REFUNDED: frozenset(),
}


def can_transition(
    table: Mapping[StatusT, frozenset[StatusT]],
    current: StatusT,
    target: StatusT,
) -> bool:
    """Return True if the table allows moving from current to target."""
    return target in table.get(current, frozenset())


def ensure_transition(
    table: Mapping[StatusT, frozenset[StatusT]],
    current: StatusT,
    target: StatusT,
    *,
    entity: str,
) -> None:
    """Raise a conflict when the transition is not allowed."""
    if not can_transition(table, current, target):
        raise InvalidTransitionException(
            f"Cannot change {entity} status from {current} to {target}",
        )


def is_terminal(table: Mapping[StatusT, frozenset[StatusT]], status: StatusT) -> bool:
    return not table.get(status)
