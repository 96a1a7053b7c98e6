from __future__ import annotations

from datetime import UTC, date, datetime, time
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

import tutormarket.modules.booking.service as booking_service_module
from fakes import (
    FakeAuditRepository,
    FakeBillingRepository,
    FakeBooking,
    FakeBookingRepository,
    FakePaymentProcessor,
    FakeTransaction,
    FakeTutor,
    FakeTutorsRepository,
    FakeUser,
    principal_for,
)
from tutormarket.core.enums import (
    BookingStatusEnum,
    RefundStatusEnum,
    RoleEnum,
    TransactionStatusEnum,
    TransactionTypeEnum,
)
from tutormarket.modules.booking.refund_policy import refund_amount, refund_percentage
from tutormarket.modules.booking.service import BookingService
from tutormarket.shared.exceptions import (
    BusinessRuleException,
    ConflictException,
    PaymentProviderException,
    UnauthorizedException,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def frozen_now(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(booking_service_module, "utc_now", lambda: NOW)


def _booking(
    booker: FakeUser,
    tutor: FakeTutor,
    *,
    session_date: date = date(2026, 10, 21),
    start: time = time(10),
    status: BookingStatusEnum = BookingStatusEnum.CONFIRMED,
    payment_intent_id: str | None = "pi_paid",
    parent_booking_id: UUID | None = None,
) -> FakeBooking:
    return FakeBooking(
        id=uuid4(),
        tutor_id=tutor.id,
        student_id=booker.id,
        booked_by_id=booker.id,
        session_date=session_date,
        start_time=start,
        end_time=time(start.hour + 1),
        duration_minutes=60,
        status=status,
        amount_paid=Decimal("40.00"),
        payment_intent_id=payment_intent_id,
        parent_booking_id=parent_booking_id,
    )


def _purchase(tutor: FakeTutor, payer: FakeUser) -> FakeTransaction:
    return FakeTransaction(
        id=uuid4(),
        transaction_type=TransactionTypeEnum.PURCHASE,
        provider="stripe",
        provider_transaction_id="pi_paid",
        payer_id=payer.id,
        tutor_id=tutor.id,
        amount=Decimal("40.00"),
        platform_fee=Decimal("8.00"),
        tutor_earnings=Decimal("32.00"),
        currency="usd",
        status=TransactionStatusEnum.COMPLETED,
    )


class Setup:
    def __init__(self, *bookings: FakeBooking, tutor: FakeTutor, purchase: FakeTransaction | None = None) -> None:
        self.booking_repository = FakeBookingRepository(bookings)
        self.billing_repository = FakeBillingRepository([purchase] if purchase else [])
        self.audit_repository = FakeAuditRepository()
        self.processor = FakePaymentProcessor()
        self.service = BookingService(
            booking_repository=self.booking_repository,
            billing_repository=self.billing_repository,
            tutors_repository=FakeTutorsRepository([tutor]),
            audit_repository=self.audit_repository,
            processor=self.processor,
        )


def _actors() -> tuple[FakeUser, FakeTutor]:
    return FakeUser(id=uuid4()), FakeTutor(id=uuid4(), user_id=uuid4())


@pytest.mark.parametrize(
    ("hours", "expected"),
    [(0.5, 50), (23.9, 50), (24, 75), (47.9, 75), (48, 100), (240, 100), (-2, 50)],
)
def test_refund_percentage_tiers(hours: float, expected: int) -> None:
    assert refund_percentage(hours) == expected


def test_refund_amount_is_rounded_to_cents() -> None:
    assert refund_amount(Decimal("33.33"), 75) == Decimal("25.00")
    assert refund_amount(Decimal("40.00"), 50) == Decimal("20.00")


@pytest.mark.asyncio
async def test_cancel_far_ahead_refunds_in_full() -> None:
    booker, tutor = _actors()
    purchase = _purchase(tutor, booker)
    booking = _booking(booker, tutor)
    setup = Setup(booking, tutor=tutor, purchase=purchase)

    result = await setup.service.cancel_booking(booking.id, principal_for(booker), "Schedule change")

    assert result.refund_percentage == 100
    assert result.refund_amount == Decimal("40.00")
    assert result.refund_status == RefundStatusEnum.SUCCEEDED
    assert result.refund_id == "re_test_1"
    assert booking.status == BookingStatusEnum.CANCELLED
    assert booking.cancelled_at == NOW
    assert booking.cancelled_by_id == booker.id
    assert booking.cancellation_reason == "Schedule change"
    assert booking.refund_amount == Decimal("40.00")

    [call] = setup.processor.refunds
    assert call["reservation_id"] == "pi_paid"
    assert call["idempotency_key"] == f"refund:{booking.id}"
    assert call["metadata"]["cancellationReason"] == "Schedule change"

    refund_tx = next(
        item
        for item in setup.billing_repository.transactions.values()
        if item.transaction_type == TransactionTypeEnum.REFUND
    )
    assert refund_tx.related_transaction_id == purchase.id
    assert refund_tx.amount == Decimal("40.00")
    assert refund_tx.status == TransactionStatusEnum.COMPLETED
    assert setup.billing_repository.commits == 1
    assert setup.audit_repository.event_types() == ["booking.cancelled"]


@pytest.mark.parametrize(
    ("session_date", "percentage", "amount"),
    [
        (date(2026, 10, 19), 50, Decimal("20.00")),
        (date(2026, 10, 20), 75, Decimal("30.00")),
    ],
)
@pytest.mark.asyncio
async def test_cancel_close_to_start_refunds_partially(session_date: date, percentage: int, amount: Decimal) -> None:
    booker, tutor = _actors()
    booking = _booking(booker, tutor, session_date=session_date)
    setup = Setup(booking, tutor=tutor, purchase=_purchase(tutor, booker))

    result = await setup.service.cancel_booking(booking.id, principal_for(booker), None)

    assert result.refund_percentage == percentage
    assert result.refund_amount == amount
    assert setup.processor.refunds[0]["amount"] == amount


@pytest.mark.asyncio
async def test_cancel_without_payment_reference_skips_processor() -> None:
    booker, tutor = _actors()
    booking = _booking(booker, tutor, payment_intent_id=None)
    setup = Setup(booking, tutor=tutor)

    result = await setup.service.cancel_booking(booking.id, principal_for(booker), None)

    assert result.refund_status == RefundStatusEnum.NONE
    assert result.refund_amount == Decimal("0.00")
    assert setup.processor.refunds == []
    assert booking.status == BookingStatusEnum.CANCELLED
    assert setup.billing_repository.commits == 1


@pytest.mark.asyncio
async def test_cancel_recurring_child_refunds_through_parent_reservation() -> None:
    booker, tutor = _actors()
    root = _booking(booker, tutor)
    child = _booking(booker, tutor, session_date=date(2026, 10, 28), payment_intent_id=None, parent_booking_id=root.id)
    setup = Setup(root, child, tutor=tutor, purchase=_purchase(tutor, booker))

    result = await setup.service.cancel_booking(child.id, principal_for(booker), None)

    assert result.refund_status == RefundStatusEnum.SUCCEEDED
    assert setup.processor.refunds[0]["reservation_id"] == "pi_paid"
    assert child.status == BookingStatusEnum.CANCELLED
    assert root.status == BookingStatusEnum.CONFIRMED


@pytest.mark.asyncio
async def test_processor_refusal_leaves_booking_unchanged() -> None:
    booker, tutor = _actors()
    booking = _booking(booker, tutor)
    setup = Setup(booking, tutor=tutor, purchase=_purchase(tutor, booker))
    setup.processor.refund_error = PaymentProviderException("Charge already refunded")

    with pytest.raises(PaymentProviderException):
        await setup.service.cancel_booking(booking.id, principal_for(booker), None)

    assert booking.status == BookingStatusEnum.CONFIRMED
    assert booking.refund_amount is None
    assert setup.billing_repository.commits == 0
    assert len(setup.billing_repository.transactions) == 1
    assert setup.audit_repository.changes == []


@pytest.mark.asyncio
async def test_cancel_twice_is_a_conflict() -> None:
    booker, tutor = _actors()
    booking = _booking(booker, tutor, status=BookingStatusEnum.CANCELLED)
    setup = Setup(booking, tutor=tutor)

    with pytest.raises(ConflictException, match="already cancelled"):
        await setup.service.cancel_booking(booking.id, principal_for(booker), None)


@pytest.mark.asyncio
async def test_completed_booking_cannot_be_cancelled() -> None:
    booker, tutor = _actors()
    booking = _booking(booker, tutor, status=BookingStatusEnum.COMPLETED)
    setup = Setup(booking, tutor=tutor)

    with pytest.raises(ConflictException):
        await setup.service.cancel_booking(booking.id, principal_for(booker), None)


@pytest.mark.asyncio
async def test_only_booker_or_staff_can_cancel() -> None:
    booker, tutor = _actors()
    booking = _booking(booker, tutor)
    setup = Setup(booking, tutor=tutor, purchase=_purchase(tutor, booker))
    stranger = FakeUser(id=uuid4())
    admin = FakeUser(id=uuid4(), role=RoleEnum.ADMIN)

    with pytest.raises(UnauthorizedException):
        await setup.service.cancel_booking(booking.id, principal_for(stranger), None)

    result = await setup.service.cancel_booking(booking.id, principal_for(admin), "Tutor unavailable")
    assert result.refund_status == RefundStatusEnum.SUCCEEDED
    assert booking.cancelled_by_id == admin.id


@pytest.mark.asyncio
async def test_complete_requires_session_to_have_ended() -> None:
    booker, tutor = _actors()
    upcoming = _booking(booker, tutor)
    past = _booking(booker, tutor, session_date=date(2026, 10, 17))
    setup = Setup(upcoming, past, tutor=tutor)
    tutor_principal = principal_for(FakeUser(id=tutor.user_id, role=RoleEnum.TUTOR))

    with pytest.raises(BusinessRuleException):
        await setup.service.complete_booking(upcoming.id, tutor_principal)

    completed = await setup.service.complete_booking(past.id, tutor_principal)
    assert completed.status == BookingStatusEnum.COMPLETED
    assert completed.completed_at == NOW
    assert setup.audit_repository.event_types() == ["booking.completed"]


@pytest.mark.asyncio
async def test_student_cannot_attest_session_outcome() -> None:
    booker, tutor = _actors()
    past = _booking(booker, tutor, session_date=date(2026, 10, 17))
    setup = Setup(past, tutor=tutor)

    with pytest.raises(UnauthorizedException):
        await setup.service.complete_booking(past.id, principal_for(booker))


@pytest.mark.asyncio
async def test_no_show_releases_booking_for_payout() -> None:
    booker, tutor = _actors()
    past = _booking(booker, tutor, session_date=date(2026, 10, 17))
    setup = Setup(past, tutor=tutor)
    tutor_principal = principal_for(FakeUser(id=tutor.user_id, role=RoleEnum.TUTOR))

    result = await setup.service.mark_no_show(past.id, tutor_principal)

    assert result.status == BookingStatusEnum.COMPLETED_FOR_PAYOUT
    assert result.no_show_at == NOW
    assert setup.audit_repository.event_types() == ["booking.no_show", "booking.completed_for_payout"]

    with pytest.raises(ConflictException):
        await setup.service.mark_no_show(past.id, tutor_principal)


@pytest.mark.asyncio
async def test_booking_visible_to_participants_and_tutor_only() -> None:
    booker, tutor = _actors()
    booking = _booking(booker, tutor)
    setup = Setup(booking, tutor=tutor)

    assert await setup.service.get_booking(booking.id, principal_for(booker)) is booking
    tutor_principal = principal_for(FakeUser(id=tutor.user_id, role=RoleEnum.TUTOR))
    assert await setup.service.get_booking(booking.id, tutor_principal) is booking
    with pytest.raises(UnauthorizedException):
        await setup.service.get_booking(booking.id, principal_for(FakeUser(id=uuid4())))
