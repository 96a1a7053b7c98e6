from __future__ import annotations

from datetime import UTC, date, datetime, time
from decimal import Decimal
from uuid import uuid4

import pytest

import tutormarket.modules.booking.service as booking_service_module
from fakes import (
    FakeAuditRepository,
    FakeBillingRepository,
    FakeBooking,
    FakeBookingRepository,
    FakePaymentProcessor,
    FakeTutor,
    FakeTutorsRepository,
    FakeUser,
    principal_for,
)
from tutormarket.core.enums import BookingStatusEnum, RoleEnum
from tutormarket.modules.booking.service import BookingService
from tutormarket.shared.exceptions import NotFoundException, UnauthorizedException

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def frozen_now(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(booking_service_module, "utc_now", lambda: NOW)


def _booking(
    tutor: FakeTutor,
    student: FakeUser,
    *,
    session_date: date = date(2026, 10, 21),
    status: BookingStatusEnum = BookingStatusEnum.CONFIRMED,
    amount: str = "40.00",
) -> FakeBooking:
    total = Decimal(amount)
    fee = (total * Decimal("0.20")).quantize(Decimal("0.01"))
    return FakeBooking(
        id=uuid4(),
        tutor_id=tutor.id,
        student_id=student.id,
        booked_by_id=student.id,
        session_date=session_date,
        start_time=time(10),
        end_time=time(11),
        duration_minutes=60,
        status=status,
        amount_paid=total,
        platform_fee=fee,
        tutor_earnings=total - fee,
    )


def _service(*bookings: FakeBooking, tutors: list[FakeTutor]) -> BookingService:
    return BookingService(
        booking_repository=FakeBookingRepository(bookings),
        billing_repository=FakeBillingRepository(),
        tutors_repository=FakeTutorsRepository(tutors),
        audit_repository=FakeAuditRepository(),
        processor=FakePaymentProcessor(),
    )


@pytest.mark.asyncio
async def test_tutor_lists_own_bookings_without_passing_profile_id() -> None:
    tutor_user = FakeUser(id=uuid4(), role=RoleEnum.TUTOR)
    tutor = FakeTutor(id=uuid4(), user_id=tutor_user.id)
    other_tutor = FakeTutor(id=uuid4(), user_id=uuid4())
    student = FakeUser(id=uuid4())
    mine = _booking(tutor, student)
    service = _service(mine, _booking(other_tutor, student), tutors=[tutor, other_tutor])

    items, total = await service.list_tutor_bookings(principal_for(tutor_user), None, limit=20, offset=0)

    assert total == 1
    assert [item.id for item in items] == [mine.id]


@pytest.mark.asyncio
async def test_caller_without_tutor_profile_gets_not_found() -> None:
    tutor = FakeTutor(id=uuid4(), user_id=uuid4())
    service = _service(tutors=[tutor])

    with pytest.raises(NotFoundException):
        await service.list_tutor_bookings(principal_for(FakeUser(id=uuid4())), None, limit=20, offset=0)


@pytest.mark.asyncio
async def test_other_tutor_calendar_is_forbidden_but_admin_may_read_it() -> None:
    tutor = FakeTutor(id=uuid4(), user_id=uuid4())
    student = FakeUser(id=uuid4())
    service = _service(_booking(tutor, student), tutors=[tutor])

    with pytest.raises(UnauthorizedException):
        await service.list_tutor_bookings(principal_for(student), tutor.id, limit=20, offset=0)

    admin = FakeUser(id=uuid4(), role=RoleEnum.ADMIN)
    items, total = await service.list_tutor_bookings(principal_for(admin), tutor.id, limit=20, offset=0)
    assert total == 1
    assert len(items) == 1


@pytest.mark.asyncio
async def test_booking_stats_aggregate_statuses_and_settled_revenue() -> None:
    tutor_a = FakeTutor(id=uuid4(), user_id=uuid4())
    tutor_b = FakeTutor(id=uuid4(), user_id=uuid4())
    first, second = FakeUser(id=uuid4()), FakeUser(id=uuid4())
    service = _service(
        _booking(tutor_a, first, status=BookingStatusEnum.CONFIRMED),
        _booking(tutor_a, first, session_date=date(2026, 10, 1), status=BookingStatusEnum.COMPLETED),
        _booking(
            tutor_b,
            second,
            session_date=date(2026, 10, 2),
            status=BookingStatusEnum.COMPLETED_FOR_PAYOUT,
            amount="60.00",
        ),
        _booking(tutor_b, second, status=BookingStatusEnum.CANCELLED),
        tutors=[tutor_a, tutor_b],
    )
    admin = FakeUser(id=uuid4(), role=RoleEnum.ADMIN)

    stats = await service.get_booking_stats(principal_for(admin))

    assert stats.status_counts[BookingStatusEnum.CONFIRMED] == 1
    assert stats.status_counts[BookingStatusEnum.CANCELLED] == 1
    assert stats.status_counts[BookingStatusEnum.PENDING] == 0
    assert stats.upcoming_bookings == 1
    assert stats.total_revenue == Decimal("100.00")
    assert stats.total_platform_fees == Decimal("20.00")
    assert stats.total_tutor_earnings == Decimal("80.00")
    assert stats.active_tutors == 2
    assert stats.total_students == 2


@pytest.mark.asyncio
async def test_booking_stats_are_staff_only() -> None:
    tutor = FakeTutor(id=uuid4(), user_id=uuid4())
    service = _service(tutors=[tutor])

    with pytest.raises(UnauthorizedException):
        await service.get_booking_stats(principal_for(FakeUser(id=uuid4(), role=RoleEnum.TUTOR)))
