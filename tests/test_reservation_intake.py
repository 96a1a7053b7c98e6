from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

import tutormarket.modules.billing.service as billing_service_module
import tutormarket.modules.scheduling.service as scheduling_service_module
from fakes import (
    FakeBillingRepository,
    FakeBookingRepository,
    FakeIdentityRepository,
    FakePaymentProcessor,
    FakeRowLock,
    FakeSchedulingRepository,
    FakeSessionType,
    FakeTutor,
    FakeTutorsRepository,
    FakeUser,
    FakeWindow,
    principal_for,
)
from tutormarket.core.config import Settings
from tutormarket.core.enums import RoleEnum, TransactionStatusEnum, TransactionTypeEnum
from tutormarket.modules.billing.schemas import (
    BookingDetails,
    CreatePaymentIntentRequest,
    PaymentIntentRead,
    QuoteRequest,
)
from tutormarket.modules.billing.service import ReservationService
from tutormarket.modules.identity.service import IdentityService
from tutormarket.modules.scheduling.resolver import day_of_week
from tutormarket.modules.scheduling.service import SchedulingService
from tutormarket.shared.exceptions import (
    AmountMismatchException,
    NotFoundException,
    SlotUnavailableException,
    UnauthorizedException,
    ValidationException,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)
SESSION_DATE = date(2026, 10, 21)


@pytest.fixture(autouse=True)
def frozen_now(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(billing_service_module, "utc_now", lambda: NOW)
    monkeypatch.setattr(scheduling_service_module, "utc_now", lambda: NOW)


@dataclass
class World:
    service: ReservationService
    tutor: FakeTutor
    booker: FakeUser
    tutors_repository: FakeTutorsRepository
    identity_repository: FakeIdentityRepository
    billing_repository: FakeBillingRepository
    processor: FakePaymentProcessor


def _world(
    *,
    users: list[FakeUser] | None = None,
    parent_links=(),
    session_types=(),
    row_lock: FakeRowLock | None = None,
) -> World:
    tutor = FakeTutor(id=uuid4(), user_id=uuid4(), hourly_rate=Decimal("40.00"))
    booker = FakeUser(id=uuid4())
    windows = [
        FakeWindow(tutor_id=tutor.id, day_of_week=day_of_week(SESSION_DATE), start_time=time(9), end_time=time(12)),
    ]
    settings = Settings(_env_file=None)
    tutors_repository = FakeTutorsRepository([tutor], session_types, row_lock=row_lock)
    identity_repository = FakeIdentityRepository([booker, *(users or [])], parent_links)
    billing_repository = FakeBillingRepository(row_lock=row_lock)
    processor = FakePaymentProcessor()
    scheduling_service = SchedulingService(
        repository=FakeSchedulingRepository(windows=windows),
        tutors_repository=tutors_repository,
        booking_repository=FakeBookingRepository(),
        billing_repository=billing_repository,
        settings=settings,
    )
    service = ReservationService(
        tutors_repository=tutors_repository,
        identity_service=IdentityService(identity_repository),
        scheduling_service=scheduling_service,
        repository=billing_repository,
        processor=processor,
        settings=settings,
    )
    return World(
        service=service,
        tutor=tutor,
        booker=booker,
        tutors_repository=tutors_repository,
        identity_repository=identity_repository,
        billing_repository=billing_repository,
        processor=processor,
    )


def _request(
    tutor_id: UUID,
    *,
    amount: str = "40.00",
    slots: tuple[time, ...] = (time(10),),
    session_date: date = SESSION_DATE,
    **details,
) -> CreatePaymentIntentRequest:
    return CreatePaymentIntentRequest(
        amount=Decimal(amount),
        booking_details=BookingDetails(
            tutor_id=tutor_id,
            session_date=session_date,
            time_slots=list(slots),
            **details,
        ),
    )


@pytest.mark.asyncio
async def test_reservation_creates_pending_transaction_with_hold() -> None:
    world = _world()

    result = await world.service.reserve(principal_for(world.booker), _request(world.tutor.id), "key-1")

    assert result.payment_intent_id == "pi_test_1"
    assert result.client_secret == "pi_test_1_secret"
    assert result.amount == Decimal("40.00")
    assert result.hold_expires_at == NOW + timedelta(minutes=30)

    transaction = world.billing_repository.transactions[result.transaction_id]
    assert transaction.status == TransactionStatusEnum.PENDING
    assert transaction.transaction_type == TransactionTypeEnum.PURCHASE
    assert transaction.platform_fee == Decimal("8.00")
    assert transaction.tutor_earnings == Decimal("32.00")
    assert transaction.booking_metadata["start_time"] == "10:00:00"
    assert transaction.booking_metadata["end_time"] == "11:00:00"
    assert transaction.booking_metadata["student_id"] == str(world.booker.id)
    assert world.billing_repository.commits == 1
    assert world.tutors_repository.lock_calls == [world.tutor.id]

    call = world.processor.reservations[0]
    assert call["idempotency_key"] == f"reserve:{world.booker.id}:key-1"
    assert call["metadata"]["tutorId"] == str(world.tutor.id)
    assert call["metadata"]["startTime"] == "10:00"
    assert call["metadata"]["weeks"] == "1"


@pytest.mark.asyncio
async def test_amount_mismatch_is_rejected_before_processor_call() -> None:
    world = _world()

    with pytest.raises(AmountMismatchException) as exc:
        await world.service.reserve(principal_for(world.booker), _request(world.tutor.id, amount="20.00"), "key-1")

    assert "expected 40.00, received 20.00" in exc.value.message
    assert world.processor.reservations == []
    assert world.billing_repository.transactions == {}


@pytest.mark.asyncio
async def test_amount_within_tolerance_is_accepted_and_server_price_charged() -> None:
    world = _world()

    result = await world.service.reserve(principal_for(world.booker), _request(world.tutor.id, amount="40.30"), "k")

    assert result.amount == Decimal("40.00")
    assert world.processor.reservations[0]["amount"] == Decimal("40.00")


@pytest.mark.asyncio
async def test_second_reservation_for_held_slot_conflicts() -> None:
    world = _world()
    other = FakeUser(id=uuid4())
    world.identity_repository.users[other.id] = other

    await world.service.reserve(principal_for(world.booker), _request(world.tutor.id), "key-1")
    with pytest.raises(SlotUnavailableException) as exc:
        await world.service.reserve(principal_for(other), _request(world.tutor.id), "key-2")

    assert exc.value.status_code == 409
    assert len(world.processor.reservations) == 1
    assert len(world.billing_repository.transactions) == 1


@pytest.mark.asyncio
async def test_concurrent_reservations_for_same_slot_admit_exactly_one() -> None:
    world = _world(row_lock=FakeRowLock())
    other = FakeUser(id=uuid4())
    world.identity_repository.users[other.id] = other

    results = await asyncio.gather(
        world.service.reserve(principal_for(world.booker), _request(world.tutor.id), "key-1"),
        world.service.reserve(principal_for(other), _request(world.tutor.id), "key-2"),
        return_exceptions=True,
    )

    admitted = [item for item in results if isinstance(item, PaymentIntentRead)]
    rejected = [item for item in results if isinstance(item, SlotUnavailableException)]
    assert len(admitted) == 1
    assert len(rejected) == 1
    assert len(world.processor.reservations) == 1
    assert len(world.billing_repository.transactions) == 1
    assert world.tutors_repository.lock_calls == [world.tutor.id, world.tutor.id]


@pytest.mark.asyncio
async def test_overlapping_longer_request_conflicts_with_held_slot() -> None:
    world = _world()
    other = FakeUser(id=uuid4())
    world.identity_repository.users[other.id] = other

    await world.service.reserve(principal_for(world.booker), _request(world.tutor.id), "key-1")
    with pytest.raises(SlotUnavailableException):
        await world.service.reserve(
            principal_for(other),
            _request(world.tutor.id, amount="80.00", slots=(time(9), time(10))),
            "key-2",
        )


@pytest.mark.asyncio
async def test_slot_outside_availability_is_unavailable() -> None:
    world = _world()

    with pytest.raises(SlotUnavailableException):
        await world.service.reserve(principal_for(world.booker), _request(world.tutor.id, slots=(time(15),)), "k")


@pytest.mark.asyncio
async def test_multi_slot_request_books_contiguous_range() -> None:
    world = _world()

    result = await world.service.reserve(
        principal_for(world.booker),
        _request(world.tutor.id, amount="80.00", slots=(time(10), time(9))),
        "k",
    )

    metadata = world.billing_repository.transactions[result.transaction_id].booking_metadata
    assert metadata["start_time"] == "09:00:00"
    assert metadata["end_time"] == "11:00:00"
    assert metadata["duration_minutes"] == 120
    assert metadata["slot_count"] == 2


@pytest.mark.asyncio
async def test_non_contiguous_slots_are_rejected() -> None:
    world = _world()

    with pytest.raises(ValidationException, match="contiguous"):
        await world.service.reserve(
            principal_for(world.booker),
            _request(world.tutor.id, amount="80.00", slots=(time(9), time(11))),
            "k",
        )


@pytest.mark.asyncio
async def test_misaligned_slot_is_rejected() -> None:
    world = _world()

    with pytest.raises(ValidationException, match="boundaries"):
        await world.service.reserve(principal_for(world.booker), _request(world.tutor.id, slots=(time(9, 30),)), "k")


@pytest.mark.asyncio
async def test_session_in_the_past_is_rejected() -> None:
    world = _world()

    with pytest.raises(ValidationException, match="future"):
        await world.service.reserve(
            principal_for(world.booker),
            _request(world.tutor.id, session_date=date(2026, 10, 14)),
            "k",
        )


@pytest.mark.asyncio
async def test_recurring_request_is_priced_per_week_and_checks_every_week() -> None:
    world = _world()

    result = await world.service.reserve(
        principal_for(world.booker),
        _request(world.tutor.id, amount="80.00", is_recurring=True, recurring_weeks=2),
        "k",
    )

    assert result.amount == Decimal("80.00")
    assert world.processor.reservations[0]["metadata"]["weeks"] == "2"


@pytest.mark.asyncio
async def test_recurring_request_over_limit_is_rejected() -> None:
    world = _world()

    with pytest.raises(ValidationException, match="12 weeks"):
        await world.service.reserve(
            principal_for(world.booker),
            _request(world.tutor.id, amount="520.00", is_recurring=True, recurring_weeks=13),
            "k",
        )


@pytest.mark.asyncio
async def test_session_type_sets_duration_and_price() -> None:
    session_type = FakeSessionType(
        id=uuid4(),
        tutor_id=uuid4(),
        name="Exam prep",
        duration_minutes=90,
        price=Decimal("55.00"),
    )
    world = _world(session_types=[session_type])
    session_type.tutor_id = world.tutor.id

    result = await world.service.reserve(
        principal_for(world.booker),
        _request(world.tutor.id, amount="55.00", slots=(time(9),), session_type_id=session_type.id),
        "k",
    )

    metadata = world.billing_repository.transactions[result.transaction_id].booking_metadata
    assert metadata["session_type"] == "Exam prep"
    assert metadata["end_time"] == "10:30:00"


@pytest.mark.asyncio
async def test_child_account_cannot_book() -> None:
    world = _world()
    world.booker.is_child_managed = True

    with pytest.raises(UnauthorizedException, match="Child accounts"):
        await world.service.reserve(principal_for(world.booker), _request(world.tutor.id), "k")
    assert world.processor.reservations == []


@pytest.mark.asyncio
async def test_parent_books_for_linked_child() -> None:
    child = FakeUser(id=uuid4(), is_child_managed=True)
    world = _world(users=[child])
    world.booker.role = RoleEnum.PARENT
    world.identity_repository.parent_links.add((world.booker.id, child.id))

    result = await world.service.reserve(
        principal_for(world.booker),
        _request(world.tutor.id, student_id=child.id),
        "k",
    )

    transaction = world.billing_repository.transactions[result.transaction_id]
    assert transaction.booking_metadata["student_id"] == str(child.id)
    assert transaction.booking_metadata["booked_by_id"] == str(world.booker.id)
    assert transaction.payer_id == world.booker.id


@pytest.mark.asyncio
async def test_booking_for_unrelated_student_is_forbidden() -> None:
    stranger = FakeUser(id=uuid4())
    world = _world(users=[stranger])

    with pytest.raises(UnauthorizedException):
        await world.service.reserve(
            principal_for(world.booker),
            _request(world.tutor.id, student_id=stranger.id),
            "k",
        )


@pytest.mark.asyncio
async def test_unknown_tutor_is_not_found() -> None:
    world = _world()

    with pytest.raises(NotFoundException):
        await world.service.reserve(principal_for(world.booker), _request(uuid4()), "k")


@pytest.mark.asyncio
async def test_unsupported_currency_is_rejected() -> None:
    world = _world()
    payload = _request(world.tutor.id)
    payload.currency = "eur"

    with pytest.raises(ValidationException, match="currency"):
        await world.service.reserve(principal_for(world.booker), payload, "k")


@pytest.mark.asyncio
async def test_failed_persistence_cancels_processor_reservation() -> None:
    world = _world()
    world.billing_repository.fail_on_create = True

    with pytest.raises(RuntimeError):
        await world.service.reserve(principal_for(world.booker), _request(world.tutor.id), "k")

    assert world.processor.cancelled == ["pi_test_1"]
    assert world.billing_repository.commits == 0


@pytest.mark.asyncio
async def test_quote_matches_reservation_price() -> None:
    world = _world()

    quote = await world.service.quote(
        QuoteRequest(tutor_id=world.tutor.id, slot_count=1, is_recurring=True, recurring_weeks=2),
    )

    assert quote.total_amount == Decimal("80.00")
    assert quote.platform_fee == Decimal("16.00")
    assert quote.tutor_earnings == Decimal("64.00")
    assert quote.currency == "usd"
