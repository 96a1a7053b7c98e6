"""Billing business logic layer: quoting, reservation intake and settlement."""

from __future__ import annotations

import logging
import uuid
from datetime import time, timedelta
from decimal import Decimal
from uuid import UUID

from fastapi import Depends
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.config import Settings, get_settings
from tutormarket.core.database import get_db_session
from tutormarket.core.enums import BookingStatusEnum, TransactionStatusEnum, TransactionTypeEnum
from tutormarket.core.metrics import (
    PAYMENT_RESERVATIONS_TOTAL,
    SETTLEMENT_EVENTS_TOTAL,
    SETTLEMENT_RECONCILIATION_FAULTS_TOTAL,
)
from tutormarket.modules.audit.repository import AuditRepository
from tutormarket.modules.billing.models import PaymentTransaction
from tutormarket.modules.billing.pricing import PriceQuote, calculate_price, is_within_tolerance, split_evenly
from tutormarket.modules.billing.processor import (
    PaymentProcessor,
    ProcessorEvent,
    ProcessorEventType,
    get_payment_processor,
)
from tutormarket.modules.billing.repository import BillingRepository
from tutormarket.modules.billing.schemas import (
    BookingDetails,
    CreatePaymentIntentRequest,
    PaymentIntentRead,
    QuoteRead,
    QuoteRequest,
    ReservationMetadata,
)
from tutormarket.modules.booking.models import Booking
from tutormarket.modules.booking.repository import BookingRepository
from tutormarket.modules.identity.repository import IdentityRepository
from tutormarket.modules.identity.service import IdentityService, Principal
from tutormarket.modules.scheduling.resolver import from_minutes, occurrence_dates, to_minutes
from tutormarket.modules.scheduling.service import SchedulingService, build_scheduling_service
from tutormarket.modules.tutors.models import SessionType, Tutor
from tutormarket.modules.tutors.repository import TutorsRepository
from tutormarket.shared.exceptions import (
    AmountMismatchException,
    ConflictException,
    NotFoundException,
    SlotUnavailableException,
    UnauthorizedException,
    ValidationException,
)
from tutormarket.shared.utils import quantize_money, session_start_utc, utc_now

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
REFUNDED_BY_PROVIDER_REASON = "Refunded by payment provider"


class ReservationService:
    """Server-side pricing and reservation intake."""

    def __init__(
        self,
        tutors_repository: TutorsRepository,
        identity_service: IdentityService,
        scheduling_service: SchedulingService,
        repository: BillingRepository,
        processor: PaymentProcessor,
        settings: Settings | None = None,
    ) -> None:
        self.tutors_repository = tutors_repository
        self.identity_service = identity_service
        self.scheduling_service = scheduling_service
        self.repository = repository
        self.processor = processor
        self.settings = settings or get_settings()

    async def _get_bookable_tutor(self, tutor_id: UUID, *, lock: bool = False) -> Tutor:
        if lock:
            tutor = await self.tutors_repository.lock_tutor(tutor_id)
        else:
            tutor = await self.tutors_repository.get_tutor(tutor_id)
        if tutor is None or not tutor.is_bookable:
            raise NotFoundException("Tutor not found or not available")
        return tutor

    async def _get_session_type(self, tutor: Tutor, session_type_id: UUID) -> SessionType:
        session_type = await self.tutors_repository.get_session_type(session_type_id)
        if session_type is None or session_type.tutor_id != tutor.id or not session_type.is_active:
            raise NotFoundException("Session type not found")
        return session_type

    def _validate_series_shape(
        self,
        *,
        is_group_session: bool,
        group_size: int,
        is_recurring: bool,
        recurring_weeks: int,
    ) -> None:
        if is_recurring and recurring_weeks > self.settings.max_recurring_weeks:
            raise ValidationException(
                f"Recurring bookings are limited to {self.settings.max_recurring_weeks} weeks",
            )
        if is_group_session and group_size > self.settings.max_group_size:
            raise ValidationException(
                f"Group sessions are limited to {self.settings.max_group_size} participants",
            )

    def _slot_price(self, tutor: Tutor) -> Decimal:
        return quantize_money(Decimal(tutor.hourly_rate) * self.settings.slot_tick_minutes / 60)

    def _price(
        self,
        base_price: Decimal,
        slot_count: int,
        *,
        is_group_session: bool,
        group_size: int,
        is_recurring: bool,
        recurring_weeks: int,
    ) -> PriceQuote:
        return calculate_price(
            base_price,
            slot_count,
            is_group_session=is_group_session,
            group_size=group_size,
            is_recurring=is_recurring,
            recurring_weeks=recurring_weeks,
            group_discount_rate=self.settings.group_discount_rate,
            platform_fee_rate=self.settings.platform_fee_rate,
        )

    async def quote(self, payload: QuoteRequest) -> QuoteRead:
        """Compute the price the server will charge for a request."""
        self._validate_series_shape(
            is_group_session=payload.is_group_session,
            group_size=payload.group_size,
            is_recurring=payload.is_recurring,
            recurring_weeks=payload.recurring_weeks,
        )
        tutor = await self._get_bookable_tutor(payload.tutor_id)
        if payload.session_type_id is not None:
            session_type = await self._get_session_type(tutor, payload.session_type_id)
            base_price, slot_count = Decimal(session_type.price), 1
        else:
            base_price, slot_count = self._slot_price(tutor), payload.slot_count

        price = self._price(
            base_price,
            slot_count,
            is_group_session=payload.is_group_session,
            group_size=payload.group_size,
            is_recurring=payload.is_recurring,
            recurring_weeks=payload.recurring_weeks,
        )
        return QuoteRead(
            tutor_id=tutor.id,
            base_price=price.base_price,
            slot_count=price.slot_count,
            session_price=price.session_price,
            total_amount=price.total_amount,
            platform_fee=price.platform_fee,
            tutor_earnings=price.tutor_earnings,
            currency=self.settings.default_currency,
        )

    def _resolve_time_range(self, details: BookingDetails, duration_minutes: int) -> tuple[time, time]:
        """Check the requested ticks are aligned and contiguous; return start and end."""
        tick = self.settings.slot_tick_minutes
        starts = [to_minutes(value) for value in details.time_slots]
        if any(value % tick for value in starts):
            raise ValidationException(f"Time slots must start on {tick}-minute boundaries")
        if any(later - earlier != tick for earlier, later in zip(starts, starts[1:])):
            raise ValidationException("Time slots must be contiguous")

        self.scheduling_service.validate_duration(duration_minutes)
        end = starts[0] + duration_minutes
        if end >= MINUTES_PER_DAY:
            raise ValidationException("Session must end before midnight")
        return from_minutes(starts[0]), from_minutes(end)

    async def _ensure_slots_free(
        self,
        tutor: Tutor,
        details: BookingDetails,
        start_time: time,
        duration_minutes: int,
    ) -> None:
        for on_date in occurrence_dates(details.session_date, details.weeks):
            slots = await self.scheduling_service.resolve_free_slots(tutor, on_date, duration_minutes)
            if not any(slot.start_time == start_time for slot in slots):
                logger.info(
                    "Slot unavailable: tutor_id=%s date=%s start=%s",
                    tutor.id,
                    on_date,
                    start_time,
                )
                raise SlotUnavailableException("Requested slot is no longer available")

    async def reserve(
        self,
        principal: Principal,
        payload: CreatePaymentIntentRequest,
        idempotency_key: str,
    ) -> PaymentIntentRead:
        """Validate a booking request, hold the funds and persist a pending transaction."""
        details = payload.booking_details
        self._validate_series_shape(
            is_group_session=details.is_group_session,
            group_size=details.group_size,
            is_recurring=details.is_recurring,
            recurring_weeks=details.recurring_weeks,
        )
        currency = (payload.currency or self.settings.default_currency).lower()
        if currency != self.settings.default_currency:
            raise ValidationException(f"Unsupported currency: {currency}")

        tutor = await self._get_bookable_tutor(details.tutor_id)
        student_id = await self.identity_service.ensure_can_book_for(principal, details.student_id)

        session_type_name: str | None = None
        if details.session_type_id is not None:
            session_type = await self._get_session_type(tutor, details.session_type_id)
            if len(details.time_slots) != 1:
                raise ValidationException("A session type booking takes exactly one time slot")
            session_type_name = session_type.name
            base_price, slot_count = Decimal(session_type.price), 1
            duration_minutes = session_type.duration_minutes
        else:
            base_price, slot_count = self._slot_price(tutor), len(details.time_slots)
            duration_minutes = slot_count * self.settings.slot_tick_minutes

        start_time, end_time = self._resolve_time_range(details, duration_minutes)
        now = utc_now()
        if session_start_utc(details.session_date, start_time, tutor.timezone) <= now:
            raise ValidationException("Session start must be in the future")

        price = self._price(
            base_price,
            slot_count,
            is_group_session=details.is_group_session,
            group_size=details.group_size,
            is_recurring=details.is_recurring,
            recurring_weeks=details.recurring_weeks,
        )
        if price.total_amount < self.settings.minimum_charge_amount:
            raise ValidationException(
                f"Amount is below the minimum charge of {self.settings.minimum_charge_amount}",
            )
        if not is_within_tolerance(price.total_amount, payload.amount, self.settings.amount_tolerance_rate):
            PAYMENT_RESERVATIONS_TOTAL.labels(outcome="amount_mismatch").inc()
            raise AmountMismatchException(
                f"Payment amount mismatch: expected {price.total_amount}, received {payload.amount}",
            )

        # Held until commit so concurrent requests for this tutor see our hold.
        tutor = await self._get_bookable_tutor(tutor.id, lock=True)
        try:
            await self._ensure_slots_free(tutor, details, start_time, duration_minutes)
        except SlotUnavailableException:
            PAYMENT_RESERVATIONS_TOTAL.labels(outcome="slot_unavailable").inc()
            raise

        metadata = ReservationMetadata(
            tutor_id=tutor.id,
            student_id=student_id,
            booked_by_id=principal.id,
            session_type=session_type_name,
            session_date=details.session_date,
            start_time=start_time,
            end_time=end_time,
            duration_minutes=duration_minutes,
            slot_count=slot_count,
            tutor_timezone=tutor.timezone,
            is_recurring=details.is_recurring,
            recurring_weeks=details.weeks,
            is_group_session=details.is_group_session,
            group_size=details.group_size,
            group_participants=details.group_participants,
            notes=details.notes,
            student_name=details.student_name,
            student_email=details.student_email,
        )
        reservation = await self.processor.create_reservation(
            amount=price.total_amount,
            currency=currency,
            metadata={
                "tutorId": str(tutor.id),
                "bookedById": str(principal.id),
                "studentId": str(student_id),
                "sessionDate": details.session_date.isoformat(),
                "startTime": start_time.isoformat(timespec="minutes"),
                "weeks": str(details.weeks),
            },
            idempotency_key=f"reserve:{principal.id}:{idempotency_key}",
        )

        hold_expires_at = now + timedelta(minutes=self.settings.reservation_hold_minutes)
        try:
            transaction = await self.repository.create_transaction(
                transaction_type=TransactionTypeEnum.PURCHASE,
                provider=self.processor.name,
                provider_transaction_id=reservation.reservation_id,
                payer_id=principal.id,
                tutor_id=tutor.id,
                amount=price.total_amount,
                platform_fee=price.platform_fee,
                tutor_earnings=price.tutor_earnings,
                currency=currency,
                status=TransactionStatusEnum.PENDING,
                booking_metadata=metadata.model_dump(mode="json"),
                hold_expires_at=hold_expires_at,
            )
            await self.repository.commit()
        except Exception:
            logger.exception(
                "Persisting reservation failed; cancelling processor reservation %s",
                reservation.reservation_id,
            )
            await self._cancel_orphaned_reservation(reservation.reservation_id)
            raise

        PAYMENT_RESERVATIONS_TOTAL.labels(outcome="created").inc()
        logger.info(
            "Reservation created: transaction_id=%s tutor_id=%s amount=%s weeks=%s",
            transaction.id,
            tutor.id,
            price.total_amount,
            details.weeks,
        )
        return PaymentIntentRead(
            client_secret=reservation.client_secret,
            payment_intent_id=reservation.reservation_id,
            transaction_id=transaction.id,
            amount=price.total_amount,
            currency=currency,
            hold_expires_at=hold_expires_at,
        )

    async def _cancel_orphaned_reservation(self, reservation_id: str) -> None:
        try:
            await self.processor.cancel_reservation(reservation_id)
        except Exception:
            logger.exception("Could not cancel processor reservation %s", reservation_id)


class SettlementService:
    """Applies verified processor notifications to transactions and bookings."""

    def __init__(
        self,
        repository: BillingRepository,
        booking_repository: BookingRepository,
        audit_repository: AuditRepository,
    ) -> None:
        self.repository = repository
        self.booking_repository = booking_repository
        self.audit_repository = audit_repository

    async def handle(self, event: ProcessorEvent) -> str:
        """Apply one event and return its outcome label."""
        if event.event_type == ProcessorEventType.PAYMENT_SUCCEEDED:
            outcome = await self._on_payment_succeeded(event)
        elif event.event_type == ProcessorEventType.PAYMENT_FAILED:
            outcome = await self._on_payment_failed(event)
        elif event.event_type == ProcessorEventType.REFUNDED:
            outcome = await self._on_refunded(event)
        else:
            logger.debug("Ignoring processor event %s (%s)", event.event_id, event.raw_type)
            outcome = "ignored"

        await self.repository.commit()
        SETTLEMENT_EVENTS_TOTAL.labels(event_type=event.event_type.value, outcome=outcome).inc()
        return outcome

    async def _lock_for_event(self, event: ProcessorEvent) -> PaymentTransaction | None:
        if not event.reservation_id:
            logger.warning("Processor event %s (%s) carries no reservation id", event.event_id, event.raw_type)
            return None
        transaction = await self.repository.lock_by_provider_id(event.reservation_id)
        if transaction is None:
            logger.warning(
                "Processor event %s (%s) for unknown reservation %s",
                event.event_id,
                event.raw_type,
                event.reservation_id,
            )
        return transaction

    async def _on_payment_succeeded(self, event: ProcessorEvent) -> str:
        transaction = await self._lock_for_event(event)
        if transaction is None:
            return "ignored_unknown"
        if transaction.status in (TransactionStatusEnum.COMPLETED, TransactionStatusEnum.REFUNDED):
            logger.info("Duplicate payment success for transaction %s", transaction.id)
            return "duplicate"

        await self.repository.set_transaction_status(
            transaction,
            TransactionStatusEnum.COMPLETED,
            completed_at=utc_now(),
            failure_reason=None,
        )
        await self.audit_repository.record_change(
            actor_id=None,
            event_type="billing.payment.completed",
            entity_type="payment_transaction",
            entity_id=str(transaction.id),
            payload={
                "transaction_id": str(transaction.id),
                "provider_transaction_id": transaction.provider_transaction_id,
                "amount": str(transaction.amount),
                "currency": transaction.currency,
            },
        )
        booking_ids = await self.materialize(transaction)
        return "confirmed" if booking_ids is not None else "reconciliation_required"

    async def materialize(self, transaction: PaymentTransaction) -> list[UUID] | None:
        """Insert the paid bookings atomically; flag the transaction when that fails.

        Returns the new booking ids, or None when the transaction was flagged
        for reconciliation instead.
        """
        transaction_id = transaction.id
        try:
            async with self.booking_repository.atomic():
                bookings = await self._insert_bookings(transaction)
        except Exception as exc:
            SETTLEMENT_RECONCILIATION_FAULTS_TOTAL.inc()
            logger.exception("Booking materialization failed for transaction %s", transaction_id)
            error = f"{type(exc).__name__}: {exc}"[:2000]
            await self.repository.update_transaction(
                transaction,
                reconciliation_required=True,
                reconciliation_error=error,
            )
            await self.audit_repository.record_change(
                actor_id=None,
                event_type="billing.reconciliation.required",
                entity_type="payment_transaction",
                entity_id=str(transaction_id),
                payload={"transaction_id": str(transaction_id), "error": error},
            )
            return None

        await self.repository.update_transaction(
            transaction,
            materialized_at=utc_now(),
            reconciliation_required=False,
            reconciliation_error=None,
        )
        logger.info(
            "Materialized %s booking(s) for transaction %s",
            len(bookings),
            transaction_id,
        )
        return [booking.id for booking in bookings]

    async def _insert_bookings(self, transaction: PaymentTransaction) -> list[Booking]:
        metadata = ReservationMetadata.model_validate(transaction.booking_metadata)
        weeks = metadata.weeks
        amounts = split_evenly(transaction.amount, weeks)
        fees = split_evenly(transaction.platform_fee, weeks)
        earnings = split_evenly(transaction.tutor_earnings, weeks)
        confirmed_at = utc_now()

        root_id = uuid.uuid4()
        rows = []
        for week, session_date in enumerate(occurrence_dates(metadata.session_date, weeks)):
            is_root = week == 0
            rows.append(
                {
                    "id": root_id if is_root else uuid.uuid4(),
                    "tutor_id": metadata.tutor_id,
                    "student_id": metadata.student_id,
                    "booked_by_id": metadata.booked_by_id,
                    "session_type": metadata.session_type,
                    "session_date": session_date,
                    "start_time": metadata.start_time,
                    "end_time": metadata.end_time,
                    "duration_minutes": metadata.duration_minutes,
                    "tutor_timezone": metadata.tutor_timezone,
                    "status": BookingStatusEnum.CONFIRMED,
                    "is_recurring": metadata.is_recurring,
                    "recurring_weeks": weeks,
                    "parent_booking_id": None if is_root else root_id,
                    "recurrence_instance": week + 1,
                    "is_group_session": metadata.is_group_session,
                    "group_size": metadata.group_size,
                    "group_participants": list(metadata.group_participants),
                    "amount_paid": amounts[week],
                    "platform_fee": fees[week],
                    "tutor_earnings": earnings[week],
                    "currency": transaction.currency,
                    "payment_intent_id": transaction.provider_transaction_id if is_root else None,
                    "payment_transaction_id": transaction.id if is_root else None,
                    "notes": metadata.notes,
                    "student_name": metadata.student_name,
                    "student_email": metadata.student_email,
                    "confirmed_at": confirmed_at,
                },
            )
        bookings = await self.booking_repository.create_bookings(rows)
        await self.audit_repository.record_change(
            actor_id=None,
            event_type="booking.confirmed",
            entity_type="booking",
            entity_id=str(root_id),
            payload={
                "booking_ids": [str(booking.id) for booking in bookings],
                "transaction_id": str(transaction.id),
                "tutor_id": str(metadata.tutor_id),
                "student_id": str(metadata.student_id),
                "session_date": metadata.session_date.isoformat(),
                "weeks": weeks,
            },
        )
        return bookings

    async def _on_payment_failed(self, event: ProcessorEvent) -> str:
        transaction = await self._lock_for_event(event)
        if transaction is None:
            return "ignored_unknown"
        if transaction.status == TransactionStatusEnum.FAILED:
            return "duplicate"
        if transaction.status != TransactionStatusEnum.PENDING:
            logger.warning(
                "Ignoring payment failure for transaction %s in status %s",
                transaction.id,
                transaction.status,
            )
            return "ignored"

        await self.repository.set_transaction_status(
            transaction,
            TransactionStatusEnum.FAILED,
            failure_reason=event.failure_reason,
            failed_at=utc_now(),
        )
        await self.audit_repository.record_change(
            actor_id=None,
            event_type="billing.payment.failed",
            entity_type="payment_transaction",
            entity_id=str(transaction.id),
            payload={"transaction_id": str(transaction.id), "failure_reason": event.failure_reason},
        )
        return "failed"

    async def _on_refunded(self, event: ProcessorEvent) -> str:
        transaction = await self._lock_for_event(event)
        if transaction is None:
            return "ignored_unknown"
        if event.amount_refunded is not None:
            await self.repository.update_transaction(transaction, amount_refunded=event.amount_refunded)

        if not event.fully_refunded:
            return "partially_refunded"
        if transaction.status == TransactionStatusEnum.REFUNDED:
            return "duplicate"
        if transaction.status != TransactionStatusEnum.COMPLETED:
            logger.warning(
                "Ignoring full refund for transaction %s in status %s",
                transaction.id,
                transaction.status,
            )
            return "ignored"

        now = utc_now()
        await self.repository.set_transaction_status(
            transaction,
            TransactionStatusEnum.REFUNDED,
            refunded_at=now,
        )
        cancelled_ids = []
        for booking in await self.booking_repository.list_by_transaction(transaction.id, for_update=True):
            if booking.status not in (BookingStatusEnum.PENDING, BookingStatusEnum.CONFIRMED):
                continue
            await self.booking_repository.set_booking_status(
                booking,
                BookingStatusEnum.CANCELLED,
                cancelled_at=now,
                cancellation_reason=REFUNDED_BY_PROVIDER_REASON,
            )
            cancelled_ids.append(str(booking.id))

        await self.audit_repository.record_change(
            actor_id=None,
            event_type="billing.payment.refunded",
            entity_type="payment_transaction",
            entity_id=str(transaction.id),
            payload={
                "transaction_id": str(transaction.id),
                "amount_refunded": str(transaction.amount_refunded),
                "cancelled_booking_ids": cancelled_ids,
            },
        )
        return "refunded"

    async def list_reconciliation(
        self,
        principal: Principal,
        limit: int,
        offset: int,
    ) -> tuple[list[PaymentTransaction], int]:
        if not principal.is_staff:
            raise UnauthorizedException("Only admin can view reconciliation queue")
        return await self.repository.list_reconciliation_required(limit=limit, offset=offset)

    async def rematerialize(self, transaction_id: UUID, principal: Principal) -> list[UUID]:
        """Retry booking insertion for a paid transaction that has none."""
        if not principal.is_staff:
            raise UnauthorizedException("Only admin can retry materialization")
        transaction = await self.repository.lock_transaction(transaction_id)
        if transaction is None:
            raise NotFoundException("Transaction not found")
        if transaction.status != TransactionStatusEnum.COMPLETED or transaction.materialized_at is not None:
            raise ConflictException("Only completed transactions without bookings can be materialized")

        try:
            ReservationMetadata.model_validate(transaction.booking_metadata)
        except ValidationError as exc:
            raise ConflictException("Transaction metadata cannot be turned into bookings") from exc

        booking_ids = await self.materialize(transaction)
        await self.repository.commit()
        if booking_ids is None:
            raise ConflictException("Materialization failed again; see reconciliation_error")
        logger.info("Transaction %s rematerialized by %s", transaction_id, principal.id)
        return booking_ids


async def get_reservation_service(session: AsyncSession = Depends(get_db_session)) -> ReservationService:
    """Dependency provider for reservation service."""
    return ReservationService(
        tutors_repository=TutorsRepository(session),
        identity_service=IdentityService(IdentityRepository(session)),
        scheduling_service=build_scheduling_service(session),
        repository=BillingRepository(session),
        processor=get_payment_processor(),
    )


async def get_settlement_service(session: AsyncSession = Depends(get_db_session)) -> SettlementService:
    """Dependency provider for settlement service."""
    return SettlementService(
        repository=BillingRepository(session),
        booking_repository=BookingRepository(session),
        audit_repository=AuditRepository(session),
    )
