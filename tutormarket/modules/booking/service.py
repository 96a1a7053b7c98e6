"""Booking business logic layer."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.database import get_db_session
from tutormarket.core.enums import (
    BookingStatusEnum,
    RefundStatusEnum,
    TransactionStatusEnum,
    TransactionTypeEnum,
)
from tutormarket.core.metrics import REFUNDS_TOTAL
from tutormarket.modules.audit.repository import AuditRepository
from tutormarket.modules.billing.processor import PaymentProcessor, get_payment_processor
from tutormarket.modules.billing.repository import BillingRepository
from tutormarket.modules.billing.schemas import CancellationRead
from tutormarket.modules.booking.models import Booking
from tutormarket.modules.booking.refund_policy import hours_until, refund_amount, refund_percentage
from tutormarket.modules.booking.repository import BookingRepository
from tutormarket.modules.booking.schemas import BookingStatsRead
from tutormarket.modules.identity.service import Principal
from tutormarket.modules.tutors.repository import TutorsRepository
from tutormarket.shared.exceptions import (
    BusinessRuleException,
    ConflictException,
    NotFoundException,
    UnauthorizedException,
)
from tutormarket.shared.utils import session_start_utc, utc_now

logger = logging.getLogger(__name__)


class BookingService:
    """Booking domain service."""

    def __init__(
        self,
        booking_repository: BookingRepository,
        billing_repository: BillingRepository,
        tutors_repository: TutorsRepository,
        audit_repository: AuditRepository,
        processor: PaymentProcessor,
    ) -> None:
        self.booking_repository = booking_repository
        self.billing_repository = billing_repository
        self.tutors_repository = tutors_repository
        self.audit_repository = audit_repository
        self.processor = processor

    async def _is_tutor_owner(self, booking: Booking, principal: Principal) -> bool:
        tutor = await self.tutors_repository.get_tutor(booking.tutor_id)
        return tutor is not None and tutor.user_id == principal.id

    async def _ensure_can_view(self, booking: Booking, principal: Principal) -> None:
        if principal.is_staff or principal.id in (booking.booked_by_id, booking.student_id):
            return
        if await self._is_tutor_owner(booking, principal):
            return
        raise UnauthorizedException("Access denied")

    async def _ensure_can_attest(self, booking: Booking, principal: Principal) -> None:
        if principal.is_staff or await self._is_tutor_owner(booking, principal):
            return
        raise UnauthorizedException("Only the tutor or admin can update session outcome")

    async def _lock_existing(self, booking_id: UUID) -> Booking:
        booking = await self.booking_repository.lock_booking(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found")
        return booking

    async def get_booking(self, booking_id: UUID, principal: Principal) -> Booking:
        booking = await self.booking_repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found")
        await self._ensure_can_view(booking, principal)
        return booking

    async def list_my_bookings(
        self,
        principal: Principal,
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        """List bookings the caller made or attends."""
        return await self.booking_repository.list_for_user(principal.id, limit=limit, offset=offset)

    async def list_tutor_bookings(
        self,
        principal: Principal,
        tutor_id: UUID | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        """List bookings of a tutor's calendar; defaults to the caller's own profile."""
        if tutor_id is None:
            tutor = await self.tutors_repository.get_tutor_by_user_id(principal.id)
            if tutor is None:
                raise NotFoundException("Tutor profile not found")
        else:
            tutor = await self.tutors_repository.get_tutor(tutor_id)
            if tutor is None:
                raise NotFoundException("Tutor not found")
            if not principal.is_staff and tutor.user_id != principal.id:
                raise UnauthorizedException("Only the tutor or admin can view these bookings")
        return await self.booking_repository.list_for_tutor(tutor.id, limit=limit, offset=offset)

    async def get_booking_stats(self, principal: Principal) -> BookingStatsRead:
        if not principal.is_staff:
            raise UnauthorizedException("Only admin can view booking statistics")
        status_counts = await self.booking_repository.count_by_status()
        upcoming = await self.booking_repository.count_upcoming(utc_now().date())
        amounts = await self.booking_repository.sum_settled_amounts()
        active_tutors, total_students = await self.booking_repository.count_distinct_participants()
        return BookingStatsRead(
            status_counts={status: status_counts.get(status, 0) for status in BookingStatusEnum},
            upcoming_bookings=upcoming,
            active_tutors=active_tutors,
            total_students=total_students,
            **amounts,
        )

    async def _resolve_payment_intent(self, booking: Booking) -> str | None:
        if booking.payment_intent_id:
            return booking.payment_intent_id
        if booking.parent_booking_id is None:
            return None
        parent = await self.booking_repository.get_booking(booking.parent_booking_id)
        return parent.payment_intent_id if parent is not None else None

    async def cancel_booking(
        self,
        booking_id: UUID,
        principal: Principal,
        reason: str | None,
    ) -> CancellationRead:
        """Cancel a booking and refund it on the time-tiered policy.

        The refund is requested from the processor before the booking changes;
        when the processor refuses, the booking stays as it was.
        """
        booking = await self._lock_existing(booking_id)
        if not principal.is_staff and principal.id != booking.booked_by_id:
            raise UnauthorizedException("Only the booker or admin can cancel this booking")

        if booking.status == BookingStatusEnum.CANCELLED:
            raise ConflictException("Booking is already cancelled")
        if booking.status not in (BookingStatusEnum.PENDING, BookingStatusEnum.CONFIRMED):
            raise ConflictException(f"Cannot cancel a booking in status {booking.status}")

        now = utc_now()
        starts_at = session_start_utc(booking.session_date, booking.start_time, booking.tutor_timezone)
        percentage = refund_percentage(hours_until(starts_at, now))
        payment_intent_id = await self._resolve_payment_intent(booking)

        if payment_intent_id is None:
            await self._mark_cancelled(booking, principal, reason, now, refund=Decimal("0.00"))
            await self.billing_repository.commit()
            return CancellationRead(
                booking_id=booking.id,
                refund_amount=Decimal("0.00"),
                refund_percentage=percentage,
                refund_status=RefundStatusEnum.NONE,
            )

        amount = refund_amount(booking.amount_paid, percentage)
        try:
            refund = await self.processor.issue_refund(
                reservation_id=payment_intent_id,
                amount=amount,
                metadata={
                    "bookingId": str(booking.id),
                    "cancelledBy": str(principal.id),
                    "cancellationReason": reason or "",
                },
                idempotency_key=f"refund:{booking.id}",
            )
        except Exception:
            REFUNDS_TOTAL.labels(outcome="failed").inc()
            logger.warning("Refund failed for booking %s", booking.id)
            raise

        await self._mark_cancelled(booking, principal, reason, now, refund=amount, refund_id=refund.refund_id)
        purchase = await self.billing_repository.get_by_provider_id(payment_intent_id)
        await self.billing_repository.create_transaction(
            transaction_type=TransactionTypeEnum.REFUND,
            provider=self.processor.name,
            provider_transaction_id=refund.refund_id,
            payer_id=booking.booked_by_id,
            tutor_id=booking.tutor_id,
            amount=amount,
            platform_fee=Decimal("0.00"),
            tutor_earnings=Decimal("0.00"),
            currency=booking.currency,
            status=TransactionStatusEnum.COMPLETED,
            booking_metadata={"booking_id": str(booking.id), "refund_percentage": percentage},
            related_transaction_id=purchase.id if purchase is not None else None,
            booking_id=booking.id,
            completed_at=now,
        )
        await self.billing_repository.commit()

        REFUNDS_TOTAL.labels(outcome="succeeded").inc()
        logger.info(
            "Booking %s cancelled with refund %s (%s%%), refund_id=%s",
            booking.id,
            amount,
            percentage,
            refund.refund_id,
        )
        refund_status = RefundStatusEnum.SUCCEEDED if refund.status == "succeeded" else RefundStatusEnum.PENDING
        return CancellationRead(
            booking_id=booking.id,
            refund_amount=amount,
            refund_percentage=percentage,
            refund_status=refund_status,
            refund_id=refund.refund_id,
        )

    async def _mark_cancelled(
        self,
        booking: Booking,
        principal: Principal,
        reason: str | None,
        now: datetime,
        *,
        refund: Decimal,
        refund_id: str | None = None,
    ) -> None:
        await self.booking_repository.set_booking_status(
            booking,
            BookingStatusEnum.CANCELLED,
            cancelled_at=now,
            cancelled_by_id=principal.id,
            cancellation_reason=reason,
            refund_amount=refund,
        )
        await self.audit_repository.record_change(
            actor_id=principal.id,
            event_type="booking.cancelled",
            entity_type="booking",
            entity_id=str(booking.id),
            payload={
                "booking_id": str(booking.id),
                "tutor_id": str(booking.tutor_id),
                "student_id": str(booking.student_id),
                "refund_amount": str(refund),
                "refund_id": refund_id,
                "reason": reason,
            },
        )

    async def complete_booking(self, booking_id: UUID, principal: Principal) -> Booking:
        """Mark a confirmed session as held once it has ended."""
        booking = await self._lock_existing(booking_id)
        await self._ensure_can_attest(booking, principal)
        if booking.status != BookingStatusEnum.CONFIRMED:
            raise ConflictException(f"Cannot complete a booking in status {booking.status}")

        now = utc_now()
        ends_at = session_start_utc(booking.session_date, booking.end_time, booking.tutor_timezone)
        if ends_at > now:
            raise BusinessRuleException("Session has not ended yet")

        await self.booking_repository.set_booking_status(booking, BookingStatusEnum.COMPLETED, completed_at=now)
        await self.audit_repository.record_change(
            actor_id=principal.id,
            event_type="booking.completed",
            entity_type="booking",
            entity_id=str(booking.id),
            payload={"booking_id": str(booking.id), "tutor_id": str(booking.tutor_id)},
        )
        return booking

    async def mark_no_show(self, booking_id: UUID, principal: Principal) -> Booking:
        """Record a missed session and release it for tutor payout."""
        booking = await self._lock_existing(booking_id)
        await self._ensure_can_attest(booking, principal)
        if booking.status != BookingStatusEnum.CONFIRMED:
            raise ConflictException(f"Cannot mark no-show for a booking in status {booking.status}")

        now = utc_now()
        ends_at = session_start_utc(booking.session_date, booking.end_time, booking.tutor_timezone)
        if ends_at > now:
            raise BusinessRuleException("Session has not ended yet")

        await self.booking_repository.set_booking_status(booking, BookingStatusEnum.NO_SHOW, no_show_at=now)
        await self.audit_repository.record_change(
            actor_id=principal.id,
            event_type="booking.no_show",
            entity_type="booking",
            entity_id=str(booking.id),
            payload={"booking_id": str(booking.id), "tutor_id": str(booking.tutor_id)},
        )
        await self.booking_repository.set_booking_status(
            booking,
            BookingStatusEnum.COMPLETED_FOR_PAYOUT,
            completed_at=now,
        )
        await self.audit_repository.record_change(
            actor_id=principal.id,
            event_type="booking.completed_for_payout",
            entity_type="booking",
            entity_id=str(booking.id),
            payload={"booking_id": str(booking.id), "tutor_id": str(booking.tutor_id)},
        )
        return booking


def build_booking_service(session: AsyncSession) -> BookingService:
    return BookingService(
        booking_repository=BookingRepository(session),
        billing_repository=BillingRepository(session),
        tutors_repository=TutorsRepository(session),
        audit_repository=AuditRepository(session),
        processor=get_payment_processor(),
    )


async def get_booking_service(session: AsyncSession = Depends(get_db_session)) -> BookingService:
    """Dependency provider for booking service."""
    return build_booking_service(session)
