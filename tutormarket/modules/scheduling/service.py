"""Scheduling business logic layer."""

from __future__ import annotations

import logging
from datetime import date, datetime
from uuid import UUID

from fastapi import Depends
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.config import Settings, get_settings
from tutormarket.core.database import get_db_session
from tutormarket.core.enums import AvailabilityExceptionTypeEnum
from tutormarket.modules.billing.repository import BillingRepository
from tutormarket.modules.billing.schemas import ReservationMetadata
from tutormarket.modules.booking.repository import BookingRepository
from tutormarket.modules.identity.service import Principal
from tutormarket.modules.scheduling.models import AvailabilityException, AvailabilityWindow
from tutormarket.modules.scheduling.repository import SchedulingRepository
from tutormarket.modules.scheduling.resolver import (
    Interval,
    Slot,
    day_of_week,
    interval_of,
    occurrence_dates,
    resolve_slots,
)
from tutormarket.modules.scheduling.schemas import ExceptionCreate, WindowCreate, WindowUpdate
from tutormarket.modules.tutors.models import Tutor
from tutormarket.modules.tutors.repository import TutorsRepository
from tutormarket.modules.tutors.service import ensure_can_manage_tutor
from tutormarket.shared.exceptions import (
    ConflictException,
    NotFoundException,
    ValidationException,
)
from tutormarket.shared.utils import utc_now

logger = logging.getLogger(__name__)


class SchedulingService:
    """Availability windows, exceptions and free-slot resolution."""

    def __init__(
        self,
        repository: SchedulingRepository,
        tutors_repository: TutorsRepository,
        booking_repository: BookingRepository,
        billing_repository: BillingRepository,
        settings: Settings | None = None,
    ) -> None:
        self.repository = repository
        self.tutors_repository = tutors_repository
        self.booking_repository = booking_repository
        self.billing_repository = billing_repository
        self.settings = settings or get_settings()

    async def _get_tutor(self, tutor_id: UUID) -> Tutor:
        tutor = await self.tutors_repository.get_tutor(tutor_id)
        if tutor is None:
            raise NotFoundException("Tutor not found")
        return tutor

    async def _get_managed_tutor(self, tutor_id: UUID, principal: Principal, *, lock: bool = False) -> Tutor:
        if lock:
            tutor = await self.tutors_repository.lock_tutor(tutor_id)
        else:
            tutor = await self.tutors_repository.get_tutor(tutor_id)
        if tutor is None:
            raise NotFoundException("Tutor not found")
        ensure_can_manage_tutor(principal, tutor)
        return tutor

    def validate_duration(self, duration_minutes: int) -> None:
        low = self.settings.min_session_duration_minutes
        high = self.settings.max_session_duration_minutes
        if not low <= duration_minutes <= high:
            raise ValidationException(f"Duration must be between {low} and {high} minutes")

    async def busy_intervals(
        self,
        tutor_id: UUID,
        on_date: date,
        *,
        now: datetime | None = None,
    ) -> list[Interval]:
        """Intervals already claimed on a date by bookings and live reservation holds."""
        busy = [
            interval_of(booking.start_time, booking.end_time)
            for booking in await self.booking_repository.list_active_on_date(tutor_id, on_date)
        ]
        for transaction in await self.billing_repository.list_live_holds(tutor_id, now or utc_now()):
            try:
                metadata = ReservationMetadata.model_validate(transaction.booking_metadata)
            except ValidationError:
                logger.warning(
                    "Ignoring hold with unreadable metadata: transaction_id=%s",
                    transaction.id,
                )
                continue
            if on_date in occurrence_dates(metadata.session_date, metadata.weeks):
                busy.append(interval_of(metadata.start_time, metadata.end_time))
        return busy

    async def resolve_free_slots(
        self,
        tutor: Tutor,
        on_date: date,
        duration_minutes: int,
        *,
        now: datetime | None = None,
    ) -> list[Slot]:
        """Free slots for an already loaded tutor."""
        exception = await self.repository.get_exception_for_date(tutor.id, on_date)
        windows: list[AvailabilityWindow] = []
        if exception is None:
            windows = await self.repository.list_windows(tutor.id, day_of_week=day_of_week(on_date))
        busy = await self.busy_intervals(tutor.id, on_date, now=now)
        return resolve_slots(
            windows,
            exception,
            busy,
            duration_minutes=duration_minutes,
            tick_minutes=self.settings.slot_tick_minutes,
        )

    async def get_free_slots(self, tutor_id: UUID, on_date: date, duration_minutes: int) -> tuple[Tutor, list[Slot]]:
        """Free slots of a bookable tutor for a date and session length."""
        self.validate_duration(duration_minutes)
        tutor = await self.tutors_repository.get_tutor(tutor_id)
        if tutor is None or not tutor.is_bookable:
            raise NotFoundException("Tutor not found or inactive")
        return tutor, await self.resolve_free_slots(tutor, on_date, duration_minutes)

    async def list_windows(self, tutor_id: UUID, *, include_inactive: bool = False) -> list[AvailabilityWindow]:
        await self._get_tutor(tutor_id)
        return await self.repository.list_windows(tutor_id, active_only=not include_inactive)

    async def create_window(self, tutor_id: UUID, payload: WindowCreate, principal: Principal) -> AvailabilityWindow:
        """Add a weekly window; overlapping active windows on the same day are refused."""
        tutor = await self._get_managed_tutor(tutor_id, principal, lock=True)
        overlapping = await self.repository.find_overlapping_window(
            tutor.id,
            payload.day_of_week,
            payload.start_time,
            payload.end_time,
        )
        if overlapping is not None:
            raise ConflictException("This time slot overlaps with an existing availability block")
        return await self.repository.create_window(
            tutor.id,
            day_of_week=payload.day_of_week,
            start_time=payload.start_time,
            end_time=payload.end_time,
            is_active=True,
        )

    async def update_window(
        self,
        tutor_id: UUID,
        window_id: UUID,
        payload: WindowUpdate,
        principal: Principal,
    ) -> AvailabilityWindow:
        tutor = await self._get_managed_tutor(tutor_id, principal, lock=True)
        window = await self.repository.get_window(window_id)
        if window is None or window.tutor_id != tutor.id:
            raise NotFoundException("Availability window not found")

        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            raise ValidationException("No fields to update")

        start_time = changes.get("start_time", window.start_time)
        end_time = changes.get("end_time", window.end_time)
        if end_time <= start_time:
            raise ValidationException("end_time must be after start_time")

        if changes.get("is_active", window.is_active):
            overlapping = await self.repository.find_overlapping_window(
                tutor.id,
                window.day_of_week,
                start_time,
                end_time,
                exclude_id=window.id,
            )
            if overlapping is not None:
                raise ConflictException("This time slot overlaps with an existing availability block")
        return await self.repository.update_window(window, **changes)

    async def delete_window(self, tutor_id: UUID, window_id: UUID, principal: Principal) -> None:
        """Hard-delete a window unless upcoming bookings still fall on its weekday."""
        tutor = await self._get_managed_tutor(tutor_id, principal, lock=True)
        window = await self.repository.get_window(window_id)
        if window is None or window.tutor_id != tutor.id:
            raise NotFoundException("Availability window not found")

        if await self.booking_repository.has_future_active_on_weekday(
            tutor.id,
            window.day_of_week,
            utc_now().date(),
        ):
            raise ConflictException(
                "Upcoming bookings exist on this weekday; deactivate the window instead",
            )
        await self.repository.delete_window(window)

    async def list_exceptions(self, tutor_id: UUID, principal: Principal) -> list[AvailabilityException]:
        tutor = await self._get_managed_tutor(tutor_id, principal)
        return await self.repository.list_exceptions(tutor.id)

    async def create_exception(
        self,
        tutor_id: UUID,
        payload: ExceptionCreate,
        principal: Principal,
    ) -> AvailabilityException:
        """Add a date override; at most one per tutor and date."""
        if payload.exception_type == AvailabilityExceptionTypeEnum.CUSTOM_HOURS:
            if payload.start_time is None or payload.end_time is None:
                raise ValidationException("Custom hours require start_time and end_time")
            if payload.end_time <= payload.start_time:
                raise ValidationException("end_time must be after start_time")

        tutor = await self._get_managed_tutor(tutor_id, principal)
        existing = await self.repository.get_exception_for_date(tutor.id, payload.exception_date)
        if existing is not None:
            raise ConflictException("An exception already exists for this date")

        is_custom = payload.exception_type == AvailabilityExceptionTypeEnum.CUSTOM_HOURS
        return await self.repository.create_exception(
            tutor.id,
            exception_date=payload.exception_date,
            exception_type=payload.exception_type,
            start_time=payload.start_time if is_custom else None,
            end_time=payload.end_time if is_custom else None,
            reason=payload.reason,
        )

    async def delete_exception(self, tutor_id: UUID, exception_id: UUID, principal: Principal) -> None:
        tutor = await self._get_managed_tutor(tutor_id, principal)
        exception = await self.repository.get_exception(exception_id)
        if exception is None or exception.tutor_id != tutor.id:
            raise NotFoundException("Availability exception not found")
        await self.repository.delete_exception(exception)


def build_scheduling_service(session: AsyncSession) -> SchedulingService:
    return SchedulingService(
        repository=SchedulingRepository(session),
        tutors_repository=TutorsRepository(session),
        booking_repository=BookingRepository(session),
        billing_repository=BillingRepository(session),
    )


async def get_scheduling_service(session: AsyncSession = Depends(get_db_session)) -> SchedulingService:
    """Dependency provider for scheduling service."""
    return build_scheduling_service(session)
