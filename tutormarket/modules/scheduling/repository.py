"""Scheduling repository layer."""

from __future__ import annotations

from datetime import date, time
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.modules.scheduling.models import AvailabilityException, AvailabilityWindow
from tutormarket.shared.exceptions import ConflictException


class SchedulingRepository:
    """DB access for scheduling domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_windows(
        self,
        tutor_id: UUID,
        *,
        day_of_week: int | None = None,
        active_only: bool = True,
    ) -> list[AvailabilityWindow]:
        stmt = select(AvailabilityWindow).where(AvailabilityWindow.tutor_id == tutor_id)
        if day_of_week is not None:
            stmt = stmt.where(AvailabilityWindow.day_of_week == day_of_week)
        if active_only:
            stmt = stmt.where(AvailabilityWindow.is_active.is_(True))
        stmt = stmt.order_by(AvailabilityWindow.day_of_week.asc(), AvailabilityWindow.start_time.asc())
        return list((await self.session.scalars(stmt)).all())

    async def get_window(self, window_id: UUID) -> AvailabilityWindow | None:
        stmt = select(AvailabilityWindow).where(AvailabilityWindow.id == window_id)
        return await self.session.scalar(stmt)

    async def find_overlapping_window(
        self,
        tutor_id: UUID,
        day_of_week: int,
        start_time: time,
        end_time: time,
        *,
        exclude_id: UUID | None = None,
    ) -> AvailabilityWindow | None:
        stmt = select(AvailabilityWindow).where(
            AvailabilityWindow.tutor_id == tutor_id,
            AvailabilityWindow.day_of_week == day_of_week,
            AvailabilityWindow.is_active.is_(True),
            AvailabilityWindow.start_time < end_time,
            AvailabilityWindow.end_time > start_time,
        )
        if exclude_id is not None:
            stmt = stmt.where(AvailabilityWindow.id != exclude_id)
        return await self.session.scalar(stmt.limit(1))

    async def create_window(self, tutor_id: UUID, **values: Any) -> AvailabilityWindow:
        window = AvailabilityWindow(tutor_id=tutor_id, **values)
        self.session.add(window)
        await self.session.flush()
        return window

    async def update_window(self, window: AvailabilityWindow, **changes: Any) -> AvailabilityWindow:
        for key, value in changes.items():
            setattr(window, key, value)
        await self.session.flush()
        return window

    async def delete_window(self, window: AvailabilityWindow) -> None:
        await self.session.delete(window)
        await self.session.flush()

    async def get_exception_for_date(self, tutor_id: UUID, exception_date: date) -> AvailabilityException | None:
        stmt = select(AvailabilityException).where(
            AvailabilityException.tutor_id == tutor_id,
            AvailabilityException.exception_date == exception_date,
        )
        return await self.session.scalar(stmt)

    async def get_exception(self, exception_id: UUID) -> AvailabilityException | None:
        stmt = select(AvailabilityException).where(AvailabilityException.id == exception_id)
        return await self.session.scalar(stmt)

    async def list_exceptions(self, tutor_id: UUID, from_date: date | None = None) -> list[AvailabilityException]:
        stmt = select(AvailabilityException).where(AvailabilityException.tutor_id == tutor_id)
        if from_date is not None:
            stmt = stmt.where(AvailabilityException.exception_date >= from_date)
        stmt = stmt.order_by(AvailabilityException.exception_date.asc())
        return list((await self.session.scalars(stmt)).all())

    async def create_exception(self, tutor_id: UUID, **values: Any) -> AvailabilityException:
        exception = AvailabilityException(tutor_id=tutor_id, **values)
        self.session.add(exception)
        try:
            async with self.session.begin_nested():
                await self.session.flush()
        except IntegrityError as exc:
            raise ConflictException("An exception already exists for this date") from exc
        return exception

    async def delete_exception(self, exception: AvailabilityException) -> None:
        await self.session.delete(exception)
        await self.session.flush()
