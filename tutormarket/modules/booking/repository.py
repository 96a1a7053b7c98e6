"""Booking repository layer."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import Select, extract, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tutormarket.core.enums import ACTIVE_BOOKING_STATUSES, BookingStatusEnum
from tutormarket.core.transitions import BOOKING_TRANSITIONS, ensure_transition
from tutormarket.modules.booking.models import Booking

SETTLED_BOOKING_STATUSES = frozenset({BookingStatusEnum.COMPLETED, BookingStatusEnum.COMPLETED_FOR_PAYOUT})


class BookingRepository:
    """DB operations for booking domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """SAVEPOINT scope; on error only the work inside it is rolled back."""
        async with self.session.begin_nested():
            yield

    async def get_booking(self, booking_id: UUID) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id)
        return await self.session.scalar(stmt)

    async def lock_booking(self, booking_id: UUID) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id).with_for_update()
        return await self.session.scalar(stmt)

    async def list_active_on_date(self, tutor_id: UUID, session_date: date) -> list[Booking]:
        stmt = select(Booking).where(
            Booking.tutor_id == tutor_id,
            Booking.session_date == session_date,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
        return list((await self.session.scalars(stmt)).all())

    async def has_future_active_on_weekday(self, tutor_id: UUID, day_of_week: int, from_date: date) -> bool:
        # PostgreSQL dow: 0 = Sunday, matching the window convention.
        stmt = (
            select(func.count())
            .select_from(Booking)
            .where(
                Booking.tutor_id == tutor_id,
                Booking.session_date >= from_date,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                extract("dow", Booking.session_date) == day_of_week,
            )
        )
        return int((await self.session.scalar(stmt)) or 0) > 0

    async def list_by_transaction(self, transaction_id: UUID, *, for_update: bool = False) -> list[Booking]:
        """Every instance of the series paid by a purchase transaction.

        With ``for_update`` the rows are locked and reloaded, so a cancellation
        committed while waiting on the lock is visible to the caller.
        """
        root = select(Booking.id).where(Booking.payment_transaction_id == transaction_id).scalar_subquery()
        stmt = (
            select(Booking)
            .where(or_(Booking.id == root, Booking.parent_booking_id == root))
            .order_by(Booking.recurrence_instance.asc())
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return list((await self.session.scalars(stmt)).all())

    async def create_bookings(self, rows: Iterable[dict[str, Any]]) -> list[Booking]:
        bookings = []
        for values in rows:
            booking = Booking(**values)
            self.session.add(booking)
            # Flush in order: later instances reference the first one.
            await self.session.flush()
            bookings.append(booking)
        return bookings

    async def list_for_user(self, user_id: UUID, limit: int, offset: int) -> tuple[list[Booking], int]:
        base_stmt: Select[tuple[Booking]] = select(Booking).where(
            or_(Booking.booked_by_id == user_id, Booking.student_id == user_id),
        )
        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = (
            base_stmt.order_by(Booking.session_date.desc(), Booking.start_time.desc())
            .limit(limit)
            .offset(offset)
        )
        items = list((await self.session.scalars(stmt)).all())
        return items, total

    async def list_for_tutor(self, tutor_id: UUID, limit: int, offset: int) -> tuple[list[Booking], int]:
        base_stmt: Select[tuple[Booking]] = select(Booking).where(Booking.tutor_id == tutor_id)
        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = (
            base_stmt.order_by(Booking.session_date.desc(), Booking.start_time.desc())
            .limit(limit)
            .offset(offset)
        )
        items = list((await self.session.scalars(stmt)).all())
        return items, total

    async def count_by_status(self) -> dict[BookingStatusEnum, int]:
        stmt = select(Booking.status, func.count(Booking.id)).group_by(Booking.status)
        rows = (await self.session.execute(stmt)).all()
        return {status: int(count) for status, count in rows}

    async def count_upcoming(self, from_date: date) -> int:
        stmt = select(func.count(Booking.id)).where(
            Booking.session_date >= from_date,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
        return int((await self.session.scalar(stmt)) or 0)

    async def sum_settled_amounts(self) -> dict[str, Decimal]:
        """Revenue split of sessions that took place (completed or paid out)."""
        stmt = select(
            func.coalesce(func.sum(Booking.amount_paid), 0),
            func.coalesce(func.sum(Booking.platform_fee), 0),
            func.coalesce(func.sum(Booking.tutor_earnings), 0),
        ).where(Booking.status.in_(SETTLED_BOOKING_STATUSES))
        revenue, fees, earnings = (await self.session.execute(stmt)).one()
        return {
            "total_revenue": Decimal(revenue),
            "total_platform_fees": Decimal(fees),
            "total_tutor_earnings": Decimal(earnings),
        }

    async def count_distinct_participants(self) -> tuple[int, int]:
        stmt = select(
            func.count(func.distinct(Booking.tutor_id)),
            func.count(func.distinct(Booking.student_id)),
        )
        tutors, students = (await self.session.execute(stmt)).one()
        return int(tutors or 0), int(students or 0)

    async def set_booking_status(
        self,
        booking: Booking,
        status: BookingStatusEnum,
        **changes: Any,
    ) -> Booking:
        ensure_transition(BOOKING_TRANSITIONS, booking.status, status, entity="booking")
        booking.status = status
        for key, value in changes.items():
            setattr(booking, key, value)
        await self.session.flush()
        return booking
