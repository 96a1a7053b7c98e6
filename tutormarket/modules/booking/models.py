"""Booking ORM models."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, Date, DateTime, Enum as SAEnum, ForeignKey, Integer, Numeric, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column

from tutormarket.core.database import Base, BaseModelMixin, JSONType
from tutormarket.core.enums import BookingStatusEnum


class Booking(BaseModelMixin, Base):
    """Settled session; one row per recurrence instance."""

    __tablename__ = "bookings"

    tutor_id: Mapped[UUID] = mapped_column(ForeignKey("tutors.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    booked_by_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    session_type: Mapped[str | None] = mapped_column(String(128), nullable=True)

    session_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    tutor_timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)

    status: Mapped[BookingStatusEnum] = mapped_column(
        SAEnum(BookingStatusEnum, name="booking_status_enum", native_enum=False),
        default=BookingStatusEnum.PENDING,
        nullable=False,
        index=True,
    )

    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_weeks: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    parent_booking_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("bookings.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    recurrence_instance: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    is_group_session: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    group_size: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    group_participants: Mapped[list[Any]] = mapped_column(JSONType, default=list, nullable=False)

    amount_paid: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tutor_earnings: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd", nullable=False)
    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    payment_transaction_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payment_transactions.id", ondelete="RESTRICT"),
        unique=True,
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    student_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    student_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    no_show_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def series_root_id(self) -> UUID:
        """Id of the first instance of the recurring series (self for one-off bookings)."""
        return self.parent_booking_id or self.id
