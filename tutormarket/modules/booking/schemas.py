"""Booking schemas."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from tutormarket.core.enums import BookingStatusEnum


class BookingCancelRequest(BaseModel):
    """Cancel booking request."""

    reason: str | None = Field(default=None, max_length=512)


class BookingRead(BaseModel):
    """Booking response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tutor_id: UUID
    student_id: UUID
    booked_by_id: UUID
    session_type: str | None
    session_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    tutor_timezone: str
    status: BookingStatusEnum
    is_recurring: bool
    recurring_weeks: int
    parent_booking_id: UUID | None
    recurrence_instance: int
    is_group_session: bool
    group_size: int
    group_participants: list[str]
    amount_paid: Decimal
    platform_fee: Decimal
    tutor_earnings: Decimal
    currency: str
    refund_amount: Decimal | None
    notes: str | None
    student_name: str | None
    confirmed_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    completed_at: datetime | None
    no_show_at: datetime | None
    created_at: datetime
    updated_at: datetime


class BookingStatsRead(BaseModel):
    """Marketplace-wide booking totals (admin)."""

    status_counts: dict[BookingStatusEnum, int]
    upcoming_bookings: int
    total_revenue: Decimal
    total_platform_fees: Decimal
    total_tutor_earnings: Decimal
    active_tutors: int
    total_students: int
