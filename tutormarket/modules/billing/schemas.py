"""Billing schemas."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from tutormarket.core.enums import RefundStatusEnum, TransactionStatusEnum, TransactionTypeEnum


class BookingDetails(BaseModel):
    """Session requested by the client; trusted only after re-validation."""

    tutor_id: UUID
    session_date: date
    time_slots: list[time] = Field(min_length=1, max_length=12)
    session_type_id: UUID | None = None
    student_id: UUID | None = None
    student_name: str | None = Field(default=None, max_length=255)
    student_email: EmailStr | None = None
    notes: str | None = Field(default=None, max_length=2000)
    is_group_session: bool = False
    group_size: int = Field(default=1, ge=1)
    group_participants: list[str] = Field(default_factory=list, max_length=50)
    is_recurring: bool = False
    recurring_weeks: int = Field(default=1, ge=1)

    @field_validator("time_slots")
    @classmethod
    def sort_time_slots(cls, value: list[time]) -> list[time]:
        if len(set(value)) != len(value):
            raise ValueError("time_slots must not contain duplicates")
        return sorted(value)

    @model_validator(mode="after")
    def normalize_flags(self) -> "BookingDetails":
        if not self.is_recurring:
            self.recurring_weeks = 1
        if not self.is_group_session:
            self.group_size = 1
        return self

    @property
    def weeks(self) -> int:
        return self.recurring_weeks if self.is_recurring else 1


class QuoteRequest(BaseModel):
    """Price computation request."""

    tutor_id: UUID
    session_type_id: UUID | None = None
    slot_count: int = Field(default=1, ge=1, le=12)
    is_group_session: bool = False
    group_size: int = Field(default=1, ge=1)
    is_recurring: bool = False
    recurring_weeks: int = Field(default=1, ge=1)


class QuoteRead(BaseModel):
    """Server-side price breakdown."""

    tutor_id: UUID
    base_price: Decimal
    slot_count: int
    session_price: Decimal
    total_amount: Decimal
    platform_fee: Decimal
    tutor_earnings: Decimal
    currency: str


class CreatePaymentIntentRequest(BaseModel):
    """Reservation intake request."""

    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    booking_details: BookingDetails


class PaymentIntentRead(BaseModel):
    """Reservation handle returned to the client."""

    client_secret: str | None
    payment_intent_id: str
    transaction_id: UUID
    amount: Decimal
    currency: str
    hold_expires_at: datetime


class ReservationMetadata(BaseModel):
    """Normalized booking request stored on a pending purchase transaction."""

    tutor_id: UUID
    student_id: UUID
    booked_by_id: UUID
    session_type: str | None = None
    session_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    slot_count: int
    tutor_timezone: str = "UTC"
    is_recurring: bool = False
    recurring_weeks: int = 1
    is_group_session: bool = False
    group_size: int = 1
    group_participants: list[str] = Field(default_factory=list)
    notes: str | None = None
    student_name: str | None = None
    student_email: str | None = None

    @property
    def weeks(self) -> int:
        return self.recurring_weeks if self.is_recurring else 1


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment processor."""

    received: bool = True
    event_type: str
    outcome: str


class RefundRequest(BaseModel):
    """Cancel a booking and refund it according to the refund policy."""

    booking_id: UUID
    reason: str | None = Field(default=None, max_length=512)


class CancellationRead(BaseModel):
    """Outcome of a cancellation."""

    booking_id: UUID
    refund_amount: Decimal
    refund_percentage: int
    refund_status: RefundStatusEnum
    refund_id: str | None = None


class TransactionRead(BaseModel):
    """Payment transaction response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transaction_type: TransactionTypeEnum
    provider: str
    provider_transaction_id: str
    payer_id: UUID
    tutor_id: UUID
    amount: Decimal
    platform_fee: Decimal
    tutor_earnings: Decimal
    currency: str
    status: TransactionStatusEnum
    failure_reason: str | None
    amount_refunded: Decimal
    hold_expires_at: datetime | None
    materialized_at: datetime | None
    reconciliation_required: bool
    reconciliation_error: str | None
    completed_at: datetime | None
    created_at: datetime


class MaterializeResult(BaseModel):
    transaction_id: UUID
    booking_ids: list[UUID]
