"""Billing ORM models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from tutormarket.core.database import Base, BaseModelMixin, JSONType
from tutormarket.core.enums import TransactionStatusEnum, TransactionTypeEnum


class PaymentTransaction(BaseModelMixin, Base):
    """Processor-side money movement and the booking request it pays for."""

    __tablename__ = "payment_transactions"

    transaction_type: Mapped[TransactionTypeEnum] = mapped_column(
        SAEnum(TransactionTypeEnum, name="transaction_type_enum", native_enum=False),
        default=TransactionTypeEnum.PURCHASE,
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(String(32), default="stripe", nullable=False)
    provider_transaction_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    payer_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    tutor_id: Mapped[UUID] = mapped_column(ForeignKey("tutors.id", ondelete="RESTRICT"), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tutor_earnings: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd", nullable=False)
    status: Mapped[TransactionStatusEnum] = mapped_column(
        SAEnum(TransactionStatusEnum, name="transaction_status_enum", native_enum=False),
        default=TransactionStatusEnum.PENDING,
        nullable=False,
        index=True,
    )
    # Serialized booking request; the column is named "metadata" in the schema.
    booking_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount_refunded: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)

    hold_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    materialized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reconciliation_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    reconciliation_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    related_transaction_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payment_transactions.id", ondelete="SET NULL"),
        nullable=True,
    )
    booking_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("bookings.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
    )

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
