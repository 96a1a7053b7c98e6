"""Tutors schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from tutormarket.core.enums import TutorApprovalStatusEnum


class TutorRead(BaseModel):
    """Tutor profile response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    display_name: str
    bio: str
    hourly_rate: Decimal
    timezone: str
    is_active: bool
    approval_status: TutorApprovalStatusEnum
    created_at: datetime


class SessionTypeCreate(BaseModel):
    """Create session type request."""

    name: str = Field(min_length=1, max_length=128)
    duration_minutes: int = Field(gt=0, le=480)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    description: str | None = Field(default=None, max_length=5000)
    display_order: int = 0


class SessionTypeUpdate(BaseModel):
    """Partial update of a session type."""

    name: str | None = Field(default=None, min_length=1, max_length=128)
    duration_minutes: int | None = Field(default=None, gt=0, le=480)
    price: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    description: str | None = Field(default=None, max_length=5000)
    is_active: bool | None = None
    display_order: int | None = None


class SessionTypeRead(BaseModel):
    """Session type response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tutor_id: UUID
    name: str
    duration_minutes: int
    price: Decimal
    description: str | None
    is_active: bool
    display_order: int
