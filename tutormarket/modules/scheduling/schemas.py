"""Scheduling schemas."""

from __future__ import annotations

from datetime import date, time
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tutormarket.core.enums import AvailabilityExceptionTypeEnum


class WindowCreate(BaseModel):
    """Create weekly availability window request."""

    day_of_week: int = Field(ge=0, le=6, description="0 = Sunday")
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def validate_order(self) -> "WindowCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class WindowUpdate(BaseModel):
    """Partial update of a weekly window."""

    start_time: time | None = None
    end_time: time | None = None
    is_active: bool | None = None


class WindowRead(BaseModel):
    """Weekly window response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tutor_id: UUID
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool


class ExceptionCreate(BaseModel):
    """Create date-specific availability override."""

    exception_date: date
    exception_type: AvailabilityExceptionTypeEnum
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = Field(default=None, max_length=255)


class ExceptionRead(BaseModel):
    """Availability exception response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tutor_id: UUID
    exception_date: date
    exception_type: AvailabilityExceptionTypeEnum
    start_time: time | None
    end_time: time | None
    reason: str | None


class SlotRead(BaseModel):
    start_time: time
    end_time: time


class SlotsRead(BaseModel):
    """Free slots of a tutor for one date."""

    tutor_id: UUID
    session_date: date
    duration_minutes: int
    timezone: str
    slots: list[SlotRead]
