"""Scheduling ORM models."""

from __future__ import annotations

from datetime import date, time
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, SmallInteger, String, Time, UniqueConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from tutormarket.core.database import Base, BaseModelMixin
from tutormarket.core.enums import AvailabilityExceptionTypeEnum


class AvailabilityWindow(BaseModelMixin, Base):
    """Recurring weekly time range in which a tutor is bookable."""

    __tablename__ = "availability_windows"
    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="day_of_week_range"),
        CheckConstraint("end_time > start_time", name="window_time_order"),
    )

    tutor_id: Mapped[UUID] = mapped_column(
        ForeignKey("tutors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # 0 = Sunday ... 6 = Saturday
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class AvailabilityException(BaseModelMixin, Base):
    """Date-specific override of the weekly windows."""

    __tablename__ = "availability_exceptions"
    __table_args__ = (UniqueConstraint("tutor_id", "exception_date"),)

    tutor_id: Mapped[UUID] = mapped_column(
        ForeignKey("tutors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    exception_date: Mapped[date] = mapped_column(Date, nullable=False)
    exception_type: Mapped[AvailabilityExceptionTypeEnum] = mapped_column(
        SAEnum(AvailabilityExceptionTypeEnum, name="availability_exception_type_enum", native_enum=False),
        nullable=False,
    )
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
