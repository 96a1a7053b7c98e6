"""Tutors ORM models."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Enum as SAEnum, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tutormarket.core.database import Base, BaseModelMixin
from tutormarket.core.enums import TutorApprovalStatusEnum


class Tutor(BaseModelMixin, Base):
    """Tutor profile linked to a user account."""

    __tablename__ = "tutors"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    bio: Mapped[str] = mapped_column(Text, default="", nullable=False)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    approval_status: Mapped[TutorApprovalStatusEnum] = mapped_column(
        SAEnum(TutorApprovalStatusEnum, name="tutor_approval_status_enum", native_enum=False),
        default=TutorApprovalStatusEnum.PENDING,
        nullable=False,
    )

    session_types: Mapped[list["SessionType"]] = relationship(
        back_populates="tutor",
        cascade="all, delete-orphan",
        order_by="SessionType.display_order",
    )

    @property
    def is_bookable(self) -> bool:
        return self.is_active and self.approval_status == TutorApprovalStatusEnum.APPROVED


class SessionType(BaseModelMixin, Base):
    """Priced session offering of a tutor."""

    __tablename__ = "session_types"
    __table_args__ = (UniqueConstraint("tutor_id", "name"),)

    tutor_id: Mapped[UUID] = mapped_column(ForeignKey("tutors.id", ondelete="CASCADE"), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    tutor: Mapped[Tutor] = relationship(back_populates="session_types")
