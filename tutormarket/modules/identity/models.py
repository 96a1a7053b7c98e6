"""Identity ORM models."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import Boolean, Enum as SAEnum, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tutormarket.core.database import Base, BaseModelMixin
from tutormarket.core.enums import RoleEnum


class User(BaseModelMixin, Base):
    """Projection of an account owned by the identity provider."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    role: Mapped[RoleEnum] = mapped_column(
        SAEnum(RoleEnum, name="role_enum", native_enum=False),
        default=RoleEnum.PERSONAL,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_child_managed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class UserRelationship(BaseModelMixin, Base):
    """Parent/child link between two accounts."""

    __tablename__ = "user_relationships"
    __table_args__ = (UniqueConstraint("parent_user_id", "child_user_id"),)

    parent_user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    child_user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    relationship_type: Mapped[str] = mapped_column(String(32), default="parent", nullable=False)
