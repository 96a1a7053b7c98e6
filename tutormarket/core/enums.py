"""Core enums used across modules."""

from enum import StrEnum


class RoleEnum(StrEnum):
    """System roles."""

    PERSONAL = "personal"
    PARENT = "parent"
    TUTOR = "tutor"
    ADMIN = "admin"
    OWNER = "owner"


STAFF_ROLES = frozenset({RoleEnum.ADMIN, RoleEnum.OWNER})


class TutorApprovalStatusEnum(StrEnum):
    """Tutor profile moderation status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AvailabilityExceptionTypeEnum(StrEnum):
    """Date-specific availability override kind."""

    UNAVAILABLE = "unavailable"
    CUSTOM_HOURS = "custom_hours"


class BookingStatusEnum(StrEnum):
    """Booking lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    COMPLETED_FOR_PAYOUT = "completed_for_payout"


ACTIVE_BOOKING_STATUSES = frozenset({BookingStatusEnum.PENDING, BookingStatusEnum.CONFIRMED})


class TransactionStatusEnum(StrEnum):
    """Payment transaction status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class TransactionTypeEnum(StrEnum):
    """Payment transaction direction."""

    PURCHASE = "purchase"
    REFUND = "refund"


class RefundStatusEnum(StrEnum):
    """Outcome reported to the caller of a cancellation."""

    NONE = "none"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class OutboxStatusEnum(StrEnum):
    """Outbox event status for integration publishing."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
