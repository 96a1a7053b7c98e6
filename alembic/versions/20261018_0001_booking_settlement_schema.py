"""Booking and settlement schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Non-native enums persist member names.
role_enum = sa.Enum("PERSONAL", "PARENT", "TUTOR", "ADMIN", "OWNER", name="role_enum", native_enum=False)
tutor_approval_status_enum = sa.Enum(
    "PENDING",
    "APPROVED",
    "REJECTED",
    name="tutor_approval_status_enum",
    native_enum=False,
)
availability_exception_type_enum = sa.Enum(
    "UNAVAILABLE",
    "CUSTOM_HOURS",
    name="availability_exception_type_enum",
    native_enum=False,
)
booking_status_enum = sa.Enum(
    "PENDING",
    "CONFIRMED",
    "CANCELLED",
    "COMPLETED",
    "NO_SHOW",
    "COMPLETED_FOR_PAYOUT",
    name="booking_status_enum",
    native_enum=False,
)
transaction_status_enum = sa.Enum(
    "PENDING",
    "COMPLETED",
    "FAILED",
    "REFUNDED",
    name="transaction_status_enum",
    native_enum=False,
)
transaction_type_enum = sa.Enum("PURCHASE", "REFUND", name="transaction_type_enum", native_enum=False)
outbox_status_enum = sa.Enum("PENDING", "PROCESSED", "FAILED", name="outbox_status_enum", native_enum=False)


def _id_col() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _created_col() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def _updated_col() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False)


def _uuid_col(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), nullable=nullable)


def _money_col(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(10, 2), nullable=nullable)


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        "users",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("role", role_enum, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_child_managed", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=False)

    op.create_table(
        "user_relationships",
        _id_col(),
        _created_col(),
        _updated_col(),
        _uuid_col("parent_user_id"),
        _uuid_col("child_user_id"),
        sa.Column("relationship_type", sa.String(length=32), nullable=False),
        sa.ForeignKeyConstraint(
            ["parent_user_id"],
            ["users.id"],
            name="fk_user_relationships_parent_user_id_users",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["child_user_id"],
            ["users.id"],
            name="fk_user_relationships_child_user_id_users",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("parent_user_id", "child_user_id", name="uq_user_relationships_parent_user_id"),
    )
    op.create_index(
        "ix_user_relationships_parent_user_id",
        "user_relationships",
        ["parent_user_id"],
        unique=False,
    )
    op.create_index(
        "ix_user_relationships_child_user_id",
        "user_relationships",
        ["child_user_id"],
        unique=False,
    )

    op.create_table(
        "tutors",
        _id_col(),
        _created_col(),
        _updated_col(),
        _uuid_col("user_id"),
        sa.Column("display_name", sa.String(length=128), nullable=False),
        sa.Column("bio", sa.Text(), nullable=False),
        _money_col("hourly_rate"),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("approval_status", tutor_approval_status_enum, nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_tutors_user_id_users", ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", name="uq_tutors_user_id"),
    )

    op.create_table(
        "session_types",
        _id_col(),
        _created_col(),
        _updated_col(),
        _uuid_col("tutor_id"),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        _money_col("price"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["tutor_id"], ["tutors.id"], name="fk_session_types_tutor_id_tutors", ondelete="CASCADE"),
        sa.UniqueConstraint("tutor_id", "name", name="uq_session_types_tutor_id"),
    )
    op.create_index("ix_session_types_tutor_id", "session_types", ["tutor_id"], unique=False)

    op.create_table(
        "availability_windows",
        _id_col(),
        _created_col(),
        _updated_col(),
        _uuid_col("tutor_id"),
        sa.Column("day_of_week", sa.SmallInteger(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(
            ["tutor_id"],
            ["tutors.id"],
            name="fk_availability_windows_tutor_id_tutors",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "day_of_week BETWEEN 0 AND 6",
            name="ck_availability_windows_day_of_week_range",
        ),
        sa.CheckConstraint("end_time > start_time", name="ck_availability_windows_window_time_order"),
    )
    op.create_index("ix_availability_windows_tutor_id", "availability_windows", ["tutor_id"], unique=False)

    op.create_table(
        "availability_exceptions",
        _id_col(),
        _created_col(),
        _updated_col(),
        _uuid_col("tutor_id"),
        sa.Column("exception_date", sa.Date(), nullable=False),
        sa.Column("exception_type", availability_exception_type_enum, nullable=False),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(
            ["tutor_id"],
            ["tutors.id"],
            name="fk_availability_exceptions_tutor_id_tutors",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("tutor_id", "exception_date", name="uq_availability_exceptions_tutor_id"),
    )
    op.create_index(
        "ix_availability_exceptions_tutor_id",
        "availability_exceptions",
        ["tutor_id"],
        unique=False,
    )

    op.create_table(
        "payment_transactions",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("transaction_type", transaction_type_enum, nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("provider_transaction_id", sa.String(length=255), nullable=False),
        _uuid_col("payer_id"),
        _uuid_col("tutor_id"),
        _money_col("amount"),
        _money_col("platform_fee"),
        _money_col("tutor_earnings"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", transaction_status_enum, nullable=False),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        _money_col("amount_refunded"),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("materialized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reconciliation_required", sa.Boolean(), nullable=False),
        sa.Column("reconciliation_error", sa.Text(), nullable=True),
        _uuid_col("related_transaction_id", nullable=True),
        _uuid_col("booking_id", nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["payer_id"],
            ["users.id"],
            name="fk_payment_transactions_payer_id_users",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["tutor_id"],
            ["tutors.id"],
            name="fk_payment_transactions_tutor_id_tutors",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["related_transaction_id"],
            ["payment_transactions.id"],
            name="fk_payment_transactions_related_transaction_id_payment_transactions",
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint("provider_transaction_id", name="uq_payment_transactions_provider_transaction_id"),
    )
    op.create_index("ix_payment_transactions_payer_id", "payment_transactions", ["payer_id"], unique=False)
    op.create_index("ix_payment_transactions_tutor_id", "payment_transactions", ["tutor_id"], unique=False)
    op.create_index("ix_payment_transactions_status", "payment_transactions", ["status"], unique=False)
    op.create_index(
        "ix_payment_transactions_hold_expires_at",
        "payment_transactions",
        ["hold_expires_at"],
        unique=False,
    )
    op.create_index(
        "ix_payment_transactions_reconciliation_required",
        "payment_transactions",
        ["reconciliation_required"],
        unique=False,
    )

    op.create_table(
        "bookings",
        _id_col(),
        _created_col(),
        _updated_col(),
        _uuid_col("tutor_id"),
        _uuid_col("student_id"),
        _uuid_col("booked_by_id"),
        sa.Column("session_type", sa.String(length=128), nullable=True),
        sa.Column("session_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("tutor_timezone", sa.String(length=64), nullable=False),
        sa.Column("status", booking_status_enum, nullable=False),
        sa.Column("is_recurring", sa.Boolean(), nullable=False),
        sa.Column("recurring_weeks", sa.Integer(), nullable=False),
        _uuid_col("parent_booking_id", nullable=True),
        sa.Column("recurrence_instance", sa.Integer(), nullable=False),
        sa.Column("is_group_session", sa.Boolean(), nullable=False),
        sa.Column("group_size", sa.Integer(), nullable=False),
        sa.Column("group_participants", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        _money_col("amount_paid"),
        _money_col("platform_fee"),
        _money_col("tutor_earnings"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        _money_col("refund_amount", nullable=True),
        sa.Column("payment_intent_id", sa.String(length=255), nullable=True),
        _uuid_col("payment_transaction_id", nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("student_name", sa.String(length=255), nullable=True),
        sa.Column("student_email", sa.String(length=255), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        _uuid_col("cancelled_by_id", nullable=True),
        sa.Column("cancellation_reason", sa.String(length=512), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("no_show_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["tutor_id"], ["tutors.id"], name="fk_bookings_tutor_id_tutors", ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["student_id"], ["users.id"], name="fk_bookings_student_id_users", ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(
            ["booked_by_id"],
            ["users.id"],
            name="fk_bookings_booked_by_id_users",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["parent_booking_id"],
            ["bookings.id"],
            name="fk_bookings_parent_booking_id_bookings",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["payment_transaction_id"],
            ["payment_transactions.id"],
            name="fk_bookings_payment_transaction_id_payment_transactions",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["cancelled_by_id"],
            ["users.id"],
            name="fk_bookings_cancelled_by_id_users",
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint("payment_transaction_id", name="uq_bookings_payment_transaction_id"),
    )
    op.create_index("ix_bookings_tutor_id", "bookings", ["tutor_id"], unique=False)
    op.create_index("ix_bookings_student_id", "bookings", ["student_id"], unique=False)
    op.create_index("ix_bookings_booked_by_id", "bookings", ["booked_by_id"], unique=False)
    op.create_index("ix_bookings_session_date", "bookings", ["session_date"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_parent_booking_id", "bookings", ["parent_booking_id"], unique=False)
    op.create_index("ix_bookings_payment_intent_id", "bookings", ["payment_intent_id"], unique=False)

    # Active bookings of one tutor may never overlap in time.
    op.execute(
        """
        ALTER TABLE bookings
        ADD CONSTRAINT ex_bookings_tutor_active_overlap
        EXCLUDE USING gist (
            tutor_id WITH =,
            tsrange(session_date + start_time, session_date + end_time, '[)') WITH &&
        )
        WHERE (status IN ('PENDING', 'CONFIRMED'))
        """,
    )

    op.create_foreign_key(
        "fk_payment_transactions_booking_id_bookings",
        "payment_transactions",
        "bookings",
        ["booking_id"],
        ["id"],
        ondelete="SET NULL",
    )

    op.create_table(
        "audit_logs",
        _id_col(),
        _created_col(),
        _updated_col(),
        _uuid_col("actor_id", nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=128), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.ForeignKeyConstraint(["actor_id"], ["users.id"], name="fk_audit_logs_actor_id_users", ondelete="SET NULL"),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)

    op.create_table(
        "outbox_events",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("aggregate_type", sa.String(length=128), nullable=False),
        sa.Column("aggregate_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", outbox_status_enum, nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retries", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_outbox_events_aggregate_type", "outbox_events", ["aggregate_type"], unique=False)
    op.create_index("ix_outbox_events_aggregate_id", "outbox_events", ["aggregate_id"], unique=False)
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"], unique=False)
    op.create_index("ix_outbox_events_status", "outbox_events", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_outbox_events_status", table_name="outbox_events")
    op.drop_index("ix_outbox_events_event_type", table_name="outbox_events")
    op.drop_index("ix_outbox_events_aggregate_id", table_name="outbox_events")
    op.drop_index("ix_outbox_events_aggregate_type", table_name="outbox_events")
    op.drop_table("outbox_events")

    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_constraint(
        "fk_payment_transactions_booking_id_bookings",
        "payment_transactions",
        type_="foreignkey",
    )
    op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS ex_bookings_tutor_active_overlap")
    op.drop_index("ix_bookings_payment_intent_id", table_name="bookings")
    op.drop_index("ix_bookings_parent_booking_id", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_session_date", table_name="bookings")
    op.drop_index("ix_bookings_booked_by_id", table_name="bookings")
    op.drop_index("ix_bookings_student_id", table_name="bookings")
    op.drop_index("ix_bookings_tutor_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_payment_transactions_reconciliation_required", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_hold_expires_at", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_status", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_tutor_id", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_payer_id", table_name="payment_transactions")
    op.drop_table("payment_transactions")

    op.drop_index("ix_availability_exceptions_tutor_id", table_name="availability_exceptions")
    op.drop_table("availability_exceptions")

    op.drop_index("ix_availability_windows_tutor_id", table_name="availability_windows")
    op.drop_table("availability_windows")

    op.drop_index("ix_session_types_tutor_id", table_name="session_types")
    op.drop_table("session_types")

    op.drop_table("tutors")

    op.drop_index("ix_user_relationships_child_user_id", table_name="user_relationships")
    op.drop_index("ix_user_relationships_parent_user_id", table_name="user_relationships")
    op.drop_table("user_relationships")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
