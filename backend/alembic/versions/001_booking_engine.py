# backend/alembic/versions/001_booking_engine.py
"""Booking engine - clients, courses, sessions, plans, bookings and waitlist

Revision ID: 001_booking_engine
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates every table used by the studio booking engine. Plan credits live
only on plan_purchases.remaining_classes; plan_usages is the append-only
ledger of +1 allocations and -1 refunds.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_booking_engine"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create booking engine tables."""
    print("Creating booking engine tables...")

    op.create_table(
        "clients",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("auth_user_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("auth_user_id"),
    )
    op.create_index("ix_clients_full_name", "clients", ["full_name"])

    op.create_table(
        "courses",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("category", sa.String(64), nullable=True),
        # NULL = sessions bookable at any time
        sa.Column("booking_window_days", sa.Integer(), nullable=True),
        # NULL = studio default refund window
        sa.Column("cancellation_window_hours", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("course_id", sa.String(26), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_occupancy", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("capacity >= 0", name="ck_sessions_capacity_non_negative"),
        sa.CheckConstraint("end_time > start_time", name="ck_sessions_time_order"),
    )
    op.create_index("ix_sessions_course_id", "sessions", ["course_id"])
    op.create_index("ix_sessions_start_time", "sessions", ["start_time"])

    op.create_table(
        "plan_types",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(64), nullable=True),
        # NULL = unlimited classes
        sa.Column("class_count", sa.Integer(), nullable=True),
        sa.Column("validity_days", sa.Integer(), nullable=True),
        sa.Column("app_only", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "plan_purchases",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("client_id", sa.String(26), nullable=False),
        sa.Column("plan_type_id", sa.String(26), nullable=False),
        sa.Column("modality", sa.String(16), nullable=False, server_default="FLEXIBLE"),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("purchased_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("expires_at", sa.Date(), nullable=True),
        sa.Column("initial_classes", sa.Integer(), nullable=True),
        sa.Column("remaining_classes", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["plan_type_id"], ["plan_types.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "remaining_classes IS NULL OR remaining_classes >= 0",
            name="ck_plan_purchases_remaining_non_negative",
        ),
    )
    op.create_index("ix_plan_purchases_client_id", "plan_purchases", ["client_id"])
    op.create_index("ix_plan_purchases_status", "plan_purchases", ["status"])

    op.create_table(
        "plan_usages",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("plan_purchase_id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("session_id", sa.String(26), nullable=False),
        sa.Column("credit_delta", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["plan_purchase_id"], ["plan_purchases.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("credit_delta IN (-1, 1)", name="ck_plan_usages_delta"),
        comment="Append-only credit ledger",
    )
    op.create_index("ix_plan_usages_plan_purchase_id", "plan_usages", ["plan_purchase_id"])
    op.create_index("ix_plan_usages_booking_id", "plan_usages", ["booking_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("session_id", sa.String(26), nullable=False),
        sa.Column("client_id", sa.String(26), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="CONFIRMED"),
        sa.Column("plan_purchase_id", sa.String(26), nullable=True),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(26), nullable=True),
        # Optional link to the booking this one replaced via rebook
        sa.Column("rebooked_from_booking_id", sa.String(26), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["plan_purchase_id"], ["plan_purchases.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["rebooked_from_booking_id"], ["bookings.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", "client_id", name="uq_bookings_session_client"),
        comment="One row per (session, client); cancelled rows are reactivated in place",
    )
    op.create_index("ix_bookings_session_id", "bookings", ["session_id"])
    op.create_index("ix_bookings_client_id", "bookings", ["client_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])

    op.create_check_constraint(
        "ck_bookings_status",
        "bookings",
        "status IN ('CONFIRMED', 'CHECKED_IN', 'CANCELLED')",
    )

    op.create_table(
        "booking_events",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("actor_client_id", sa.String(26), nullable=True),
        sa.Column("actor_staff_id", sa.String(26), nullable=True),
        sa.Column("actor_instructor_id", sa.String(26), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        comment="Append-only booking audit trail",
    )
    op.create_index("ix_booking_events_booking_id", "booking_events", ["booking_id"])

    op.create_table(
        "qr_tokens",
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("token", sa.String(32), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("booking_id"),
    )
    op.create_index("ix_qr_tokens_token", "qr_tokens", ["token"], unique=True)

    op.create_table(
        "session_waitlist",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("session_id", sa.String(26), nullable=False),
        sa.Column("client_id", sa.String(26), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", "client_id", name="uq_session_waitlist_session_client"),
    )
    op.create_index("ix_session_waitlist_session_id", "session_waitlist", ["session_id"])
    op.create_index("ix_session_waitlist_status", "session_waitlist", ["status"])

    print("Booking engine tables created successfully")


def downgrade() -> None:
    """Drop booking engine tables."""
    print("Dropping booking engine tables...")

    op.drop_index("ix_session_waitlist_status", table_name="session_waitlist")
    op.drop_index("ix_session_waitlist_session_id", table_name="session_waitlist")
    op.drop_table("session_waitlist")

    op.drop_index("ix_qr_tokens_token", table_name="qr_tokens")
    op.drop_table("qr_tokens")

    op.drop_index("ix_booking_events_booking_id", table_name="booking_events")
    op.drop_table("booking_events")

    op.drop_constraint("ck_bookings_status", "bookings", type_="check")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_client_id", table_name="bookings")
    op.drop_index("ix_bookings_session_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_plan_usages_booking_id", table_name="plan_usages")
    op.drop_index("ix_plan_usages_plan_purchase_id", table_name="plan_usages")
    op.drop_table("plan_usages")

    op.drop_index("ix_plan_purchases_status", table_name="plan_purchases")
    op.drop_index("ix_plan_purchases_client_id", table_name="plan_purchases")
    op.drop_table("plan_purchases")
    op.drop_table("plan_types")

    op.drop_index("ix_sessions_start_time", table_name="sessions")
    op.drop_index("ix_sessions_course_id", table_name="sessions")
    op.drop_table("sessions")
    op.drop_table("courses")

    op.drop_index("ix_clients_full_name", table_name="clients")
    op.drop_table("clients")

    print("Booking engine tables dropped successfully")
