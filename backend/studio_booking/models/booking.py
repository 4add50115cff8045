# backend/studio_booking/models/booking.py
"""
Booking model for the studio booking engine.

One row exists per (session, client) pair. Cancelling a booking keeps the
row; booking the same session again reactivates it in place so the id and
any rebooking chain stay stable.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.ulid_helper import generate_ulid
from ..database import Base
from .course import ClassSession
from .plan import PlanPurchase


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    CONFIRMED = "CONFIRMED"  # Default - seat held
    CHECKED_IN = "CHECKED_IN"  # Attendance registered
    CANCELLED = "CANCELLED"  # Seat released


ACTIVE_BOOKING_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.CHECKED_IN.value)


class BookingEventType(str, Enum):
    CREATED = "CREATED"
    CANCELLED = "CANCELLED"
    REBOOKED = "REBOOKED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("session_id", "client_id", name="uq_bookings_session_client"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    session_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.CONFIRMED.value, index=True
    )
    plan_purchase_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("plan_purchases.id", ondelete="SET NULL"), nullable=True
    )
    reserved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    rebooked_from_booking_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    session: Mapped[ClassSession] = relationship("ClassSession")
    plan_purchase: Mapped[Optional[PlanPurchase]] = relationship("PlanPurchase")

    @property
    def is_cancelled(self) -> bool:
        return self.status == BookingStatus.CANCELLED.value

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, session_id={self.session_id}, "
            f"client_id={self.client_id}, status={self.status})>"
        )


class BookingEvent(Base):
    """Append-only audit trail of booking lifecycle transitions."""

    __tablename__ = "booking_events"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_client_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    actor_staff_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    actor_instructor_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<BookingEvent(booking_id={self.booking_id}, type={self.event_type})>"


class QrToken(Base):
    """Short display code for checking in a booking; one per booking."""

    __tablename__ = "qr_tokens"

    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True
    )
    token: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<QrToken(booking_id={self.booking_id}, expires_at={self.expires_at})>"
