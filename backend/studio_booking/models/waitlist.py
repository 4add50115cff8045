# backend/studio_booking/models/waitlist.py
"""Session waitlist model."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.ulid_helper import generate_ulid
from ..database import Base


class WaitlistStatus(str, Enum):
    PENDING = "PENDING"
    PROMOTED = "PROMOTED"
    CANCELLED = "CANCELLED"


class WaitlistEntry(Base):
    """
    A client queued for a full session.

    PENDING entries of a session keep a dense 1..N ``position`` ordering;
    ties are broken by ``created_at``.
    """

    __tablename__ = "session_waitlist"
    __table_args__ = (
        UniqueConstraint("session_id", "client_id", name="uq_session_waitlist_session_client"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    session_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=WaitlistStatus.PENDING.value, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WaitlistEntry(id={self.id}, session_id={self.session_id}, "
            f"position={self.position}, status={self.status})>"
        )
