# backend/studio_booking/models/client.py
"""Studio client (member) model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.ulid_helper import generate_ulid
from ..database import Base


class Client(Base):
    """
    A studio member who books sessions.

    Clients may be created lazily from a display-name hint by kiosk and
    demo flows, in which case contact fields stay empty.
    """

    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    auth_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, full_name={self.full_name!r})>"
