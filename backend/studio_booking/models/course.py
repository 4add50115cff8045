# backend/studio_booking/models/course.py
"""
Course and class session models.

A course groups recurring sessions and carries the booking policy
(category, pre-booking window, refund window) its sessions inherit.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.ulid_helper import generate_ulid
from ..database import Base


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # None means sessions can be booked at any time
    booking_window_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # None falls back to settings.default_cancellation_window_hours
    cancellation_window_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    sessions: Mapped[list["ClassSession"]] = relationship("ClassSession", back_populates="course")

    def __repr__(self) -> str:
        return f"<Course(id={self.id}, title={self.title!r}, category={self.category})>"


class ClassSession(Base):
    """
    A scheduled class occurrence with a fixed number of seats.

    ``current_occupancy`` is a cache of the count of non-cancelled
    bookings and is resynchronized after every booking mutation.
    """

    __tablename__ = "sessions"
    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_sessions_capacity_non_negative"),
        CheckConstraint("end_time > start_time", name="ck_sessions_time_order"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    course_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("courses.id", ondelete="SET NULL"), nullable=True, index=True
    )
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    current_occupancy: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    course: Mapped[Optional[Course]] = relationship("Course", back_populates="sessions")

    @property
    def category(self) -> Optional[str]:
        """Category inherited from the parent course."""
        return self.course.category if self.course is not None else None

    def __repr__(self) -> str:
        return (
            f"<ClassSession(id={self.id}, start={self.start_time}, "
            f"occupancy={self.current_occupancy}/{self.capacity})>"
        )
