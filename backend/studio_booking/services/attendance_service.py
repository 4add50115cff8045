# backend/studio_booking/services/attendance_service.py
"""Check-in / check-out of bookings, by QR scan or manually at the front desk."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    BookingNotFoundException,
    ConflictException,
    ValidationException,
)
from ..models.booking import BookingEventType, BookingStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .qr_token_service import QrTokenService


@dataclass(frozen=True)
class AttendanceResult:
    booking_id: str
    status: str
    present: bool
    changed: bool
    source: str


class AttendanceService(BaseService):
    def __init__(
        self,
        db: Session,
        booking_repository: Optional[BookingRepository] = None,
        qr_token_service: Optional[QrTokenService] = None,
    ):
        super().__init__(db)
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )
        self.qr_token_service = qr_token_service or QrTokenService(
            db, booking_repository=self.booking_repository
        )

    @BaseService.measure_operation("mark_attendance")
    def mark_attendance(
        self,
        *,
        booking_id: Optional[str] = None,
        token: Optional[str] = None,
        present: Optional[bool] = None,
        actor_staff_id: Optional[str] = None,
    ) -> AttendanceResult:
        """
        Toggle a booking between CONFIRMED and CHECKED_IN.

        A scanned token defaults to ``present=True``. Asking for the state a
        booking is already in changes nothing and writes no event.

        Raises:
            ValidationException: neither booking id nor token, or no ``present`` for a manual change
            NotFoundException: unknown token or booking
            QrTokenExpiredException: token past its expiry
            ConflictException: booking is cancelled
        """
        has_token = bool(token and token.strip())
        if not booking_id and has_token:
            booking_id = self.qr_token_service.resolve(token or "").booking_id
        if not booking_id:
            raise ValidationException(
                "A booking id or QR token is required", code="ATTENDANCE_TARGET_MISSING"
            )
        if present is None:
            if not has_token:
                raise ValidationException(
                    "Specify whether attendance is being marked or reverted",
                    code="ATTENDANCE_PRESENT_MISSING",
                )
            present = True

        source = "qr-scan" if has_token else "manual"

        booking = self.booking_repository.get_by_id(booking_id, load_relationships=False)
        if booking is None:
            raise BookingNotFoundException(booking_id)
        if booking.is_cancelled:
            raise ConflictException(
                "Cancelled bookings cannot be checked in",
                code="BOOKING_CANCELLED",
                details={"booking_id": booking_id},
            )

        current = booking.status
        target = BookingStatus.CHECKED_IN.value if present else BookingStatus.CONFIRMED.value
        if current == target:
            return AttendanceResult(booking_id, target, present, changed=False, source=source)

        with self.transaction():
            affected = self.booking_repository.transition_status(
                booking_id, from_status=current, to_status=target
            )
            if affected:
                self.booking_repository.create_event(
                    booking_id=booking_id,
                    event_type=(
                        BookingEventType.CHECKED_IN.value
                        if present
                        else BookingEventType.CHECKED_OUT.value
                    ),
                    actor_staff_id=actor_staff_id,
                    metadata={"source": source},
                )

        if not affected:
            if settings.metrics_enabled:
                prometheus_metrics.inc_optimistic_conflict("booking")
            latest = self.booking_repository.get_by_id(booking_id, load_relationships=False)
            status = latest.status if latest is not None else current
            self.logger.info(
                "Attendance for booking %s changed concurrently (now %s)", booking_id, status
            )
            return AttendanceResult(booking_id, status, present, changed=False, source=source)

        self.logger.info("Booking %s marked %s via %s", booking_id, target, source)
        return AttendanceResult(booking_id, target, present, changed=True, source=source)
