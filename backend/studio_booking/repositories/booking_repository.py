# backend/studio_booking/repositories/booking_repository.py
"""
Booking Repository for the studio booking engine.

Owns bookings, their audit events and their QR tokens. Status changes
that can race are single conditional UPDATE statements returning the
affected row count; the service decides what a zero means.
"""

from datetime import datetime
import logging
from typing import Any, Dict, List, Optional, cast

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.booking import (
    ACTIVE_BOOKING_STATUSES,
    Booking,
    BookingEvent,
    BookingStatus,
    QrToken,
)
from ..models.course import ClassSession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for bookings, booking events and QR tokens."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(
            joinedload(Booking.session).joinedload(ClassSession.course),
            joinedload(Booking.plan_purchase),
        )

    # Reads

    def get_booking_with_details(self, booking_id: str) -> Optional[Booking]:
        """Booking with session, course and attached plan eagerly loaded."""
        return self.get_by_id(booking_id, load_relationships=True)

    def find_for_session_client(self, session_id: str, client_id: str) -> Optional[Booking]:
        """The (at most one) booking row for a session/client pair, any status."""
        try:
            return cast(
                Optional[Booking],
                self.db.query(Booking)
                .filter(Booking.session_id == session_id, Booking.client_id == client_id)
                .populate_existing()
                .first(),
            )
        except SQLAlchemyError as exc:
            self.logger.error(
                "Failed to find booking for session %s / client %s: %s", session_id, client_id, exc
            )
            raise RepositoryException("Failed to look up booking") from exc

    def count_active_for_session(self, session_id: str) -> int:
        """Fresh count of non-cancelled bookings; never reads the cached occupancy."""
        try:
            count = (
                self.db.query(func.count(Booking.id))
                .filter(
                    Booking.session_id == session_id,
                    Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                )
                .scalar()
            )
            return int(count or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to count bookings for session %s: %s", session_id, exc)
            raise RepositoryException("Failed to count active bookings") from exc

    # Writes

    def insert_booking(
        self, *, session_id: str, client_id: str, reserved_at: datetime
    ) -> Optional[Booking]:
        """
        Insert a CONFIRMED booking.

        Returns None when the (session, client) unique constraint rejects the
        row, meaning a concurrent request created it first.
        """
        booking = Booking(
            session_id=session_id,
            client_id=client_id,
            status=BookingStatus.CONFIRMED.value,
            reserved_at=reserved_at,
        )
        try:
            self.db.add(booking)
            self.db.flush()
            return booking
        except IntegrityError:
            self.db.rollback()
            self.logger.warning(
                "Booking insert for session %s / client %s hit the unique constraint",
                session_id,
                client_id,
            )
            return None
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Failed to insert booking: %s", exc)
            raise RepositoryException("Failed to insert booking") from exc

    def reactivate(self, booking_id: str, *, reserved_at: datetime) -> int:
        """CANCELLED -> CONFIRMED in place, clearing prior cancellation fields."""
        return self._conditional_update(
            booking_id,
            Booking.status == BookingStatus.CANCELLED.value,
            status=BookingStatus.CONFIRMED.value,
            reserved_at=reserved_at,
            cancelled_at=None,
            cancelled_by=None,
            plan_purchase_id=None,
            rebooked_from_booking_id=None,
        )

    def restore_cancelled_state(self, booking_id: str, snapshot: Dict[str, Any]) -> int:
        """Put a reactivated row back exactly as it was before the attempt."""
        return self._conditional_update(
            booking_id,
            Booking.status != BookingStatus.CANCELLED.value,
            status=BookingStatus.CANCELLED.value,
            **snapshot,
        )

    def delete_booking(self, booking_id: str) -> None:
        """Remove a booking row created by a failed attempt, along with its QR token."""
        try:
            self.db.execute(
                delete(QrToken)
                .where(QrToken.booking_id == booking_id)
                .execution_options(synchronize_session=False)
            )
            self.db.execute(
                delete(Booking)
                .where(Booking.id == booking_id)
                .execution_options(synchronize_session=False)
            )
            cached = self.db.identity_map.get(Session.identity_key(Booking, booking_id))
            if cached is not None:
                self.db.expunge(cached)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to delete booking %s: %s", booking_id, exc)
            raise RepositoryException("Failed to delete booking") from exc

    def attach_plan(self, booking_id: str, plan_purchase_id: str) -> int:
        return self._conditional_update(booking_id, plan_purchase_id=plan_purchase_id)

    def mark_cancelled(
        self, booking_id: str, *, cancelled_at: datetime, cancelled_by: Optional[str]
    ) -> int:
        """
        Conditional cancel keyed on ``status != CANCELLED``.

        Zero affected rows means another request cancelled it first.
        """
        return self._conditional_update(
            booking_id,
            Booking.status != BookingStatus.CANCELLED.value,
            status=BookingStatus.CANCELLED.value,
            cancelled_at=cancelled_at,
            cancelled_by=cancelled_by,
        )

    def set_rebooked_from(self, booking_id: str, original_booking_id: str) -> int:
        return self._conditional_update(booking_id, rebooked_from_booking_id=original_booking_id)

    def transition_status(self, booking_id: str, *, from_status: str, to_status: str) -> int:
        return self._conditional_update(
            booking_id, Booking.status == from_status, status=to_status
        )

    # Audit events

    def create_event(
        self,
        *,
        booking_id: str,
        event_type: str,
        actor_client_id: Optional[str] = None,
        actor_staff_id: Optional[str] = None,
        actor_instructor_id: Optional[str] = None,
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BookingEvent:
        try:
            event = BookingEvent(
                booking_id=booking_id,
                event_type=event_type,
                actor_client_id=actor_client_id,
                actor_staff_id=actor_staff_id,
                actor_instructor_id=actor_instructor_id,
                notes=notes,
                event_metadata=metadata or {},
            )
            self.db.add(event)
            self.db.flush()
            return event
        except SQLAlchemyError as exc:
            self.logger.error("Failed to write %s event for booking %s: %s", event_type, booking_id, exc)
            raise RepositoryException("Failed to write booking event") from exc

    def list_events(self, booking_id: str) -> List[BookingEvent]:
        try:
            return cast(
                List[BookingEvent],
                self.db.query(BookingEvent)
                .filter(BookingEvent.booking_id == booking_id)
                .order_by(BookingEvent.occurred_at.asc(), BookingEvent.id.asc())
                .all(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to list events for booking %s: %s", booking_id, exc)
            raise RepositoryException("Failed to list booking events") from exc

    # QR tokens

    def upsert_qr_token(self, *, booking_id: str, token: str, expires_at: datetime) -> QrToken:
        """One token per booking; issuing again replaces code and expiry."""
        try:
            existing = self.db.get(QrToken, booking_id)
            if existing is None:
                existing = QrToken(booking_id=booking_id, token=token, expires_at=expires_at)
                self.db.add(existing)
            else:
                existing.token = token
                existing.expires_at = expires_at
            self.db.flush()
            return existing
        except SQLAlchemyError as exc:
            self.logger.error("Failed to upsert QR token for booking %s: %s", booking_id, exc)
            raise RepositoryException("Failed to issue QR token") from exc

    def get_qr_token_for_booking(self, booking_id: str) -> Optional[QrToken]:
        try:
            return cast(Optional[QrToken], self.db.get(QrToken, booking_id))
        except SQLAlchemyError as exc:
            raise RepositoryException("Failed to load QR token") from exc

    def find_qr_token(self, token: str) -> Optional[QrToken]:
        try:
            return cast(
                Optional[QrToken],
                self.db.query(QrToken).filter(QrToken.token == token).first(),
            )
        except SQLAlchemyError as exc:
            raise RepositoryException("Failed to look up QR token") from exc
