# backend/studio_booking/services/occupancy_service.py
"""Keeps ``sessions.current_occupancy`` equal to the live booking count."""

from typing import Optional

from sqlalchemy.orm import Session

from ..repositories.booking_repository import BookingRepository
from ..repositories.factory import RepositoryFactory
from ..repositories.session_repository import SessionRepository
from .base import BaseService


class OccupancyService(BaseService):
    def __init__(
        self,
        db: Session,
        session_repository: Optional[SessionRepository] = None,
        booking_repository: Optional[BookingRepository] = None,
    ):
        super().__init__(db)
        self.session_repository = (
            session_repository or RepositoryFactory.create_session_repository(db)
        )
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )

    @BaseService.measure_operation("sync_occupancy")
    def sync(self, session_id: str) -> int:
        """
        Recount non-cancelled bookings and store the result on the session.

        Idempotent. Errors propagate, since capacity decisions depend on it.
        """
        with self.transaction():
            occupancy = self.booking_repository.count_active_for_session(session_id)
            self.session_repository.set_occupancy(session_id, occupancy)
        self.logger.debug("Session %s occupancy synced to %d", session_id, occupancy)
        return occupancy
