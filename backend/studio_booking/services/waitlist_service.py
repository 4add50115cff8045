# backend/studio_booking/services/waitlist_service.py
"""
Session waitlist: join, leave and promotion into freed seats.

Promotion is best-effort. It runs after a cancellation has already been
committed, so nothing that goes wrong here may reach the caller.
"""

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import NotFoundException, SessionNotFoundException, ValidationException
from ..core.timezone_utils import utc_now
from ..models.waitlist import WaitlistEntry, WaitlistStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..repositories.session_repository import SessionRepository
from ..repositories.waitlist_repository import WaitlistRepository
from .base import BaseService

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_service import BookingService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WaitlistPosition:
    entry_id: str
    session_id: str
    position: int
    status: str
    waitlist_count: int


@dataclass(frozen=True)
class WaitlistRemoval:
    removed: bool
    waitlist_count: int


class WaitlistService(BaseService):
    def __init__(
        self,
        db: Session,
        booking_service: Optional["BookingService"] = None,
        waitlist_repository: Optional[WaitlistRepository] = None,
        session_repository: Optional[SessionRepository] = None,
    ):
        super().__init__(db)
        self.booking_service = booking_service
        self.waitlist_repository = (
            waitlist_repository or RepositoryFactory.create_waitlist_repository(db)
        )
        self.session_repository = (
            session_repository or RepositoryFactory.create_session_repository(db)
        )

    # Promotion

    @BaseService.measure_operation("promote_waitlist")
    def promote(self, session_id: str) -> Optional[str]:
        """
        Fill a freed seat from the waitlist.

        Returns the new booking id, or None if nobody could be promoted.
        Never raises.
        """
        try:
            return self._promote_next(session_id)
        except Exception as exc:
            self.logger.error(
                "Waitlist promotion for session %s aborted: %s", session_id, exc, exc_info=True
            )
            self._count_outcome("failed")
            return None

    def _promote_next(self, session_id: str) -> Optional[str]:
        if self.booking_service is None:
            self.logger.warning("No booking service configured; skipping waitlist promotion")
            return None

        # Each pass removes one entry from PENDING, so the queue length bounds the loop
        remaining = self.waitlist_repository.count_pending(session_id)
        for _ in range(remaining):
            entry = self.waitlist_repository.get_next_pending(session_id)
            if entry is None:
                return None

            with self.transaction():
                claimed = self.waitlist_repository.claim(entry.id, now=utc_now())
            if not claimed:
                self.logger.info(
                    "Waitlist entry %s was claimed by another process; stopping", entry.id
                )
                if settings.metrics_enabled:
                    prometheus_metrics.inc_optimistic_conflict("waitlist_entry")
                self._count_outcome("lost_claim")
                return None

            booking_id = self._book_claimed_entry(entry, session_id)
            if booking_id is not None:
                return booking_id

        return None

    def _book_claimed_entry(self, entry: WaitlistEntry, session_id: str) -> Optional[str]:
        """Try to turn a claimed entry into a booking; drop it from the queue on failure."""
        from .booking_service import ActorContext

        client_id = entry.client_id
        entry_id = entry.id
        try:
            result = self.booking_service.create_booking(  # type: ignore[union-attr]
                session_id,
                client_id=client_id,
                actor=ActorContext(actor_client_id=client_id),
            )
        except Exception as exc:
            self.logger.warning(
                "Could not book waitlisted client %s on session %s: %s",
                client_id,
                session_id,
                exc,
            )
            self._drop_entry(entry_id, session_id)
            self._count_outcome("failed")
            return None

        if result.duplicated:
            self.logger.info(
                "Waitlisted client %s already holds booking %s", client_id, result.booking_id
            )
            self._drop_entry(entry_id, session_id)
            self._count_outcome("duplicate")
            return None

        with self.transaction():
            self.waitlist_repository.mark_notified(entry_id, now=utc_now())
            self.waitlist_repository.resequence(session_id)
        self.logger.info(
            "Promoted waitlist entry %s to booking %s on session %s",
            entry_id,
            result.booking_id,
            session_id,
        )
        self._count_outcome("promoted")
        return result.booking_id

    def _drop_entry(self, entry_id: str, session_id: str) -> None:
        with self.transaction():
            self.waitlist_repository.mark_cancelled(entry_id, now=utc_now())
            self.waitlist_repository.resequence(session_id)

    @staticmethod
    def _count_outcome(outcome: str) -> None:
        if settings.metrics_enabled:
            prometheus_metrics.inc_waitlist_promotion(outcome)

    # Join / leave

    @BaseService.measure_operation("join_waitlist")
    def join(self, *, session_id: str, client_id: str) -> WaitlistPosition:
        """
        Queue a client for a session.

        A live entry (PENDING or PROMOTED) is returned unchanged; a cancelled
        one is reopened at the end of the queue.
        """
        if self.session_repository.get_by_id(session_id, load_relationships=False) is None:
            raise SessionNotFoundException(session_id)

        existing = self.waitlist_repository.find_for_session_client(session_id, client_id)
        if existing is not None and existing.status != WaitlistStatus.CANCELLED.value:
            return self._position(existing)

        now = utc_now()
        next_position = self.waitlist_repository.count_pending(session_id) + 1
        with self.transaction():
            if existing is not None:
                self.waitlist_repository.reopen(existing.id, position=next_position, now=now)
                entry_id = existing.id
            else:
                entry_id = self.waitlist_repository.create_entry(
                    session_id=session_id, client_id=client_id, position=next_position, now=now
                ).id
            self.waitlist_repository.resequence(session_id)

        entry = self.waitlist_repository.get_by_id(entry_id)
        self.logger.info("Client %s joined waitlist of session %s", client_id, session_id)
        return self._position(entry)

    @BaseService.measure_operation("leave_waitlist")
    def leave(
        self,
        *,
        entry_id: Optional[str] = None,
        session_id: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> WaitlistRemoval:
        """Remove an entry by id or by (session, client). Idempotent."""
        if entry_id:
            entry = self.waitlist_repository.get_by_id(entry_id)
        elif session_id and client_id:
            entry = self.waitlist_repository.find_for_session_client(session_id, client_id)
        else:
            raise ValidationException(
                "Provide a waitlist entry id or both session_id and client_id",
                code="WAITLIST_IDENTIFIERS_MISSING",
            )

        if entry is None:
            raise NotFoundException("Waitlist entry not found", code="WAITLIST_ENTRY_NOT_FOUND")

        target_session_id = entry.session_id
        if entry.status != WaitlistStatus.CANCELLED.value:
            self._drop_entry(entry.id, target_session_id)
            self.logger.info("Waitlist entry %s removed", entry.id)

        return WaitlistRemoval(
            removed=True, waitlist_count=self.waitlist_repository.count_pending(target_session_id)
        )

    def count_pending(self, session_id: str) -> int:
        return self.waitlist_repository.count_pending(session_id)

    def _position(self, entry: WaitlistEntry) -> WaitlistPosition:
        return WaitlistPosition(
            entry_id=entry.id,
            session_id=entry.session_id,
            position=entry.position,
            status=entry.status,
            waitlist_count=self.waitlist_repository.count_pending(entry.session_id),
        )
