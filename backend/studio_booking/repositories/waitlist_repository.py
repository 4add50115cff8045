# backend/studio_booking/repositories/waitlist_repository.py
"""Waitlist Repository for the studio booking engine."""

from datetime import datetime
from typing import List, Optional, cast

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.waitlist import WaitlistEntry, WaitlistStatus
from .base_repository import BaseRepository


class WaitlistRepository(BaseRepository[WaitlistEntry]):
    """Repository for session waitlist entries."""

    def __init__(self, db: Session):
        super().__init__(db, WaitlistEntry)

    def _pending_query(self, session_id: str):
        return self.db.query(WaitlistEntry).filter(
            WaitlistEntry.session_id == session_id,
            WaitlistEntry.status == WaitlistStatus.PENDING.value,
        )

    def get_next_pending(self, session_id: str) -> Optional[WaitlistEntry]:
        """Lowest position first; earliest join breaks ties."""
        try:
            return cast(
                Optional[WaitlistEntry],
                self._pending_query(session_id)
                .order_by(
                    WaitlistEntry.position.asc(),
                    WaitlistEntry.created_at.asc(),
                    WaitlistEntry.id.asc(),
                )
                .populate_existing()
                .first(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load next waitlist entry for %s: %s", session_id, exc)
            raise RepositoryException("Failed to load next waitlist entry") from exc

    def list_pending(self, session_id: str) -> List[WaitlistEntry]:
        try:
            return cast(
                List[WaitlistEntry],
                self._pending_query(session_id)
                .order_by(
                    WaitlistEntry.position.asc(),
                    WaitlistEntry.created_at.asc(),
                    WaitlistEntry.id.asc(),
                )
                .populate_existing()
                .all(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to list waitlist for %s: %s", session_id, exc)
            raise RepositoryException("Failed to list waitlist") from exc

    def count_pending(self, session_id: str) -> int:
        try:
            count = (
                self.db.query(func.count(WaitlistEntry.id))
                .filter(
                    WaitlistEntry.session_id == session_id,
                    WaitlistEntry.status == WaitlistStatus.PENDING.value,
                )
                .scalar()
            )
            return int(count or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to count waitlist for %s: %s", session_id, exc)
            raise RepositoryException("Failed to count waitlist") from exc

    def find_for_session_client(self, session_id: str, client_id: str) -> Optional[WaitlistEntry]:
        try:
            return cast(
                Optional[WaitlistEntry],
                self.db.query(WaitlistEntry)
                .filter(
                    WaitlistEntry.session_id == session_id,
                    WaitlistEntry.client_id == client_id,
                )
                .populate_existing()
                .first(),
            )
        except SQLAlchemyError as exc:
            raise RepositoryException("Failed to look up waitlist entry") from exc

    def claim(self, entry_id: str, *, now: datetime) -> int:
        """PENDING -> PROMOTED, only if nobody else claimed the entry first."""
        return self._conditional_update(
            entry_id,
            WaitlistEntry.status == WaitlistStatus.PENDING.value,
            status=WaitlistStatus.PROMOTED.value,
            updated_at=now,
        )

    def mark_cancelled(self, entry_id: str, *, now: datetime) -> int:
        return self._conditional_update(
            entry_id,
            WaitlistEntry.status != WaitlistStatus.CANCELLED.value,
            status=WaitlistStatus.CANCELLED.value,
            updated_at=now,
        )

    def mark_notified(self, entry_id: str, *, now: datetime) -> int:
        return self._conditional_update(entry_id, notified_at=now, updated_at=now)

    def reopen(self, entry_id: str, *, position: int, now: datetime) -> int:
        """Bring a CANCELLED entry back to the end of the queue."""
        return self._conditional_update(
            entry_id,
            WaitlistEntry.status == WaitlistStatus.CANCELLED.value,
            status=WaitlistStatus.PENDING.value,
            position=position,
            notified_at=None,
            updated_at=now,
        )

    def create_entry(
        self, *, session_id: str, client_id: str, position: int, now: datetime
    ) -> WaitlistEntry:
        return self.create(
            session_id=session_id,
            client_id=client_id,
            status=WaitlistStatus.PENDING.value,
            position=position,
            created_at=now,
        )

    def resequence(self, session_id: str) -> int:
        """
        Reassign positions of PENDING entries to a dense 1..N sequence.

        Returns the number of entries whose position changed.
        """
        changed = 0
        for index, entry in enumerate(self.list_pending(session_id), start=1):
            if entry.position != index:
                entry.position = index
                changed += 1
        if changed:
            try:
                self.db.flush()
            except SQLAlchemyError as exc:
                self.logger.error("Failed to resequence waitlist for %s: %s", session_id, exc)
                raise RepositoryException("Failed to resequence waitlist") from exc
        return changed
