# backend/studio_booking/repositories/session_repository.py
"""
Session Repository for the studio booking engine.

Loads class sessions together with the course policy they inherit and
writes back the cached occupancy counter.
"""

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.course import ClassSession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class SessionRepository(BaseRepository[ClassSession]):
    """Repository for class sessions."""

    def __init__(self, db: Session):
        super().__init__(db, ClassSession)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(ClassSession.course))

    def get_session_with_course(self, session_id: str) -> Optional[ClassSession]:
        """Session plus its course (category, booking window, refund window)."""
        return self.get_by_id(session_id, load_relationships=True)

    def set_occupancy(self, session_id: str, occupancy: int) -> int:
        """Overwrite the cached occupancy counter. Returns affected rows."""
        try:
            result = self.db.execute(
                update(ClassSession)
                .where(ClassSession.id == session_id)
                .values(current_occupancy=occupancy)
                .execution_options(synchronize_session=False)
            )
            self._expire_identity(session_id)
            return int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to write occupancy for session %s: %s", session_id, exc)
            raise RepositoryException("Failed to update session occupancy") from exc
