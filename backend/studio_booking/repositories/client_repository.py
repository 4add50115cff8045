# backend/studio_booking/repositories/client_repository.py
"""Client Repository for the studio booking engine."""

from typing import Optional, cast

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.client import Client
from .base_repository import BaseRepository


class ClientRepository(BaseRepository[Client]):
    def __init__(self, db: Session):
        super().__init__(db, Client)

    def find_by_name(self, full_name: str) -> Optional[Client]:
        """Case-insensitive exact match on the display name; oldest client wins."""
        try:
            return cast(
                Optional[Client],
                self.db.query(Client)
                .filter(func.lower(Client.full_name) == full_name.strip().lower())
                .order_by(Client.created_at.asc(), Client.id.asc())
                .first(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to look up client by name: %s", exc)
            raise RepositoryException("Failed to look up client") from exc

    def create_client(self, full_name: str) -> Client:
        return self.create(full_name=full_name.strip())
