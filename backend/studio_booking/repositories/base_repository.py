# backend/studio_booking/repositories/base_repository.py
"""
Base Repository Pattern for the studio booking engine.

Provides the foundation for all repository classes with:
- Lookup and insert helpers
- Type safety with generics
- Conditional (compare-and-swap) updates reporting affected rows

Repositories never commit. Services decide where a unit of work ends.
"""

import logging
from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

# Type variable for generic model support
T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Concrete base repository implementation with common data access patterns.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        """
        Initialize repository with database session and model.

        Args:
            db: SQLAlchemy session (managed by service layer)
            model: SQLAlchemy model class
        """
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str, load_relationships: bool = True) -> Optional[T]:
        """
        Retrieve an entity by its primary key.

        Implements eager loading for relationships when requested.
        """
        try:
            query = self.db.query(self.model).filter(self.model.id == id)
            if load_relationships:
                query = self._apply_eager_loading(query)
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def create(self, **kwargs: Any) -> T:
        """
        Create a new entity.

        Note: Does NOT commit - transaction management is handled by service layer.
        """
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()  # Get ID without committing
            return entity
        except IntegrityError as exc:
            self.logger.error("Integrity error creating %s: %s", self.model.__name__, exc)
            self.db.rollback()
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    # Protected helper methods for use by subclasses

    def _conditional_update(self, entity_id: str, *conditions: Any, **values: Any) -> int:
        """
        Issue a single ``UPDATE ... WHERE id = :id AND <conditions>``.

        Returns the number of affected rows; zero means the row no longer
        matched what the caller read. Any cached instance is expired so the
        next access reloads the stored values.
        """
        try:
            stmt = (
                update(self.model)
                .where(self.model.id == entity_id, *conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = self.db.execute(stmt)
            self._expire_identity(entity_id)
            return int(result.rowcount or 0)
        except SQLAlchemyError as e:
            self.logger.error(f"Conditional update on {self.model.__name__} {entity_id} failed: {e}")
            raise RepositoryException(f"Failed to update {self.model.__name__}: {str(e)}")

    def _expire_identity(self, entity_id: str) -> None:
        cached = self.db.identity_map.get(Session.identity_key(self.model, entity_id))
        if cached is not None:
            self.db.expire(cached)

    def _apply_eager_loading(self, query: Query) -> Query:
        """
        Apply eager loading to relationships.

        Override in subclasses to specify which relationships to load.
        """
        return query
