# backend/studio_booking/repositories/factory.py
"""
Repository Factory for the studio booking engine.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .client_repository import ClientRepository
    from .plan_repository import PlanRepository
    from .session_repository import SessionRepository
    from .waitlist_repository import WaitlistRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation so services and tests can swap
    implementations in one place.
    """

    @staticmethod
    def create_base_repository(db: Session, model) -> BaseRepository:
        """Create a generic base repository for any model."""
        return BaseRepository(db, model)

    @staticmethod
    def create_session_repository(db: Session) -> "SessionRepository":
        """Create repository for class sessions."""
        from .session_repository import SessionRepository

        return SessionRepository(db)

    @staticmethod
    def create_client_repository(db: Session) -> "ClientRepository":
        from .client_repository import ClientRepository

        return ClientRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for bookings, booking events and QR tokens."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_plan_repository(db: Session) -> "PlanRepository":
        """Create repository for plan purchases and the usage ledger."""
        from .plan_repository import PlanRepository

        return PlanRepository(db)

    @staticmethod
    def create_waitlist_repository(db: Session) -> "WaitlistRepository":
        from .waitlist_repository import WaitlistRepository

        return WaitlistRepository(db)
