# backend/studio_booking/repositories/__init__.py
"""
Repository Pattern Implementation for the studio booking engine.

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD and conditional updates
- RepositoryFactory: Factory for creating repository instances
- SessionRepository: Class sessions and cached occupancy
- ClientRepository: Client lookup and lazy creation
- BookingRepository: Bookings, audit events and QR tokens
- PlanRepository: Plan purchases, credit movements and the usage ledger
- WaitlistRepository: Session waitlist queue

Usage:
    from studio_booking.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_plan_repository(db)
    candidates = repository.get_flexible_candidates(client_id=..., today=..., limit=10)
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .client_repository import ClientRepository
from .factory import RepositoryFactory
from .plan_repository import PlanRepository
from .session_repository import SessionRepository
from .waitlist_repository import WaitlistRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "ClientRepository",
    "PlanRepository",
    "RepositoryFactory",
    "SessionRepository",
    "WaitlistRepository",
]
