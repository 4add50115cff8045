# backend/studio_booking/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .database import get_db
from .services import (
    get_attendance_service,
    get_booking_service,
    get_credit_allocation_service,
    get_waitlist_service,
)

__all__ = [
    # Database
    "get_db",
    # Services
    "get_attendance_service",
    "get_booking_service",
    "get_credit_allocation_service",
    "get_waitlist_service",
]
