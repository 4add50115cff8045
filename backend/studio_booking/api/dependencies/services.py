# backend/studio_booking/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected. Services are
request-scoped because they hold the request's database session.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.attendance_service import AttendanceService
from ...services.booking_service import BookingService
from ...services.credit_allocation_service import CreditAllocationService
from ...services.waitlist_service import WaitlistService
from .database import get_db


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    """
    Get booking service instance with all dependencies.

    The booking service owns its waitlist promoter, allocator, occupancy
    synchronizer and QR issuer.
    """
    return BookingService(db)


def get_waitlist_service(
    booking_service: BookingService = Depends(get_booking_service),
) -> WaitlistService:
    """Waitlist service sharing the request's booking service for promotions."""
    return booking_service.waitlist_service


def get_credit_allocation_service(db: Session = Depends(get_db)) -> CreditAllocationService:
    return CreditAllocationService(db)


def get_attendance_service(db: Session = Depends(get_db)) -> AttendanceService:
    return AttendanceService(db)
