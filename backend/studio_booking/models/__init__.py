"""
Database models for the studio booking engine.

The models are organized by functionality:
- Clients
- Courses and class sessions
- Plan types, plan purchases and the credit usage ledger
- Bookings, booking audit events and QR tokens
- Session waitlist
"""

from .booking import (
    ACTIVE_BOOKING_STATUSES,
    Booking,
    BookingEvent,
    BookingEventType,
    BookingStatus,
    QrToken,
)
from .client import Client
from .course import ClassSession, Course
from .plan import PlanModality, PlanPurchase, PlanPurchaseStatus, PlanType, PlanUsage
from .waitlist import WaitlistEntry, WaitlistStatus

__all__ = [
    "ACTIVE_BOOKING_STATUSES",
    "Booking",
    "BookingEvent",
    "BookingEventType",
    "BookingStatus",
    "ClassSession",
    "Client",
    "Course",
    "PlanModality",
    "PlanPurchase",
    "PlanPurchaseStatus",
    "PlanType",
    "PlanUsage",
    "QrToken",
    "WaitlistEntry",
    "WaitlistStatus",
]
