# backend/studio_booking/schemas/__init__.py
"""Pydantic schemas for the studio booking HTTP API."""

from .booking import (
    ActorFields,
    AttendanceRequest,
    AttendanceResponse,
    BookingCancelRequest,
    BookingCancelResponse,
    BookingCreateRequest,
    BookingCreateResponse,
    BookingRebookRequest,
    BookingRebookResponse,
    EligiblePlanResponse,
    EligiblePlansResponse,
    QrTokenResponse,
)
from .waitlist import (
    WaitlistEntryInfo,
    WaitlistEntryResponse,
    WaitlistJoinRequest,
    WaitlistLeaveRequest,
    WaitlistLeaveResponse,
)

__all__ = [
    "ActorFields",
    "AttendanceRequest",
    "AttendanceResponse",
    "BookingCancelRequest",
    "BookingCancelResponse",
    "BookingCreateRequest",
    "BookingCreateResponse",
    "BookingRebookRequest",
    "BookingRebookResponse",
    "EligiblePlanResponse",
    "EligiblePlansResponse",
    "QrTokenResponse",
    "WaitlistEntryInfo",
    "WaitlistEntryResponse",
    "WaitlistJoinRequest",
    "WaitlistLeaveRequest",
    "WaitlistLeaveResponse",
]
