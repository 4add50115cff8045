# backend/studio_booking/schemas/booking.py
"""
Booking schemas for the studio booking engine.

Requests carry the acting identity in the body; authentication itself
happens upstream.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import Field, model_validator

from ._strict_base import StrictModel, StrictRequestModel


class ActorFields(StrictRequestModel):
    """Who performs the operation. Staff or instructor actors cannot spend app-only plans."""

    actor_client_id: Optional[str] = Field(None, max_length=26)
    actor_staff_id: Optional[str] = Field(None, max_length=26)
    actor_instructor_id: Optional[str] = Field(None, max_length=26)


class BookingCreateRequest(ActorFields):
    session_id: str = Field(..., min_length=1, max_length=26, description="Session to book")
    client_id: Optional[str] = Field(None, max_length=26, description="Client to book for")
    client_hint: Optional[str] = Field(
        None,
        max_length=255,
        description="Display name used to find or create the client when no id is given",
    )
    preferred_plan_id: Optional[str] = Field(
        None, max_length=26, description="Plan purchase to spend first"
    )


class BookingCreateResponse(StrictModel):
    booking_id: str
    token: Optional[str] = None
    plan_purchase_id: Optional[str] = None
    plan_name: Optional[str] = None
    reactivated: bool = False


class BookingCancelRequest(ActorFields):
    notes: Optional[str] = Field(None, max_length=1000)


class BookingCancelResponse(StrictModel):
    booking_id: str
    cancelled: bool
    already_cancelled: bool = False
    refunded: bool = False
    refund_failed: bool = False


class BookingRebookRequest(ActorFields):
    new_session_id: str = Field(..., min_length=1, max_length=26)
    preferred_plan_id: Optional[str] = Field(None, max_length=26)


class BookingRebookResponse(StrictModel):
    booking_id: str
    token: Optional[str] = None
    rebooked_from: str
    plan_purchase_id: Optional[str] = None
    plan_name: Optional[str] = None


class QrTokenResponse(StrictModel):
    booking_id: str
    token: str
    expires_at: datetime
    status: str


class AttendanceRequest(StrictRequestModel):
    booking_id: Optional[str] = Field(None, max_length=26)
    token: Optional[str] = Field(None, max_length=32, description="Scanned QR code")
    present: Optional[bool] = Field(
        None, description="True to check in, False to revert; defaults to True for scans"
    )
    actor_staff_id: Optional[str] = Field(None, max_length=26)

    @model_validator(mode="after")
    def _require_target(self) -> "AttendanceRequest":
        if not self.booking_id and not self.token:
            raise ValueError("booking_id or token is required")
        return self


class AttendanceResponse(StrictModel):
    booking_id: str
    status: str
    present: bool
    changed: bool
    source: str


class EligiblePlanResponse(StrictModel):
    plan_purchase_id: str
    plan_name: Optional[str] = None
    category: Optional[str] = None
    remaining_classes: Optional[int] = None
    expires_at: Optional[date] = None
    unlimited: bool


class EligiblePlansResponse(StrictModel):
    results: List[EligiblePlanResponse]
