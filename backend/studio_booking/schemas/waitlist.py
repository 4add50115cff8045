# backend/studio_booking/schemas/waitlist.py
"""Waitlist request/response schemas."""

from typing import Literal, Optional

from pydantic import Field, model_validator

from ._strict_base import StrictModel, StrictRequestModel


class WaitlistJoinRequest(StrictRequestModel):
    session_id: str = Field(..., min_length=1, max_length=26)
    client_id: str = Field(..., min_length=1, max_length=26)


class WaitlistEntryInfo(StrictModel):
    id: str
    position: int
    status: Literal["PENDING", "PROMOTED", "CANCELLED"]


class WaitlistEntryResponse(StrictModel):
    entry: WaitlistEntryInfo
    waitlist_count: int


class WaitlistLeaveRequest(StrictRequestModel):
    waitlist_id: Optional[str] = Field(None, max_length=26)
    session_id: Optional[str] = Field(None, max_length=26)
    client_id: Optional[str] = Field(None, max_length=26)

    @model_validator(mode="after")
    def _require_identifiers(self) -> "WaitlistLeaveRequest":
        if not self.waitlist_id and not (self.session_id and self.client_id):
            raise ValueError("waitlist_id or both session_id and client_id are required")
        return self


class WaitlistLeaveResponse(StrictModel):
    removed: bool
    waitlist_count: int
