# backend/studio_booking/routes/waitlist.py
"""
Waitlist routes.

Endpoints:
    POST / - Join a session's waitlist (idempotent)
    DELETE / - Leave a waitlist by entry id or by (session, client)
"""

import asyncio

from fastapi import APIRouter, Body, Depends

from ..api.dependencies import get_waitlist_service
from ..core.exceptions import DomainException
from ..schemas.waitlist import (
    WaitlistEntryInfo,
    WaitlistEntryResponse,
    WaitlistJoinRequest,
    WaitlistLeaveRequest,
    WaitlistLeaveResponse,
)
from ..services.waitlist_service import WaitlistService
from .bookings import handle_domain_exception

router = APIRouter(tags=["waitlist"])


@router.post("", response_model=WaitlistEntryResponse)
async def join_waitlist(
    payload: WaitlistJoinRequest = Body(...),
    waitlist_service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistEntryResponse:
    try:
        position = await asyncio.to_thread(
            waitlist_service.join, session_id=payload.session_id, client_id=payload.client_id
        )
        return WaitlistEntryResponse(
            entry=WaitlistEntryInfo(
                id=position.entry_id, position=position.position, status=position.status
            ),
            waitlist_count=position.waitlist_count,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.delete("", response_model=WaitlistLeaveResponse)
async def leave_waitlist(
    payload: WaitlistLeaveRequest = Body(...),
    waitlist_service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistLeaveResponse:
    try:
        removal = await asyncio.to_thread(
            waitlist_service.leave,
            entry_id=payload.waitlist_id,
            session_id=payload.session_id,
            client_id=payload.client_id,
        )
        return WaitlistLeaveResponse(removed=removal.removed, waitlist_count=removal.waitlist_count)
    except DomainException as e:
        handle_domain_exception(e)
