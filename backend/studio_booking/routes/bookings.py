# backend/studio_booking/routes/bookings.py
"""
Booking lifecycle routes.

Endpoints under /api/bookings. All business logic delegated to
BookingService / AttendanceService.

Endpoints:
    POST / - Create a booking (409 with booking_id if it already exists)
    POST /attendance - Check in / check out by QR token or booking id
    POST /{booking_id}/cancel - Cancel a booking
    POST /{booking_id}/rebook - Move a booking to another session
    GET /{booking_id}/qr-token - Display token for a booking
"""

import asyncio
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, status

from ..api.dependencies import get_attendance_service, get_booking_service
from ..core.exceptions import DomainException, DuplicateBookingException
from ..schemas.booking import (
    ActorFields,
    AttendanceRequest,
    AttendanceResponse,
    BookingCancelRequest,
    BookingCancelResponse,
    BookingCreateRequest,
    BookingCreateResponse,
    BookingRebookRequest,
    BookingRebookResponse,
    QrTokenResponse,
)
from ..services.attendance_service import AttendanceService
from ..services.booking_service import ActorContext, BookingService

logger = logging.getLogger(__name__)

# No prefix here, added when mounting in main.py
router = APIRouter(tags=["bookings"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _actor(payload: ActorFields) -> ActorContext:
    return ActorContext(
        actor_client_id=payload.actor_client_id,
        actor_staff_id=payload.actor_staff_id,
        actor_instructor_id=payload.actor_instructor_id,
    )


@router.post("", response_model=BookingCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreateRequest = Body(...),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingCreateResponse:
    """Book a session, spending a plan credit."""
    try:
        result = await asyncio.to_thread(
            booking_service.create_booking,
            payload.session_id,
            client_id=payload.client_id,
            client_hint=payload.client_hint,
            actor=_actor(payload),
            preferred_plan_id=payload.preferred_plan_id,
        )
        if result.duplicated:
            raise DuplicateBookingException(result.booking_id)
        return BookingCreateResponse(
            booking_id=result.booking_id,
            token=result.token,
            plan_purchase_id=result.plan_purchase_id,
            plan_name=result.plan_name,
            reactivated=result.reactivated,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/attendance", response_model=AttendanceResponse)
async def mark_attendance(
    payload: AttendanceRequest = Body(...),
    attendance_service: AttendanceService = Depends(get_attendance_service),
) -> AttendanceResponse:
    """Check a client in (or revert it). Scanned tokens default to present=True."""
    try:
        result = await asyncio.to_thread(
            attendance_service.mark_attendance,
            booking_id=payload.booking_id,
            token=payload.token,
            present=payload.present,
            actor_staff_id=payload.actor_staff_id,
        )
        return AttendanceResponse(
            booking_id=result.booking_id,
            status=result.status,
            present=result.present,
            changed=result.changed,
            source=result.source,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/cancel", response_model=BookingCancelResponse)
async def cancel_booking(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    payload: Optional[BookingCancelRequest] = Body(None),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingCancelResponse:
    """Cancel a booking. Cancelling twice is not an error."""
    payload = payload or BookingCancelRequest()
    try:
        result = await asyncio.to_thread(
            booking_service.cancel_booking,
            booking_id,
            actor=_actor(payload),
            notes=payload.notes,
        )
        return BookingCancelResponse(
            booking_id=result.booking_id,
            cancelled=result.cancelled,
            already_cancelled=result.already_cancelled,
            refunded=result.refunded,
            refund_failed=result.refund_failed,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/rebook", response_model=BookingRebookResponse)
async def rebook_booking(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    payload: BookingRebookRequest = Body(...),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingRebookResponse:
    """Move a booking to another session, keeping its plan when possible."""
    try:
        result = await asyncio.to_thread(
            booking_service.rebook_booking,
            booking_id,
            payload.new_session_id,
            actor=_actor(payload),
            preferred_plan_id=payload.preferred_plan_id,
        )
        return BookingRebookResponse(
            booking_id=result.booking_id,
            token=result.token,
            rebooked_from=result.rebooked_from,
            plan_purchase_id=result.plan_purchase_id,
            plan_name=result.plan_name,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}/qr-token", response_model=QrTokenResponse)
async def get_qr_token(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    booking_service: BookingService = Depends(get_booking_service),
) -> QrTokenResponse:
    try:
        token = await asyncio.to_thread(booking_service.get_qr_token, booking_id)
        return QrTokenResponse(**token)
    except DomainException as e:
        handle_domain_exception(e)
