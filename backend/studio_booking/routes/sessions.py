# backend/studio_booking/routes/sessions.py
"""
Session routes.

Endpoints:
    GET /{session_id}/eligible-plans - Plans a client could spend on the session
"""

import asyncio

from fastapi import APIRouter, Depends, Path, Query

from ..api.dependencies import get_credit_allocation_service
from ..core.exceptions import DomainException
from ..schemas.booking import EligiblePlanResponse, EligiblePlansResponse
from ..services.credit_allocation_service import CreditAllocationService
from .bookings import ULID_PATH_PATTERN, handle_domain_exception

router = APIRouter(tags=["sessions"])


@router.get("/{session_id}/eligible-plans", response_model=EligiblePlansResponse)
async def list_eligible_plans(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    client_id: str = Query(..., min_length=1, max_length=26),
    staff: bool = Query(False, description="Evaluate as a staff/instructor actor"),
    credit_service: CreditAllocationService = Depends(get_credit_allocation_service),
) -> EligiblePlansResponse:
    """Plans the allocator would accept for this client and session. Nothing is consumed."""
    try:
        plans = await asyncio.to_thread(
            credit_service.list_eligible_plans,
            client_id=client_id,
            session_id=session_id,
            is_staff_actor=staff,
        )
        return EligiblePlansResponse(
            results=[
                EligiblePlanResponse(
                    plan_purchase_id=plan.plan_purchase_id,
                    plan_name=plan.plan_name,
                    category=plan.category,
                    remaining_classes=plan.remaining_classes,
                    expires_at=plan.expires_at,
                    unlimited=plan.unlimited,
                )
                for plan in plans
            ]
        )
    except DomainException as e:
        handle_domain_exception(e)
