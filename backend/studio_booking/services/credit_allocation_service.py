# backend/studio_booking/services/credit_allocation_service.py
"""
Credit allocation for bookings.

Picks which of a client's plan purchases pays for a session and moves
the credit. Every decrement is a compare-and-swap on the previously read
``remaining_classes``; a lost race simply moves on to the next candidate.

Selection policy:
    1. An explicitly preferred plan is tried first, strictly: any reason it
       cannot pay is reported as a typed error instead of being skipped.
    2. Then ACTIVE FLEXIBLE plans valid today, soonest expiry first and
       oldest purchase first, capped to ``settings.plan_candidate_limit``.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
import logging
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    DomainException,
    OptimisticConflict,
    PlanNotEligibleException,
    PlanNotFoundException,
    SessionNotFoundException,
)
from ..core.timezone_utils import get_studio_today
from ..models.plan import PlanModality, PlanPurchase
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.factory import RepositoryFactory
from ..repositories.plan_repository import PlanRepository
from ..repositories.session_repository import SessionRepository
from .base import BaseService

logger = logging.getLogger(__name__)


class PlanIneligibility(str, Enum):
    """Why a specific plan cannot pay for a specific session."""

    NOT_FLEXIBLE = "NOT_FLEXIBLE"
    CATEGORY_MISMATCH = "CATEGORY_MISMATCH"
    APP_ONLY = "APP_ONLY"
    NO_CLASSES_LEFT = "NO_CLASSES_LEFT"
    CONCURRENT_UPDATE = "CONCURRENT_UPDATE"


_INELIGIBILITY_MESSAGES = {
    PlanIneligibility.NOT_FLEXIBLE: "The selected plan does not allow self-service booking",
    PlanIneligibility.CATEGORY_MISMATCH: "The selected plan does not cover this class category",
    PlanIneligibility.APP_ONLY: "The selected plan can only be used from the member app",
    PlanIneligibility.NO_CLASSES_LEFT: "The selected plan has no classes left",
    PlanIneligibility.CONCURRENT_UPDATE: (
        "The selected plan was used by another booking at the same time, please try again"
    ),
}


def category_matches(plan_category: Optional[str], session_category: Optional[str]) -> bool:
    """A null category on either side matches anything."""
    if session_category is None or plan_category is None:
        return True
    return plan_category == session_category


@dataclass(frozen=True)
class AllocatedPlan:
    """A plan credit successfully taken for a booking."""

    plan_purchase_id: str
    plan_name: Optional[str]
    modality: str
    previous_remaining: Optional[int]
    new_remaining: Optional[int]
    unlimited: bool


@dataclass(frozen=True)
class AllocationAttempt:
    """
    Result of ``allocate``.

    ``plan`` is None when no candidate could pay. ``preferred_error`` holds
    the strict rejection of an explicitly requested plan, if there was one,
    so the caller can explain why its choice was not honoured.
    """

    plan: Optional[AllocatedPlan]
    preferred_error: Optional[DomainException] = None
    tried_plan_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class EligiblePlan:
    plan_purchase_id: str
    plan_name: Optional[str]
    category: Optional[str]
    remaining_classes: Optional[int]
    expires_at: Optional[date]
    unlimited: bool


class CreditAllocationService(BaseService):
    """Selects, consumes, compensates and refunds plan credits."""

    def __init__(
        self,
        db: Session,
        plan_repository: Optional[PlanRepository] = None,
        booking_repository: Optional[BookingRepository] = None,
        session_repository: Optional[SessionRepository] = None,
    ):
        super().__init__(db)
        self.plan_repository = plan_repository or RepositoryFactory.create_plan_repository(db)
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )
        self.session_repository = (
            session_repository or RepositoryFactory.create_session_repository(db)
        )

    # Eligibility

    def ineligibility_reason(
        self,
        plan: PlanPurchase,
        *,
        session_category: Optional[str],
        is_staff_actor: bool,
    ) -> Optional[PlanIneligibility]:
        """First rule the plan fails for this session, or None if it can pay."""
        if plan.modality != PlanModality.FLEXIBLE.value:
            return PlanIneligibility.NOT_FLEXIBLE
        if not category_matches(plan.category, session_category):
            return PlanIneligibility.CATEGORY_MISMATCH
        if plan.app_only and is_staff_actor:
            return PlanIneligibility.APP_ONLY
        if not plan.is_unlimited and (plan.remaining_classes or 0) <= 0:
            return PlanIneligibility.NO_CLASSES_LEFT
        return None

    # Allocation

    @BaseService.measure_operation("allocate_credit")
    def allocate(
        self,
        *,
        client_id: str,
        session_id: str,
        session_category: Optional[str],
        is_staff_actor: bool,
        preferred_plan_id: Optional[str] = None,
    ) -> AllocationAttempt:
        """
        Take one credit for ``client_id`` to attend ``session_id``.

        The preferred plan, when given, is attempted strictly first. If it is
        rejected the rejection is logged and kept on the result, and the
        regular candidate list is tried without it.
        """
        today = get_studio_today()
        tried: List[str] = []
        preferred_error: Optional[DomainException] = None

        if preferred_plan_id:
            tried.append(preferred_plan_id)
            try:
                allocated = self.allocate_preferred(
                    plan_id=preferred_plan_id,
                    client_id=client_id,
                    session_category=session_category,
                    is_staff_actor=is_staff_actor,
                    today=today,
                )
                return AllocationAttempt(plan=allocated, tried_plan_ids=tried)
            except (PlanNotFoundException, PlanNotEligibleException) as exc:
                self.logger.info(
                    "Preferred plan %s rejected for client %s on session %s: %s",
                    preferred_plan_id,
                    client_id,
                    session_id,
                    exc.code,
                )
                preferred_error = exc

        skip: Set[str] = set(tried)
        candidates = self.plan_repository.get_flexible_candidates(
            client_id=client_id,
            today=today,
            limit=settings.plan_candidate_limit,
            exclude_ids=skip,
        )
        for plan in candidates:
            if plan.id in skip:
                continue
            skip.add(plan.id)
            tried.append(plan.id)

            reason = self.ineligibility_reason(
                plan, session_category=session_category, is_staff_actor=is_staff_actor
            )
            if reason is not None:
                self.logger.debug("Skipping plan %s: %s", plan.id, reason.value)
                continue

            try:
                allocated = self._consume(plan)
            except OptimisticConflict:
                continue
            return AllocationAttempt(
                plan=allocated, preferred_error=preferred_error, tried_plan_ids=tried
            )

        self.logger.info(
            "No plan credit available for client %s on session %s (tried %d)",
            client_id,
            session_id,
            len(tried),
        )
        return AllocationAttempt(plan=None, preferred_error=preferred_error, tried_plan_ids=tried)

    def allocate_preferred(
        self,
        *,
        plan_id: str,
        client_id: str,
        session_category: Optional[str],
        is_staff_actor: bool,
        today: Optional[date] = None,
    ) -> AllocatedPlan:
        """
        Strictly consume a credit from one specific plan.

        Raises:
            PlanNotFoundException: plan missing, not ACTIVE/valid today, or owned by someone else
            PlanNotEligibleException: plan exists but cannot pay for this session
        """
        today = today or get_studio_today()
        plan = self.plan_repository.get_plan(plan_id)
        if plan is None or plan.client_id != client_id or not plan.is_valid_on(today):
            raise PlanNotFoundException(plan_id)

        reason = self.ineligibility_reason(
            plan, session_category=session_category, is_staff_actor=is_staff_actor
        )
        if reason is not None:
            raise PlanNotEligibleException(plan_id, reason.value, _INELIGIBILITY_MESSAGES[reason])

        try:
            return self._consume(plan)
        except OptimisticConflict:
            reason = PlanIneligibility.CONCURRENT_UPDATE
            raise PlanNotEligibleException(plan_id, reason.value, _INELIGIBILITY_MESSAGES[reason])

    def _consume(self, plan: PlanPurchase) -> AllocatedPlan:
        """
        Take one credit from an already-eligible plan.

        Unlimited plans succeed without touching the counter.

        Raises:
            OptimisticConflict: the counter changed since it was read
        """
        if plan.is_unlimited:
            allocated = AllocatedPlan(
                plan_purchase_id=plan.id,
                plan_name=plan.name,
                modality=plan.modality,
                previous_remaining=None,
                new_remaining=None,
                unlimited=True,
            )
        else:
            previous = int(plan.remaining_classes or 0)
            with self.transaction():
                affected = self.plan_repository.conditional_decrement(plan.id, previous)
            if affected == 0:
                self.logger.warning(
                    "Lost credit race on plan %s (expected remaining=%s)", plan.id, previous
                )
                if settings.metrics_enabled:
                    prometheus_metrics.inc_optimistic_conflict("plan_purchase")
                raise OptimisticConflict("plan_purchase", plan.id)
            allocated = AllocatedPlan(
                plan_purchase_id=plan.id,
                plan_name=plan.name,
                modality=plan.modality,
                previous_remaining=previous,
                new_remaining=previous - 1,
                unlimited=False,
            )

        if settings.metrics_enabled:
            prometheus_metrics.inc_credit_allocated(allocated.modality, allocated.unlimited)
        return allocated

    @BaseService.measure_operation("attach_credit")
    def attach_to_booking(
        self, allocated: AllocatedPlan, *, booking_id: str, session_id: str
    ) -> None:
        """
        Link the plan to the booking and write the +1 ledger row.

        If either write fails after the decrement already succeeded, the
        decrement is given back before the error propagates.
        """
        try:
            with self.transaction():
                self.booking_repository.attach_plan(booking_id, allocated.plan_purchase_id)
                if not allocated.unlimited:
                    self.plan_repository.record_usage(
                        plan_purchase_id=allocated.plan_purchase_id,
                        booking_id=booking_id,
                        session_id=session_id,
                        credit_delta=1,
                        notes="Booking allocation",
                    )
        except Exception:
            self.logger.error(
                "Recording credit for booking %s failed; restoring plan %s",
                booking_id,
                allocated.plan_purchase_id,
            )
            self.compensate(allocated)
            raise

    def compensate(self, allocated: AllocatedPlan) -> bool:
        """
        Give back a decrement whose bookkeeping never completed.

        Never raises; a failed compensation is logged for reconciliation
        against the usage ledger.
        """
        if allocated.unlimited:
            return False
        try:
            with self.transaction():
                restored = self.plan_repository.restore_credit(allocated.plan_purchase_id) > 0
        except Exception as exc:
            self.logger.error(
                "Failed to restore credit on plan %s (previous remaining=%s): %s",
                allocated.plan_purchase_id,
                allocated.previous_remaining,
                exc,
            )
            return False
        if restored and settings.metrics_enabled:
            prometheus_metrics.inc_credit_refunded("compensation")
        return restored

    # Refunds

    @BaseService.measure_operation("refund_credit")
    def refund(
        self,
        *,
        plan_purchase_id: str,
        booking_id: str,
        session_id: str,
        reason: str = "cancellation",
    ) -> bool:
        """
        Return one credit to a finite plan and write the -1 ledger row.

        The increment is capped at the plan's initial allotment, so a
        plan that is already full is left untouched and nothing is logged
        to the ledger. Unlimited plans have nothing to refund.
        """
        plan = self.plan_repository.get_plan(plan_purchase_id)
        if plan is None or plan.is_unlimited:
            return False

        with self.transaction():
            restored = self.plan_repository.restore_credit(plan_purchase_id) > 0
            if restored:
                self.plan_repository.record_usage(
                    plan_purchase_id=plan_purchase_id,
                    booking_id=booking_id,
                    session_id=session_id,
                    credit_delta=-1,
                    notes=f"Refund ({reason})",
                )

        if restored:
            self.logger.info(
                "Refunded one credit to plan %s for booking %s (%s)",
                plan_purchase_id,
                booking_id,
                reason,
            )
            if settings.metrics_enabled:
                prometheus_metrics.inc_credit_refunded(reason)
        else:
            self.logger.warning(
                "Plan %s already at its allotment; refund for booking %s skipped",
                plan_purchase_id,
                booking_id,
            )
        return restored

    def reverse_refund(
        self,
        *,
        plan_purchase_id: str,
        booking_id: str,
        session_id: str,
        reason: str,
    ) -> bool:
        """
        Take back a credit returned by ``refund`` whose follow-up step failed.

        Writes a +1 ledger row so the pair nets out. Never raises; when the
        credit was already spent elsewhere it is logged for reconciliation.
        """
        try:
            with self.transaction():
                taken = self.plan_repository.take_credit(plan_purchase_id) > 0
                if taken:
                    self.plan_repository.record_usage(
                        plan_purchase_id=plan_purchase_id,
                        booking_id=booking_id,
                        session_id=session_id,
                        credit_delta=1,
                        notes=f"Refund reverted ({reason})",
                    )
        except Exception as exc:
            self.logger.error(
                "Failed to take back refunded credit on plan %s for booking %s: %s",
                plan_purchase_id,
                booking_id,
                exc,
            )
            return False
        if not taken:
            self.logger.error(
                "Plan %s has no credit left to take back for booking %s",
                plan_purchase_id,
                booking_id,
            )
        return taken

    # Queries

    def has_active_fixed_plan(self, client_id: str) -> bool:
        return self.plan_repository.has_active_fixed_plan(
            client_id=client_id, today=get_studio_today()
        )

    @BaseService.measure_operation("list_eligible_plans")
    def list_eligible_plans(
        self, *, client_id: str, session_id: str, is_staff_actor: bool
    ) -> List[EligiblePlan]:
        """Plans the allocator would accept for this session, without consuming anything."""
        session = self.session_repository.get_session_with_course(session_id)
        if session is None:
            raise SessionNotFoundException(session_id)

        eligible: List[EligiblePlan] = []
        for plan in self.plan_repository.get_valid_plans_for_client(
            client_id=client_id, today=get_studio_today()
        ):
            if self.ineligibility_reason(
                plan, session_category=session.category, is_staff_actor=is_staff_actor
            ):
                continue
            eligible.append(
                EligiblePlan(
                    plan_purchase_id=plan.id,
                    plan_name=plan.name,
                    category=plan.category,
                    remaining_classes=plan.remaining_classes,
                    expires_at=plan.expires_at,
                    unlimited=plan.is_unlimited,
                )
            )
        return eligible
