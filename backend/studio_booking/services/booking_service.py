# backend/studio_booking/services/booking_service.py
"""
Booking lifecycle service.

Orchestrates create / cancel / rebook for class sessions:
- booking window and capacity checks against a fresh count
- reuse of a cancelled (session, client) row instead of a second insert
- QR token issuance
- plan credit allocation with compensation on partial failure
- occupancy resynchronization after every mutation
- audit events and waitlist promotion on cancellation

No multi-step transaction is assumed. Each step commits on its own and
the steps that can race are conditional updates; when a later step
fails, earlier steps are undone explicitly.
"""

from dataclasses import dataclass
from datetime import timedelta
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    AllocationFailure,
    BookingNotFoundException,
    BookingWindowException,
    BusinessRuleException,
    ConflictException,
    DuplicateBookingException,
    NotFoundException,
    SessionFullException,
    SessionNotFoundException,
    ValidationException,
    classify_allocation_failure,
    exception_for_allocation_failure,
)
from ..core.timezone_utils import ensure_utc, studio_start_of_day, to_studio_date, utc_now
from ..models.booking import Booking, BookingEventType
from ..models.course import ClassSession
from ..models.plan import PlanModality
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.client_repository import ClientRepository
from ..repositories.factory import RepositoryFactory
from ..repositories.session_repository import SessionRepository
from .base import BaseService
from .credit_allocation_service import AllocatedPlan, CreditAllocationService
from .occupancy_service import OccupancyService
from .qr_token_service import QrTokenService
from .waitlist_service import WaitlistService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActorContext:
    """Who is performing a lifecycle operation."""

    actor_client_id: Optional[str] = None
    actor_staff_id: Optional[str] = None
    actor_instructor_id: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return bool(self.actor_staff_id or self.actor_instructor_id)

    def event_fields(self) -> Dict[str, Optional[str]]:
        return {
            "actor_client_id": self.actor_client_id,
            "actor_staff_id": self.actor_staff_id,
            "actor_instructor_id": self.actor_instructor_id,
        }


@dataclass(frozen=True)
class BookingResult:
    booking_id: str
    duplicated: bool = False
    token: Optional[str] = None
    plan_purchase_id: Optional[str] = None
    plan_name: Optional[str] = None
    reactivated: bool = False


@dataclass(frozen=True)
class CancelResult:
    booking_id: str
    cancelled: bool = False
    already_cancelled: bool = False
    refunded: bool = False
    refund_failed: bool = False


@dataclass(frozen=True)
class RebookResult:
    booking_id: str
    token: Optional[str]
    rebooked_from: str
    plan_purchase_id: Optional[str] = None
    plan_name: Optional[str] = None


class BookingService(BaseService):
    """
    Service layer for the booking lifecycle.

    Collaborators are injectable so tests can substitute repositories or
    simulate failures in a single step.
    """

    def __init__(
        self,
        db: Session,
        session_repository: Optional[SessionRepository] = None,
        booking_repository: Optional[BookingRepository] = None,
        client_repository: Optional[ClientRepository] = None,
        credit_service: Optional[CreditAllocationService] = None,
        occupancy_service: Optional[OccupancyService] = None,
        qr_token_service: Optional[QrTokenService] = None,
        waitlist_service: Optional[WaitlistService] = None,
    ):
        super().__init__(db)
        self.session_repository = (
            session_repository or RepositoryFactory.create_session_repository(db)
        )
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )
        self.client_repository = client_repository or RepositoryFactory.create_client_repository(db)
        self.credit_service = credit_service or CreditAllocationService(
            db, booking_repository=self.booking_repository
        )
        self.occupancy_service = occupancy_service or OccupancyService(
            db,
            session_repository=self.session_repository,
            booking_repository=self.booking_repository,
        )
        self.qr_token_service = qr_token_service or QrTokenService(
            db, booking_repository=self.booking_repository
        )
        self.waitlist_service = waitlist_service or WaitlistService(db, booking_service=self)

    # Create

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self,
        session_id: str,
        *,
        client_id: Optional[str] = None,
        client_hint: Optional[str] = None,
        actor: Optional[ActorContext] = None,
        preferred_plan_id: Optional[str] = None,
    ) -> BookingResult:
        """
        Reserve a seat for a client and pay for it with a plan credit.

        Returns a ``duplicated`` result (not an error) when the client
        already holds a live booking for the session.

        Raises:
            SessionNotFoundException: unknown session
            BookingWindowException: session not open for booking yet
            SessionFullException: no seat left at the time of the check
            AllocationExhaustedException / FixedPlanContactStaffException:
                no plan could pay for the booking
        """
        result, _ = self._create_booking(
            session_id,
            client_id=client_id,
            client_hint=client_hint,
            actor=actor or ActorContext(),
            preferred_plan_id=preferred_plan_id,
        )
        return result

    def _create_booking(
        self,
        session_id: str,
        *,
        client_id: Optional[str],
        client_hint: Optional[str],
        actor: ActorContext,
        preferred_plan_id: Optional[str],
    ) -> Tuple[BookingResult, Optional[Dict[str, Any]]]:
        """Create path shared with rebook; also returns the prior cancelled state of a reused row."""
        session = self.session_repository.get_session_with_course(session_id)
        if session is None:
            raise SessionNotFoundException(session_id)

        self._ensure_booking_window(session)
        resolved_client_id = self._resolve_client_id(client_id, client_hint)

        existing = self.booking_repository.find_for_session_client(session_id, resolved_client_id)
        if existing is not None and not existing.is_cancelled:
            self.logger.info(
                "Client %s already booked on session %s (%s)",
                resolved_client_id,
                session_id,
                existing.id,
            )
            return BookingResult(booking_id=existing.id, duplicated=True), None

        occupied = self.booking_repository.count_active_for_session(session_id)
        if occupied >= session.capacity:
            raise SessionFullException(session_id, session.capacity, occupied)

        # Write the seat claim
        now = utc_now()
        snapshot: Optional[Dict[str, Any]] = None
        if existing is not None:
            snapshot = self._cancelled_snapshot(existing)
            with self.transaction():
                affected = self.booking_repository.reactivate(existing.id, reserved_at=now)
            if affected == 0:
                return self._resolve_lost_write(session_id, resolved_client_id, "booking"), None
            booking_id = existing.id
        else:
            with self.transaction():
                created = self.booking_repository.insert_booking(
                    session_id=session_id, client_id=resolved_client_id, reserved_at=now
                )
            if created is None:
                return self._resolve_lost_write(session_id, resolved_client_id, "booking"), None
            booking_id = created.id

        # Verify the claim now that it is visible to concurrent requests
        occupied_after = self.booking_repository.count_active_for_session(session_id)
        if occupied_after > session.capacity:
            self.logger.warning(
                "Session %s oversubscribed (%d/%d); discarding booking %s",
                session_id,
                occupied_after,
                session.capacity,
                booking_id,
            )
            self._revert_attempt(booking_id, session_id, snapshot)
            raise SessionFullException(session_id, session.capacity, occupied_after - 1)

        try:
            qr = self.qr_token_service.issue(booking_id=booking_id, session_start=session.start_time)
            allocated = self._allocate_for_booking(
                booking_id=booking_id,
                session=session,
                client_id=resolved_client_id,
                actor=actor,
                preferred_plan_id=preferred_plan_id,
            )
        except Exception:
            self._revert_attempt(booking_id, session_id, snapshot)
            raise

        self.occupancy_service.sync(session_id)

        plan_purchase_id = allocated.plan_purchase_id if allocated else None
        self._record_event(
            booking_id,
            BookingEventType.CREATED,
            actor=actor,
            fallback_client_id=resolved_client_id,
            metadata={
                "planPurchaseId": plan_purchase_id,
                "reactivatedFromCancelled": snapshot is not None,
            },
        )

        self.logger.info(
            "Booking %s %s for client %s on session %s (plan=%s)",
            booking_id,
            "reactivated" if snapshot is not None else "created",
            resolved_client_id,
            session_id,
            plan_purchase_id,
        )
        result = BookingResult(
            booking_id=booking_id,
            token=qr.token,
            plan_purchase_id=plan_purchase_id,
            plan_name=allocated.plan_name if allocated else None,
            reactivated=snapshot is not None,
        )
        return result, snapshot

    def _allocate_for_booking(
        self,
        *,
        booking_id: str,
        session: ClassSession,
        client_id: str,
        actor: ActorContext,
        preferred_plan_id: Optional[str],
    ) -> Optional[AllocatedPlan]:
        attempt = self.credit_service.allocate(
            client_id=client_id,
            session_id=session.id,
            session_category=session.category,
            is_staff_actor=actor.is_staff,
            preferred_plan_id=preferred_plan_id,
        )
        if attempt.plan is not None:
            self.credit_service.attach_to_booking(
                attempt.plan, booking_id=booking_id, session_id=session.id
            )
            return attempt.plan

        failure = classify_allocation_failure(self.credit_service.has_active_fixed_plan(client_id))
        if settings.require_plan_credit or failure is AllocationFailure.FIXED_PLAN_CONTACT_STAFF:
            details: Dict[str, Any] = {"session_id": session.id, "client_id": client_id}
            if attempt.preferred_error is not None:
                details["preferred_plan"] = attempt.preferred_error.to_dict()
            raise exception_for_allocation_failure(failure, details)

        self.logger.info("Booking %s kept without a plan credit", booking_id)
        return None

    def _ensure_booking_window(self, session: ClassSession) -> None:
        """Sessions open for booking at studio midnight, ``booking_window_days`` before the class day."""
        course = session.course
        if course is None or course.booking_window_days is None:
            return
        window_days = max(0, int(course.booking_window_days))
        unlock_day = to_studio_date(session.start_time) - timedelta(days=window_days)
        if studio_start_of_day(unlock_day) > utc_now():
            raise BookingWindowException(unlock_day, window_days)

    def _resolve_client_id(self, client_id: Optional[str], client_hint: Optional[str]) -> str:
        if client_id:
            if self.client_repository.get_by_id(client_id) is None:
                raise NotFoundException(
                    "Client not found", code="CLIENT_NOT_FOUND", details={"client_id": client_id}
                )
            return client_id

        name = (client_hint or "").strip() or settings.default_client_name
        client = self.client_repository.find_by_name(name)
        if client is not None:
            return client.id
        with self.transaction():
            client = self.client_repository.create_client(name)
        self.logger.info("Created client %s from name hint", client.id)
        return client.id

    @staticmethod
    def _cancelled_snapshot(booking: Booking) -> Dict[str, Any]:
        return {
            "reserved_at": booking.reserved_at,
            "cancelled_at": booking.cancelled_at,
            "cancelled_by": booking.cancelled_by,
            "plan_purchase_id": booking.plan_purchase_id,
            "rebooked_from_booking_id": booking.rebooked_from_booking_id,
        }

    def _resolve_lost_write(self, session_id: str, client_id: str, resource: str) -> BookingResult:
        """A concurrent request wrote the (session, client) row between our read and write."""
        if settings.metrics_enabled:
            prometheus_metrics.inc_optimistic_conflict(resource)
        current = self.booking_repository.find_for_session_client(session_id, client_id)
        if current is not None and not current.is_cancelled:
            return BookingResult(booking_id=current.id, duplicated=True)
        raise ConflictException(
            "The booking changed while it was being created, please try again",
            code="BOOKING_CONFLICT",
            details={"session_id": session_id, "client_id": client_id},
        )

    def _revert_attempt(
        self, booking_id: str, session_id: str, snapshot: Optional[Dict[str, Any]]
    ) -> None:
        """
        Undo a seat claim whose later steps failed.

        New rows are deleted; reactivated rows go back to their previous
        cancelled state. Failures here are logged and never mask the
        original error.
        """
        try:
            with self.transaction():
                if snapshot is None:
                    self.booking_repository.delete_booking(booking_id)
                else:
                    self.booking_repository.restore_cancelled_state(booking_id, snapshot)
            self.occupancy_service.sync(session_id)
        except Exception as exc:
            self.logger.error(
                "Failed to revert booking attempt %s on session %s: %s",
                booking_id,
                session_id,
                exc,
            )

    # Cancel

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self,
        booking_id: str,
        *,
        actor: Optional[ActorContext] = None,
        notes: Optional[str] = None,
        force_refund: bool = False,
        credit_returned: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CancelResult:
        """
        Cancel a booking, refund its credit when eligible, then try to fill
        the freed seat from the waitlist.

        Cancelling an already cancelled booking is a no-op. ``credit_returned``
        means the caller already gave the credit back (rebook), so no second
        refund is issued. A failed refund does not undo the cancellation: it
        is logged, flagged on the result and the CANCELLED event, and the
        waitlist is still promoted.
        """
        actor = actor or ActorContext()

        booking = self.booking_repository.get_booking_with_details(booking_id)
        if booking is None:
            raise BookingNotFoundException(booking_id)
        if booking.is_cancelled:
            return CancelResult(booking_id=booking_id, already_cancelled=True)

        # Read everything needed before the row is updated under us
        session_id = booking.session_id
        session_start = booking.session.start_time
        course = booking.session.course
        plan = booking.plan_purchase
        window_hours = settings.default_cancellation_window_hours
        if course is not None and course.cancellation_window_hours is not None:
            window_hours = course.cancellation_window_hours

        now = utc_now()
        with self.transaction():
            affected = self.booking_repository.mark_cancelled(
                booking_id,
                cancelled_at=now,
                cancelled_by=actor.actor_client_id or booking.client_id,
            )
        if affected == 0:
            if settings.metrics_enabled:
                prometheus_metrics.inc_optimistic_conflict("booking")
            self.logger.info("Booking %s was cancelled concurrently", booking_id)
            return CancelResult(booking_id=booking_id, already_cancelled=True)

        hours_until_start = (ensure_utc(session_start) - now).total_seconds() / 3600
        refund_eligible = plan is not None and (
            force_refund
            or (plan.modality == PlanModality.FLEXIBLE.value and hours_until_start >= window_hours)
        )

        refunded = credit_returned
        refund_failed = False
        if refund_eligible and plan is not None and not credit_returned:
            try:
                refunded = self.credit_service.refund(
                    plan_purchase_id=plan.id,
                    booking_id=booking_id,
                    session_id=session_id,
                    reason="rebook" if force_refund else "cancellation",
                )
            except Exception as exc:
                refund_failed = True
                self.logger.error(
                    "Refund for cancelled booking %s on plan %s failed: %s",
                    booking_id,
                    plan.id,
                    exc,
                )

        try:
            self.occupancy_service.sync(session_id)
            self._record_event(
                booking_id,
                BookingEventType.CANCELLED,
                actor=actor,
                notes=notes,
                metadata={
                    "planPurchaseId": plan.id if plan is not None else None,
                    "refundedCredit": refunded,
                    "refundFailed": refund_failed,
                    "cancellationWindowHours": window_hours,
                    **(metadata or {}),
                },
            )
        finally:
            self.waitlist_service.promote(session_id)

        self.logger.info(
            "Booking %s cancelled (refunded=%s, %.1fh before start)",
            booking_id,
            refunded,
            hours_until_start,
        )
        return CancelResult(
            booking_id=booking_id,
            cancelled=True,
            refunded=refunded,
            refund_failed=refund_failed,
        )

    # Rebook

    @BaseService.measure_operation("rebook_booking")
    def rebook_booking(
        self,
        booking_id: str,
        new_session_id: str,
        *,
        actor: Optional[ActorContext] = None,
        preferred_plan_id: Optional[str] = None,
    ) -> RebookResult:
        """
        Move a booking to another session.

        The original's credit is returned first, so the new booking can
        spend it even when it was the plan's last one. The new booking is
        then created (carrying the original plan as the preferred one) and
        the original cancelled. Reusing the same plan nets to zero credits.

        Until the original is cancelled every step is undone on failure:
        the new booking is removed with its credit and the returned credit
        is taken back, leaving the original booking as it was.
        """
        actor = actor or ActorContext()

        original = self.booking_repository.get_booking_with_details(booking_id)
        if original is None:
            raise BookingNotFoundException(booking_id)
        if original.is_cancelled:
            raise BusinessRuleException(
                "Cancelled bookings cannot be rebooked",
                code="BOOKING_CANCELLED",
                details={"booking_id": booking_id},
            )
        if original.session_id == new_session_id:
            raise ValidationException(
                "The booking is already on this session",
                code="REBOOK_SAME_SESSION",
                details={"booking_id": booking_id, "session_id": new_session_id},
            )

        client_id = original.client_id
        original_session_id = original.session_id
        original_plan_id = original.plan_purchase_id

        credit_returned = False
        if original_plan_id:
            credit_returned = self.credit_service.refund(
                plan_purchase_id=original_plan_id,
                booking_id=booking_id,
                session_id=original_session_id,
                reason="rebook",
            )

        def _take_back_credit() -> None:
            if credit_returned and original_plan_id:
                self.credit_service.reverse_refund(
                    plan_purchase_id=original_plan_id,
                    booking_id=booking_id,
                    session_id=original_session_id,
                    reason="rebook",
                )

        try:
            created, snapshot = self._create_booking(
                new_session_id,
                client_id=client_id,
                client_hint=None,
                actor=actor,
                preferred_plan_id=preferred_plan_id or original_plan_id,
            )
            if created.duplicated:
                raise DuplicateBookingException(created.booking_id)
        except Exception:
            _take_back_credit()
            raise

        try:
            with self.transaction():
                self.booking_repository.set_rebooked_from(created.booking_id, booking_id)
            cancelled = self.cancel_booking(
                booking_id,
                actor=actor,
                notes="Rebooked",
                force_refund=True,
                credit_returned=credit_returned,
                metadata={"rebookedTo": created.booking_id},
            )
        except Exception:
            if not self._is_cancelled(booking_id):
                self._discard_rebook_target(created, new_session_id, snapshot)
                _take_back_credit()
            raise

        if cancelled.already_cancelled:
            # Someone else cancelled the original meanwhile; their outcome stands
            self._discard_rebook_target(created, new_session_id, snapshot)
            _take_back_credit()
            raise ConflictException(
                "The booking was cancelled while it was being rebooked",
                code="BOOKING_CONFLICT",
                details={"booking_id": booking_id},
            )

        self._record_event(
            created.booking_id,
            BookingEventType.REBOOKED,
            actor=actor,
            fallback_client_id=client_id,
            metadata={"rebookedFrom": booking_id, "planPurchaseId": created.plan_purchase_id},
        )
        self.logger.info("Booking %s rebooked as %s", booking_id, created.booking_id)

        return RebookResult(
            booking_id=created.booking_id,
            token=created.token,
            rebooked_from=booking_id,
            plan_purchase_id=created.plan_purchase_id,
            plan_name=created.plan_name,
        )

    def _is_cancelled(self, booking_id: str) -> bool:
        booking = self.booking_repository.get_by_id(booking_id, load_relationships=False)
        return booking is not None and booking.is_cancelled

    def _discard_rebook_target(
        self, created: BookingResult, session_id: str, snapshot: Optional[Dict[str, Any]]
    ) -> None:
        """Refund and remove the new booking of a rebook that could not complete."""
        if created.plan_purchase_id:
            try:
                self.credit_service.refund(
                    plan_purchase_id=created.plan_purchase_id,
                    booking_id=created.booking_id,
                    session_id=session_id,
                    reason="rebook reverted",
                )
            except Exception as exc:
                self.logger.error(
                    "Failed to refund discarded rebook booking %s: %s", created.booking_id, exc
                )
        self._revert_attempt(created.booking_id, session_id, snapshot)

    # Queries

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_booking_with_details(booking_id)
        if booking is None:
            raise BookingNotFoundException(booking_id)
        return booking

    def get_qr_token(self, booking_id: str) -> Dict[str, Any]:
        """Display token for an active booking."""
        booking = self.get_booking(booking_id)
        qr = self.qr_token_service.get_for_booking(booking_id)
        return {
            "booking_id": booking.id,
            "token": qr.token,
            "expires_at": ensure_utc(qr.expires_at),
            "status": booking.status,
        }

    # Helpers

    def _record_event(
        self,
        booking_id: str,
        event_type: BookingEventType,
        *,
        actor: ActorContext,
        fallback_client_id: Optional[str] = None,
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        fields = actor.event_fields()
        if not fields["actor_client_id"] and not actor.is_staff:
            fields["actor_client_id"] = fallback_client_id
        with self.transaction():
            self.booking_repository.create_event(
                booking_id=booking_id,
                event_type=event_type.value,
                notes=notes,
                metadata=metadata,
                **fields,
            )
