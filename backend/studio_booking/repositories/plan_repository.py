# backend/studio_booking/repositories/plan_repository.py
"""
Plan Repository for the studio booking engine.

Encapsulates plan purchase queries used by credit allocation and the
credit movements themselves (conditional decrement, capped restore,
ledger rows).
"""

from __future__ import annotations

from datetime import date
import logging
from typing import Iterable, List, Optional, cast

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.plan import PlanModality, PlanPurchase, PlanPurchaseStatus, PlanUsage
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _valid_on(day: date):
    return and_(
        PlanPurchase.status == PlanPurchaseStatus.ACTIVE.value,
        PlanPurchase.start_date <= day,
        or_(PlanPurchase.expires_at.is_(None), PlanPurchase.expires_at >= day),
    )


class PlanRepository(BaseRepository[PlanPurchase]):
    """Repository for plan purchases and the plan usage ledger."""

    def __init__(self, db: Session):
        super().__init__(db, PlanPurchase)
        self.logger = logging.getLogger(__name__)

    def get_plan(self, plan_id: str) -> Optional[PlanPurchase]:
        """Plan purchase with its plan type, re-read from the database."""
        try:
            return cast(
                Optional[PlanPurchase],
                self.db.query(PlanPurchase)
                .filter(PlanPurchase.id == plan_id)
                .populate_existing()
                .first(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load plan purchase %s: %s", plan_id, exc)
            raise RepositoryException("Failed to load plan purchase") from exc

    def get_flexible_candidates(
        self,
        *,
        client_id: str,
        today: date,
        limit: int,
        exclude_ids: Iterable[str] = (),
    ) -> List[PlanPurchase]:
        """
        ACTIVE FLEXIBLE plans valid today, soonest expiry first (never-expiring
        plans last), then oldest purchase first.
        """
        try:
            query = (
                self.db.query(PlanPurchase)
                .filter(
                    PlanPurchase.client_id == client_id,
                    PlanPurchase.modality == PlanModality.FLEXIBLE.value,
                    _valid_on(today),
                )
                .populate_existing()
            )
            excluded = [plan_id for plan_id in exclude_ids if plan_id]
            if excluded:
                query = query.filter(PlanPurchase.id.notin_(excluded))
            query = query.order_by(
                PlanPurchase.expires_at.is_(None).asc(),
                PlanPurchase.expires_at.asc(),
                PlanPurchase.purchased_at.asc(),
                PlanPurchase.id.asc(),
            ).limit(limit)
            return cast(List[PlanPurchase], query.all())
        except SQLAlchemyError as exc:
            self.logger.error("Failed to list flexible plans for client %s: %s", client_id, exc)
            raise RepositoryException("Failed to list flexible plans") from exc

    def get_valid_plans_for_client(self, *, client_id: str, today: date) -> List[PlanPurchase]:
        """Every plan of the client valid today, any modality."""
        try:
            return cast(
                List[PlanPurchase],
                self.db.query(PlanPurchase)
                .filter(PlanPurchase.client_id == client_id, _valid_on(today))
                .order_by(
                    PlanPurchase.expires_at.is_(None).asc(),
                    PlanPurchase.expires_at.asc(),
                    PlanPurchase.purchased_at.asc(),
                )
                .populate_existing()
                .all(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to list plans for client %s: %s", client_id, exc)
            raise RepositoryException("Failed to list client plans") from exc

    def has_active_fixed_plan(self, *, client_id: str, today: date) -> bool:
        """Whether the client holds a FIXED plan valid today with classes left (or unlimited)."""
        try:
            found = (
                self.db.query(PlanPurchase.id)
                .filter(
                    PlanPurchase.client_id == client_id,
                    PlanPurchase.modality == PlanModality.FIXED.value,
                    _valid_on(today),
                    or_(
                        PlanPurchase.remaining_classes.is_(None),
                        PlanPurchase.remaining_classes > 0,
                    ),
                )
                .first()
            )
            return found is not None
        except SQLAlchemyError as exc:
            self.logger.error("Failed to check fixed plans for client %s: %s", client_id, exc)
            raise RepositoryException("Failed to check fixed plans") from exc

    def conditional_decrement(self, plan_id: str, expected_remaining: int) -> int:
        """
        ``remaining_classes = expected - 1`` only while it still equals ``expected``.

        Zero affected rows means a concurrent allocation got there first.
        """
        if expected_remaining <= 0:
            return 0
        return self._conditional_update(
            plan_id,
            PlanPurchase.remaining_classes == expected_remaining,
            PlanPurchase.status == PlanPurchaseStatus.ACTIVE.value,
            remaining_classes=expected_remaining - 1,
        )

    def restore_credit(self, plan_id: str) -> int:
        """
        Atomically give one credit back, never exceeding ``initial_classes``.

        Returns affected rows; zero for unlimited plans or plans already full.
        """
        try:
            result = self.db.execute(
                update(PlanPurchase)
                .where(
                    PlanPurchase.id == plan_id,
                    PlanPurchase.remaining_classes.is_not(None),
                    or_(
                        PlanPurchase.initial_classes.is_(None),
                        PlanPurchase.remaining_classes < PlanPurchase.initial_classes,
                    ),
                )
                .values(remaining_classes=PlanPurchase.remaining_classes + 1)
                .execution_options(synchronize_session=False)
            )
            self._expire_identity(plan_id)
            return int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to restore credit on plan %s: %s", plan_id, exc)
            raise RepositoryException("Failed to restore plan credit") from exc

    def take_credit(self, plan_id: str) -> int:
        """Atomically take one credit from a finite plan that still has one."""
        return self._conditional_update(
            plan_id,
            PlanPurchase.remaining_classes > 0,
            remaining_classes=PlanPurchase.remaining_classes - 1,
        )

    def record_usage(
        self,
        *,
        plan_purchase_id: str,
        booking_id: str,
        session_id: str,
        credit_delta: int,
        notes: Optional[str] = None,
    ) -> PlanUsage:
        """Append a ledger row. +1 = allocated to a booking, -1 = refunded."""
        try:
            usage = PlanUsage(
                plan_purchase_id=plan_purchase_id,
                booking_id=booking_id,
                session_id=session_id,
                credit_delta=credit_delta,
                notes=notes,
            )
            self.db.add(usage)
            self.db.flush()
            return usage
        except SQLAlchemyError as exc:
            self.logger.error("Failed to write usage row for plan %s: %s", plan_purchase_id, exc)
            raise RepositoryException("Failed to write plan usage") from exc

    def list_usages(
        self, *, plan_purchase_id: Optional[str] = None, booking_id: Optional[str] = None
    ) -> List[PlanUsage]:
        try:
            query = self.db.query(PlanUsage)
            if plan_purchase_id:
                query = query.filter(PlanUsage.plan_purchase_id == plan_purchase_id)
            if booking_id:
                query = query.filter(PlanUsage.booking_id == booking_id)
            return cast(
                List[PlanUsage],
                query.order_by(PlanUsage.created_at.asc(), PlanUsage.id.asc()).all(),
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to list plan usages: %s", exc)
            raise RepositoryException("Failed to list plan usages") from exc
