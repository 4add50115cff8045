# backend/studio_booking/models/plan.py
"""
Plan models: purchasable plan types, client plan purchases and the
append-only usage ledger.

A plan purchase is the only place class credits live. Its
``remaining_classes`` is mutated exclusively through conditional
updates issued by the credit allocation service.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.ulid_helper import generate_ulid
from ..database import Base


class PlanModality(str, Enum):
    """How a plan's credits are spent."""

    FIXED = "FIXED"  # Credits pre-assigned to sessions by staff
    FLEXIBLE = "FLEXIBLE"  # Client spends a credit to book any eligible session


class PlanPurchaseStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class PlanType(Base):
    """Catalog entry describing what a plan grants."""

    __tablename__ = "plan_types"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # None = valid for any category
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # None = unlimited classes
    class_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    validity_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # App-only plans are self-service credits staff cannot spend on a client's behalf
    app_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @property
    def is_unlimited(self) -> bool:
        return self.class_count is None

    def __repr__(self) -> str:
        return f"<PlanType(id={self.id}, name={self.name!r}, class_count={self.class_count})>"


class PlanPurchase(Base):
    __tablename__ = "plan_purchases"
    __table_args__ = (
        CheckConstraint(
            "remaining_classes IS NULL OR remaining_classes >= 0",
            name="ck_plan_purchases_remaining_non_negative",
        ),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    client_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    plan_type_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("plan_types.id"), nullable=False
    )
    modality: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PlanModality.FLEXIBLE.value
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PlanPurchaseStatus.ACTIVE.value, index=True
    )
    purchased_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    # None = never expires
    expires_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    initial_classes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # None = unlimited
    remaining_classes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    plan_type: Mapped[PlanType] = relationship("PlanType", lazy="joined")

    @property
    def category(self) -> Optional[str]:
        return self.plan_type.category if self.plan_type is not None else None

    @property
    def app_only(self) -> bool:
        return bool(self.plan_type.app_only) if self.plan_type is not None else False

    @property
    def is_unlimited(self) -> bool:
        """A purchase without a remaining counter never runs out of classes."""
        return self.remaining_classes is None

    @property
    def name(self) -> Optional[str]:
        return self.plan_type.name if self.plan_type is not None else None

    def is_valid_on(self, day: date) -> bool:
        """Whether the purchase is usable on the given calendar day."""
        if self.status != PlanPurchaseStatus.ACTIVE.value:
            return False
        if self.start_date > day:
            return False
        return self.expires_at is None or self.expires_at >= day

    def __repr__(self) -> str:
        return (
            f"<PlanPurchase(id={self.id}, client_id={self.client_id}, "
            f"modality={self.modality}, remaining={self.remaining_classes})>"
        )


class PlanUsage(Base):
    """
    Append-only credit ledger.

    ``credit_delta`` is +1 when a credit is allocated to a booking and -1
    when that allocation is refunded. Rows are never updated.
    """

    __tablename__ = "plan_usages"
    __table_args__ = (CheckConstraint("credit_delta IN (-1, 1)", name="ck_plan_usages_delta"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    plan_purchase_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("plan_purchases.id", ondelete="CASCADE"), nullable=False, index=True
    )
    booking_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    session_id: Mapped[str] = mapped_column(String(26), nullable=False)
    credit_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<PlanUsage(plan={self.plan_purchase_id}, booking={self.booking_id}, "
            f"delta={self.credit_delta})>"
        )
