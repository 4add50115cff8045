"""
Tests for CreditAllocationService: candidate order, strict preferred plans,
lost races, refunds and eligibility listing.
"""

from datetime import datetime, timedelta, timezone

import pytest

from studio_booking.core.exceptions import (
    AllocationExhaustedException,
    PlanNotEligibleException,
    PlanNotFoundException,
    RepositoryException,
    SessionNotFoundException,
)
from studio_booking.models import PlanModality, PlanPurchaseStatus, PlanUsage
from studio_booking.services.credit_allocation_service import AllocatedPlan, CreditAllocationService


@pytest.fixture
def credit_service(db) -> CreditAllocationService:
    return CreditAllocationService(db)


def _allocate(service, client_row, session, **kwargs):
    return service.allocate(
        client_id=client_row.id,
        session_id=session.id,
        session_category=session.category,
        is_staff_actor=kwargs.pop("is_staff_actor", False),
        **kwargs,
    )


class TestCandidateOrder:
    def test_soonest_expiry_first(self, credit_service, make_client, make_session, make_plan, studio_today):
        member = make_client()
        session = make_session()
        make_plan(member, expires_at=studio_today + timedelta(days=60), name="Later")
        sooner = make_plan(member, expires_at=studio_today + timedelta(days=5), name="Sooner")
        make_plan(member, expires_at=None, name="Forever")

        attempt = _allocate(credit_service, member, session)

        assert attempt.plan.plan_purchase_id == sooner.id
        assert attempt.plan.previous_remaining == 5
        assert attempt.plan.new_remaining == 4

    def test_never_expiring_plans_go_last(self, credit_service, make_client, make_session, make_plan, studio_today):
        member = make_client()
        session = make_session()
        make_plan(member, expires_at=None, name="Forever")
        dated = make_plan(member, expires_at=studio_today + timedelta(days=90), name="Dated")

        attempt = _allocate(credit_service, member, session)

        assert attempt.plan.plan_purchase_id == dated.id

    def test_oldest_purchase_breaks_ties(self, credit_service, make_client, make_session, make_plan):
        member = make_client()
        session = make_session()
        now = datetime.now(timezone.utc)
        make_plan(member, purchased_at=now, name="New")
        old = make_plan(member, purchased_at=now - timedelta(days=30), name="Old")

        attempt = _allocate(credit_service, member, session)

        assert attempt.plan.plan_purchase_id == old.id

    def test_ineligible_candidates_are_skipped(self, credit_service, make_client, make_session, make_plan, studio_today):
        member = make_client()
        session = make_session(category="pilates")
        make_plan(member, category="yoga", expires_at=studio_today + timedelta(days=1))
        make_plan(member, remaining=0, expires_at=studio_today + timedelta(days=2))
        make_plan(member, expires_at=studio_today - timedelta(days=1))
        make_plan(member, status=PlanPurchaseStatus.CANCELLED.value)
        make_plan(member, start_date=studio_today + timedelta(days=3))
        fits = make_plan(member, category="pilates", expires_at=studio_today + timedelta(days=10))

        attempt = _allocate(credit_service, member, session)

        assert attempt.plan.plan_purchase_id == fits.id

    def test_uncategorised_session_accepts_any_plan(self, credit_service, make_client, make_session, make_plan):
        member = make_client()
        session = make_session(category=None)
        yoga = make_plan(member, category="yoga")

        attempt = _allocate(credit_service, member, session)

        assert attempt.plan.plan_purchase_id == yoga.id

    def test_candidate_limit(self, credit_service, settings_override, make_client, make_session, make_plan, studio_today):
        settings_override(plan_candidate_limit=1)
        member = make_client()
        session = make_session(category="pilates")
        make_plan(member, category="yoga", expires_at=studio_today + timedelta(days=1))
        make_plan(member, category="pilates", expires_at=studio_today + timedelta(days=9))

        attempt = _allocate(credit_service, member, session)

        assert attempt.plan is None
        assert len(attempt.tried_plan_ids) == 1

    def test_lost_race_moves_to_next_candidate(
        self, db, credit_service, monkeypatch, make_client, make_session, make_plan, studio_today
    ):
        member = make_client()
        session = make_session()
        contested = make_plan(member, expires_at=studio_today + timedelta(days=1))
        fallback = make_plan(member, expires_at=studio_today + timedelta(days=2))
        real_decrement = credit_service.plan_repository.conditional_decrement

        def _lose_first(plan_id, expected):
            if plan_id == contested.id:
                return 0
            return real_decrement(plan_id, expected)

        monkeypatch.setattr(credit_service.plan_repository, "conditional_decrement", _lose_first)

        attempt = _allocate(credit_service, member, session)

        assert attempt.plan.plan_purchase_id == fallback.id
        db.refresh(contested)
        assert contested.remaining_classes == 5

    def test_unlimited_plan_not_decremented(self, db, credit_service, make_client, make_session, make_plan):
        member = make_client()
        session = make_session()
        unlimited = make_plan(member, remaining=None)

        attempt = _allocate(credit_service, member, session)

        assert attempt.plan.unlimited is True
        assert attempt.plan.new_remaining is None
        db.refresh(unlimited)
        assert unlimited.remaining_classes is None


class TestPreferredPlan:
    def test_preferred_plan_wins_over_order(self, credit_service, make_client, make_session, make_plan, studio_today):
        member = make_client()
        session = make_session()
        make_plan(member, expires_at=studio_today + timedelta(days=1))
        preferred = make_plan(member, expires_at=None)

        attempt = _allocate(credit_service, member, session, preferred_plan_id=preferred.id)

        assert attempt.plan.plan_purchase_id == preferred.id
        assert attempt.preferred_error is None

    def test_rejected_preferred_falls_back(self, credit_service, make_client, make_session, make_plan):
        member = make_client()
        session = make_session(category="pilates")
        wrong = make_plan(member, category="yoga")
        fallback = make_plan(member, category="pilates")

        attempt = _allocate(credit_service, member, session, preferred_plan_id=wrong.id)

        assert attempt.plan.plan_purchase_id == fallback.id
        assert isinstance(attempt.preferred_error, PlanNotEligibleException)
        assert attempt.preferred_error.details["reason"] == "CATEGORY_MISMATCH"
        assert attempt.tried_plan_ids[0] == wrong.id

    def test_preferred_error_reported_when_nothing_else_fits(
        self, booking_service, make_client, make_session, make_plan
    ):
        member = make_client()
        session = make_session(category="pilates")
        wrong = make_plan(member, category="yoga")

        with pytest.raises(AllocationExhaustedException) as exc_info:
            booking_service.create_booking(
                session.id, client_id=member.id, preferred_plan_id=wrong.id
            )
        preferred = exc_info.value.details["preferred_plan"]
        assert preferred["code"] == "PLAN_NOT_ELIGIBLE"
        assert preferred["details"]["reason"] == "CATEGORY_MISMATCH"

    def test_someone_elses_plan_is_not_found(self, credit_service, make_client, make_plan):
        owner = make_client("Owner")
        other = make_client("Other")
        plan = make_plan(owner)

        with pytest.raises(PlanNotFoundException):
            credit_service.allocate_preferred(
                plan_id=plan.id, client_id=other.id, session_category=None, is_staff_actor=False
            )

    def test_expired_plan_is_not_found(self, credit_service, make_client, make_plan, studio_today):
        member = make_client()
        plan = make_plan(member, expires_at=studio_today - timedelta(days=1))

        with pytest.raises(PlanNotFoundException):
            credit_service.allocate_preferred(
                plan_id=plan.id, client_id=member.id, session_category=None, is_staff_actor=False
            )

    @pytest.mark.parametrize(
        "plan_kwargs, is_staff, reason",
        [
            ({"modality": PlanModality.FIXED.value}, False, "NOT_FLEXIBLE"),
            ({"category": "yoga"}, False, "CATEGORY_MISMATCH"),
            ({"app_only": True}, True, "APP_ONLY"),
            ({"remaining": 0, "initial": 10}, False, "NO_CLASSES_LEFT"),
        ],
    )
    def test_strict_rejection_reasons(
        self, credit_service, make_client, make_plan, plan_kwargs, is_staff, reason
    ):
        member = make_client()
        plan = make_plan(member, **plan_kwargs)

        with pytest.raises(PlanNotEligibleException) as exc_info:
            credit_service.allocate_preferred(
                plan_id=plan.id,
                client_id=member.id,
                session_category="pilates",
                is_staff_actor=is_staff,
            )
        assert exc_info.value.details["reason"] == reason

    def test_concurrent_update_reported(self, credit_service, monkeypatch, make_client, make_plan):
        member = make_client()
        plan = make_plan(member)
        monkeypatch.setattr(
            credit_service.plan_repository, "conditional_decrement", lambda *a, **k: 0
        )

        with pytest.raises(PlanNotEligibleException) as exc_info:
            credit_service.allocate_preferred(
                plan_id=plan.id, client_id=member.id, session_category=None, is_staff_actor=False
            )
        assert exc_info.value.details["reason"] == "CONCURRENT_UPDATE"


class TestRefunds:
    def test_refund_capped_at_initial_allotment(self, db, credit_service, make_client, make_plan):
        member = make_client()
        plan = make_plan(member, remaining=5, initial=5)

        refunded = credit_service.refund(
            plan_purchase_id=plan.id, booking_id="B" * 26, session_id="S" * 26
        )

        assert refunded is False
        db.refresh(plan)
        assert plan.remaining_classes == 5
        assert db.query(PlanUsage).count() == 0

    def test_refund_writes_negative_ledger_row(self, db, credit_service, make_client, make_plan):
        member = make_client()
        plan = make_plan(member, remaining=2, initial=5)

        assert credit_service.refund(
            plan_purchase_id=plan.id, booking_id="B" * 26, session_id="S" * 26
        )

        db.refresh(plan)
        assert plan.remaining_classes == 3
        usage = db.query(PlanUsage).one()
        assert usage.credit_delta == -1
        assert usage.notes == "Refund (cancellation)"

    def test_compensation_swallows_failures(self, credit_service, monkeypatch):
        def _broken(plan_id):
            raise RepositoryException("connection lost")

        monkeypatch.setattr(credit_service.plan_repository, "restore_credit", _broken)
        allocated = AllocatedPlan(
            plan_purchase_id="P" * 26,
            plan_name="Pack",
            modality=PlanModality.FLEXIBLE.value,
            previous_remaining=3,
            new_remaining=2,
            unlimited=False,
        )

        assert credit_service.compensate(allocated) is False

    def test_compensation_restores_credit(self, db, credit_service, make_client, make_plan):
        member = make_client()
        plan = make_plan(member, remaining=4, initial=5)
        allocated = AllocatedPlan(
            plan_purchase_id=plan.id,
            plan_name=plan.name,
            modality=plan.modality,
            previous_remaining=5,
            new_remaining=4,
            unlimited=False,
        )

        assert credit_service.compensate(allocated) is True
        db.refresh(plan)
        assert plan.remaining_classes == 5
        assert db.query(PlanUsage).count() == 0


class TestEligiblePlans:
    def test_lists_only_plans_that_could_pay(self, credit_service, make_client, make_session, make_plan):
        member = make_client()
        session = make_session(category="pilates")
        good = make_plan(member, category="pilates", name="Pilates Pack")
        unlimited = make_plan(member, remaining=None, name="Unlimited")
        make_plan(member, category="yoga")
        make_plan(member, modality=PlanModality.FIXED.value)
        make_plan(member, remaining=0, initial=10)

        plans = credit_service.list_eligible_plans(
            client_id=member.id, session_id=session.id, is_staff_actor=False
        )

        assert {p.plan_purchase_id for p in plans} == {good.id, unlimited.id}
        by_id = {p.plan_purchase_id: p for p in plans}
        assert by_id[unlimited.id].unlimited is True
        assert by_id[good.id].remaining_classes == 5

    def test_staff_view_hides_app_only_plans(self, credit_service, make_client, make_session, make_plan):
        member = make_client()
        session = make_session()
        make_plan(member, app_only=True)

        assert credit_service.list_eligible_plans(
            client_id=member.id, session_id=session.id, is_staff_actor=True
        ) == []
        assert len(
            credit_service.list_eligible_plans(
                client_id=member.id, session_id=session.id, is_staff_actor=False
            )
        ) == 1

    def test_unknown_session(self, credit_service, make_client):
        member = make_client()
        with pytest.raises(SessionNotFoundException):
            credit_service.list_eligible_plans(
                client_id=member.id, session_id="01ARZ3NDEKTSV4RRFFQ69G5FAV", is_staff_actor=False
            )
