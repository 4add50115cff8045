"""
Tests for BookingService.cancel_booking and rebook_booking.
"""

from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from studio_booking.core.exceptions import (
    BookingNotFoundException,
    BusinessRuleException,
    ConflictException,
    DuplicateBookingException,
    ServiceException,
    SessionFullException,
    ValidationException,
)
from studio_booking.models import Booking, BookingStatus, PlanModality, PlanUsage, WaitlistEntry
from studio_booking.services.booking_service import ActorContext


def _booking(db: Session, booking_id: str) -> Booking:
    booking = db.get(Booking, booking_id)
    db.refresh(booking)
    return booking


class TestCancelBooking:
    def test_cancel_outside_window_refunds(self, db, booking_service, make_client, make_session, make_plan):
        member = make_client()
        session = make_session(starts_in=timedelta(days=3))
        plan = make_plan(member, remaining=5)
        created = booking_service.create_booking(session.id, client_id=member.id)

        result = booking_service.cancel_booking(created.booking_id, notes="Sick")

        assert result.cancelled is True
        assert result.refunded is True
        booking = _booking(db, created.booking_id)
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.cancelled_at is not None
        assert booking.cancelled_by == member.id

        db.refresh(plan)
        assert plan.remaining_classes == 5
        deltas = sorted(
            u.credit_delta
            for u in db.query(PlanUsage).filter(PlanUsage.booking_id == created.booking_id)
        )
        assert deltas == [-1, 1]

        db.refresh(session)
        assert session.current_occupancy == 0

        events = {
            e.event_type: e for e in booking_service.booking_repository.list_events(created.booking_id)
        }
        cancelled = events["CANCELLED"]
        assert cancelled.notes == "Sick"
        assert cancelled.event_metadata["refundedCredit"] is True
        assert cancelled.event_metadata["planPurchaseId"] == plan.id
        assert cancelled.event_metadata["cancellationWindowHours"] == 24

    def test_cancel_inside_window_keeps_credit_spent(
        self, db, booking_service, make_client, make_session, make_plan
    ):
        member = make_client()
        session = make_session(starts_in=timedelta(hours=5))
        plan = make_plan(member, remaining=5)
        created = booking_service.create_booking(session.id, client_id=member.id)

        result = booking_service.cancel_booking(created.booking_id)

        assert result.cancelled is True
        assert result.refunded is False
        db.refresh(plan)
        assert plan.remaining_classes == 4

    def test_course_window_overrides_default(
        self, db, booking_service, make_client, make_course, make_session, make_plan
    ):
        member = make_client()
        course = make_course(cancellation_window_hours=2)
        session = make_session(course=course, starts_in=timedelta(hours=5))
        plan = make_plan(member, remaining=5)
        created = booking_service.create_booking(session.id, client_id=member.id)

        result = booking_service.cancel_booking(created.booking_id)

        assert result.refunded is True
        db.refresh(plan)
        assert plan.remaining_classes == 5

    def test_unlimited_plan_has_nothing_to_refund(
        self, db, booking_service, make_client, make_session, make_plan
    ):
        member = make_client()
        session = make_session(starts_in=timedelta(days=3))
        plan = make_plan(member, remaining=None)
        created = booking_service.create_booking(session.id, client_id=member.id)

        result = booking_service.cancel_booking(created.booking_id)

        assert result.cancelled is True
        assert result.refunded is False
        db.refresh(plan)
        assert plan.remaining_classes is None
        assert db.query(PlanUsage).count() == 0

    def test_cancel_twice_is_a_no_op(self, db, booking_service, make_client, make_session, make_plan):
        member = make_client()
        session = make_session()
        plan = make_plan(member, remaining=5)
        created = booking_service.create_booking(session.id, client_id=member.id)

        booking_service.cancel_booking(created.booking_id)
        second = booking_service.cancel_booking(created.booking_id)

        assert second.already_cancelled is True
        assert second.cancelled is False
        db.refresh(plan)
        assert plan.remaining_classes == 5
        assert (
            db.query(PlanUsage)
            .filter(PlanUsage.booking_id == created.booking_id, PlanUsage.credit_delta == -1)
            .count()
            == 1
        )

    def test_cancel_unknown_booking(self, booking_service):
        with pytest.raises(BookingNotFoundException):
            booking_service.cancel_booking("01ARZ3NDEKTSV4RRFFQ69G5FAV")

    def test_cancelled_by_acting_client(self, db, booking_service, make_client, make_session, make_plan):
        member = make_client()
        session = make_session()
        make_plan(member)
        created = booking_service.create_booking(session.id, client_id=member.id)

        booking_service.cancel_booking(
            created.booking_id, actor=ActorContext(actor_client_id="OTHERCLIENT")
        )

        assert _booking(db, created.booking_id).cancelled_by == "OTHERCLIENT"

    def test_freed_seat_goes_to_waitlist(
        self, db, booking_service, make_client, make_session, make_plan, make_waitlist_entry
    ):
        session = make_session(capacity=1)
        holder = make_client("Holder")
        waiting = make_client("Waiting")
        make_plan(holder)
        make_plan(waiting)
        created = booking_service.create_booking(session.id, client_id=holder.id)
        entry = make_waitlist_entry(session, waiting, position=1)

        booking_service.cancel_booking(created.booking_id)

        promoted = (
            db.query(Booking)
            .filter(Booking.session_id == session.id, Booking.client_id == waiting.id)
            .one()
        )
        assert promoted.status == BookingStatus.CONFIRMED.value
        db.refresh(entry)
        assert entry.status == "PROMOTED"
        assert entry.notified_at is not None
        db.refresh(session)
        assert session.current_occupancy == 1


    def test_failed_refund_still_cancels_and_promotes(
        self, db, booking_service, monkeypatch, make_client, make_session, make_plan,
        make_waitlist_entry,
    ):
        session = make_session(capacity=1, starts_in=timedelta(days=3))
        holder = make_client("Holder")
        waiting = make_client("Waiting")
        plan = make_plan(holder, remaining=5)
        make_plan(waiting)
        created = booking_service.create_booking(session.id, client_id=holder.id)
        entry = make_waitlist_entry(session, waiting, position=1)

        def _refund_unavailable(**kwargs):
            raise ServiceException("Database operation failed: ledger unavailable")

        monkeypatch.setattr(booking_service.credit_service, "refund", _refund_unavailable)

        result = booking_service.cancel_booking(created.booking_id)

        assert result.cancelled is True
        assert result.refunded is False
        assert result.refund_failed is True
        assert _booking(db, created.booking_id).status == BookingStatus.CANCELLED.value
        db.refresh(plan)
        assert plan.remaining_classes == 4

        events = {
            e.event_type: e for e in booking_service.booking_repository.list_events(created.booking_id)
        }
        assert events["CANCELLED"].event_metadata["refundFailed"] is True
        assert events["CANCELLED"].event_metadata["refundedCredit"] is False

        db.refresh(entry)
        assert entry.status == "PROMOTED"
        promoted = (
            db.query(Booking)
            .filter(Booking.session_id == session.id, Booking.client_id == waiting.id)
            .one()
        )
        assert promoted.status == BookingStatus.CONFIRMED.value


class TestRebookBooking:
    def test_rebook_with_same_plan_nets_zero_credits(
        self, db, booking_service, make_client, make_session, make_plan
    ):
        member = make_client()
        source = make_session(starts_in=timedelta(days=2))
        target = make_session(starts_in=timedelta(days=4))
        plan = make_plan(member, remaining=5)
        original = booking_service.create_booking(source.id, client_id=member.id)

        result = booking_service.rebook_booking(original.booking_id, target.id)

        assert result.rebooked_from == original.booking_id
        assert result.booking_id != original.booking_id
        assert result.plan_purchase_id == plan.id
        assert result.token

        moved = _booking(db, result.booking_id)
        assert moved.session_id == target.id
        assert moved.rebooked_from_booking_id == original.booking_id
        assert _booking(db, original.booking_id).status == BookingStatus.CANCELLED.value

        db.refresh(plan)
        assert plan.remaining_classes == 4

        original_events = {
            e.event_type: e
            for e in booking_service.booking_repository.list_events(original.booking_id)
        }
        assert original_events["CANCELLED"].notes == "Rebooked"
        assert original_events["CANCELLED"].event_metadata["rebookedTo"] == result.booking_id
        new_events = {
            e.event_type: e for e in booking_service.booking_repository.list_events(result.booking_id)
        }
        assert set(new_events) == {"CREATED", "REBOOKED"}
        assert new_events["REBOOKED"].event_metadata["rebookedFrom"] == original.booking_id

    def test_rebook_refunds_even_inside_window(
        self, db, booking_service, make_client, make_session, make_plan
    ):
        member = make_client()
        source = make_session(starts_in=timedelta(hours=3))
        target = make_session(starts_in=timedelta(days=4))
        plan = make_plan(member, remaining=5)
        original = booking_service.create_booking(source.id, client_id=member.id)

        booking_service.rebook_booking(original.booking_id, target.id)

        db.refresh(plan)
        assert plan.remaining_classes == 4
        refund = (
            db.query(PlanUsage)
            .filter(PlanUsage.booking_id == original.booking_id, PlanUsage.credit_delta == -1)
            .one()
        )
        assert refund.notes == "Refund (rebook)"

    def test_rebook_to_same_session_rejected(self, booking_service, make_client, make_session, make_plan):
        member = make_client()
        session = make_session()
        make_plan(member)
        original = booking_service.create_booking(session.id, client_id=member.id)

        with pytest.raises(ValidationException) as exc_info:
            booking_service.rebook_booking(original.booking_id, session.id)
        assert exc_info.value.code == "REBOOK_SAME_SESSION"

    def test_rebook_cancelled_booking_rejected(
        self, booking_service, make_client, make_session, make_plan
    ):
        member = make_client()
        source = make_session()
        target = make_session()
        make_plan(member)
        original = booking_service.create_booking(source.id, client_id=member.id)
        booking_service.cancel_booking(original.booking_id)

        with pytest.raises(BusinessRuleException) as exc_info:
            booking_service.rebook_booking(original.booking_id, target.id)
        assert exc_info.value.code == "BOOKING_CANCELLED"

    def test_rebook_into_full_session_leaves_original_untouched(
        self, db, booking_service, make_client, make_session, make_plan
    ):
        member = make_client("Mover")
        other = make_client("Other")
        source = make_session()
        target = make_session(capacity=1)
        plan = make_plan(member, remaining=5)
        make_plan(other)
        original = booking_service.create_booking(source.id, client_id=member.id)
        booking_service.create_booking(target.id, client_id=other.id)

        with pytest.raises(SessionFullException):
            booking_service.rebook_booking(original.booking_id, target.id)

        assert _booking(db, original.booking_id).status == BookingStatus.CONFIRMED.value
        db.refresh(plan)
        assert plan.remaining_classes == 4

    def test_rebook_onto_already_booked_session(
        self, booking_service, make_client, make_session, make_plan
    ):
        member = make_client()
        source = make_session()
        target = make_session()
        make_plan(member, remaining=5)
        original = booking_service.create_booking(source.id, client_id=member.id)
        existing = booking_service.create_booking(target.id, client_id=member.id)

        with pytest.raises(DuplicateBookingException) as exc_info:
            booking_service.rebook_booking(original.booking_id, target.id)
        assert exc_info.value.details["booking_id"] == existing.booking_id

    def test_rebook_with_explicit_plan(self, db, booking_service, make_client, make_session, make_plan):
        member = make_client()
        source = make_session()
        target = make_session()
        first_plan = make_plan(member, remaining=5, name="First")
        second_plan = make_plan(member, remaining=5, name="Second")
        original = booking_service.create_booking(
            source.id, client_id=member.id, preferred_plan_id=first_plan.id
        )

        result = booking_service.rebook_booking(
            original.booking_id, target.id, preferred_plan_id=second_plan.id
        )

        assert result.plan_purchase_id == second_plan.id
        assert result.plan_name == "Second"
        db.refresh(first_plan)
        db.refresh(second_plan)
        assert first_plan.remaining_classes == 5
        assert second_plan.remaining_classes == 4

    def test_rebook_promotes_waitlist_on_old_session(
        self, db, booking_service, make_client, make_session, make_plan, make_waitlist_entry
    ):
        member = make_client("Mover")
        waiting = make_client("Waiting")
        source = make_session(capacity=1)
        target = make_session()
        make_plan(member)
        make_plan(waiting)
        original = booking_service.create_booking(source.id, client_id=member.id)
        make_waitlist_entry(source, waiting, position=1)

        booking_service.rebook_booking(original.booking_id, target.id)

        assert (
            db.query(Booking)
            .filter(Booking.session_id == source.id, Booking.client_id == waiting.id)
            .count()
            == 1
        )
        assert db.query(WaitlistEntry).filter(WaitlistEntry.status == "PENDING").count() == 0

    def test_fixed_plan_booking_refunded_on_forced_cancel(
        self, db, booking_service, make_client, make_session, make_plan
    ):
        member = make_client()
        session = make_session(starts_in=timedelta(hours=2))
        plan = make_plan(member, remaining=3, initial=4, modality=PlanModality.FIXED.value)
        booking = Booking(
            session_id=session.id,
            client_id=member.id,
            status=BookingStatus.CONFIRMED.value,
            plan_purchase_id=plan.id,
            reserved_at=session.start_time - timedelta(days=7),
        )
        db.add(booking)
        db.commit()

        plain = booking_service.cancel_booking(booking.id)
        assert plain.refunded is False

        booking_service.booking_repository.reactivate(booking.id, reserved_at=booking.reserved_at)
        booking_service.booking_repository.attach_plan(booking.id, plan.id)
        db.commit()
        forced = booking_service.cancel_booking(booking.id, force_refund=True)

        assert forced.refunded is True
        db.refresh(plan)
        assert plan.remaining_classes == 4

    def test_rebook_reuses_the_last_credit(
        self, db, booking_service, make_client, make_session, make_plan
    ):
        member = make_client()
        source = make_session(starts_in=timedelta(days=2))
        target = make_session(starts_in=timedelta(days=4))
        plan = make_plan(member, remaining=1)
        original = booking_service.create_booking(source.id, client_id=member.id)
        db.refresh(plan)
        assert plan.remaining_classes == 0

        result = booking_service.rebook_booking(original.booking_id, target.id)

        assert result.plan_purchase_id == plan.id
        assert _booking(db, original.booking_id).status == BookingStatus.CANCELLED.value
        assert _booking(db, result.booking_id).status == BookingStatus.CONFIRMED.value
        db.refresh(plan)
        assert plan.remaining_classes == 0
        original_deltas = sorted(
            u.credit_delta
            for u in db.query(PlanUsage).filter(PlanUsage.booking_id == original.booking_id)
        )
        assert original_deltas == [-1, 1]
        assert [
            u.credit_delta
            for u in db.query(PlanUsage).filter(PlanUsage.booking_id == result.booking_id)
        ] == [1]

    def test_failed_rebook_takes_back_the_returned_credit(
        self, db, booking_service, make_client, make_session, make_plan
    ):
        member = make_client("Mover")
        other = make_client("Other")
        source = make_session()
        target = make_session(capacity=1)
        plan = make_plan(member, remaining=1)
        make_plan(other)
        original = booking_service.create_booking(source.id, client_id=member.id)
        booking_service.create_booking(target.id, client_id=other.id)

        with pytest.raises(SessionFullException):
            booking_service.rebook_booking(original.booking_id, target.id)

        assert _booking(db, original.booking_id).status == BookingStatus.CONFIRMED.value
        db.refresh(plan)
        assert plan.remaining_classes == 0
        net = sum(
            u.credit_delta
            for u in db.query(PlanUsage).filter(PlanUsage.booking_id == original.booking_id)
        )
        assert net == 1

    def test_failure_after_create_discards_the_new_booking(
        self, db, booking_service, monkeypatch, make_client, make_session, make_plan
    ):
        member = make_client()
        source = make_session()
        target = make_session()
        plan = make_plan(member, remaining=5)
        original = booking_service.create_booking(source.id, client_id=member.id)

        def _cancel_unavailable(*args, **kwargs):
            raise ServiceException("Database operation failed: bookings locked")

        monkeypatch.setattr(
            booking_service.booking_repository, "mark_cancelled", _cancel_unavailable
        )

        with pytest.raises(ServiceException):
            booking_service.rebook_booking(original.booking_id, target.id)

        live = (
            db.query(Booking)
            .filter(
                Booking.client_id == member.id,
                Booking.status != BookingStatus.CANCELLED.value,
            )
            .all()
        )
        assert [b.id for b in live] == [original.booking_id]
        assert db.query(Booking).filter(Booking.session_id == target.id).count() == 0
        db.refresh(plan)
        assert plan.remaining_classes == 4
        db.refresh(target)
        assert target.current_occupancy == 0

    def test_original_cancelled_meanwhile_discards_the_new_booking(
        self, db, booking_service, monkeypatch, make_client, make_session, make_plan
    ):
        member = make_client()
        source = make_session()
        target = make_session()
        plan = make_plan(member, remaining=5)
        original = booking_service.create_booking(source.id, client_id=member.id)
        monkeypatch.setattr(
            booking_service.booking_repository, "mark_cancelled", lambda *a, **k: 0
        )

        with pytest.raises(ConflictException) as exc_info:
            booking_service.rebook_booking(original.booking_id, target.id)

        assert exc_info.value.code == "BOOKING_CONFLICT"
        assert db.query(Booking).filter(Booking.session_id == target.id).count() == 0
        db.refresh(plan)
        assert plan.remaining_classes == 4
