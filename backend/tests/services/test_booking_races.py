"""
Interleavings of concurrent booking requests, simulated by making one
request read stale state before it writes.
"""

import pytest

from studio_booking.core.exceptions import SessionFullException
from studio_booking.models import Booking, PlanUsage


def test_stale_capacity_read_cannot_oversell(
    db, booking_service, monkeypatch, make_client, make_session, make_plan
):
    session = make_session(capacity=1)
    winner = make_client("Winner")
    loser = make_client("Loser")
    make_plan(winner)
    loser_plan = make_plan(loser, remaining=5)
    booking_service.create_booking(session.id, client_id=winner.id)

    repo = booking_service.booking_repository
    real_count = repo.count_active_for_session
    calls = {"n": 0}

    def _stale_then_real(session_id):
        calls["n"] += 1
        if calls["n"] == 1:
            return 0
        return real_count(session_id)

    monkeypatch.setattr(repo, "count_active_for_session", _stale_then_real)

    with pytest.raises(SessionFullException):
        booking_service.create_booking(session.id, client_id=loser.id)

    monkeypatch.setattr(repo, "count_active_for_session", real_count)
    assert real_count(session.id) == 1
    assert db.query(Booking).filter(Booking.client_id == loser.id).count() == 0
    db.refresh(loser_plan)
    assert loser_plan.remaining_classes == 5
    db.refresh(session)
    assert session.current_occupancy == 1


def test_lost_insert_reports_existing_booking(
    db, booking_service, monkeypatch, make_client, make_session, make_plan
):
    member = make_client()
    session = make_session()
    plan = make_plan(member, remaining=5)
    first = booking_service.create_booking(session.id, client_id=member.id)

    repo = booking_service.booking_repository
    real_find = repo.find_for_session_client
    calls = {"n": 0}

    def _miss_once(session_id, client_id):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real_find(session_id, client_id)

    monkeypatch.setattr(repo, "find_for_session_client", _miss_once)

    second = booking_service.create_booking(session.id, client_id=member.id)

    assert second.duplicated is True
    assert second.booking_id == first.booking_id
    db.refresh(plan)
    assert plan.remaining_classes == 4
    assert db.query(PlanUsage).count() == 1


def test_concurrent_cancel_is_reported_once(
    db, booking_service, monkeypatch, make_client, make_session, make_plan
):
    member = make_client()
    session = make_session()
    plan = make_plan(member, remaining=5)
    created = booking_service.create_booking(session.id, client_id=member.id)

    repo = booking_service.booking_repository
    # The other request already flipped the row; our conditional update matches nothing
    monkeypatch.setattr(repo, "mark_cancelled", lambda *a, **k: 0)

    result = booking_service.cancel_booking(created.booking_id)

    assert result.already_cancelled is True
    assert result.refunded is False
    db.refresh(plan)
    assert plan.remaining_classes == 4
