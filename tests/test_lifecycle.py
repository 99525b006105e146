"""
Tests for the proposal lifecycle: dual acceptance, cancellation, expiration
and the weekly cap re-check at confirmation time.
"""

import threading
from datetime import datetime, timedelta

import pytest

from matchmaker.core.exceptions import (
    ValidationError, InvalidTransition, ConstraintViolation, NotFound
)
from matchmaker.models import ProposalStatus, Side, Actor, Booking, Venue


def test_both_acceptances_schedule(engine, pending_proposal, clock):
    clock.advance(hours=1)
    first = engine.respond_to_proposal(pending_proposal.id, Side.HOME, True)
    assert first.status == ProposalStatus.PENDING
    assert first.home_team_accepted is True
    assert first.away_team_accepted is None
    assert first.accepted_at is None

    clock.advance(hours=1)
    second = engine.respond_to_proposal(pending_proposal.id, Side.AWAY, True)
    assert second.status == ProposalStatus.SCHEDULED
    assert second.home_team_accepted is True and second.away_team_accepted is True
    assert second.accepted_at == clock()
    assert second.home_accepted_at == clock() - timedelta(hours=1)


def test_acceptance_is_idempotent(engine, pending_proposal):
    first = engine.respond_to_proposal(pending_proposal.id, Side.AWAY, True)
    again = engine.respond_to_proposal(pending_proposal.id, Side.AWAY, True)
    assert again == first
    assert again.version == first.version
    assert again.status == ProposalStatus.PENDING


def test_concurrent_acceptances_always_schedule(engine, make_proposal):
    """Home and away accept at the same instant: the fixture ends up SCHEDULED."""
    for i in range(20):
        start = datetime(2026, 10, 20, 8, 0) + timedelta(days=i)
        proposal = make_proposal(start=start, expires_at=start)
        barrier = threading.Barrier(2)
        errors = []

        def accept(side):
            barrier.wait()
            try:
                engine.respond_to_proposal(proposal.id, side, True)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=accept, args=(side,)) for side in (Side.HOME, Side.AWAY)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        final = engine.get_proposal(proposal.id)
        assert errors == []
        assert final.status == ProposalStatus.SCHEDULED
        assert final.home_team_accepted is True
        assert final.away_team_accepted is True


@pytest.mark.parametrize("side", [Side.HOME, Side.AWAY])
def test_accept_scheduled_is_invalid(engine, pending_proposal, side):
    engine.respond_to_proposal(pending_proposal.id, Side.HOME, True)
    scheduled = engine.respond_to_proposal(pending_proposal.id, Side.AWAY, True)

    with pytest.raises(InvalidTransition):
        engine.respond_to_proposal(pending_proposal.id, side, True)
    assert engine.get_proposal(pending_proposal.id) == scheduled


def test_accept_cancelled_is_invalid(engine, pending_proposal):
    cancelled = engine.cancel_proposal(pending_proposal.id, Actor.ADMIN, "pitch flooded")
    with pytest.raises(InvalidTransition) as excinfo:
        engine.respond_to_proposal(pending_proposal.id, Side.HOME, True)
    assert excinfo.value.current == ProposalStatus.CANCELLED
    assert excinfo.value.requested == ProposalStatus.SCHEDULED
    assert engine.get_proposal(pending_proposal.id) == cancelled


def test_decline_cancels_with_side_reason(engine, pending_proposal):
    declined = engine.respond_to_proposal(pending_proposal.id, Side.AWAY, False)
    assert declined.status == ProposalStatus.CANCELLED
    assert declined.cancellation_reason == "declined by away"
    assert declined.cancelled_by == Actor.AWAY
    assert declined.cancelled_at is not None


def test_cancel_requires_reason(engine, pending_proposal):
    for reason in ("", "   "):
        with pytest.raises(ValidationError):
            engine.cancel_proposal(pending_proposal.id, Actor.ADMIN, reason)
    assert engine.get_proposal(pending_proposal.id).status == ProposalStatus.PENDING


def test_cancel_scheduled_is_invalid(engine, pending_proposal):
    engine.respond_to_proposal(pending_proposal.id, Side.HOME, True)
    engine.respond_to_proposal(pending_proposal.id, Side.AWAY, True)
    with pytest.raises(InvalidTransition):
        engine.cancel_proposal(pending_proposal.id, Actor.HOME, "changed our mind")


def test_unknown_proposal(engine):
    with pytest.raises(NotFound):
        engine.respond_to_proposal("missing", Side.HOME, True)


def test_accept_then_expire(engine, pending_proposal, clock):
    """A accepts, B stays silent past the deadline, the sweep expires it."""
    engine.respond_to_proposal(pending_proposal.id, Side.HOME, True)

    clock.now = pending_proposal.expires_at + timedelta(hours=24)
    assert engine.sweep_expired() == 1

    expired = engine.get_proposal(pending_proposal.id)
    assert expired.status == ProposalStatus.EXPIRED
    assert expired.expired_at == clock()
    assert expired.home_team_accepted is True

    with pytest.raises(InvalidTransition):
        engine.respond_to_proposal(pending_proposal.id, Side.AWAY, True)
    assert engine.get_proposal(pending_proposal.id) == expired


def test_late_accept_before_sweep_is_refused(engine, pending_proposal, clock):
    clock.now = pending_proposal.expires_at + timedelta(minutes=1)
    with pytest.raises(InvalidTransition):
        engine.respond_to_proposal(pending_proposal.id, Side.HOME, True)
    assert engine.get_proposal(pending_proposal.id) == pending_proposal


def test_sweep_is_idempotent(engine, make_proposal, clock):
    due = make_proposal(start=datetime(2026, 10, 20, 18, 0))
    not_due = make_proposal(home="team-a", away="team-c", start=datetime(2026, 10, 23, 18, 0),
                            expires_at=datetime(2026, 10, 22, 12, 0))

    clock.now = datetime(2026, 10, 20, 10, 0)
    assert engine.sweep_expired() == 1
    snapshot = engine.list_proposals()
    assert engine.sweep_expired() == 0
    assert engine.list_proposals() == snapshot

    assert engine.get_proposal(due.id).status == ProposalStatus.EXPIRED
    assert engine.get_proposal(not_due.id).status == ProposalStatus.PENDING


def test_sweep_at_deadline_does_not_expire(engine, pending_proposal):
    assert engine.sweep_expired(now=pending_proposal.expires_at) == 0
    assert engine.get_proposal(pending_proposal.id).status == ProposalStatus.PENDING


def test_sweep_leaves_scheduled_alone(engine, pending_proposal, clock):
    engine.respond_to_proposal(pending_proposal.id, Side.HOME, True)
    engine.respond_to_proposal(pending_proposal.id, Side.AWAY, True)
    clock.advance(days=3)
    assert engine.sweep_expired() == 0
    assert engine.get_proposal(pending_proposal.id).status == ProposalStatus.SCHEDULED


def test_cap_exceeded_at_acceptance(engine, make_proposal):
    """Two pending fixtures for a team capped at one per week: the second is cancelled."""
    first = make_proposal(home="team-a", away="team-b", start=datetime(2026, 10, 21, 18, 0),
                          home_weekly_cap=1)
    second = make_proposal(home="team-a", away="team-c", start=datetime(2026, 10, 22, 18, 0),
                           home_weekly_cap=1)

    engine.respond_to_proposal(first.id, Side.HOME, True)
    engine.respond_to_proposal(first.id, Side.AWAY, True)
    engine.respond_to_proposal(second.id, Side.HOME, True)

    with pytest.raises(ConstraintViolation) as excinfo:
        engine.respond_to_proposal(second.id, Side.AWAY, True)

    cancelled = engine.get_proposal(second.id)
    assert excinfo.value.proposal == cancelled
    assert cancelled.status == ProposalStatus.CANCELLED
    assert cancelled.cancellation_reason == "cap exceeded"
    assert cancelled.cancelled_by == Actor.ADMIN
    assert cancelled.away_team_accepted is None
    assert engine.get_proposal(first.id).status == ProposalStatus.SCHEDULED


def test_venue_taken_at_acceptance(engine, pending_proposal, store):
    store.add_booking(Booking(
        id="walk-in", venue_id=pending_proposal.venue_id,
        start=pending_proposal.scheduled_time, end=pending_proposal.end_time
    ))
    engine.respond_to_proposal(pending_proposal.id, Side.HOME, True)
    with pytest.raises(ConstraintViolation):
        engine.respond_to_proposal(pending_proposal.id, Side.AWAY, True)

    cancelled = engine.get_proposal(pending_proposal.id)
    assert cancelled.status == ProposalStatus.CANCELLED
    assert cancelled.cancellation_reason == "venue unavailable"


def test_terminal_proposal_frees_slot_for_regeneration(engine, pending_proposal):
    engine.respond_to_proposal(pending_proposal.id, Side.HOME, False)
    day = pending_proposal.scheduled_time.date()
    regenerated = engine.generate_proposals("vendor-1", day, day)
    assert len(regenerated) == 1
    assert regenerated[0].id != pending_proposal.id


def test_team_already_playing_at_acceptance(engine, make_proposal, store):
    """Team A is confirmed against B at one venue; the same slot against C elsewhere is refused."""
    store.add_venue(Venue(id="venue-w", vendor_id="vendor-1", name="Westside Courts"))
    first = make_proposal(home="team-a", away="team-b")
    second = make_proposal(home="team-a", away="team-c", venue_id="venue-w")

    engine.respond_to_proposal(first.id, Side.HOME, True)
    engine.respond_to_proposal(first.id, Side.AWAY, True)
    engine.respond_to_proposal(second.id, Side.AWAY, True)
    with pytest.raises(ConstraintViolation):
        engine.respond_to_proposal(second.id, Side.HOME, True)

    refused = engine.get_proposal(second.id)
    assert refused.status == ProposalStatus.CANCELLED
    assert refused.cancellation_reason == "team unavailable"
    assert refused.cancelled_by == Actor.ADMIN
    assert [p.id for p in engine.list_proposals(status=ProposalStatus.SCHEDULED)] == [first.id]


def test_sweep_races_last_second_acceptance(engine, make_proposal, clock):
    """
    The away side accepts at the deadline while a sweep runs just after it.
    Exactly one of the two writes wins and the row is never half-confirmed.
    """
    deadline = datetime(2026, 10, 20, 9, 0)
    clock.now = deadline
    outcomes = set()
    for i in range(20):
        start = datetime(2026, 10, 20, 18, 0) + timedelta(weeks=i)
        proposal = make_proposal(start=start, expires_at=deadline, home_team_accepted=True,
                                 home_accepted_at=deadline - timedelta(hours=1))
        barrier = threading.Barrier(2)
        errors = []

        def accept():
            barrier.wait()
            try:
                engine.respond_to_proposal(proposal.id, Side.AWAY, True)
            except InvalidTransition as e:
                errors.append(e)

        def sweep():
            barrier.wait()
            engine.sweep_expired(now=deadline + timedelta(seconds=1))

        threads = [threading.Thread(target=accept), threading.Thread(target=sweep)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        final = engine.get_proposal(proposal.id)
        outcomes.add(final.status)
        assert final.status in (ProposalStatus.EXPIRED, ProposalStatus.SCHEDULED)
        assert final.version == proposal.version + 1
        if final.status == ProposalStatus.SCHEDULED:
            assert final.home_team_accepted is True and final.away_team_accepted is True
            assert final.expired_at is None
            assert errors == []
        else:
            assert final.away_team_accepted is None
            assert final.accepted_at is None
            assert len(errors) == 1
    print(f"\nRace outcomes seen: {sorted(s.value for s in outcomes)}")
