"""
Tests for the proposal audit.
"""

from datetime import datetime

from matchmaker.models import ProposalStatus, Side, Venue


def _types(violations):
    return sorted(v.constraint_type for v in violations)


def test_clean_lifecycle_is_valid(engine, pending_proposal):
    engine.respond_to_proposal(pending_proposal.id, Side.HOME, True)
    engine.respond_to_proposal(pending_proposal.id, Side.AWAY, True)

    result = engine.audit()
    print("\n" + result.get_summary())
    assert result.is_valid
    assert result.proposals_checked == 1
    assert result.hard_violations == []
    assert result.soft_violations == []


def test_overdue_pending_is_soft(engine, pending_proposal, clock):
    clock.now = pending_proposal.expires_at.replace(hour=12)
    result = engine.audit()
    assert result.is_valid
    assert _types(result.soft_violations) == ["awaiting_expiration_sweep"]
    assert result.soft_violations[0].proposal_ids == [pending_proposal.id]

    engine.sweep_expired()
    assert engine.audit().soft_violations == []


def test_inconsistent_rows_are_hard_violations(engine, make_proposal, clock):
    make_proposal(status=ProposalStatus.SCHEDULED, home_team_accepted=True)
    make_proposal(away="team-c", start=datetime(2026, 10, 21, 18, 0),
                  home_team_accepted=True, away_team_accepted=True)
    make_proposal(away="team-c", start=datetime(2026, 10, 22, 18, 0),
                  status=ProposalStatus.CANCELLED)
    make_proposal(away="team-c", start=datetime(2026, 10, 23, 18, 0),
                  status=ProposalStatus.EXPIRED, expired_at=clock())

    result = engine.audit()
    assert not result.is_valid
    assert _types(result.hard_violations) == [
        "accepted_not_scheduled",
        "cancelled_without_reason",
        "expired_before_deadline",
        "missing_accepted_at",
        "scheduled_without_acceptance",
    ]


def test_venue_double_booking_detected(engine, make_proposal, clock):
    both = dict(status=ProposalStatus.SCHEDULED, home_team_accepted=True,
                away_team_accepted=True, accepted_at=clock())
    first = make_proposal(home="team-a", away="team-b", **both)
    second = make_proposal(home="team-c", away="team-b",
                           start=datetime(2026, 10, 20, 19, 0), **both)

    result = engine.audit()
    assert "venue_double_booking" in _types(result.hard_violations)
    clash = [v for v in result.hard_violations if v.constraint_type == "venue_double_booking"][0]
    assert sorted(clash.proposal_ids) == sorted([first.id, second.id])


def test_weekly_cap_breach_detected(engine, make_proposal, clock):
    both = dict(status=ProposalStatus.SCHEDULED, home_team_accepted=True,
                away_team_accepted=True, accepted_at=clock(), home_weekly_cap=1)
    make_proposal(home="team-a", away="team-b", **both)
    make_proposal(home="team-a", away="team-c", start=datetime(2026, 10, 23, 18, 0), **both)

    result = engine.audit()
    assert _types(result.hard_violations) == ["weekly_cap_exceeded"]


def test_audit_by_vendor(engine, pending_proposal):
    assert engine.audit("vendor-1").proposals_checked == 1
    assert engine.audit("vendor-404").proposals_checked == 0


def test_team_double_booking_detected(engine, make_proposal, store, clock):
    """Team A confirmed at two venues at once."""
    store.add_venue(Venue(id="venue-w", vendor_id="vendor-1", name="Westside Courts"))
    both = dict(status=ProposalStatus.SCHEDULED, home_team_accepted=True,
                away_team_accepted=True, accepted_at=clock())
    first = make_proposal(home="team-a", away="team-b", **both)
    second = make_proposal(home="team-a", away="team-c", venue_id="venue-w", **both)

    result = engine.audit()
    assert _types(result.hard_violations) == ["team_double_booking"]
    assert sorted(result.hard_violations[0].proposal_ids) == sorted([first.id, second.id])
