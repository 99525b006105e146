"""
Tests for the Supabase store's query building and row conversion, using a
mocked client.
"""

from dataclasses import replace
from datetime import datetime, time
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

from matchmaker.core.exceptions import ConcurrentUpdate, ValidationError
from matchmaker.models import AvailabilitySlot, DayOfWeek, ProposalStatus, TeamVenueRelationship
from matchmaker.services import supabase_store
from matchmaker.services.supabase_store import SupabaseStore


def _proposal_row(**overrides):
    row = {
        "id": "p1",
        "home_team_id": "team-a",
        "away_team_id": "team-b",
        "venue_id": "venue-v",
        "vendor_id": "vendor-1",
        "scheduled_time": "2026-10-20T18:00:00",
        "end_time": "2026-10-20T20:00:00",
        "ai_score": 0.88,
        "scoring_factors": {"time_slot_compatibility": 1.0, "venue_preference": 0.9},
        "expires_at": "2026-10-20T09:00:00+00:00",
        "created_at": "2026-10-19T09:00:00",
        "status": "PENDING",
        "version": 0,
    }
    row.update(overrides)
    return row


def test_requires_credentials(monkeypatch):
    monkeypatch.setattr(supabase_store, "SUPABASE_URL", "")
    monkeypatch.setattr(supabase_store, "SUPABASE_KEY", "")
    with pytest.raises(ValueError):
        SupabaseStore()


def test_proposal_row_conversion():
    store = SupabaseStore(client=MagicMock())
    proposal = store._proposal_from_row(_proposal_row(cancelled_by="admin"))
    assert proposal.status == ProposalStatus.PENDING
    assert proposal.expires_at == datetime(2026, 10, 20, 9, 0)
    assert proposal.expires_at.tzinfo is None
    assert proposal.scoring_factors.venue_preference == 0.9
    assert proposal.scoring_factors.skill_level_match == 0.0
    assert proposal.cancelled_by.value == "ADMIN"
    assert proposal.home_weekly_cap == 7


def test_compare_and_swap_guards_version_and_status():
    client = MagicMock()
    update = client.table.return_value.update
    by_id = update.return_value.eq
    by_version = by_id.return_value.eq
    by_status = by_version.return_value.eq
    by_status.return_value.execute.return_value.data = [
        _proposal_row(status="SCHEDULED", version=4, accepted_at="2026-10-19T10:00:00")
    ]

    store = SupabaseStore(client=client)
    updated = store.compare_and_swap(
        "p1", 3, {"status": ProposalStatus.SCHEDULED, "accepted_at": datetime(2026, 10, 19, 10, 0)}
    )

    update.assert_called_once_with(
        {"status": "SCHEDULED", "accepted_at": "2026-10-19T10:00:00", "version": 4}
    )
    by_id.assert_called_once_with("id", "p1")
    by_version.assert_called_once_with("version", 3)
    by_status.assert_called_once_with("status", "PENDING")
    assert updated.status == ProposalStatus.SCHEDULED
    assert updated.version == 4


def test_duplicate_slot_maps_to_validation_error():
    client = MagicMock()
    client.table.return_value.insert.return_value.execute.side_effect = APIError(
        {"message": "duplicate key value", "code": "23505", "hint": None, "details": None}
    )
    store = SupabaseStore(client=client)
    slot = AvailabilitySlot(
        id="s1", team_id="team-a", relationship_id="rel-1",
        day_of_week=DayOfWeek.TUESDAY, start_time=time(18, 0), end_time=time(20, 0)
    )
    with pytest.raises(ValidationError):
        store.add_slot(slot)


def test_slot_row_conversion():
    store = SupabaseStore(client=MagicMock())
    slot = store._slot_from_row({
        "id": "s1", "team_id": "team-a", "team_vendor_id": "rel-1",
        "day_of_week": "Tuesday", "start_time": "18:00:00", "end_time": "20:00:00",
        "max_matches_per_week": 2,
    })
    assert slot.day_of_week == DayOfWeek.TUESDAY
    assert (slot.start_time, slot.end_time) == (time(18, 0), time(20, 0))
    assert store._slot_to_row(slot)["start_time"] == "18:00"


def _standing_row(team_id, matches_played=0, points=0, position=0):
    return {
        "team_id": team_id, "sport": "football", "season_year": 2026,
        "matches_played": matches_played, "wins": points // 3, "points": points,
        "goal_difference": 0, "goals_for": 0, "position": position, "form": [],
    }


def _add_win(standing):
    return replace(standing, matches_played=standing.matches_played + 1, points=standing.points + 3)


def test_standing_update_is_guarded_on_matches_played():
    client = MagicMock()
    table = client.table.return_value
    # Single-row read (three filters) and whole-season read (two filters)
    select_eq = table.select.return_value.eq
    select_eq.return_value.eq.return_value.eq.return_value.execute.return_value.data = [
        _standing_row("team-a", matches_played=2, points=3, position=2)
    ]
    select_eq.return_value.eq.return_value.execute.return_value.data = [
        _standing_row("team-a", matches_played=3, points=6, position=2),
        _standing_row("team-b", matches_played=3, points=4, position=1),
    ]
    update = table.update
    guard = update.return_value.eq.return_value.eq.return_value.eq.return_value.eq
    guard.return_value.execute.return_value.data = [_standing_row("team-a", matches_played=3)]

    store = SupabaseStore(client=client)
    ranked = store.update_standings("football", 2026, {"team-a": _add_win})

    written = update.call_args_list[0].args[0]
    assert (written["matches_played"], written["points"], written["season_year"]) == (3, 6, 2026)
    guard.assert_any_call("matches_played", 2)
    assert [(s.team_id, s.position) for s in ranked] == [("team-a", 1), ("team-b", 2)]
    # Both rows changed position, so both positions are rewritten
    assert {"position": 1} in [c.args[0] for c in update.call_args_list]
    assert {"position": 2} in [c.args[0] for c in update.call_args_list]


def test_standing_update_gives_up_after_repeated_lost_races(monkeypatch):
    monkeypatch.setattr(supabase_store, "MAX_CAS_ATTEMPTS", 3)
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.eq.return_value.eq.return_value.eq.return_value.execute.return_value.data = [
        _standing_row("team-a", matches_played=2)
    ]
    guard = table.update.return_value.eq.return_value.eq.return_value.eq.return_value.eq
    guard.return_value.execute.return_value.data = []

    store = SupabaseStore(client=client)
    with pytest.raises(ConcurrentUpdate):
        store.update_standings("football", 2026, {"team-a": _add_win})
    assert table.update.call_count == 3


def test_relationship_update_is_guarded_on_matches_played():
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.eq.return_value.eq.return_value.execute.return_value.data = [
        {"id": "rel-1", "team_id": "team-a", "vendor_id": "vendor-1",
         "venue_rating": 4.0, "matches_played": 1}
    ]
    by_id = table.update.return_value.eq
    guard = by_id.return_value.eq
    guard.return_value.execute.return_value.data = [
        {"id": "rel-1", "team_id": "team-a", "vendor_id": "vendor-1",
         "venue_rating": 3.0, "matches_played": 2}
    ]

    def played_once_more(relationship):
        relationship.venue_rating = 3.0
        relationship.matches_played += 1
        return relationship

    store = SupabaseStore(client=client)
    updated = store.update_relationship("team-a", "vendor-1", played_once_more)

    by_id.assert_called_once_with("id", "rel-1")
    guard.assert_called_once_with("matches_played", 1)
    assert isinstance(updated, TeamVenueRelationship)
    assert (updated.matches_played, updated.venue_rating) == (2, 3.0)


def test_list_standings_ranks_on_read():
    client = MagicMock()
    client.table.return_value.select.return_value.eq.return_value.eq.return_value.execute.return_value.data = [
        _standing_row("team-b", points=3, position=1),
        _standing_row("team-a", points=6, position=2),
    ]
    store = SupabaseStore(client=client)
    assert [(s.team_id, s.position) for s in store.list_standings("football", 2026)] == [
        ("team-a", 1), ("team-b", 2)
    ]
