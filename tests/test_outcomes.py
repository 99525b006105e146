"""
Tests for result recording: performances, standings, ranking and venue affinity.
"""

import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from matchmaker.core.exceptions import ValidationError
from matchmaker.models import MatchPerformance, MatchResult, ProposalStatus, Side, TeamStanding
from matchmaker.services import outcomes
from matchmaker.services.outcomes import apply_result, rank_standings
from matchmaker.services.store import InMemoryStore


@pytest.fixture
def played_fixture(engine, pending_proposal, clock):
    """The Tuesday fixture, accepted by both teams and kicked off."""
    engine.respond_to_proposal(pending_proposal.id, Side.HOME, True)
    engine.respond_to_proposal(pending_proposal.id, Side.AWAY, True)
    clock.now = pending_proposal.end_time + timedelta(minutes=15)
    return engine.get_proposal(pending_proposal.id)


def _standing(team_id, points=0, gd=0, gf=0, **kwargs):
    return TeamStanding(team_id=team_id, sport="football", season=2026, points=points,
                        goal_difference=gd, goals_for=gf, **kwargs)


def test_three_one_win_updates_both_standings(engine, played_fixture):
    """Home wins 3-1: W / L, +3 points, goal difference +2 / -2."""
    home, away = played_fixture.home_team_id, played_fixture.away_team_id

    performances = engine.record_outcome(played_fixture.id, 3, 1)
    assert [p.team_id for p in performances] == [home, away]
    assert performances[0].result == MatchResult.WIN
    assert performances[1].result == MatchResult.LOSS
    assert performances[1].goals_scored == 1 and performances[1].goals_conceded == 3

    table = {s.team_id: s for s in engine.list_standings("football", 2026)}
    winner, loser = table[home], table[away]
    print(f"\nStandings: {winner} / {loser}")

    assert (winner.matches_played, winner.wins, winner.points, winner.goal_difference) == (1, 1, 3, 2)
    assert (loser.matches_played, loser.losses, loser.points, loser.goal_difference) == (1, 1, 0, -2)
    assert winner.form == ["W"]
    assert loser.form == ["L"]
    assert (winner.position, loser.position) == (1, 2)


def test_affinity_updated_after_result(engine, played_fixture, store):
    """Seeded ratings are 4 (team-a) and 5 (team-b)."""
    engine.record_outcome(played_fixture.id, 2, 2, venue_ratings={"team-a": 2})

    team_a = store.find_relationship("team-a", "vendor-1")
    team_b = store.find_relationship("team-b", "vendor-1")
    assert team_a.matches_played == 1
    assert team_b.matches_played == 1
    assert team_a.venue_rating == 3.0
    assert team_b.venue_rating == 5


def test_extended_stats_are_kept(engine, played_fixture):
    home = played_fixture.home_team_id
    performances = engine.record_outcome(
        played_fixture.id, 1, 0,
        player_performances={home: {"player-9": {"goals": 1}}},
        match_stats={home: {"possession_percentage": 58.5, "shots_on_target": 6, "pass_accuracy": 81.0}},
    )
    assert performances[0].player_performances == {"player-9": {"goals": 1}}
    assert performances[0].possession_percentage == 58.5
    assert performances[0].shots_on_target == 6
    assert performances[1].possession_percentage is None


def test_result_cannot_be_recorded_twice(engine, played_fixture):
    engine.record_outcome(played_fixture.id, 1, 0)
    with pytest.raises(ValidationError):
        engine.record_outcome(played_fixture.id, 1, 0)
    table = engine.list_standings("football", 2026)
    assert all(s.matches_played == 1 for s in table)


def test_result_requires_scheduled_fixture(engine, pending_proposal, clock):
    clock.now = pending_proposal.end_time + timedelta(hours=1)
    with pytest.raises(ValidationError):
        engine.record_outcome(pending_proposal.id, 1, 0)


def test_result_before_kickoff_rejected(engine, pending_proposal):
    engine.respond_to_proposal(pending_proposal.id, Side.HOME, True)
    engine.respond_to_proposal(pending_proposal.id, Side.AWAY, True)
    with pytest.raises(ValidationError):
        engine.record_outcome(pending_proposal.id, 1, 0)


@pytest.mark.parametrize("home_goals,away_goals", [(-1, 0), (1, 2.5), (True, 0)])
def test_bad_scores_rejected(engine, played_fixture, home_goals, away_goals):
    with pytest.raises(ValidationError):
        engine.record_outcome(played_fixture.id, home_goals, away_goals)
    assert engine.list_standings("football", 2026) == []


@pytest.mark.parametrize("ratings", [{"team-a": 6}, {"team-a": 0}, {"team-c": 4}])
def test_bad_venue_ratings_rejected(engine, played_fixture, ratings):
    with pytest.raises(ValidationError):
        engine.record_outcome(played_fixture.id, 1, 1, venue_ratings=ratings)


def test_form_truncated_to_length():
    standing = _standing("team-a", matches_played=5, form=["L", "L", "D", "W", "W"])
    performance = MatchPerformance(
        id="p1", proposal_id="x", team_id="team-a", opponent_id="team-b",
        vendor_id="vendor-1", venue_id="venue-v", match_date=datetime(2026, 10, 20, 18),
        result=MatchResult.WIN, goals_scored=2, goals_conceded=0
    )
    updated = apply_result(standing, performance, form_length=5)
    assert updated.form == ["W", "L", "L", "D", "W"]
    assert updated.matches_played == 6
    assert standing.form == ["L", "L", "D", "W", "W"]  # input untouched


def test_rank_standings_tie_breakers():
    standings = [
        _standing("team-d", points=4, gd=1, gf=3),
        _standing("team-c", points=4, gd=1, gf=5),
        _standing("team-b", points=4, gd=2, gf=2),
        _standing("team-a", points=6, gd=-1, gf=1),
        _standing("team-e", points=4, gd=1, gf=3),
    ]
    ranked = rank_standings(standings)
    assert [s.team_id for s in ranked] == ["team-a", "team-b", "team-c", "team-d", "team-e"]
    assert [s.position for s in ranked] == [1, 2, 3, 4, 5]
    assert all(s.position == 0 for s in standings)


def test_concurrent_results_are_not_lost(engine, make_proposal, store, link, clock, monkeypatch):
    """Team A's two fixtures are reported at the same moment; both results count."""
    link("team-a", rating=4)
    both = dict(status=ProposalStatus.SCHEDULED, home_team_accepted=True,
                away_team_accepted=True, accepted_at=clock())
    fixtures = [
        make_proposal(home="team-a", away="team-b", **both),
        make_proposal(home="team-a", away="team-c", start=datetime(2026, 10, 21, 18, 0), **both),
    ]
    clock.now = datetime(2026, 10, 22, 9, 0)

    def slow_apply(*args, **kwargs):
        time.sleep(0.05)
        return apply_result(*args, **kwargs)

    monkeypatch.setattr(outcomes, "apply_result", slow_apply)
    barrier = threading.Barrier(len(fixtures))
    errors = []

    def record(proposal_id):
        barrier.wait()
        try:
            engine.record_outcome(proposal_id, 2, 0, venue_ratings={"team-a": 2})
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=record, args=(p.id,)) for p in fixtures]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    table = {s.team_id: s for s in engine.list_standings("football", 2026)}
    print(f"\nTable: {[(s.team_id, s.points, s.position) for s in table.values()]}")
    assert (table["team-a"].matches_played, table["team-a"].points) == (2, 6)
    assert table["team-a"].form == ["W", "W"]
    assert (table["team-b"].losses, table["team-c"].losses) == (1, 1)
    assert sorted(s.position for s in table.values()) == [1, 2, 3]

    team_a = store.find_relationship("team-a", "vendor-1")
    assert team_a.matches_played == 2
    # Seeded 4, then two ratings of 2
    assert team_a.venue_rating == 2.5


def test_store_update_standings_serialises_writers():
    store = InMemoryStore()
    barrier = threading.Barrier(8)

    def add_win(standing):
        time.sleep(0.01)
        return replace(standing, matches_played=standing.matches_played + 1,
                       points=standing.points + 3)

    def worker(team_id):
        barrier.wait()
        for _ in range(5):
            store.update_standings("football", 2026, {team_id: add_win, "team-shared": add_win})

    threads = [threading.Thread(target=worker, args=(f"team-{i}",)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    table = {s.team_id: s for s in store.list_standings("football", 2026)}
    assert table["team-shared"].matches_played == 40
    assert all(table[f"team-{i}"].points == 15 for i in range(8))
    assert table["team-shared"].position == 1
