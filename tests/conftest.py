"""
Shared fixtures: an in-memory store seeded with a small league, a controllable
clock, and builders for relationships and proposals.
"""

import uuid
from datetime import datetime, date, timedelta

import pytest

from matchmaker.models import (
    Team, Venue, TeamVenueRelationship, MatchProposal, ScoringFactors
)
from matchmaker.services.engine import SchedulingEngine
from matchmaker.services.store import InMemoryStore

NOW = datetime(2026, 10, 19, 9, 0)  # Monday morning
TUESDAY = date(2026, 10, 20)
VENDOR = "vendor-1"
VENUE = "venue-v"


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    store = InMemoryStore()
    store.add_team(Team(id="team-a", name="Alpha FC", sport="football", area="North"))
    store.add_team(Team(id="team-b", name="Bravo United", sport="football", area="North"))
    store.add_team(Team(id="team-c", name="Charlie Rovers", sport="football"))
    store.add_team(Team(id="team-d", name="Delta Hoops", sport="basketball"))
    store.add_venue(Venue(id=VENUE, vendor_id=VENDOR, name="Riverside Turf"))
    return store


@pytest.fixture
def engine(store, clock):
    return SchedulingEngine(store, clock=clock)


@pytest.fixture
def link(store):
    """Create a team/vendor relationship with an optional seeded rating."""
    def _link(team_id, vendor_id=VENDOR, rating=None, matches_played=0):
        relationship = TeamVenueRelationship(
            id=f"rel-{team_id}-{vendor_id}",
            team_id=team_id,
            vendor_id=vendor_id,
            venue_rating=rating,
            matches_played=matches_played,
        )
        return store.save_relationship(relationship)
    return _link


@pytest.fixture
def make_proposal(store, clock):
    """Insert a proposal directly, bypassing generation."""
    def _make(home="team-a", away="team-b", start=datetime(2026, 10, 20, 18, 0),
              duration_hours=2, venue_id=VENUE, **overrides):
        fields = dict(
            id=str(uuid.uuid4()),
            home_team_id=home,
            away_team_id=away,
            venue_id=venue_id,
            vendor_id=VENDOR,
            scheduled_time=start,
            end_time=start + timedelta(hours=duration_hours),
            ai_score=0.8,
            scoring_factors=ScoringFactors(),
            expires_at=min(clock() + timedelta(hours=24), start),
            created_at=clock(),
        )
        fields.update(overrides)
        proposal = MatchProposal(**fields)
        assert store.insert_proposal(proposal)
        return store.get_proposal(proposal.id)
    return _make


@pytest.fixture
def tuesday_pair(engine, link):
    """Teams A and B, both free Tuesday 18:00-20:00 (cap 2) at the vendor, rated 4 and 5."""
    link("team-a", rating=4)
    link("team-b", rating=5)
    engine.add_availability("team-a", VENDOR, "tuesday", "18:00", "20:00", max_matches_per_week=2)
    engine.add_availability("team-b", VENDOR, "tuesday", "18:00", "20:00", max_matches_per_week=2)
    return engine


@pytest.fixture
def pending_proposal(tuesday_pair):
    proposals = tuesday_pair.generate_proposals(VENDOR, TUESDAY, TUESDAY)
    assert len(proposals) == 1
    return proposals[0]


