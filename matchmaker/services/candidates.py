"""
Candidate fixture generation.

Enumerates (home, away, venue, window) tuples for every pair of teams that
share a vendor and have overlapping weekly availability, keeping only windows
where the venue is open, free, and both teams still have weekly headroom.
"""

import itertools
from collections import Counter, defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Dict, Set, Tuple, Callable, Optional

from matchmaker.core.config import MIN_MATCH_MINUTES, GENERATION_WORKERS
from matchmaker.core.logging_config import get_logger
from matchmaker.models import (
    Team, Venue, TeamVenueRelationship, AvailabilitySlot, TeamStanding,
    FixtureCandidate, DayOfWeek, ProposalStatus, iso_week, minutes_of
)
from matchmaker.services.availability import AvailabilityService
from matchmaker.services.conflicts import ConflictOracle
from matchmaker.services.store import Store

logger = get_logger(__name__)


@dataclass
class GenerationContext:
    """Snapshot of everything one generation run reads for a vendor."""
    vendor_id: str
    venues: List[Venue]
    teams: Dict[str, Team]
    relationships: Dict[str, TeamVenueRelationship]  # team_id -> link to this vendor
    slots_by_team: Dict[str, List[AvailabilitySlot]]
    week_usage: Counter = field(default_factory=Counter)  # (team_id, iso week) -> live proposals
    pair_week_counts: Counter = field(default_factory=Counter)  # (pair, iso week) -> live proposals
    live_fixtures: Set[tuple] = field(default_factory=set)  # fixture keys of live proposals
    team_busy: Dict[str, List[Tuple[datetime, datetime]]] = field(default_factory=dict)  # live windows
    standings: Dict[str, TeamStanding] = field(default_factory=dict)

    def used(self, team_id: str, week: Tuple[int, int]) -> int:
        return self.week_usage[(team_id, week)]

    def rating(self, team_id: str) -> Optional[float]:
        relationship = self.relationships.get(team_id)
        return relationship.venue_rating if relationship else None


class CandidateGenerator:
    def __init__(self, store: Store, oracle: ConflictOracle,
                 clock: Callable[[], datetime] = datetime.now,
                 workers: int = GENERATION_WORKERS):
        self.store = store
        self.oracle = oracle
        self.availability = AvailabilityService(store)
        self.clock = clock
        self.workers = workers

    def build_context(self, vendor_id: str) -> GenerationContext:
        venues = self.store.list_venues(vendor_id)
        slots_by_team = self.availability.slots_by_team(vendor_id)
        relationships = {
            rel.team_id: rel for rel in self.store.list_relationships(vendor_id=vendor_id)
        }
        teams = {team.id: team for team in self.store.list_teams(slots_by_team.keys())}

        week_usage = Counter()
        pair_week_counts = Counter()
        live_fixtures = set()
        team_busy = defaultdict(list)
        for status in (ProposalStatus.PENDING, ProposalStatus.SCHEDULED):
            for proposal in self.store.list_proposals(status=status):
                week_usage[(proposal.home_team_id, proposal.week_key)] += 1
                week_usage[(proposal.away_team_id, proposal.week_key)] += 1
                pair_week_counts[(proposal.pair_key, proposal.week_key)] += 1
                live_fixtures.add(proposal.fixture_key)
                for team_id in (proposal.home_team_id, proposal.away_team_id):
                    team_busy[team_id].append((proposal.scheduled_time, proposal.end_time))

        standings = {}
        season = self.clock().year
        for sport in sorted({team.sport for team in teams.values()}):
            for standing in self.store.list_standings(sport, season):
                standings[standing.team_id] = standing

        return GenerationContext(
            vendor_id=vendor_id,
            venues=venues,
            teams=teams,
            relationships=relationships,
            slots_by_team=slots_by_team,
            week_usage=week_usage,
            pair_week_counts=pair_week_counts,
            live_fixtures=live_fixtures,
            team_busy=dict(team_busy),
            standings=standings,
        )

    def team_pairs(self, context: GenerationContext) -> List[Tuple[str, str]]:
        """Unordered pairs of teams with availability at the vendor and the same sport."""
        team_ids = sorted(tid for tid in context.slots_by_team if tid in context.teams)
        return [
            (a, b) for a, b in itertools.combinations(team_ids, 2)
            if context.teams[a].sport == context.teams[b].sport
        ]

    def generate(self, context: GenerationContext, window_start: date,
                 window_end: date) -> List[FixtureCandidate]:
        """
        Generate candidates for every team pair over [window_start, window_end].

        Pairs are processed in parallel; a pair that fails is logged and skipped
        so one incomplete profile does not abort the run.
        """
        if not context.venues:
            logger.info("Vendor %s has no venues; nothing to generate", context.vendor_id)
            return []

        dates = []
        current = window_start
        while current <= window_end:
            dates.append(current)
            current += timedelta(days=1)

        pairs = self.team_pairs(context)
        logger.info(
            "Generating candidates for vendor %s: %d teams, %d pairs, %d days",
            context.vendor_id, len(context.slots_by_team), len(pairs), len(dates)
        )

        with ThreadPoolExecutor(max_workers=max(1, self.workers)) as executor:
            results = list(executor.map(lambda pair: self._safe_pair(pair, context, dates), pairs))

        candidates = [c for batch in results for c in batch]
        candidates.sort(key=lambda c: (c.scheduled_time, c.venue_id, c.pair_key))
        logger.info("Generated %d candidates for vendor %s", len(candidates), context.vendor_id)
        return candidates

    def _safe_pair(self, pair: Tuple[str, str], context: GenerationContext,
                   dates: List[date]) -> List[FixtureCandidate]:
        try:
            return self._candidates_for_pair(pair[0], pair[1], context, dates)
        except Exception:
            logger.exception("Skipping pair %s/%s after generation error", pair[0], pair[1])
            return []

    def _home_and_away(self, team_a: str, team_b: str,
                       context: GenerationContext) -> Tuple[str, str]:
        """The team with more matches at the vendor hosts; ties go to the lower id."""
        def played(team_id):
            rel = context.relationships.get(team_id)
            return rel.matches_played if rel else 0

        ordered = sorted((team_a, team_b), key=lambda t: (-played(t), t))
        return ordered[0], ordered[1]

    def _candidates_for_pair(self, team_a: str, team_b: str, context: GenerationContext,
                             dates: List[date]) -> List[FixtureCandidate]:
        now = self.clock()
        home_id, away_id = self._home_and_away(team_a, team_b, context)
        home_slots = context.slots_by_team.get(home_id, [])
        away_slots = context.slots_by_team.get(away_id, [])

        found: Dict[tuple, FixtureCandidate] = {}
        for day in dates:
            weekday = DayOfWeek.from_date(day)
            for home_slot in home_slots:
                if home_slot.day_of_week != weekday:
                    continue
                for away_slot in away_slots:
                    overlap = home_slot.overlap_with(away_slot)
                    if overlap is None:
                        continue
                    if minutes_of(overlap[1]) - minutes_of(overlap[0]) < MIN_MATCH_MINUTES:
                        continue
                    start = datetime.combine(day, overlap[0])
                    end = datetime.combine(day, overlap[1])
                    if start <= now:
                        continue
                    for venue in context.venues:
                        candidate = self._check_window(
                            home_id, away_id, venue, start, end, home_slot, away_slot, context
                        )
                        if candidate and candidate.fixture_key not in found:
                            found[candidate.fixture_key] = candidate
        return list(found.values())

    def _check_window(self, home_id: str, away_id: str, venue: Venue,
                      start: datetime, end: datetime,
                      home_slot: AvailabilitySlot, away_slot: AvailabilitySlot,
                      context: GenerationContext) -> Optional[FixtureCandidate]:
        if not self.oracle.is_venue_open(venue, start, end):
            logger.debug("Venue %s closed for %s-%s", venue.id, start, end)
            return None
        if not self.oracle.is_venue_free(venue.id, start, end):
            logger.debug("Venue %s already booked for %s-%s", venue.id, start, end)
            return None
        week = iso_week(start)
        if context.used(home_id, week) >= home_slot.max_matches_per_week:
            return None
        if context.used(away_id, week) >= away_slot.max_matches_per_week:
            return None
        return FixtureCandidate(
            home_team_id=home_id,
            away_team_id=away_id,
            venue_id=venue.id,
            vendor_id=venue.vendor_id,
            scheduled_time=start,
            end_time=end,
            home_slot=home_slot,
            away_slot=away_slot,
        )
