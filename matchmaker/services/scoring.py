"""
Deterministic weighted scoring of fixture candidates.

aiScore = sum(weight_i * factor_i) over the fixed ScoringFactors set. Every
factor lands in [0, 1]; missing optional data (ratings, locations, standings)
scores the neutral value instead of failing.
"""

from collections import Counter, defaultdict
from dataclasses import replace
from datetime import datetime
from typing import List, Dict, Optional, Tuple

from matchmaker.core.config import (
    NEUTRAL_FACTOR_SCORE, MAX_TRAVEL_KM, MAX_VENUE_RATING,
    MIN_AI_SCORE, TOP_N_PER_WINDOW, POINTS_FOR_WIN, get_scoring_weights
)
from matchmaker.core.logging_config import get_logger
from matchmaker.models import (
    AvailabilitySlot, FixtureCandidate, ScoringFactors, ScoringWeights, TeamStanding,
    minutes_of
)
from matchmaker.services.candidates import GenerationContext
from matchmaker.services.geo import LocationLookup, haversine_km

logger = get_logger(__name__)

FORM_VALUES = {'W': 1.0, 'D': 0.5, 'L': 0.0}


def _overlapping(candidate: FixtureCandidate, windows: List[Tuple[datetime, datetime]]) -> bool:
    return any(start < candidate.end_time and candidate.scheduled_time < end for start, end in windows)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def time_slot_compatibility(slot_a: AvailabilitySlot, slot_b: AvailabilitySlot) -> float:
    """Overlap length over the longer window; identical windows score 1.0."""
    overlap = slot_a.overlap_with(slot_b)
    if overlap is None:
        return 0.0
    overlap_minutes = minutes_of(overlap[1]) - minutes_of(overlap[0])
    longest = max(slot_a.duration_minutes, slot_b.duration_minutes)
    return _clamp(overlap_minutes / longest)


def venue_preference(rating_a: Optional[float], rating_b: Optional[float]) -> float:
    def normalized(rating):
        if rating is None:
            return NEUTRAL_FACTOR_SCORE
        return _clamp(rating / MAX_VENUE_RATING)

    return (normalized(rating_a) + normalized(rating_b)) / 2


def team_availability(used_a: int, cap_a: int, used_b: int, cap_b: int) -> float:
    """Mean remaining weekly headroom of both teams."""
    def headroom(used, cap):
        if cap <= 0:
            return 0.0
        return _clamp((cap - used) / cap)

    return (headroom(used_a, cap_a) + headroom(used_b, cap_b)) / 2


def travel_distance(team_a: Optional[Tuple[float, float]], team_b: Optional[Tuple[float, float]],
                    venue: Optional[Tuple[float, float]], max_km: float = MAX_TRAVEL_KM) -> float:
    def closeness(home):
        if home is None or venue is None:
            return NEUTRAL_FACTOR_SCORE
        return _clamp(1.0 - haversine_km(home, venue) / max_km)

    return (closeness(team_a) + closeness(team_b)) / 2


def venue_availability(contenders: int) -> float:
    """1.0 for an uncontested slot; shared equally among competing candidates."""
    return 1.0 / max(1, contenders)


def team_strength(standing: Optional[TeamStanding]) -> Optional[float]:
    """Blend of points-per-match and recent form, in [0, 1]."""
    if standing is None or standing.matches_played == 0:
        return None
    points_rate = standing.points / (standing.matches_played * POINTS_FOR_WIN)
    if standing.form:
        form_rate = sum(FORM_VALUES.get(r, 0.5) for r in standing.form) / len(standing.form)
    else:
        form_rate = points_rate
    return _clamp((points_rate + form_rate) / 2)


def skill_level_match(standing_a: Optional[TeamStanding], standing_b: Optional[TeamStanding]) -> float:
    strength_a = team_strength(standing_a)
    strength_b = team_strength(standing_b)
    if strength_a is None or strength_b is None:
        return NEUTRAL_FACTOR_SCORE
    return _clamp(1.0 - abs(strength_a - strength_b))


class ScoringFunction:
    def __init__(self, locator: LocationLookup, weights: Optional[ScoringWeights] = None):
        self.locator = locator
        self.weights = weights or ScoringWeights.from_dict(get_scoring_weights())

    def combine(self, factors: ScoringFactors) -> float:
        total = sum(
            getattr(self.weights, name) * getattr(factors, name)
            for name in ScoringFactors.names()
        )
        return round(_clamp(total), 4)

    def factors_for(self, candidate: FixtureCandidate, context: GenerationContext,
                    contenders: int) -> ScoringFactors:
        week = candidate.week_key
        home, away = candidate.home_team_id, candidate.away_team_id
        factors = ScoringFactors(
            time_slot_compatibility=time_slot_compatibility(candidate.home_slot, candidate.away_slot),
            venue_preference=venue_preference(context.rating(home), context.rating(away)),
            team_availability=team_availability(
                context.used(home, week), candidate.home_slot.max_matches_per_week,
                context.used(away, week), candidate.away_slot.max_matches_per_week,
            ),
            travel_distance=travel_distance(
                context.teams[home].location if home in context.teams else self.locator.team_location(home),
                context.teams[away].location if away in context.teams else self.locator.team_location(away),
                self.locator.venue_location(candidate.venue_id),
            ),
            venue_availability=venue_availability(contenders),
            skill_level_match=skill_level_match(
                context.standings.get(home), context.standings.get(away)
            ),
        )
        return ScoringFactors(**{name: round(value, 4) for name, value in factors.as_dict().items()})

    def score_all(self, candidates: List[FixtureCandidate],
                  context: GenerationContext) -> List[FixtureCandidate]:
        """Attach factors and aiScore to every candidate; returned best first."""
        contention = self._contention(candidates)
        scored = []
        for candidate in candidates:
            factors = self.factors_for(candidate, context, contention[id(candidate)])
            scored.append(replace(candidate, factors=factors, ai_score=self.combine(factors)))
        scored.sort(key=lambda c: (-c.ai_score, c.scheduled_time, c.venue_id, c.pair_key))
        return scored

    def _contention(self, candidates: List[FixtureCandidate]) -> Dict[int, int]:
        """Number of candidates (itself included) overlapping each candidate at its venue."""
        by_venue = defaultdict(list)
        for candidate in candidates:
            by_venue[candidate.venue_id].append(candidate)
        contention = {}
        for group in by_venue.values():
            for candidate in group:
                contention[id(candidate)] = sum(
                    1 for other in group
                    if other.scheduled_time < candidate.end_time and candidate.scheduled_time < other.end_time
                )
        return contention

    def select(self, scored: List[FixtureCandidate], context: GenerationContext,
               min_score: float = MIN_AI_SCORE,
               top_n: int = TOP_N_PER_WINDOW) -> List[FixtureCandidate]:
        """
        Drop candidates under the threshold, then keep at most `top_n` per
        (team pair, ISO week), counting proposals already live for that window.

        A team is never offered two fixtures that overlap in time, whether the
        other one is already live or was selected earlier in this pass. Since
        `scored` is best first, a window offered at several venues keeps only
        its best-scoring venue.
        """
        kept = []
        window_counts = Counter(context.pair_week_counts)
        busy = defaultdict(list)
        for team_id, windows in context.team_busy.items():
            busy[team_id].extend(windows)
        below = 0
        for candidate in scored:
            if candidate.ai_score < min_score:
                below += 1
                continue
            if candidate.fixture_key in context.live_fixtures:
                continue
            teams = (candidate.home_team_id, candidate.away_team_id)
            if any(_overlapping(candidate, busy[team_id]) for team_id in teams):
                continue
            window = (candidate.pair_key, candidate.week_key)
            if window_counts[window] >= top_n:
                continue
            window_counts[window] += 1
            for team_id in teams:
                busy[team_id].append((candidate.scheduled_time, candidate.end_time))
            kept.append(candidate)
        logger.info(
            "Selected %d of %d candidates (%d below score %.2f)",
            len(kept), len(scored), below, min_score
        )
        return kept
