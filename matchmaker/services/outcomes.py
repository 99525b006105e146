"""
Outcome feedback: match results become performance records, standings and
venue affinity, which the next scoring run reads.
"""

import uuid
from dataclasses import replace
from functools import partial
from datetime import datetime
from typing import List, Dict, Optional, Callable, Any

from matchmaker.core.config import (
    FORM_LENGTH, POINTS_FOR_WIN, POINTS_FOR_DRAW, POINTS_FOR_LOSS,
    MIN_VENUE_RATING, MAX_VENUE_RATING
)
from matchmaker.core.exceptions import ValidationError
from matchmaker.core.logging_config import get_logger
from matchmaker.models import (
    MatchProposal, ProposalStatus, MatchPerformance, MatchResult,
    TeamStanding, TeamVenueRelationship, rank_standings
)
from matchmaker.services.store import Store

logger = get_logger(__name__)

POINTS = {
    MatchResult.WIN: POINTS_FOR_WIN,
    MatchResult.DRAW: POINTS_FOR_DRAW,
    MatchResult.LOSS: POINTS_FOR_LOSS,
}


def apply_result(standing: TeamStanding, performance: MatchPerformance,
                 form_length: int = FORM_LENGTH) -> TeamStanding:
    """Return `standing` with one more result folded in. Position is left to rank_standings."""
    result = performance.result
    goals_for = standing.goals_for + performance.goals_scored
    goals_against = standing.goals_against + performance.goals_conceded
    return replace(
        standing,
        matches_played=standing.matches_played + 1,
        wins=standing.wins + (1 if result == MatchResult.WIN else 0),
        draws=standing.draws + (1 if result == MatchResult.DRAW else 0),
        losses=standing.losses + (1 if result == MatchResult.LOSS else 0),
        goals_for=goals_for,
        goals_against=goals_against,
        goal_difference=goals_for - goals_against,
        points=standing.points + POINTS[result],
        form=([result.code] + list(standing.form))[:form_length],
    )


class OutcomeRecorder:
    def __init__(self, store: Store, clock: Callable[[], datetime] = datetime.now,
                 form_length: int = FORM_LENGTH):
        self.store = store
        self.clock = clock
        self.form_length = form_length

    def _validate(self, proposal: MatchProposal, home_goals: int, away_goals: int,
                  venue_ratings: Dict[str, int]):
        if proposal.status != ProposalStatus.SCHEDULED:
            raise ValidationError(
                f"Proposal {proposal.id} is {proposal.status.value}; only scheduled fixtures have results"
            )
        if self.clock() < proposal.scheduled_time:
            raise ValidationError(f"Fixture {proposal.id} has not been played yet")
        for goals in (home_goals, away_goals):
            if not isinstance(goals, int) or isinstance(goals, bool) or goals < 0:
                raise ValidationError(f"Invalid score {goals!r}")
        for team_id, rating in venue_ratings.items():
            if not proposal.involves_team(team_id):
                raise ValidationError(f"Team {team_id} did not play in {proposal.id}")
            if not MIN_VENUE_RATING <= rating <= MAX_VENUE_RATING:
                raise ValidationError(f"Venue rating must be {MIN_VENUE_RATING}-{MAX_VENUE_RATING}")
        if self.store.list_performances(proposal_id=proposal.id):
            raise ValidationError(f"Result for {proposal.id} already recorded")

    def record_result(self, proposal_id: str, home_goals: int, away_goals: int,
                      player_performances: Optional[Dict[str, Dict[str, Any]]] = None,
                      match_stats: Optional[Dict[str, Dict[str, Any]]] = None,
                      venue_ratings: Optional[Dict[str, int]] = None) -> List[MatchPerformance]:
        """
        Record the final score of a played fixture.

        Args:
            proposal_id: The SCHEDULED proposal that was played
            home_goals: Goals (or points) scored by the home team
            away_goals: Goals scored by the away team
            player_performances: team_id -> {player -> stats}
            match_stats: team_id -> {possession_percentage, shots_on_target, pass_accuracy}
            venue_ratings: team_id -> post-match rating of the venue (1-5)

        Returns:
            The two MatchPerformance records (home first)
        """
        player_performances = player_performances or {}
        match_stats = match_stats or {}
        venue_ratings = venue_ratings or {}

        proposal = self.store.get_proposal(proposal_id)
        self._validate(proposal, home_goals, away_goals, venue_ratings)

        performances = []
        for team_id, opponent_id, scored, conceded in (
            (proposal.home_team_id, proposal.away_team_id, home_goals, away_goals),
            (proposal.away_team_id, proposal.home_team_id, away_goals, home_goals),
        ):
            stats = match_stats.get(team_id, {})
            performance = MatchPerformance(
                id=str(uuid.uuid4()),
                proposal_id=proposal.id,
                team_id=team_id,
                opponent_id=opponent_id,
                vendor_id=proposal.vendor_id,
                venue_id=proposal.venue_id,
                match_date=proposal.scheduled_time,
                result=MatchResult.from_score(scored, conceded),
                goals_scored=scored,
                goals_conceded=conceded,
                player_performances=dict(player_performances.get(team_id, {})),
                possession_percentage=stats.get('possession_percentage'),
                shots_on_target=stats.get('shots_on_target'),
                pass_accuracy=stats.get('pass_accuracy'),
            )
            self.store.add_performance(performance)
            performances.append(performance)

        self._update_standings(proposal, performances)
        self._update_affinity(proposal, venue_ratings)
        logger.info(
            "Recorded %s %d-%d %s",
            proposal.home_team_id, home_goals, away_goals, proposal.away_team_id
        )
        return performances

    def _update_standings(self, proposal: MatchProposal, performances: List[MatchPerformance]):
        sport = self.store.get_team(proposal.home_team_id).sport
        season = proposal.scheduled_time.year
        # Applied by the store as one step per team row
        changes = {
            p.team_id: partial(apply_result, performance=p, form_length=self.form_length)
            for p in performances
        }
        self.store.update_standings(sport, season, changes)

    def _update_affinity(self, proposal: MatchProposal, venue_ratings: Dict[str, int]):
        for team_id in (proposal.home_team_id, proposal.away_team_id):
            self.store.update_relationship(
                team_id, proposal.vendor_id,
                partial(self._fold_affinity, team_id=team_id, vendor_id=proposal.vendor_id,
                        rating=venue_ratings.get(team_id))
            )

    def _fold_affinity(self, relationship: Optional[TeamVenueRelationship], team_id: str,
                       vendor_id: str, rating: Optional[int]) -> TeamVenueRelationship:
        if relationship is None:
            relationship = TeamVenueRelationship(id=str(uuid.uuid4()), team_id=team_id, vendor_id=vendor_id)
        played = relationship.matches_played
        if rating is not None:
            if relationship.venue_rating is None:
                relationship.venue_rating = float(rating)
            else:
                # Running mean; a seeded rating counts as one observation
                weight = max(played, 1)
                relationship.venue_rating = round(
                    (relationship.venue_rating * weight + rating) / (weight + 1), 2
                )
        relationship.matches_played = played + 1
        return relationship
