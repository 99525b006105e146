"""
Proposal lifecycle management.

PENDING is the only non-terminal status. Every write is a compare-and-swap on
the proposal row's version: read, decide, write only if nobody else wrote in
between, otherwise re-read and decide again. Two captains accepting at the same
moment therefore both see the other's flag, and an accept can never resurrect
a row that was cancelled or expired in the meantime.
"""

import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import List, Dict, Callable, Optional

from matchmaker.core.config import (
    PROPOSAL_RESPONSE_WINDOW_HOURS, MAX_CAS_ATTEMPTS, CAP_EXCEEDED_REASON
)
from matchmaker.core.exceptions import (
    ValidationError, InvalidTransition, ConstraintViolation, ConcurrentUpdate
)
from matchmaker.core.logging_config import get_logger
from matchmaker.models import (
    MatchProposal, ProposalStatus, Side, Actor, FixtureCandidate
)
from matchmaker.services.conflicts import ConflictOracle
from matchmaker.services.store import Store

logger = get_logger(__name__)

VENUE_UNAVAILABLE_REASON = "venue unavailable"
TEAM_UNAVAILABLE_REASON = "team unavailable"

_ACCEPT_FIELDS = {
    Side.HOME: ("home_team_accepted", "home_accepted_at"),
    Side.AWAY: ("away_team_accepted", "away_accepted_at"),
}


def _other(side: Side) -> Side:
    return Side.AWAY if side == Side.HOME else Side.HOME


class ProposalLifecycleManager:
    def __init__(self, store: Store, oracle: ConflictOracle,
                 clock: Callable[[], datetime] = datetime.now,
                 response_window_hours: float = PROPOSAL_RESPONSE_WINDOW_HOURS,
                 max_attempts: int = MAX_CAS_ATTEMPTS):
        if response_window_hours <= 0:
            raise ValidationError("Proposal response window must be positive")
        self.store = store
        self.oracle = oracle
        self.clock = clock
        self.response_window = timedelta(hours=response_window_hours)
        self.max_attempts = max_attempts

    def expiry_for(self, created_at: datetime, scheduled_time: datetime) -> datetime:
        """Response deadline: the configured window after creation, never past kick-off."""
        return min(created_at + self.response_window, scheduled_time)

    # Creation

    def create_proposals(self, candidates: List[FixtureCandidate],
                         week_usage: Optional[Counter] = None) -> List[MatchProposal]:
        """
        Persist scored candidates (best first) as PENDING proposals.

        Weekly caps are re-checked as proposals are created so one run cannot
        push a team past its cap; live duplicates are skipped by the store.
        """
        usage = Counter(week_usage or {})
        created = []
        now = self.clock()

        for candidate in candidates:
            week = candidate.week_key
            home, away = candidate.home_team_id, candidate.away_team_id
            if usage[(home, week)] >= candidate.home_slot.max_matches_per_week:
                logger.debug("Skipping %s: %s at weekly cap", candidate, home)
                continue
            if usage[(away, week)] >= candidate.away_slot.max_matches_per_week:
                logger.debug("Skipping %s: %s at weekly cap", candidate, away)
                continue

            proposal = MatchProposal(
                id=str(uuid.uuid4()),
                home_team_id=home,
                away_team_id=away,
                venue_id=candidate.venue_id,
                vendor_id=candidate.vendor_id,
                scheduled_time=candidate.scheduled_time,
                end_time=candidate.end_time,
                ai_score=candidate.ai_score,
                scoring_factors=candidate.factors,
                expires_at=self.expiry_for(now, candidate.scheduled_time),
                created_at=now,
                home_weekly_cap=candidate.home_slot.max_matches_per_week,
                away_weekly_cap=candidate.away_slot.max_matches_per_week,
            )
            if not self.store.insert_proposal(proposal):
                logger.info("Live proposal already exists for %s; skipped", candidate)
                continue

            usage[(home, week)] += 1
            usage[(away, week)] += 1
            created.append(proposal)

        logger.info("Created %d proposals from %d candidates", len(created), len(candidates))
        return created

    # Transitions

    def _apply(self, proposal_id: str, requested: ProposalStatus,
               decide: Callable[[MatchProposal], Optional[Dict]]) -> MatchProposal:
        for attempt in range(self.max_attempts):
            current = self.store.get_proposal(proposal_id)
            if current.is_terminal:
                raise InvalidTransition(proposal_id, current.status, requested)
            changes = decide(current)
            if changes is None:
                return current
            updated = self.store.compare_and_swap(proposal_id, current.version, changes)
            if updated is not None:
                return updated
            logger.debug("Proposal %s changed concurrently (attempt %d)", proposal_id, attempt + 1)
        raise ConcurrentUpdate(f"Proposal {proposal_id} kept changing; gave up after {self.max_attempts} attempts")

    def _ensure_open(self, current: MatchProposal, requested: ProposalStatus, now: datetime):
        if now > current.expires_at:
            raise InvalidTransition(
                current.id, current.status, requested,
                detail=f"response window closed at {current.expires_at:%Y-%m-%d %H:%M}"
            )

    def _scheduling_conflict(self, proposal: MatchProposal) -> Optional[str]:
        """Reason the fixture cannot be confirmed right now, if any."""
        week = proposal.week_key
        for team_id, cap in ((proposal.home_team_id, proposal.home_weekly_cap),
                             (proposal.away_team_id, proposal.away_weekly_cap)):
            scheduled = [
                p for p in self.store.list_proposals(status=ProposalStatus.SCHEDULED, team_id=team_id)
                if p.id != proposal.id
            ]
            clash = next((p for p in scheduled if p.overlaps(proposal.scheduled_time, proposal.end_time)), None)
            if clash is not None:
                logger.warning("Team %s is already playing at that time: %s", team_id, clash)
                return TEAM_UNAVAILABLE_REASON
            confirmed = [p for p in scheduled if p.week_key == week]
            if len(confirmed) >= cap:
                logger.warning(
                    "Team %s already has %d scheduled fixtures in week %s (cap %d)",
                    team_id, len(confirmed), week, cap
                )
                return CAP_EXCEEDED_REASON
        if not self.oracle.is_venue_free(proposal.venue_id, proposal.scheduled_time,
                                         proposal.end_time, ignore_proposal_id=proposal.id):
            return VENUE_UNAVAILABLE_REASON
        return None

    def accept(self, proposal_id: str, side: Side) -> MatchProposal:
        """
        Record one side's acceptance; the second acceptance schedules the fixture.

        Raises:
            InvalidTransition: If the proposal is terminal or its window has closed
            ConstraintViolation: If confirming would break a weekly cap, the venue
                was taken or a team is already playing at that time; the proposal
                is cancelled with that reason
        """
        refusal = {}

        def decide(current: MatchProposal) -> Optional[Dict]:
            refusal.clear()
            if current.accepted_by(side) is True:
                return None
            now = self.clock()
            self._ensure_open(current, ProposalStatus.SCHEDULED, now)

            flag, stamp = _ACCEPT_FIELDS[side]
            if current.accepted_by(_other(side)) is not True:
                return {flag: True, stamp: now}

            reason = self._scheduling_conflict(current)
            if reason:
                refusal['reason'] = reason
                return {
                    'status': ProposalStatus.CANCELLED,
                    'cancelled_at': now,
                    'cancellation_reason': reason,
                    'cancelled_by': Actor.ADMIN,
                }
            return {
                flag: True,
                stamp: now,
                'status': ProposalStatus.SCHEDULED,
                'accepted_at': now,
            }

        proposal = self._apply(proposal_id, ProposalStatus.SCHEDULED, decide)
        if refusal:
            logger.warning("Proposal %s cancelled on acceptance: %s", proposal_id, refusal['reason'])
            raise ConstraintViolation(
                f"Proposal {proposal_id} could not be scheduled: {refusal['reason']}",
                proposal=proposal
            )
        if proposal.status == ProposalStatus.SCHEDULED:
            logger.info("Proposal %s scheduled: %s", proposal_id, proposal)
        else:
            logger.info("Proposal %s accepted by %s", proposal_id, side.value)
        return proposal

    def cancel(self, proposal_id: str, actor: Actor, reason: str) -> MatchProposal:
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")
        reason = reason.strip()

        def decide(current: MatchProposal) -> Dict:
            now = self.clock()
            self._ensure_open(current, ProposalStatus.CANCELLED, now)
            return {
                'status': ProposalStatus.CANCELLED,
                'cancelled_at': now,
                'cancellation_reason': reason,
                'cancelled_by': actor,
            }

        proposal = self._apply(proposal_id, ProposalStatus.CANCELLED, decide)
        logger.info("Proposal %s cancelled by %s: %s", proposal_id, actor.value, reason)
        return proposal

    def decline(self, proposal_id: str, side: Side) -> MatchProposal:
        return self.cancel(proposal_id, Actor(side.value), f"declined by {side.value.lower()}")

    def respond(self, proposal_id: str, side: Side, accept: bool) -> MatchProposal:
        if accept:
            return self.accept(proposal_id, side)
        return self.decline(proposal_id, side)

    # Expiration

    def _expire(self, proposal: MatchProposal, now: datetime) -> bool:
        current = proposal
        for _ in range(self.max_attempts):
            if current.status != ProposalStatus.PENDING or not now > current.expires_at:
                return False
            updated = self.store.compare_and_swap(
                current.id, current.version,
                {'status': ProposalStatus.EXPIRED, 'expired_at': now}
            )
            if updated is not None:
                return True
            current = self.store.get_proposal(current.id)
        logger.warning("Could not expire proposal %s; it kept changing", proposal.id)
        return False

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Move every PENDING proposal past its deadline to EXPIRED. Safe to re-run."""
        now = now or self.clock()
        expired = 0
        for proposal in self.store.list_proposals(status=ProposalStatus.PENDING):
            if now > proposal.expires_at and self._expire(proposal, now):
                expired += 1
        logger.info("Expiration sweep at %s: %d proposals expired", now, expired)
        return expired
