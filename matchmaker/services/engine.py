"""
SchedulingEngine: the single entry point the API, Celery tasks and scripts use.

Wires the store, conflict oracle, candidate generator, scoring function,
lifecycle manager, outcome recorder and audit together.
"""

import threading
from datetime import date, datetime, timedelta
from typing import List, Optional, Callable, Dict, Any

from matchmaker.core.config import (
    STORE_BACKEND, GENERATION_HORIZON_DAYS, MIN_AI_SCORE, TOP_N_PER_WINDOW
)
from matchmaker.core.exceptions import ValidationError
from matchmaker.core.logging_config import get_logger
from matchmaker.models import (
    AvailabilitySlot, MatchProposal, MatchPerformance, ProposalStatus,
    ProposalAuditResult, ScoringWeights, Side, Actor, TeamStanding
)
from matchmaker.services.availability import AvailabilityService
from matchmaker.services.candidates import CandidateGenerator
from matchmaker.services.conflicts import ConflictOracle
from matchmaker.services.geo import LocationLookup
from matchmaker.services.lifecycle import ProposalLifecycleManager
from matchmaker.services.outcomes import OutcomeRecorder
from matchmaker.services.scoring import ScoringFunction
from matchmaker.services.store import Store, InMemoryStore
from matchmaker.services.validator import ProposalValidator

logger = get_logger(__name__)


class SchedulingEngine:
    def __init__(self, store: Store, clock: Callable[[], datetime] = datetime.now,
                 weights: Optional[ScoringWeights] = None, **lifecycle_options):
        self.store = store
        self.clock = clock
        self.oracle = ConflictOracle(store)
        self.availability = AvailabilityService(store)
        self.generator = CandidateGenerator(store, self.oracle, clock=clock)
        self.scoring = ScoringFunction(LocationLookup(store), weights=weights)
        self.lifecycle = ProposalLifecycleManager(store, self.oracle, clock=clock, **lifecycle_options)
        self.outcomes = OutcomeRecorder(store, clock=clock)
        self.validator = ProposalValidator(store, clock=clock)

    # Availability

    def add_availability(self, team_id: str, vendor_id: str, day_of_week: str,
                         start_time: str, end_time: str, max_matches_per_week: int = 1,
                         **tags) -> AvailabilitySlot:
        return self.availability.add_slot(
            team_id, vendor_id, day_of_week, start_time, end_time,
            max_matches_per_week=max_matches_per_week, **tags
        )

    def list_availability(self, team_id: str) -> List[AvailabilitySlot]:
        self.store.get_team(team_id)
        return self.availability.list_slots(team_id)

    def remove_availability(self, slot_id: str) -> None:
        self.availability.remove_slot(slot_id)

    # Generation

    def default_window(self) -> tuple:
        """Tomorrow through the configured horizon."""
        today = self.clock().date()
        return today + timedelta(days=1), today + timedelta(days=GENERATION_HORIZON_DAYS)

    def generate_proposals(self, vendor_id: str, window_start: Optional[date] = None,
                           window_end: Optional[date] = None,
                           min_score: float = MIN_AI_SCORE,
                           top_n: int = TOP_N_PER_WINDOW) -> List[MatchProposal]:
        """
        Generate, score and persist PENDING proposals for a vendor's teams.

        Args:
            vendor_id: Venue operator whose teams and venues are matched
            window_start: First date considered (default: tomorrow)
            window_end: Last date considered, inclusive

        Returns:
            The proposals created by this run, best score first
        """
        default_start, default_end = self.default_window()
        window_start = window_start or default_start
        window_end = window_end or default_end
        if window_end < window_start:
            raise ValidationError(f"Window end {window_end} is before start {window_start}")

        start = datetime.now()
        context = self.generator.build_context(vendor_id)
        candidates = self.generator.generate(context, window_start, window_end)
        scored = self.scoring.score_all(candidates, context)
        selected = self.scoring.select(scored, context, min_score=min_score, top_n=top_n)
        proposals = self.lifecycle.create_proposals(selected, week_usage=context.week_usage)

        logger.info(
            "Generation for vendor %s (%s to %s) finished in %.2fs: %d proposals",
            vendor_id, window_start, window_end,
            (datetime.now() - start).total_seconds(), len(proposals)
        )
        return proposals

    def vendor_ids(self) -> List[str]:
        """Vendors with at least one team availability link."""
        return sorted({rel.vendor_id for rel in self.store.list_relationships()})

    # Lifecycle

    def get_proposal(self, proposal_id: str) -> MatchProposal:
        return self.store.get_proposal(proposal_id)

    def list_proposals(self, status: Optional[ProposalStatus] = None,
                       vendor_id: Optional[str] = None,
                       team_id: Optional[str] = None) -> List[MatchProposal]:
        proposals = self.store.list_proposals(status=status, vendor_id=vendor_id, team_id=team_id)
        return sorted(proposals, key=lambda p: (p.scheduled_time, -p.ai_score, p.id))

    def respond_to_proposal(self, proposal_id: str, side: Side, accept: bool) -> MatchProposal:
        return self.lifecycle.respond(proposal_id, side, accept)

    def cancel_proposal(self, proposal_id: str, actor: Actor, reason: str) -> MatchProposal:
        return self.lifecycle.cancel(proposal_id, actor, reason)

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        return self.lifecycle.sweep_expired(now)

    # Outcomes

    def record_outcome(self, proposal_id: str, home_goals: int, away_goals: int,
                       **details: Any) -> List[MatchPerformance]:
        return self.outcomes.record_result(proposal_id, home_goals, away_goals, **details)

    def list_standings(self, sport: str, season: Optional[int] = None) -> List[TeamStanding]:
        season = season or self.clock().year
        return sorted(self.store.list_standings(sport, season), key=lambda s: s.position)

    # Audit

    def audit(self, vendor_id: Optional[str] = None) -> ProposalAuditResult:
        return self.validator.validate_proposals(self.store.list_proposals(vendor_id=vendor_id))

    def stats(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in ProposalStatus}
        for proposal in self.store.list_proposals():
            counts[proposal.status.value] += 1
        return counts


_engine: Optional[SchedulingEngine] = None
_engine_lock = threading.Lock()


def build_store(backend: str = STORE_BACKEND) -> Store:
    if backend == "supabase":
        from matchmaker.services.supabase_store import SupabaseStore
        return SupabaseStore()
    if backend == "memory":
        return InMemoryStore()
    raise ValueError(f"Unknown STORE_BACKEND {backend!r}; expected 'memory' or 'supabase'")


def get_engine() -> SchedulingEngine:
    """Process-wide engine over the configured store backend."""
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = SchedulingEngine(build_store())
            logger.info("Scheduling engine ready (store=%s)", STORE_BACKEND)
            if STORE_BACKEND == "memory":
                logger.warning(
                    "In-memory store is private to this process; API, worker and beat "
                    "will not see each other's proposals"
                )
        return _engine
