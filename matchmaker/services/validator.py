"""
Proposal audit module.
Checks stored proposals against the lifecycle invariants and reports hard
violations (corrupt state) and soft ones (work waiting for a background job).
"""

from collections import defaultdict
from datetime import datetime
from typing import List, Optional, Callable

from matchmaker.core.logging_config import get_logger
from matchmaker.models import (
    MatchProposal, ProposalStatus, LifecycleViolation, ProposalAuditResult
)
from matchmaker.services.store import Store

logger = get_logger(__name__)


class ProposalValidator:
    """
    Validates match proposals against the lifecycle invariants.
    Checks both hard constraints (must be satisfied) and soft constraints (pending work).
    """

    def __init__(self, store: Store, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.clock = clock

    def validate_proposals(self, proposals: Optional[List[MatchProposal]] = None) -> ProposalAuditResult:
        """
        Validate proposals (all stored ones by default).

        Returns:
            ProposalAuditResult with all violations found
        """
        if proposals is None:
            proposals = self.store.list_proposals()
        result = ProposalAuditResult(is_valid=True, proposals_checked=len(proposals))

        self._check_status_flags(proposals, result)
        self._check_expired(proposals, result)
        self._check_cancelled(proposals, result)
        self._check_overdue_pending(proposals, result)
        self._check_venue_double_booking(proposals, result)
        self._check_team_double_booking(proposals, result)
        self._check_weekly_caps(proposals, result)

        logger.info(
            "Audit of %d proposals: valid=%s hard=%d soft=%d",
            len(proposals), result.is_valid,
            len(result.hard_violations), len(result.soft_violations)
        )
        for violation in result.hard_violations[:10]:  # Show first 10
            logger.warning("  - %s: %s", violation.constraint_type, violation.description)
        return result

    def _check_status_flags(self, proposals: List[MatchProposal], result: ProposalAuditResult):
        """SCHEDULED exactly when both sides accepted."""
        for p in proposals:
            both = p.home_team_accepted is True and p.away_team_accepted is True
            if p.status == ProposalStatus.SCHEDULED and not both:
                result.add_violation(LifecycleViolation(
                    constraint_type="scheduled_without_acceptance",
                    severity="hard",
                    description=f"{p.id} is SCHEDULED but not accepted by both teams",
                    proposal_ids=[p.id],
                    penalty_score=1000.0
                ))
            elif p.status != ProposalStatus.SCHEDULED and both:
                result.add_violation(LifecycleViolation(
                    constraint_type="accepted_not_scheduled",
                    severity="hard",
                    description=f"{p.id} accepted by both teams but is {p.status.value}",
                    proposal_ids=[p.id],
                    penalty_score=1000.0
                ))
            if p.status == ProposalStatus.SCHEDULED and p.accepted_at is None:
                result.add_violation(LifecycleViolation(
                    constraint_type="missing_accepted_at",
                    severity="hard",
                    description=f"{p.id} is SCHEDULED without acceptedAt",
                    proposal_ids=[p.id],
                    penalty_score=100.0
                ))

    def _check_expired(self, proposals: List[MatchProposal], result: ProposalAuditResult):
        for p in proposals:
            if p.status != ProposalStatus.EXPIRED:
                continue
            if p.expired_at is None or p.expired_at <= p.expires_at:
                result.add_violation(LifecycleViolation(
                    constraint_type="expired_before_deadline",
                    severity="hard",
                    description=f"{p.id} expired at {p.expired_at} but deadline was {p.expires_at}",
                    proposal_ids=[p.id],
                    penalty_score=500.0
                ))

    def _check_cancelled(self, proposals: List[MatchProposal], result: ProposalAuditResult):
        for p in proposals:
            if p.status == ProposalStatus.CANCELLED and not (p.cancellation_reason and p.cancelled_at):
                result.add_violation(LifecycleViolation(
                    constraint_type="cancelled_without_reason",
                    severity="hard",
                    description=f"{p.id} is CANCELLED without reason or timestamp",
                    proposal_ids=[p.id],
                    penalty_score=100.0
                ))

    def _check_overdue_pending(self, proposals: List[MatchProposal], result: ProposalAuditResult):
        now = self.clock()
        overdue = [p for p in proposals if p.status == ProposalStatus.PENDING and now > p.expires_at]
        if overdue:
            result.add_violation(LifecycleViolation(
                constraint_type="awaiting_expiration_sweep",
                severity="soft",
                description=f"{len(overdue)} pending proposals are past their deadline",
                proposal_ids=[p.id for p in overdue],
                penalty_score=float(len(overdue))
            ))

    def _check_venue_double_booking(self, proposals: List[MatchProposal], result: ProposalAuditResult):
        """No two SCHEDULED fixtures overlap at one venue."""
        by_venue = defaultdict(list)
        for p in proposals:
            if p.status == ProposalStatus.SCHEDULED:
                by_venue[p.venue_id].append(p)

        for venue_id, fixtures in by_venue.items():
            fixtures.sort(key=lambda p: p.scheduled_time)
            for i, first in enumerate(fixtures):
                for second in fixtures[i + 1:]:
                    if second.scheduled_time >= first.end_time:
                        break
                    result.add_violation(LifecycleViolation(
                        constraint_type="venue_double_booking",
                        severity="hard",
                        description=f"{first.id} and {second.id} overlap at venue {venue_id}",
                        proposal_ids=[first.id, second.id],
                        penalty_score=1000.0
                    ))

    def _check_team_double_booking(self, proposals: List[MatchProposal], result: ProposalAuditResult):
        """No team plays two SCHEDULED fixtures at once."""
        by_team = defaultdict(list)
        for p in proposals:
            if p.status == ProposalStatus.SCHEDULED:
                by_team[p.home_team_id].append(p)
                by_team[p.away_team_id].append(p)

        for team_id, fixtures in by_team.items():
            fixtures.sort(key=lambda p: p.scheduled_time)
            for i, first in enumerate(fixtures):
                for second in fixtures[i + 1:]:
                    if second.scheduled_time >= first.end_time:
                        break
                    result.add_violation(LifecycleViolation(
                        constraint_type="team_double_booking",
                        severity="hard",
                        description=f"Team {team_id} plays {first.id} and {second.id} at the same time",
                        proposal_ids=[first.id, second.id],
                        penalty_score=1000.0
                    ))

    def _check_weekly_caps(self, proposals: List[MatchProposal], result: ProposalAuditResult):
        scheduled_by_week = defaultdict(list)
        caps = {}
        for p in proposals:
            if p.status != ProposalStatus.SCHEDULED:
                continue
            for team_id, cap in ((p.home_team_id, p.home_weekly_cap), (p.away_team_id, p.away_weekly_cap)):
                key = (team_id, p.week_key)
                scheduled_by_week[key].append(p)
                caps[key] = min(caps.get(key, cap), cap)

        for (team_id, week), fixtures in scheduled_by_week.items():
            if len(fixtures) > caps[(team_id, week)]:
                result.add_violation(LifecycleViolation(
                    constraint_type="weekly_cap_exceeded",
                    severity="hard",
                    description=(
                        f"{team_id} has {len(fixtures)} fixtures in week {week[0]}-W{week[1]:02d} "
                        f"(max {caps[(team_id, week)]})"
                    ),
                    proposal_ids=[p.id for p in fixtures],
                    penalty_score=500.0
                ))
