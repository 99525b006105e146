"""
Data models for the scheduling engine.
"""

from .models import (
    DayOfWeek,
    ProposalStatus,
    TERMINAL_STATUSES,
    Side,
    Actor,
    MatchResult,
    Team,
    Venue,
    Booking,
    TeamVenueRelationship,
    AvailabilitySlot,
    ScoringFactors,
    ScoringWeights,
    FixtureCandidate,
    MatchProposal,
    MatchPerformance,
    TeamStanding,
    LifecycleViolation,
    ProposalAuditResult,
    iso_week,
    minutes_of,
    rank_standings,
)

__all__ = [
    "DayOfWeek",
    "ProposalStatus",
    "TERMINAL_STATUSES",
    "Side",
    "Actor",
    "MatchResult",
    "Team",
    "Venue",
    "Booking",
    "TeamVenueRelationship",
    "AvailabilitySlot",
    "ScoringFactors",
    "ScoringWeights",
    "FixtureCandidate",
    "MatchProposal",
    "MatchPerformance",
    "TeamStanding",
    "LifecycleViolation",
    "ProposalAuditResult",
    "iso_week",
    "minutes_of",
    "rank_standings",
]
