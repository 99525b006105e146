"""
Data models for the match proposal and scheduling engine.
Defines all data structures used throughout the application.
"""

from dataclasses import dataclass, field, fields, asdict, replace
from datetime import datetime, date, time
from typing import List, Optional, Dict, Tuple, Any
from enum import Enum
import math

from matchmaker.core.exceptions import ValidationError


class DayOfWeek(Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_str(cls, s: str) -> "DayOfWeek":
        """Accepts 'tuesday', 'Tue', 'TUESDAY'."""
        prefix = s.strip().lower()[:3]
        for day in cls:
            if day.value.startswith(prefix) and len(prefix) == 3:
                return day
        raise ValidationError(f"Unknown day of week: {s!r}")

    @classmethod
    def from_date(cls, d: date) -> "DayOfWeek":
        return list(cls)[d.weekday()]

    @property
    def index(self) -> int:
        return list(DayOfWeek).index(self)


class ProposalStatus(Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = (ProposalStatus.SCHEDULED, ProposalStatus.CANCELLED, ProposalStatus.EXPIRED)


class Side(Enum):
    HOME = "HOME"
    AWAY = "AWAY"


class Actor(Enum):
    HOME = "HOME"
    AWAY = "AWAY"
    ADMIN = "ADMIN"


class MatchResult(Enum):
    WIN = "WIN"
    DRAW = "DRAW"
    LOSS = "LOSS"

    @property
    def code(self) -> str:
        return self.value[0]

    @classmethod
    def from_score(cls, scored: int, conceded: int) -> "MatchResult":
        if scored > conceded:
            return cls.WIN
        if scored < conceded:
            return cls.LOSS
        return cls.DRAW


def iso_week(d) -> Tuple[int, int]:
    """(ISO year, ISO week) for a date or datetime."""
    year, week, _ = d.isocalendar()[:3]
    return (year, week)


def minutes_of(t: time) -> int:
    return t.hour * 60 + t.minute


@dataclass
class Team:
    id: str
    name: str
    sport: str
    area: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def location(self) -> Optional[Tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        if isinstance(other, Team):
            return self.id == other.id
        return False


@dataclass
class Venue:
    id: str
    vendor_id: str
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    # Missing weekday means closed that day; empty dict means open at all times
    opening_hours: Dict[DayOfWeek, Tuple[time, time]] = field(default_factory=dict)

    @property
    def location(self) -> Optional[Tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    def is_open(self, start: datetime, end: datetime) -> bool:
        if not self.opening_hours:
            return True
        if start.date() != end.date():
            return False
        hours = self.opening_hours.get(DayOfWeek.from_date(start.date()))
        if hours is None:
            return False
        opens, closes = hours
        return opens <= start.time() and end.time() <= closes

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        if isinstance(other, Venue):
            return self.id == other.id
        return False


@dataclass
class Booking:
    """A confirmed reservation made outside the engine."""
    id: str
    venue_id: str
    start: datetime
    end: datetime
    status: str = "CONFIRMED"

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end


@dataclass
class TeamVenueRelationship:
    id: str
    team_id: str
    vendor_id: str
    venue_rating: Optional[float] = None  # 1-5, None until rated
    matches_played: int = 0
    is_primary: bool = False


@dataclass
class AvailabilitySlot:
    id: str
    team_id: str
    relationship_id: str
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    max_matches_per_week: int = 1
    preferred_venue_types: List[str] = field(default_factory=list)
    preferred_court_types: List[str] = field(default_factory=list)

    def __str__(self):
        return f"{self.day_of_week.value} {self.start_time:%H:%M}-{self.end_time:%H:%M}"

    @property
    def key(self) -> Tuple[DayOfWeek, time, time]:
        return (self.day_of_week, self.start_time, self.end_time)

    @property
    def duration_minutes(self) -> int:
        return minutes_of(self.end_time) - minutes_of(self.start_time)

    def overlap_with(self, other: "AvailabilitySlot") -> Optional[Tuple[time, time]]:
        """Half-open overlap of two slots on the same weekday, or None."""
        if self.day_of_week != other.day_of_week:
            return None
        start = max(self.start_time, other.start_time)
        end = min(self.end_time, other.end_time)
        if start >= end:
            return None
        return (start, end)


@dataclass
class ScoringFactors:
    """Named sub-scores of a candidate, each in [0, 1]."""
    time_slot_compatibility: float = 0.0
    venue_preference: float = 0.0
    team_availability: float = 0.0
    travel_distance: float = 0.0
    venue_availability: float = 0.0
    skill_level_match: float = 0.0

    @classmethod
    def names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoringFactors":
        return cls(**{name: float(data.get(name, 0.0)) for name in cls.names()})


@dataclass(frozen=True)
class ScoringWeights:
    """One weight per ScoringFactors field; must sum to 1.0."""
    time_slot_compatibility: float
    venue_preference: float
    team_availability: float
    travel_distance: float
    venue_availability: float
    skill_level_match: float

    def __post_init__(self):
        weight_names = [f.name for f in fields(self)]
        if weight_names != ScoringFactors.names():
            raise ValidationError("Scoring weights do not match the scoring factor set")
        for name in weight_names:
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValidationError(f"Weight {name}={value} outside [0, 1]")
        total = sum(getattr(self, name) for name in weight_names)
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValidationError(f"Scoring weights must sum to 1.0 (got {total:.6f})")

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "ScoringWeights":
        expected = set(ScoringFactors.names())
        unknown = set(data) - expected
        missing = expected - set(data)
        if unknown or missing:
            raise ValidationError(
                f"Scoring weights mismatch: unknown={sorted(unknown)} missing={sorted(missing)}"
            )
        return cls(**{name: float(data[name]) for name in ScoringFactors.names()})

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class FixtureCandidate:
    """A possible fixture considered during one generation run. Never persisted."""
    home_team_id: str
    away_team_id: str
    venue_id: str
    vendor_id: str
    scheduled_time: datetime
    end_time: datetime
    home_slot: AvailabilitySlot
    away_slot: AvailabilitySlot
    factors: Optional[ScoringFactors] = None
    ai_score: float = 0.0

    def __str__(self):
        return f"{self.away_team_id} @ {self.home_team_id} on {self.scheduled_time:%Y-%m-%d %H:%M} at {self.venue_id}"

    @property
    def pair_key(self) -> Tuple[str, str]:
        return tuple(sorted((self.home_team_id, self.away_team_id)))

    @property
    def week_key(self) -> Tuple[int, int]:
        return iso_week(self.scheduled_time)

    @property
    def fixture_key(self) -> Tuple[Tuple[str, str], str, datetime]:
        return (self.pair_key, self.venue_id, self.scheduled_time)


@dataclass
class MatchProposal:
    id: str
    home_team_id: str
    away_team_id: str
    venue_id: str
    vendor_id: str
    scheduled_time: datetime
    end_time: datetime
    ai_score: float
    scoring_factors: ScoringFactors
    expires_at: datetime
    created_at: datetime
    status: ProposalStatus = ProposalStatus.PENDING
    home_weekly_cap: int = 7  # Copied from the availability slots the fixture came from
    away_weekly_cap: int = 7
    home_team_accepted: Optional[bool] = None
    away_team_accepted: Optional[bool] = None
    home_accepted_at: Optional[datetime] = None
    away_accepted_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[Actor] = None
    version: int = 0

    def __str__(self):
        return f"{self.away_team_id} @ {self.home_team_id} on {self.scheduled_time:%Y-%m-%d %H:%M} [{self.status.value}]"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def pair_key(self) -> Tuple[str, str]:
        return tuple(sorted((self.home_team_id, self.away_team_id)))

    @property
    def week_key(self) -> Tuple[int, int]:
        return iso_week(self.scheduled_time)

    @property
    def fixture_key(self) -> Tuple[Tuple[str, str], str, datetime]:
        return (self.pair_key, self.venue_id, self.scheduled_time)

    def involves_team(self, team_id: str) -> bool:
        return team_id in (self.home_team_id, self.away_team_id)

    def team_for(self, side: Side) -> str:
        return self.home_team_id if side == Side.HOME else self.away_team_id

    def accepted_by(self, side: Side) -> Optional[bool]:
        return self.home_team_accepted if side == Side.HOME else self.away_team_accepted

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.scheduled_time < end and start < self.end_time


@dataclass(frozen=True)
class MatchPerformance:
    id: str
    proposal_id: str
    team_id: str
    opponent_id: str
    vendor_id: str
    venue_id: str
    match_date: datetime
    result: MatchResult
    goals_scored: int
    goals_conceded: int
    player_performances: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    possession_percentage: Optional[float] = None
    shots_on_target: Optional[int] = None
    pass_accuracy: Optional[float] = None

    @property
    def goal_difference(self) -> int:
        return self.goals_scored - self.goals_conceded


@dataclass
class TeamStanding:
    team_id: str
    sport: str
    season: int
    matches_played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0
    goal_difference: int = 0
    points: int = 0
    position: int = 0
    form: List[str] = field(default_factory=list)  # Most recent first

    @property
    def key(self) -> Tuple[str, str, int]:
        return (self.team_id, self.sport, self.season)


def rank_standings(standings: List[TeamStanding]) -> List[TeamStanding]:
    """
    Re-rank a season snapshot by points, goal difference, goals scored.

    Pure function: the input list is not modified. Remaining ties are broken by
    team id so positions are reproducible.
    """
    ordered = sorted(
        standings,
        key=lambda s: (-s.points, -s.goal_difference, -s.goals_for, s.team_id)
    )
    return [replace(s, position=i) for i, s in enumerate(ordered, start=1)]


@dataclass
class LifecycleViolation:
    constraint_type: str
    severity: str
    description: str
    proposal_ids: List[str] = field(default_factory=list)
    penalty_score: float = 0.0


@dataclass
class ProposalAuditResult:
    is_valid: bool
    hard_violations: List[LifecycleViolation] = field(default_factory=list)
    soft_violations: List[LifecycleViolation] = field(default_factory=list)
    total_penalty_score: float = 0.0
    proposals_checked: int = 0

    def add_violation(self, violation: LifecycleViolation):
        if violation.severity == 'hard':
            self.hard_violations.append(violation)
            self.is_valid = False
        else:
            self.soft_violations.append(violation)
        self.total_penalty_score += violation.penalty_score

    def get_summary(self) -> str:
        summary = f"Proposals Valid: {self.is_valid}\n"
        summary += f"Proposals Checked: {self.proposals_checked}\n"
        summary += f"Hard Violations: {len(self.hard_violations)}\n"
        summary += f"Soft Violations: {len(self.soft_violations)}\n"
        summary += f"Total Penalty Score: {self.total_penalty_score:.2f}\n"
        return summary
