"""
API routes for availability, match proposals, results and standings.
"""

from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional
from datetime import datetime, date
from celery.result import AsyncResult

from matchmaker.core.exceptions import (
    SchedulingError, NotFound, ValidationError, InvalidTransition,
    ConstraintViolation, ConcurrentUpdate
)
from matchmaker.core.config import STORE_BACKEND
from matchmaker.core.logging_config import get_logger
from matchmaker.models import (
    AvailabilitySlot, MatchProposal, MatchPerformance, TeamStanding,
    ProposalStatus, Side, Actor
)
from matchmaker.services.engine import SchedulingEngine, get_engine
from matchmaker.core.celery_app import celery_app
from matchmaker.tasks.scheduler_tasks import generate_proposals_task

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["proposals"])


# Request models

class AvailabilityRequest(BaseModel):
    """Request model for adding a weekly availability slot."""
    team_id: str
    vendor_id: str
    day_of_week: str  # e.g. "tuesday"
    start_time: str  # HH:MM
    end_time: str
    max_matches_per_week: int = 1
    preferred_venue_types: List[str] = Field(default_factory=list)
    preferred_court_types: List[str] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    """Request model for proposal generation. Dates default to the configured horizon."""
    vendor_id: str
    window_start: Optional[date] = None
    window_end: Optional[date] = None


class RespondRequest(BaseModel):
    side: Side
    accept: bool


class CancelRequest(BaseModel):
    actor: Actor = Actor.ADMIN
    reason: str


class ResultRequest(BaseModel):
    """Final score plus optional per-team details keyed by team id."""
    home_goals: int
    away_goals: int
    player_performances: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    match_stats: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    venue_ratings: Dict[str, int] = Field(default_factory=dict)


class SweepRequest(BaseModel):
    now: Optional[datetime] = None


# Response models

class SlotResponse(BaseModel):
    id: str
    team_id: str
    relationship_id: str
    day_of_week: str
    start_time: str
    end_time: str
    max_matches_per_week: int
    preferred_venue_types: List[str]
    preferred_court_types: List[str]


class ProposalResponse(BaseModel):
    """Response model for a single match proposal."""
    id: str
    home_team_id: str
    away_team_id: str
    venue_id: str
    vendor_id: str
    scheduled_time: datetime
    end_time: datetime
    ai_score: float
    scoring_factors: Dict[str, float]
    status: str
    home_team_accepted: Optional[bool] = None
    away_team_accepted: Optional[bool] = None
    accepted_at: Optional[datetime] = None
    expires_at: datetime
    created_at: datetime
    expired_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    version: int


class GenerateResponse(BaseModel):
    success: bool
    message: str
    total_proposals: int
    proposals: List[ProposalResponse]
    generation_time: float


class PerformanceResponse(BaseModel):
    id: str
    proposal_id: str
    team_id: str
    opponent_id: str
    result: str
    goals_scored: int
    goals_conceded: int
    possession_percentage: Optional[float] = None
    shots_on_target: Optional[int] = None
    pass_accuracy: Optional[float] = None


class StandingResponse(BaseModel):
    position: int
    team_id: str
    sport: str
    season: int
    matches_played: int
    wins: int
    draws: int
    losses: int
    goals_for: int
    goals_against: int
    goal_difference: int
    points: int
    form: List[str]


class ViolationResponse(BaseModel):
    constraint_type: str
    severity: str
    description: str
    proposal_ids: List[str]


class AuditResponse(BaseModel):
    is_valid: bool
    proposals_checked: int
    hard_violations: List[ViolationResponse]
    soft_violations: List[ViolationResponse]
    total_penalty: float


# Converters

def _slot_response(slot: AvailabilitySlot) -> SlotResponse:
    return SlotResponse(
        id=slot.id,
        team_id=slot.team_id,
        relationship_id=slot.relationship_id,
        day_of_week=slot.day_of_week.value,
        start_time=slot.start_time.strftime("%H:%M"),
        end_time=slot.end_time.strftime("%H:%M"),
        max_matches_per_week=slot.max_matches_per_week,
        preferred_venue_types=slot.preferred_venue_types,
        preferred_court_types=slot.preferred_court_types,
    )


def _proposal_response(p: MatchProposal) -> ProposalResponse:
    return ProposalResponse(
        id=p.id,
        home_team_id=p.home_team_id,
        away_team_id=p.away_team_id,
        venue_id=p.venue_id,
        vendor_id=p.vendor_id,
        scheduled_time=p.scheduled_time,
        end_time=p.end_time,
        ai_score=p.ai_score,
        scoring_factors=p.scoring_factors.as_dict() if p.scoring_factors else {},
        status=p.status.value,
        home_team_accepted=p.home_team_accepted,
        away_team_accepted=p.away_team_accepted,
        accepted_at=p.accepted_at,
        expires_at=p.expires_at,
        created_at=p.created_at,
        expired_at=p.expired_at,
        cancelled_at=p.cancelled_at,
        cancellation_reason=p.cancellation_reason,
        cancelled_by=p.cancelled_by.value if p.cancelled_by else None,
        version=p.version,
    )


def _performance_response(perf: MatchPerformance) -> PerformanceResponse:
    return PerformanceResponse(
        id=perf.id,
        proposal_id=perf.proposal_id,
        team_id=perf.team_id,
        opponent_id=perf.opponent_id,
        result=perf.result.value,
        goals_scored=perf.goals_scored,
        goals_conceded=perf.goals_conceded,
        possession_percentage=perf.possession_percentage,
        shots_on_target=perf.shots_on_target,
        pass_accuracy=perf.pass_accuracy,
    )


def _standing_response(s: TeamStanding) -> StandingResponse:
    return StandingResponse(
        position=s.position,
        team_id=s.team_id,
        sport=s.sport,
        season=s.season,
        matches_played=s.matches_played,
        wins=s.wins,
        draws=s.draws,
        losses=s.losses,
        goals_for=s.goals_for,
        goals_against=s.goals_against,
        goal_difference=s.goal_difference,
        points=s.points,
        form=list(s.form),
    )


def _http_error(error: SchedulingError) -> HTTPException:
    if isinstance(error, NotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, (InvalidTransition, ConstraintViolation, ConcurrentUpdate)):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


# Routes

@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@router.post("/availability", response_model=SlotResponse, status_code=201)
def add_availability(request: AvailabilityRequest, engine: SchedulingEngine = Depends(get_engine)):
    try:
        slot = engine.add_availability(
            request.team_id,
            request.vendor_id,
            request.day_of_week,
            request.start_time,
            request.end_time,
            max_matches_per_week=request.max_matches_per_week,
            preferred_venue_types=request.preferred_venue_types,
            preferred_court_types=request.preferred_court_types,
        )
    except SchedulingError as e:
        raise _http_error(e)
    return _slot_response(slot)


@router.get("/teams/{team_id}/availability", response_model=List[SlotResponse])
def list_availability(team_id: str, engine: SchedulingEngine = Depends(get_engine)):
    try:
        return [_slot_response(s) for s in engine.list_availability(team_id)]
    except SchedulingError as e:
        raise _http_error(e)


@router.delete("/availability/{slot_id}")
def remove_availability(slot_id: str, engine: SchedulingEngine = Depends(get_engine)):
    try:
        engine.remove_availability(slot_id)
    except SchedulingError as e:
        raise _http_error(e)
    return {"deleted": slot_id}


@router.post("/proposals/generate", response_model=GenerateResponse)
def generate_proposals(request: GenerateRequest, engine: SchedulingEngine = Depends(get_engine)):
    """
    Generate match proposals for a vendor.

    This endpoint:
    1. Enumerates candidate fixtures from overlapping team availability
    2. Scores them and keeps the best per team pair and week
    3. Persists them as PENDING proposals awaiting both teams
    """
    start_time = datetime.now()
    try:
        proposals = engine.generate_proposals(request.vendor_id, request.window_start, request.window_end)
    except SchedulingError as e:
        raise _http_error(e)

    return GenerateResponse(
        success=True,
        message=f"Generated {len(proposals)} proposals for vendor {request.vendor_id}",
        total_proposals=len(proposals),
        proposals=[_proposal_response(p) for p in proposals],
        generation_time=(datetime.now() - start_time).total_seconds(),
    )


@router.post("/proposals/generate/async")
async def generate_proposals_async(request: GenerateRequest):
    """
    Start async proposal generation task.

    The worker writes to its own store, so this needs a shared backend.

    Returns:
        dict: Task ID for polling status
    """
    if STORE_BACKEND == "memory":
        raise HTTPException(
            status_code=409,
            detail="Async generation needs a shared store; set STORE_BACKEND=supabase "
                   "or use /api/proposals/generate"
        )
    try:
        task = generate_proposals_task.delay(
            request.vendor_id,
            request.window_start.isoformat() if request.window_start else None,
            request.window_end.isoformat() if request.window_end else None,
        )
    except Exception as e:
        logger.exception("Failed to queue proposal generation")
        raise HTTPException(status_code=500, detail=f"Failed to start task: {str(e)}")

    return {
        "task_id": task.id,
        "status": "PENDING",
        "message": "Proposal generation started"
    }


@router.get("/tasks/{task_id}")
async def get_task_status(task_id: str):
    """
    Get status of an async generation task.

    Args:
        task_id: Celery task ID
    """
    task_result = AsyncResult(task_id, app=celery_app)
    if task_result.state == "PROGRESS":
        return {
            "task_id": task_id,
            "status": "PROGRESS",
            "message": task_result.info.get("status", "Processing...")
        }
    if task_result.state == "SUCCESS":
        return {"task_id": task_id, "status": "SUCCESS", "result": task_result.result}
    if task_result.state == "FAILURE":
        return {"task_id": task_id, "status": "FAILURE", "message": str(task_result.info)}
    return {
        "task_id": task_id,
        "status": task_result.state,
        "message": f"Task state: {task_result.state}"
    }


@router.get("/proposals", response_model=List[ProposalResponse])
def list_proposals(status: Optional[ProposalStatus] = None, vendor_id: Optional[str] = None,
                   team_id: Optional[str] = None, engine: SchedulingEngine = Depends(get_engine)):
    return [
        _proposal_response(p)
        for p in engine.list_proposals(status=status, vendor_id=vendor_id, team_id=team_id)
    ]


@router.post("/proposals/sweep")
def sweep_expired(request: Optional[SweepRequest] = None, engine: SchedulingEngine = Depends(get_engine)):
    """
    Expire every PENDING proposal past its response deadline.

    A supplied `now` is clamped to the engine clock; it can replay a past
    sweep but never expire proposals early.
    """
    now = None
    if request and request.now:
        now = min(request.now.replace(tzinfo=None), engine.clock())
    expired = engine.sweep_expired(now)
    return {"expired": expired}


@router.get("/proposals/{proposal_id}", response_model=ProposalResponse)
def get_proposal(proposal_id: str, engine: SchedulingEngine = Depends(get_engine)):
    try:
        return _proposal_response(engine.get_proposal(proposal_id))
    except SchedulingError as e:
        raise _http_error(e)


@router.post("/proposals/{proposal_id}/respond", response_model=ProposalResponse)
def respond_to_proposal(proposal_id: str, request: RespondRequest,
                        engine: SchedulingEngine = Depends(get_engine)):
    """Accept or decline a proposal on behalf of one team. Declining cancels it."""
    try:
        proposal = engine.respond_to_proposal(proposal_id, request.side, request.accept)
    except SchedulingError as e:
        raise _http_error(e)
    return _proposal_response(proposal)


@router.post("/proposals/{proposal_id}/cancel", response_model=ProposalResponse)
def cancel_proposal(proposal_id: str, request: CancelRequest,
                    engine: SchedulingEngine = Depends(get_engine)):
    try:
        proposal = engine.cancel_proposal(proposal_id, request.actor, request.reason)
    except SchedulingError as e:
        raise _http_error(e)
    return _proposal_response(proposal)


@router.post("/proposals/{proposal_id}/result", response_model=List[PerformanceResponse])
def record_result(proposal_id: str, request: ResultRequest,
                  engine: SchedulingEngine = Depends(get_engine)):
    """Record the final score of a played fixture and update standings."""
    try:
        performances = engine.record_outcome(
            proposal_id,
            request.home_goals,
            request.away_goals,
            player_performances=request.player_performances,
            match_stats=request.match_stats,
            venue_ratings=request.venue_ratings,
        )
    except SchedulingError as e:
        raise _http_error(e)
    return [_performance_response(p) for p in performances]


@router.get("/standings/{sport}", response_model=List[StandingResponse])
def list_standings(sport: str, season: Optional[int] = None,
                   engine: SchedulingEngine = Depends(get_engine)):
    return [_standing_response(s) for s in engine.list_standings(sport, season)]


@router.get("/audit", response_model=AuditResponse)
def audit_proposals(vendor_id: Optional[str] = None, engine: SchedulingEngine = Depends(get_engine)):
    """Check stored proposals against the lifecycle rules."""
    result = engine.audit(vendor_id)

    def violations(items):
        return [
            ViolationResponse(
                constraint_type=v.constraint_type,
                severity=v.severity,
                description=v.description,
                proposal_ids=v.proposal_ids,
            )
            for v in items
        ]

    return AuditResponse(
        is_valid=result.is_valid,
        proposals_checked=result.proposals_checked,
        hard_violations=violations(result.hard_violations),
        soft_violations=violations(result.soft_violations),
        total_penalty=result.total_penalty_score,
    )


@router.get("/stats")
def get_stats(engine: SchedulingEngine = Depends(get_engine)):
    """Proposal counts by status."""
    return {"proposals_by_status": engine.stats()}
