"""
Services for proposal generation, lifecycle, outcomes and persistence.
"""

from .store import Store, InMemoryStore
from .availability import AvailabilityService
from .candidates import CandidateGenerator, GenerationContext
from .scoring import ScoringFunction
from .lifecycle import ProposalLifecycleManager
from .outcomes import OutcomeRecorder, rank_standings
from .validator import ProposalValidator
from .engine import SchedulingEngine, get_engine

__all__ = [
    "Store",
    "InMemoryStore",
    "AvailabilityService",
    "CandidateGenerator",
    "GenerationContext",
    "ScoringFunction",
    "ProposalLifecycleManager",
    "OutcomeRecorder",
    "rank_standings",
    "ProposalValidator",
    "SchedulingEngine",
    "get_engine",
]
