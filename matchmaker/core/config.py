"""
Configuration constants for the match proposal and scheduling engine.
All configurable settings are defined here.
"""

import os
import json
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


# Logging Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Store Configuration
# "memory" keeps everything in-process (tests, local runs); "supabase" uses the hosted database
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")

# Table names in the Supabase project
TABLE_TEAMS = "teams"
TABLE_VENUES = "venues"
TABLE_BOOKINGS = "bookings"
TABLE_TEAM_VENDORS = "team_vendors"
TABLE_AVAILABILITY = "team_availability"
TABLE_PROPOSALS = "match_proposals"
TABLE_PERFORMANCES = "match_performances"
TABLE_STANDINGS = "team_standings"

# Celery / Redis
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CELERY_TIMEZONE = os.getenv("CELERY_TIMEZONE", "Asia/Kolkata")

# Proposal Lifecycle Rules
PROPOSAL_RESPONSE_WINDOW_HOURS = _env_float("PROPOSAL_RESPONSE_WINDOW_HOURS", 24)
MAX_CAS_ATTEMPTS = _env_int("MAX_CAS_ATTEMPTS", 5)  # Re-reads after a lost compare-and-swap
CAP_EXCEEDED_REASON = "cap exceeded"

# Candidate Generation Rules
MIN_MATCH_MINUTES = _env_int("MIN_MATCH_MINUTES", 60)  # Shorter overlaps are not playable
MIN_AI_SCORE = _env_float("MIN_AI_SCORE", 0.5)
TOP_N_PER_WINDOW = _env_int("TOP_N_PER_WINDOW", 2)  # Per team pair per ISO week
GENERATION_WORKERS = _env_int("GENERATION_WORKERS", 4)
GENERATION_HORIZON_DAYS = _env_int("GENERATION_HORIZON_DAYS", 14)  # Nightly job looks this far ahead

# Availability Rules
MIN_MATCHES_PER_WEEK = 1
MAX_MATCHES_PER_WEEK = 7
MIN_VENUE_RATING = 1
MAX_VENUE_RATING = 5

# Scoring
NEUTRAL_FACTOR_SCORE = 0.5  # Used whenever optional data (location, form, rating) is missing
MAX_TRAVEL_KM = _env_float("MAX_TRAVEL_KM", 30.0)  # Distance at which travel score reaches 0

DEFAULT_SCORING_WEIGHTS = {
    "time_slot_compatibility": 0.25,
    "venue_preference": 0.20,
    "team_availability": 0.25,
    "travel_distance": 0.15,
    "venue_availability": 0.10,
    "skill_level_match": 0.05,
}

# JSON object with the same keys as DEFAULT_SCORING_WEIGHTS
SCORING_WEIGHTS_JSON = os.getenv("SCORING_WEIGHTS_JSON")


def get_scoring_weights() -> dict:
    """
    Get the scoring weight map from the environment or the defaults.

    Priority:
    1. SCORING_WEIGHTS_JSON (environment variable with JSON object)
    2. DEFAULT_SCORING_WEIGHTS

    Returns:
        Dict of factor name -> weight. Validation (sum to 1.0) happens
        when the dict is turned into a ScoringWeights record.

    Raises:
        ValueError: If the environment variable is not valid JSON
    """
    if SCORING_WEIGHTS_JSON:
        try:
            weights = json.loads(SCORING_WEIGHTS_JSON)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in SCORING_WEIGHTS_JSON: {e}")
        if not isinstance(weights, dict):
            raise ValueError("SCORING_WEIGHTS_JSON must be a JSON object")
        return weights
    return dict(DEFAULT_SCORING_WEIGHTS)


# Standings Rules
FORM_LENGTH = _env_int("FORM_LENGTH", 5)  # Last N results kept in a standing's form
POINTS_FOR_WIN = 3
POINTS_FOR_DRAW = 1
POINTS_FOR_LOSS = 0

# Background Jobs
SWEEP_INTERVAL_SECONDS = _env_int("SWEEP_INTERVAL_SECONDS", 300)  # 5 minutes
NIGHTLY_GENERATION_HOUR = _env_int("NIGHTLY_GENERATION_HOUR", 2)  # 2:00 AM
