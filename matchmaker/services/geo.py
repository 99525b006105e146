"""
Team and venue location lookup for the travel-distance factor.
"""

import math
from typing import Optional, Tuple

from matchmaker.core.exceptions import NotFound
from matchmaker.core.logging_config import get_logger
from matchmaker.services.store import Store

logger = get_logger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """Great-circle distance between two (lat, lon) points in kilometres."""
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


class LocationLookup:
    """Resolves home coordinates; returns None instead of failing when unknown."""

    def __init__(self, store: Store):
        self.store = store

    def team_location(self, team_id: str) -> Optional[Tuple[float, float]]:
        try:
            return self.store.get_team(team_id).location
        except NotFound:
            logger.debug("No location for unknown team %s", team_id)
            return None

    def venue_location(self, venue_id: str) -> Optional[Tuple[float, float]]:
        try:
            return self.store.get_venue(venue_id).location
        except NotFound:
            return None
