"""
Availability management: the recurring weekly windows a team can play in at a
vendor, with a weekly match cap.
"""

import re
import uuid
from datetime import time
from typing import List, Dict, Optional, Union

from matchmaker.core.config import MIN_MATCHES_PER_WEEK, MAX_MATCHES_PER_WEEK
from matchmaker.core.exceptions import ValidationError
from matchmaker.core.logging_config import get_logger
from matchmaker.models import AvailabilitySlot, DayOfWeek, TeamVenueRelationship
from matchmaker.services.store import Store

logger = get_logger(__name__)

TIME_PATTERN = re.compile(r"^(\d{2}):(\d{2})$")


def parse_time(value: Union[str, time]) -> time:
    """Parse 'HH:MM' (24-hour) into a time."""
    if isinstance(value, time):
        return value
    match = TIME_PATTERN.match(str(value).strip())
    if not match:
        raise ValidationError(f"Invalid time {value!r}; expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValidationError(f"Invalid time {value!r}")
    return time(hour, minute)


class AvailabilityService:
    """Validates and stores AvailabilitySlot rows."""

    def __init__(self, store: Store):
        self.store = store

    def ensure_relationship(self, team_id: str, vendor_id: str) -> TeamVenueRelationship:
        """Get the team/vendor link, creating it on first interaction."""
        self.store.get_team(team_id)
        relationship = self.store.find_relationship(team_id, vendor_id)
        if relationship is None:
            relationship = TeamVenueRelationship(
                id=str(uuid.uuid4()),
                team_id=team_id,
                vendor_id=vendor_id,
            )
            self.store.save_relationship(relationship)
            logger.info("Linked team %s to vendor %s", team_id, vendor_id)
        return relationship

    def add_slot(self, team_id: str, vendor_id: str, day_of_week: Union[str, DayOfWeek],
                 start_time: Union[str, time], end_time: Union[str, time],
                 max_matches_per_week: int = 1,
                 preferred_venue_types: Optional[List[str]] = None,
                 preferred_court_types: Optional[List[str]] = None) -> AvailabilitySlot:
        """
        Add a recurring availability window for a team at a vendor.

        Raises:
            ValidationError: If the window is empty or inverted, the cap is
                outside 1-7, or the team already has the same (day, start, end)
            NotFound: If the team does not exist
        """
        day = day_of_week if isinstance(day_of_week, DayOfWeek) else DayOfWeek.from_str(day_of_week)
        start = parse_time(start_time)
        end = parse_time(end_time)

        if end <= start:
            raise ValidationError(f"End time {end:%H:%M} must be after start time {start:%H:%M}")
        if not MIN_MATCHES_PER_WEEK <= max_matches_per_week <= MAX_MATCHES_PER_WEEK:
            raise ValidationError(
                f"maxMatchesPerWeek must be between {MIN_MATCHES_PER_WEEK} and "
                f"{MAX_MATCHES_PER_WEEK} (got {max_matches_per_week})"
            )

        for existing in self.store.list_slots(team_id=team_id):
            if existing.key == (day, start, end):
                raise ValidationError(f"Team {team_id} already has a {existing} slot")

        relationship = self.ensure_relationship(team_id, vendor_id)
        slot = AvailabilitySlot(
            id=str(uuid.uuid4()),
            team_id=team_id,
            relationship_id=relationship.id,
            day_of_week=day,
            start_time=start,
            end_time=end,
            max_matches_per_week=max_matches_per_week,
            preferred_venue_types=list(preferred_venue_types or []),
            preferred_court_types=list(preferred_court_types or []),
        )
        self.store.add_slot(slot)
        logger.info("Added %s slot for team %s at vendor %s", slot, team_id, vendor_id)
        return slot

    def remove_slot(self, slot_id: str) -> None:
        self.store.delete_slot(slot_id)

    def list_slots(self, team_id: str) -> List[AvailabilitySlot]:
        return self.store.list_slots(team_id=team_id)

    def slots_by_team(self, vendor_id: str) -> Dict[str, List[AvailabilitySlot]]:
        """All slots tied to a vendor, grouped by team. Teams without slots are absent."""
        grouped: Dict[str, List[AvailabilitySlot]] = {}
        for relationship in self.store.list_relationships(vendor_id=vendor_id):
            slots = self.store.list_slots(relationship_id=relationship.id)
            if slots:
                grouped[relationship.team_id] = slots
        return grouped
