"""
Venue conflict checks against confirmed bookings and scheduled fixtures.
"""

from datetime import datetime
from typing import Optional

from matchmaker.models import Venue, ProposalStatus
from matchmaker.services.store import Store


class ConflictOracle:
    def __init__(self, store: Store):
        self.store = store

    def is_venue_open(self, venue: Venue, start: datetime, end: datetime) -> bool:
        return venue.is_open(start, end)

    def is_venue_free(self, venue_id: str, start: datetime, end: datetime,
                      ignore_proposal_id: Optional[str] = None) -> bool:
        """True if no confirmed booking or SCHEDULED fixture overlaps [start, end)."""
        for booking in self.store.list_bookings(venue_id):
            if booking.status == "CONFIRMED" and booking.overlaps(start, end):
                return False
        for fixture in self.store.list_proposals(status=ProposalStatus.SCHEDULED, venue_id=venue_id):
            if fixture.id != ignore_proposal_id and fixture.overlaps(start, end):
                return False
        return True
