"""
Record store for the scheduling engine.

`Store` is the interface every backend implements; `InMemoryStore` keeps rows
in process memory behind a lock and is what tests and local runs use. Rows are
copied on the way in and out so callers never share mutable state with the
store, the same as reading from a database.
"""

import copy
import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Iterable

from matchmaker.core.exceptions import NotFound, ValidationError
from matchmaker.models import (
    Team, Venue, Booking, TeamVenueRelationship, AvailabilitySlot,
    MatchProposal, ProposalStatus, MatchPerformance, TeamStanding, rank_standings
)

LIVE_STATUSES = (ProposalStatus.PENDING, ProposalStatus.SCHEDULED)


class Store:
    """Interface for team/venue/availability reads and proposal/standing writes."""

    # Teams, venues, bookings (owned by the surrounding application)
    def get_team(self, team_id: str) -> Team:
        raise NotImplementedError

    def list_teams(self, team_ids: Optional[Iterable[str]] = None) -> List[Team]:
        raise NotImplementedError

    def get_venue(self, venue_id: str) -> Venue:
        raise NotImplementedError

    def list_venues(self, vendor_id: str) -> List[Venue]:
        raise NotImplementedError

    def list_bookings(self, venue_id: str) -> List[Booking]:
        raise NotImplementedError

    # Team / vendor relationships
    def find_relationship(self, team_id: str, vendor_id: str) -> Optional[TeamVenueRelationship]:
        raise NotImplementedError

    def list_relationships(self, vendor_id: Optional[str] = None,
                           team_id: Optional[str] = None) -> List[TeamVenueRelationship]:
        raise NotImplementedError

    def save_relationship(self, relationship: TeamVenueRelationship) -> TeamVenueRelationship:
        raise NotImplementedError

    def update_relationship(self, team_id: str, vendor_id: str,
                            change: Callable[[Optional[TeamVenueRelationship]], TeamVenueRelationship]
                            ) -> TeamVenueRelationship:
        """
        Read the team's link to the vendor, apply `change` and write it back as
        one step. `change` receives None when the team has no link yet.
        """
        raise NotImplementedError

    # Availability
    def add_slot(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        raise NotImplementedError

    def delete_slot(self, slot_id: str) -> None:
        raise NotImplementedError

    def list_slots(self, team_id: Optional[str] = None,
                   relationship_id: Optional[str] = None) -> List[AvailabilitySlot]:
        raise NotImplementedError

    # Proposals
    def insert_proposal(self, proposal: MatchProposal) -> bool:
        """Insert unless a live proposal exists for the same pair/venue/time."""
        raise NotImplementedError

    def get_proposal(self, proposal_id: str) -> MatchProposal:
        raise NotImplementedError

    def list_proposals(self, status: Optional[ProposalStatus] = None,
                       vendor_id: Optional[str] = None,
                       team_id: Optional[str] = None,
                       venue_id: Optional[str] = None) -> List[MatchProposal]:
        raise NotImplementedError

    def compare_and_swap(self, proposal_id: str, expected_version: int,
                         changes: Dict) -> Optional[MatchProposal]:
        """
        Apply `changes` only if the row still has `expected_version` and is PENDING.

        Returns:
            The updated proposal, or None if another writer got there first
        """
        raise NotImplementedError

    # Outcomes
    def add_performance(self, performance: MatchPerformance) -> MatchPerformance:
        raise NotImplementedError

    def list_performances(self, proposal_id: Optional[str] = None,
                          team_id: Optional[str] = None) -> List[MatchPerformance]:
        raise NotImplementedError

    def list_standings(self, sport: str, season: int) -> List[TeamStanding]:
        raise NotImplementedError

    def update_standings(self, sport: str, season: int,
                         changes: Dict[str, Callable[[TeamStanding], TeamStanding]]
                         ) -> List[TeamStanding]:
        """
        Apply one change per team to the season table and re-rank it, without
        losing a concurrent update to another team's row.

        Returns:
            The re-ranked season table
        """
        raise NotImplementedError


class InMemoryStore(Store):
    def __init__(self):
        self._lock = threading.RLock()
        self._teams: Dict[str, Team] = {}
        self._venues: Dict[str, Venue] = {}
        self._bookings: Dict[str, Booking] = {}
        self._relationships: Dict[str, TeamVenueRelationship] = {}
        self._slots: Dict[str, AvailabilitySlot] = {}
        self._proposals: Dict[str, MatchProposal] = {}
        self._performances: Dict[str, MatchPerformance] = {}
        self._standings: Dict[tuple, TeamStanding] = {}

    # Seeding helpers for records the engine only reads
    def add_team(self, team: Team) -> Team:
        with self._lock:
            self._teams[team.id] = copy.deepcopy(team)
        return team

    def add_venue(self, venue: Venue) -> Venue:
        with self._lock:
            self._venues[venue.id] = copy.deepcopy(venue)
        return venue

    def add_booking(self, booking: Booking) -> Booking:
        with self._lock:
            self._bookings[booking.id] = copy.deepcopy(booking)
        return booking

    def save_standings(self, standings: List[TeamStanding]) -> None:
        with self._lock:
            for standing in standings:
                self._standings[standing.key] = copy.deepcopy(standing)

    def get_team(self, team_id: str) -> Team:
        with self._lock:
            if team_id not in self._teams:
                raise NotFound("team", team_id)
            return copy.deepcopy(self._teams[team_id])

    def list_teams(self, team_ids: Optional[Iterable[str]] = None) -> List[Team]:
        with self._lock:
            if team_ids is None:
                teams = list(self._teams.values())
            else:
                teams = [self._teams[t] for t in team_ids if t in self._teams]
            return copy.deepcopy(teams)

    def get_venue(self, venue_id: str) -> Venue:
        with self._lock:
            if venue_id not in self._venues:
                raise NotFound("venue", venue_id)
            return copy.deepcopy(self._venues[venue_id])

    def list_venues(self, vendor_id: str) -> List[Venue]:
        with self._lock:
            venues = [v for v in self._venues.values() if v.vendor_id == vendor_id]
            return copy.deepcopy(sorted(venues, key=lambda v: v.id))

    def list_bookings(self, venue_id: str) -> List[Booking]:
        with self._lock:
            return copy.deepcopy([b for b in self._bookings.values() if b.venue_id == venue_id])

    def find_relationship(self, team_id: str, vendor_id: str) -> Optional[TeamVenueRelationship]:
        with self._lock:
            for rel in self._relationships.values():
                if rel.team_id == team_id and rel.vendor_id == vendor_id:
                    return copy.deepcopy(rel)
            return None

    def list_relationships(self, vendor_id: Optional[str] = None,
                           team_id: Optional[str] = None) -> List[TeamVenueRelationship]:
        with self._lock:
            rels = [
                r for r in self._relationships.values()
                if (vendor_id is None or r.vendor_id == vendor_id)
                and (team_id is None or r.team_id == team_id)
            ]
            return copy.deepcopy(sorted(rels, key=lambda r: (r.vendor_id, r.team_id)))

    def save_relationship(self, relationship: TeamVenueRelationship) -> TeamVenueRelationship:
        with self._lock:
            for rel in self._relationships.values():
                if (rel.id != relationship.id and rel.team_id == relationship.team_id
                        and rel.vendor_id == relationship.vendor_id):
                    raise ValidationError(
                        f"Team {relationship.team_id} already linked to vendor {relationship.vendor_id}"
                    )
            self._relationships[relationship.id] = copy.deepcopy(relationship)
        return relationship

    def update_relationship(self, team_id: str, vendor_id: str,
                            change: Callable[[Optional[TeamVenueRelationship]], TeamVenueRelationship]
                            ) -> TeamVenueRelationship:
        with self._lock:
            updated = change(self.find_relationship(team_id, vendor_id))
            return copy.deepcopy(self.save_relationship(updated))

    def add_slot(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        with self._lock:
            for existing in self._slots.values():
                if existing.team_id == slot.team_id and existing.key == slot.key:
                    raise ValidationError(f"Team {slot.team_id} already has a {slot} slot")
            self._slots[slot.id] = copy.deepcopy(slot)
        return slot

    def delete_slot(self, slot_id: str) -> None:
        with self._lock:
            if slot_id not in self._slots:
                raise NotFound("availability slot", slot_id)
            del self._slots[slot_id]

    def list_slots(self, team_id: Optional[str] = None,
                   relationship_id: Optional[str] = None) -> List[AvailabilitySlot]:
        with self._lock:
            slots = [
                s for s in self._slots.values()
                if (team_id is None or s.team_id == team_id)
                and (relationship_id is None or s.relationship_id == relationship_id)
            ]
            slots.sort(key=lambda s: (s.team_id, s.day_of_week.index, s.start_time, s.end_time))
            return copy.deepcopy(slots)

    def insert_proposal(self, proposal: MatchProposal) -> bool:
        with self._lock:
            for existing in self._proposals.values():
                if existing.status in LIVE_STATUSES and existing.fixture_key == proposal.fixture_key:
                    return False
            self._proposals[proposal.id] = copy.deepcopy(proposal)
            return True

    def get_proposal(self, proposal_id: str) -> MatchProposal:
        with self._lock:
            if proposal_id not in self._proposals:
                raise NotFound("proposal", proposal_id)
            return copy.deepcopy(self._proposals[proposal_id])

    def list_proposals(self, status: Optional[ProposalStatus] = None,
                       vendor_id: Optional[str] = None,
                       team_id: Optional[str] = None,
                       venue_id: Optional[str] = None) -> List[MatchProposal]:
        with self._lock:
            proposals = [
                p for p in self._proposals.values()
                if (status is None or p.status == status)
                and (vendor_id is None or p.vendor_id == vendor_id)
                and (team_id is None or p.involves_team(team_id))
                and (venue_id is None or p.venue_id == venue_id)
            ]
            proposals.sort(key=lambda p: (p.scheduled_time, p.id))
            return copy.deepcopy(proposals)

    def compare_and_swap(self, proposal_id: str, expected_version: int,
                         changes: Dict) -> Optional[MatchProposal]:
        with self._lock:
            current = self._proposals.get(proposal_id)
            if current is None:
                raise NotFound("proposal", proposal_id)
            if current.version != expected_version or current.status != ProposalStatus.PENDING:
                return None
            updated = replace(current, version=current.version + 1, **changes)
            self._proposals[proposal_id] = updated
            return copy.deepcopy(updated)

    def add_performance(self, performance: MatchPerformance) -> MatchPerformance:
        with self._lock:
            for existing in self._performances.values():
                if (existing.proposal_id == performance.proposal_id
                        and existing.team_id == performance.team_id):
                    raise ValidationError(
                        f"Result for team {performance.team_id} in {performance.proposal_id} already recorded"
                    )
            self._performances[performance.id] = performance
        return performance

    def list_performances(self, proposal_id: Optional[str] = None,
                          team_id: Optional[str] = None) -> List[MatchPerformance]:
        with self._lock:
            perfs = [
                p for p in self._performances.values()
                if (proposal_id is None or p.proposal_id == proposal_id)
                and (team_id is None or p.team_id == team_id)
            ]
            return sorted(perfs, key=lambda p: (p.match_date, p.team_id))

    def list_standings(self, sport: str, season: int) -> List[TeamStanding]:
        with self._lock:
            standings = [
                s for s in self._standings.values()
                if s.sport == sport and s.season == season
            ]
            return copy.deepcopy(sorted(standings, key=lambda s: (s.position or 10**6, s.team_id)))

    def update_standings(self, sport: str, season: int,
                         changes: Dict[str, Callable[[TeamStanding], TeamStanding]]
                         ) -> List[TeamStanding]:
        with self._lock:
            for team_id, change in changes.items():
                key = (team_id, sport, season)
                current = self._standings.get(key) or TeamStanding(team_id=team_id, sport=sport, season=season)
                self._standings[key] = change(copy.deepcopy(current))
            table = [s for s in self._standings.values() if s.sport == sport and s.season == season]
            ranked = rank_standings(table)
            for standing in ranked:
                self._standings[standing.key] = standing
            return copy.deepcopy(ranked)
