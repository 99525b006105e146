"""
Supabase-backed record store for the scheduling engine.
Reads team/venue/availability rows owned by the surrounding application and
writes proposals, performances and standings.
"""

from datetime import datetime, time
from typing import List, Dict, Optional, Iterable, Callable, Any
from enum import Enum
from supabase import create_client, Client
from postgrest.exceptions import APIError

from matchmaker.core.config import (
    SUPABASE_URL, SUPABASE_KEY, MAX_CAS_ATTEMPTS,
    TABLE_TEAMS, TABLE_VENUES, TABLE_BOOKINGS, TABLE_TEAM_VENDORS,
    TABLE_AVAILABILITY, TABLE_PROPOSALS, TABLE_PERFORMANCES, TABLE_STANDINGS
)
from matchmaker.core.exceptions import NotFound, ValidationError, ConcurrentUpdate
from matchmaker.core.logging_config import get_logger
from matchmaker.models import (
    Team, Venue, Booking, TeamVenueRelationship, AvailabilitySlot, DayOfWeek,
    MatchProposal, ProposalStatus, Actor, ScoringFactors,
    MatchPerformance, MatchResult, TeamStanding, rank_standings
)
from matchmaker.services.store import Store, LIVE_STATUSES

logger = get_logger(__name__)

UNIQUE_VIOLATION = "23505"


def _to_column(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, time)):
        return value.isoformat()
    if isinstance(value, ScoringFactors):
        return value.as_dict()
    return value


class SupabaseStore(Store):
    def __init__(self, client: Optional[Client] = None):
        if client is None:
            if not SUPABASE_URL or not SUPABASE_KEY:
                raise ValueError(
                    "Supabase credentials not found. Please set SUPABASE_URL and SUPABASE_KEY"
                )
            client = create_client(SUPABASE_URL, SUPABASE_KEY)
        self.client = client

    def _parse_datetime(self, value) -> Optional[datetime]:
        if not value:
            return None
        if isinstance(value, datetime):
            return value
        # Stored without offset; the engine works in naive local time
        return datetime.fromisoformat(str(value).replace('Z', '')).replace(tzinfo=None)

    def _parse_time(self, value) -> Optional[time]:
        if not value:
            return None
        if isinstance(value, time):
            return value
        for fmt in ('%H:%M:%S', '%H:%M'):
            try:
                return datetime.strptime(value.strip(), fmt).time()
            except ValueError:
                continue
        logger.warning("Could not parse time: %s", value)
        return None

    def _parse_enum(self, value, enum_class):
        if value is None:
            return None
        for enum_item in enum_class:
            if enum_item.value == value:
                return enum_item
        value_lower = str(value).lower()
        for enum_item in enum_class:
            if enum_item.value.lower() == value_lower:
                return enum_item
        return None

    # Row conversion

    def _team_from_row(self, row: Dict) -> Team:
        return Team(
            id=str(row['id']),
            name=row.get('name', ''),
            sport=row.get('sport', ''),
            area=row.get('area'),
            latitude=row.get('latitude'),
            longitude=row.get('longitude'),
        )

    def _venue_from_row(self, row: Dict) -> Venue:
        opening_hours = {}
        for day_name, hours in (row.get('opening_hours') or {}).items():
            opens = self._parse_time(hours.get('open'))
            closes = self._parse_time(hours.get('close'))
            if opens and closes:
                opening_hours[DayOfWeek.from_str(day_name)] = (opens, closes)
        return Venue(
            id=str(row['id']),
            vendor_id=str(row['vendor_id']),
            name=row.get('name', ''),
            latitude=row.get('latitude'),
            longitude=row.get('longitude'),
            opening_hours=opening_hours,
        )

    def _relationship_from_row(self, row: Dict) -> TeamVenueRelationship:
        return TeamVenueRelationship(
            id=str(row['id']),
            team_id=str(row['team_id']),
            vendor_id=str(row['vendor_id']),
            venue_rating=row.get('venue_rating'),
            matches_played=row.get('matches_played') or 0,
            is_primary=bool(row.get('is_primary', False)),
        )

    def _slot_from_row(self, row: Dict) -> AvailabilitySlot:
        return AvailabilitySlot(
            id=str(row['id']),
            team_id=str(row['team_id']),
            relationship_id=str(row['team_vendor_id']),
            day_of_week=DayOfWeek.from_str(row['day_of_week']),
            start_time=self._parse_time(row['start_time']),
            end_time=self._parse_time(row['end_time']),
            max_matches_per_week=row.get('max_matches_per_week') or 1,
            preferred_venue_types=list(row.get('preferred_venue_types') or []),
            preferred_court_types=list(row.get('preferred_court_types') or []),
        )

    def _slot_to_row(self, slot: AvailabilitySlot) -> Dict:
        return {
            'id': slot.id,
            'team_id': slot.team_id,
            'team_vendor_id': slot.relationship_id,
            'day_of_week': slot.day_of_week.value,
            'start_time': slot.start_time.strftime('%H:%M'),
            'end_time': slot.end_time.strftime('%H:%M'),
            'max_matches_per_week': slot.max_matches_per_week,
            'preferred_venue_types': slot.preferred_venue_types,
            'preferred_court_types': slot.preferred_court_types,
        }

    def _proposal_from_row(self, row: Dict) -> MatchProposal:
        return MatchProposal(
            id=str(row['id']),
            home_team_id=str(row['home_team_id']),
            away_team_id=str(row['away_team_id']),
            venue_id=str(row['venue_id']),
            vendor_id=str(row['vendor_id']),
            scheduled_time=self._parse_datetime(row['scheduled_time']),
            end_time=self._parse_datetime(row['end_time']),
            ai_score=float(row.get('ai_score') or 0.0),
            scoring_factors=ScoringFactors.from_dict(row.get('scoring_factors') or {}),
            expires_at=self._parse_datetime(row['expires_at']),
            created_at=self._parse_datetime(row['created_at']),
            status=self._parse_enum(row['status'], ProposalStatus),
            home_weekly_cap=row.get('home_weekly_cap') or 7,
            away_weekly_cap=row.get('away_weekly_cap') or 7,
            home_team_accepted=row.get('home_team_accepted'),
            away_team_accepted=row.get('away_team_accepted'),
            home_accepted_at=self._parse_datetime(row.get('home_accepted_at')),
            away_accepted_at=self._parse_datetime(row.get('away_accepted_at')),
            accepted_at=self._parse_datetime(row.get('accepted_at')),
            expired_at=self._parse_datetime(row.get('expired_at')),
            cancelled_at=self._parse_datetime(row.get('cancelled_at')),
            cancellation_reason=row.get('cancellation_reason'),
            cancelled_by=self._parse_enum(row.get('cancelled_by'), Actor),
            version=row.get('version') or 0,
        )

    def _proposal_to_row(self, proposal: MatchProposal) -> Dict:
        return {key: _to_column(value) for key, value in vars(proposal).items()}

    def _performance_from_row(self, row: Dict) -> MatchPerformance:
        return MatchPerformance(
            id=str(row['id']),
            proposal_id=str(row['proposal_id']),
            team_id=str(row['team_id']),
            opponent_id=str(row['opponent_id']),
            vendor_id=str(row['vendor_id']),
            venue_id=str(row['venue_id']),
            match_date=self._parse_datetime(row['match_date']),
            result=self._parse_enum(row['result'], MatchResult),
            goals_scored=row.get('goals_scored') or 0,
            goals_conceded=row.get('goals_conceded') or 0,
            player_performances=row.get('player_performances') or {},
            possession_percentage=row.get('possession_percentage'),
            shots_on_target=row.get('shots_on_target'),
            pass_accuracy=row.get('pass_accuracy'),
        )

    def _standing_from_row(self, row: Dict) -> TeamStanding:
        return TeamStanding(
            team_id=str(row['team_id']),
            sport=row['sport'],
            season=int(row['season_year']),
            matches_played=row.get('matches_played') or 0,
            wins=row.get('wins') or 0,
            draws=row.get('draws') or 0,
            losses=row.get('losses') or 0,
            goals_for=row.get('goals_for') or 0,
            goals_against=row.get('goals_against') or 0,
            goal_difference=row.get('goal_difference') or 0,
            points=row.get('points') or 0,
            position=row.get('position') or 0,
            form=list(row.get('form') or []),
        )

    # Store interface

    def get_team(self, team_id: str) -> Team:
        response = self.client.table(TABLE_TEAMS).select('*').eq('id', team_id).execute()
        if not response.data:
            raise NotFound("team", team_id)
        return self._team_from_row(response.data[0])

    def list_teams(self, team_ids: Optional[Iterable[str]] = None) -> List[Team]:
        query = self.client.table(TABLE_TEAMS).select('*')
        if team_ids is not None:
            query = query.in_('id', list(team_ids))
        response = query.execute()
        return [self._team_from_row(row) for row in response.data]

    def get_venue(self, venue_id: str) -> Venue:
        response = self.client.table(TABLE_VENUES).select('*').eq('id', venue_id).execute()
        if not response.data:
            raise NotFound("venue", venue_id)
        return self._venue_from_row(response.data[0])

    def list_venues(self, vendor_id: str) -> List[Venue]:
        response = self.client.table(TABLE_VENUES).select('*').eq('vendor_id', vendor_id).order('id').execute()
        return [self._venue_from_row(row) for row in response.data]

    def list_bookings(self, venue_id: str) -> List[Booking]:
        response = (
            self.client.table(TABLE_BOOKINGS)
            .select('*')
            .eq('venue_id', venue_id)
            .eq('status', 'CONFIRMED')
            .execute()
        )
        return [
            Booking(
                id=str(row['id']),
                venue_id=str(row['venue_id']),
                start=self._parse_datetime(row['start_time']),
                end=self._parse_datetime(row['end_time']),
                status=row.get('status', 'CONFIRMED'),
            )
            for row in response.data
        ]

    def find_relationship(self, team_id: str, vendor_id: str) -> Optional[TeamVenueRelationship]:
        response = (
            self.client.table(TABLE_TEAM_VENDORS)
            .select('*')
            .eq('team_id', team_id)
            .eq('vendor_id', vendor_id)
            .execute()
        )
        if not response.data:
            return None
        return self._relationship_from_row(response.data[0])

    def list_relationships(self, vendor_id: Optional[str] = None,
                           team_id: Optional[str] = None) -> List[TeamVenueRelationship]:
        query = self.client.table(TABLE_TEAM_VENDORS).select('*')
        if vendor_id is not None:
            query = query.eq('vendor_id', vendor_id)
        if team_id is not None:
            query = query.eq('team_id', team_id)
        response = query.execute()
        return [self._relationship_from_row(row) for row in response.data]

    def save_relationship(self, relationship: TeamVenueRelationship) -> TeamVenueRelationship:
        row = {key: _to_column(value) for key, value in vars(relationship).items()}
        try:
            self.client.table(TABLE_TEAM_VENDORS).upsert(row).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise ValidationError(
                    f"Team {relationship.team_id} already linked to vendor {relationship.vendor_id}"
                )
            raise
        return relationship

    def add_slot(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        # Unique index on (team_id, day_of_week, start_time, end_time)
        try:
            self.client.table(TABLE_AVAILABILITY).insert(self._slot_to_row(slot)).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise ValidationError(f"Team {slot.team_id} already has a {slot} slot")
            raise
        return slot

    def delete_slot(self, slot_id: str) -> None:
        response = self.client.table(TABLE_AVAILABILITY).delete().eq('id', slot_id).execute()
        if not response.data:
            raise NotFound("availability slot", slot_id)

    def list_slots(self, team_id: Optional[str] = None,
                   relationship_id: Optional[str] = None) -> List[AvailabilitySlot]:
        query = self.client.table(TABLE_AVAILABILITY).select('*')
        if team_id is not None:
            query = query.eq('team_id', team_id)
        if relationship_id is not None:
            query = query.eq('team_vendor_id', relationship_id)
        response = query.execute()
        slots = [self._slot_from_row(row) for row in response.data]
        slots.sort(key=lambda s: (s.team_id, s.day_of_week.index, s.start_time, s.end_time))
        return slots

    def insert_proposal(self, proposal: MatchProposal) -> bool:
        existing = (
            self.client.table(TABLE_PROPOSALS)
            .select('id, home_team_id, away_team_id')
            .eq('venue_id', proposal.venue_id)
            .eq('scheduled_time', proposal.scheduled_time.isoformat())
            .in_('status', [s.value for s in LIVE_STATUSES])
            .execute()
        )
        for row in existing.data:
            if tuple(sorted((str(row['home_team_id']), str(row['away_team_id'])))) == proposal.pair_key:
                return False
        try:
            self.client.table(TABLE_PROPOSALS).insert(self._proposal_to_row(proposal)).execute()
        except APIError as e:
            # Partial unique index on live fixtures catches concurrent generators
            if e.code == UNIQUE_VIOLATION:
                return False
            raise
        return True

    def get_proposal(self, proposal_id: str) -> MatchProposal:
        response = self.client.table(TABLE_PROPOSALS).select('*').eq('id', proposal_id).execute()
        if not response.data:
            raise NotFound("proposal", proposal_id)
        return self._proposal_from_row(response.data[0])

    def list_proposals(self, status: Optional[ProposalStatus] = None,
                       vendor_id: Optional[str] = None,
                       team_id: Optional[str] = None,
                       venue_id: Optional[str] = None) -> List[MatchProposal]:
        query = self.client.table(TABLE_PROPOSALS).select('*')
        if status is not None:
            query = query.eq('status', status.value)
        if vendor_id is not None:
            query = query.eq('vendor_id', vendor_id)
        if venue_id is not None:
            query = query.eq('venue_id', venue_id)
        if team_id is not None:
            query = query.or_(f"home_team_id.eq.{team_id},away_team_id.eq.{team_id}")
        response = query.order('scheduled_time').execute()
        return [self._proposal_from_row(row) for row in response.data]

    def compare_and_swap(self, proposal_id: str, expected_version: int,
                         changes: Dict) -> Optional[MatchProposal]:
        row = {key: _to_column(value) for key, value in changes.items()}
        row['version'] = expected_version + 1
        response = (
            self.client.table(TABLE_PROPOSALS)
            .update(row)
            .eq('id', proposal_id)
            .eq('version', expected_version)
            .eq('status', ProposalStatus.PENDING.value)
            .execute()
        )
        if not response.data:
            # Distinguish a lost race from an unknown id
            self.get_proposal(proposal_id)
            return None
        return self._proposal_from_row(response.data[0])

    def add_performance(self, performance: MatchPerformance) -> MatchPerformance:
        row = {key: _to_column(value) for key, value in vars(performance).items()}
        try:
            self.client.table(TABLE_PERFORMANCES).insert(row).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise ValidationError(
                    f"Result for team {performance.team_id} in {performance.proposal_id} already recorded"
                )
            raise
        return performance

    def list_performances(self, proposal_id: Optional[str] = None,
                          team_id: Optional[str] = None) -> List[MatchPerformance]:
        query = self.client.table(TABLE_PERFORMANCES).select('*')
        if proposal_id is not None:
            query = query.eq('proposal_id', proposal_id)
        if team_id is not None:
            query = query.eq('team_id', team_id)
        response = query.order('match_date').execute()
        return [self._performance_from_row(row) for row in response.data]

    def update_relationship(self, team_id: str, vendor_id: str,
                            change: Callable[[Optional[TeamVenueRelationship]], TeamVenueRelationship]
                            ) -> TeamVenueRelationship:
        """
        Read-modify-write of one team/vendor link, guarded on matches_played.

        Every affinity update bumps matches_played, so the column doubles as the
        row version; a lost race re-reads and re-applies `change`.
        """
        for attempt in range(MAX_CAS_ATTEMPTS):
            current = self.find_relationship(team_id, vendor_id)
            expected_played = current.matches_played if current else None
            updated = change(current)
            row = {key: _to_column(value) for key, value in vars(updated).items()}
            if current is None:
                try:
                    self.client.table(TABLE_TEAM_VENDORS).insert(row).execute()
                    return updated
                except APIError as e:
                    if e.code != UNIQUE_VIOLATION:
                        raise
            else:
                response = (
                    self.client.table(TABLE_TEAM_VENDORS)
                    .update(row)
                    .eq('id', current.id)
                    .eq('matches_played', expected_played)
                    .execute()
                )
                if response.data:
                    return self._relationship_from_row(response.data[0])
            logger.debug("Relationship %s/%s changed concurrently (attempt %d)", team_id, vendor_id, attempt + 1)
        raise ConcurrentUpdate(f"Relationship {team_id}/{vendor_id} kept changing; gave up after {MAX_CAS_ATTEMPTS} attempts")

    def _standing_to_row(self, standing: TeamStanding) -> Dict:
        row = {key: _to_column(value) for key, value in vars(standing).items()}
        row['season_year'] = row.pop('season')
        return row

    def _read_standings(self, sport: str, season: int) -> List[TeamStanding]:
        response = (
            self.client.table(TABLE_STANDINGS)
            .select('*')
            .eq('sport', sport)
            .eq('season_year', season)
            .execute()
        )
        return [self._standing_from_row(row) for row in response.data]

    def list_standings(self, sport: str, season: int) -> List[TeamStanding]:
        # Positions are re-derived on read; the stored column may lag a concurrent result
        return rank_standings(self._read_standings(sport, season))

    def _fold_standing(self, team_id: str, sport: str, season: int,
                       change: Callable[[TeamStanding], TeamStanding]) -> None:
        for attempt in range(MAX_CAS_ATTEMPTS):
            response = (
                self.client.table(TABLE_STANDINGS)
                .select('*')
                .eq('team_id', team_id)
                .eq('sport', sport)
                .eq('season_year', season)
                .execute()
            )
            if not response.data:
                row = self._standing_to_row(change(TeamStanding(team_id=team_id, sport=sport, season=season)))
                try:
                    self.client.table(TABLE_STANDINGS).insert(row).execute()
                    return
                except APIError as e:
                    if e.code != UNIQUE_VIOLATION:
                        raise
            else:
                current = self._standing_from_row(response.data[0])
                expected_played = current.matches_played
                updated = (
                    self.client.table(TABLE_STANDINGS)
                    .update(self._standing_to_row(change(current)))
                    .eq('team_id', team_id)
                    .eq('sport', sport)
                    .eq('season_year', season)
                    .eq('matches_played', expected_played)
                    .execute()
                )
                if updated.data:
                    return
            logger.debug("Standing for %s changed concurrently (attempt %d)", team_id, attempt + 1)
        raise ConcurrentUpdate(f"Standing for {team_id} kept changing; gave up after {MAX_CAS_ATTEMPTS} attempts")

    def update_standings(self, sport: str, season: int,
                         changes: Dict[str, Callable[[TeamStanding], TeamStanding]]
                         ) -> List[TeamStanding]:
        for team_id, change in changes.items():
            self._fold_standing(team_id, sport, season, change)

        stored = self._read_standings(sport, season)
        stored_positions = {s.team_id: s.position for s in stored}
        ranked = rank_standings(stored)
        for standing in ranked:
            if stored_positions[standing.team_id] == standing.position:
                continue
            # A row that moved since the read is re-ranked by the writer that moved it
            (
                self.client.table(TABLE_STANDINGS)
                .update({'position': standing.position})
                .eq('team_id', standing.team_id)
                .eq('sport', sport)
                .eq('season_year', season)
                .eq('matches_played', standing.matches_played)
                .execute()
            )
        logger.info("Updated %d standings for %s %s", len(changes), sport, season)
        return ranked
