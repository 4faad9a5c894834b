"""
Station Scheduler

Assigns heats to stations and computes their start times.

Rules:
- Canonical rotation is the tournament's enabled stations (default A, B, C)
- Fresh brackets stagger the rotation: A = now, B = now+10, C = now+20
- Selection picks the AVAILABLE station with the earliest next_available_at,
  ties broken by rotation order
- Each assignment pushes next_available_at by plan total + inter-heat buffer
- Every read-modify-write of a station runs under its asyncio lock and
  SELECT ... FOR UPDATE
- Disabling a station never moves heats already assigned to it
"""
import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from brewbracket.config.settings import settings
from brewbracket.exceptions import InvalidInputError, NoAvailableStationError, NotFoundError
from brewbracket.orm.match import MatchStatus
from brewbracket.orm.station import Station, StationStatus
from brewbracket.orm.tournament import Tournament, TournamentRoundTime
from brewbracket.schemas.bracket import RoundTimeConfig, StationSlot, StationQueueEntry
from brewbracket.services.locks import station_locks
from brewbracket.storage import BracketStorage
from brewbracket.utils.time_utils import utcnow, minutes_after

logger = logging.getLogger(__name__)


class StationScheduler:
    """
    Deterministic station allocation.

    Methods take the session first, like the other scheduling services.
    """

    VALID_TRANSITIONS = {
        StationStatus.AVAILABLE: [StationStatus.BUSY, StationStatus.OFFLINE],
        StationStatus.BUSY: [StationStatus.AVAILABLE, StationStatus.OFFLINE],
        StationStatus.OFFLINE: [StationStatus.AVAILABLE],
    }

    @staticmethod
    def _is_valid_transition(current: StationStatus, new: StationStatus) -> bool:
        return new in StationScheduler.VALID_TRANSITIONS.get(current, [])

    @staticmethod
    def select_station(stations: Sequence[Station], rotation: Sequence[str]) -> Station:
        """
        Earliest next_available_at among AVAILABLE stations.

        Raises:
            NoAvailableStationError: If none is AVAILABLE
        """
        order = {name: i for i, name in enumerate(rotation)}
        candidates = [s for s in stations if s.status == StationStatus.AVAILABLE]
        if not candidates:
            raise NoAvailableStationError(
                "No AVAILABLE station to schedule the heat on",
                details={"station_ids": [s.id for s in stations]},
            )
        return min(
            candidates,
            key=lambda s: (s.next_available_at, order.get(s.name, len(order)), s.id),
        )

    # ==========================================================================
    # Round times
    # ==========================================================================

    @staticmethod
    async def get_or_create_round_times(
        db: AsyncSession,
        tournament_id: int,
        round: int,
    ) -> TournamentRoundTime:
        """Round plan for (tournament, round); persists the 10/3/2 default if missing."""
        storage = BracketStorage(db)
        row = await storage.get_round_times(tournament_id, round)
        if row:
            return row

        row = await storage.set_round_times(
            tournament_id,
            round,
            dial_in_minutes=settings.DEFAULT_DIAL_IN_MINUTES,
            cappuccino_minutes=settings.DEFAULT_CAPPUCCINO_MINUTES,
            espresso_minutes=settings.DEFAULT_ESPRESSO_MINUTES,
        )
        logger.info(
            f"Created default round times for tournament {tournament_id} round {round}: "
            f"{row.dial_in_minutes}/{row.cappuccino_minutes}/{row.espresso_minutes}"
        )
        return row

    @staticmethod
    async def set_round_times(
        db: AsyncSession,
        tournament_id: int,
        round: int,
        config: RoundTimeConfig,
    ) -> TournamentRoundTime:
        if round < 1:
            raise InvalidInputError("Round must be >= 1", details={"round": round})
        storage = BracketStorage(db)
        await storage.require_tournament(tournament_id)
        row = await storage.set_round_times(
            tournament_id,
            round,
            dial_in_minutes=config.dial_in_minutes,
            cappuccino_minutes=config.cappuccino_minutes,
            espresso_minutes=config.espresso_minutes,
        )
        await storage.commit()
        return row

    # ==========================================================================
    # Station inventory
    # ==========================================================================

    @staticmethod
    async def ensure_stations(db: AsyncSession, tournament: Tournament) -> List[Station]:
        """Create station rows for enabled names that have none yet."""
        storage = BracketStorage(db)
        existing = {s.name for s in await storage.get_all_stations(tournament.id)}
        for name in tournament.enabled_stations or []:
            if name not in existing:
                await storage.create_station(tournament.id, name)
                logger.info(f"Created station {name} for tournament {tournament.id}")
        return await storage.get_tournament_stations(tournament)

    @staticmethod
    async def available_stations(db: AsyncSession, tournament: Tournament) -> List[Station]:
        storage = BracketStorage(db)
        return [
            s for s in await storage.get_tournament_stations(tournament)
            if s.status == StationStatus.AVAILABLE
        ]

    @staticmethod
    async def stagger_stations(
        db: AsyncSession,
        tournament: Tournament,
        now: Optional[datetime] = None,
    ) -> List[Station]:
        """Reset enabled stations to now + i * stagger, in rotation order."""
        storage = BracketStorage(db)
        now = now or utcnow()
        stations = await storage.get_tournament_stations(tournament)
        for index, station in enumerate(stations):
            async with station_locks.hold(station.id):
                locked = await storage.get_station(station.id, for_update=True)
                locked.next_available_at = minutes_after(now, index * settings.STATION_STAGGER_MINUTES)
                await storage.flush()
        logger.info(
            f"Staggered {len(stations)} stations for tournament {tournament.id} "
            f"every {settings.STATION_STAGGER_MINUTES} min"
        )
        return stations

    @staticmethod
    async def set_station_status(
        db: AsyncSession,
        station_id: int,
        status: StationStatus,
    ) -> Station:
        """Change station availability. Assigned heats stay where they are."""
        storage = BracketStorage(db)
        async with station_locks.hold(station_id):
            station = await storage.get_station(station_id, for_update=True)
            if not station:
                raise NotFoundError(f"Station {station_id} not found", details={"station_id": station_id})

            current = StationStatus(station.status)
            if current == status:
                return station
            if not StationScheduler._is_valid_transition(current, status):
                raise InvalidInputError(
                    f"Cannot move station {station.name} from {current.value} to {status.value}",
                    details={"station_id": station_id},
                )
            station.status = status.value
            await storage.commit()

        logger.info(f"Station {station.name} ({station_id}) is now {status.value}")
        return station

    # ==========================================================================
    # Slot reservation
    # ==========================================================================

    @staticmethod
    async def reserve_on_station(
        db: AsyncSession,
        station_id: int,
        total_minutes: int,
    ) -> StationSlot:
        """
        Reserve the next slot on one station.

        start = next_available_at; next_available_at += total + buffer.
        """
        storage = BracketStorage(db)
        async with station_locks.hold(station_id):
            station = await storage.get_station(station_id, for_update=True)
            if not station:
                raise NotFoundError(f"Station {station_id} not found", details={"station_id": station_id})
            if station.status != StationStatus.AVAILABLE:
                raise NoAvailableStationError(
                    f"Station {station.name} is {station.status}",
                    details={"station_id": station_id},
                )

            start_time = station.next_available_at
            station.next_available_at = minutes_after(
                start_time, total_minutes + settings.INTER_HEAT_BUFFER_MINUTES
            )
            await storage.flush()

        return StationSlot(
            station_id=station.id,
            station_name=station.name,
            start_time=start_time,
            next_available_at=station.next_available_at,
        )

    @staticmethod
    async def reserve_next_slot(
        db: AsyncSession,
        tournament: Tournament,
        total_minutes: int,
    ) -> StationSlot:
        """
        Pick the earliest AVAILABLE enabled station and reserve its next slot.

        If the chosen station goes unavailable between selection and lock,
        selection is repeated without it.
        """
        storage = BracketStorage(db)
        stations = await storage.get_tournament_stations(tournament)
        rotation = list(tournament.enabled_stations or [])
        excluded = set()
        while True:
            pool = [s for s in stations if s.id not in excluded]
            station = StationScheduler.select_station(pool, rotation)
            try:
                return await StationScheduler.reserve_on_station(db, station.id, total_minutes)
            except NoAvailableStationError:
                logger.warning(f"Station {station.name} became unavailable during selection, retrying")
                excluded.add(station.id)

    # ==========================================================================
    # Derived station views
    # ==========================================================================

    @staticmethod
    async def get_station_queue(
        db: AsyncSession,
        station_id: int,
        limit: Optional[int] = None,
    ) -> List[StationQueueEntry]:
        """Unfinished heats at a station, earliest start first."""
        storage = BracketStorage(db)
        matches = await storage.get_station_matches(station_id)
        if limit is not None:
            matches = matches[:limit]
        return [
            StationQueueEntry(
                match_id=m.id,
                heat_number=m.heat_number,
                round=m.round,
                status=m.status,
                start_time=m.start_time,
            )
            for m in matches
        ]

    @staticmethod
    async def get_current_match_id(db: AsyncSession, station_id: int) -> Optional[int]:
        """The RUNNING heat at the station, else the next unfinished one."""
        storage = BracketStorage(db)
        matches = await storage.get_station_matches(station_id)
        for match in matches:
            if match.status == MatchStatus.RUNNING:
                return match.id
        return matches[0].id if matches else None
