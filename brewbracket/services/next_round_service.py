"""
Next-Round Populator

Builds round R + 1 from the winners of the highest round with heats.

Rules:
- Source round must pass the round gate
- Winners keep source heat order and are split into up to
  REQUIRED_STATIONS contiguous groups of even length, so at most one
  winner per round gets a bye
- Group i plays on the i-th AVAILABLE station in rotation order
- Within a group winners pair up sequentially; an odd leftover gets
  a DONE bye heat
- Heat numbers continue from the tournament's highest heat number
"""
import logging
import math
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from brewbracket.config.settings import settings
from brewbracket.exceptions import (
    InsufficientStationsError,
    InvalidInputError,
    NoWinnersFoundError,
    RoundNotCompleteError,
)
from brewbracket.realtime.events import BracketEvent, EventNotifier, get_notifier
from brewbracket.schemas.rounds import PopulateNextRoundResult
from brewbracket.services.bracket_service import create_bye_heat, create_scheduled_heat
from brewbracket.services.locks import tournament_advance_locks
from brewbracket.services.round_gate import evaluate_round
from brewbracket.services.round_progression import advance_in_progress
from brewbracket.services.station_scheduler import StationScheduler
from brewbracket.storage import BracketStorage
from brewbracket.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def group_winners(winners: List[int], group_count: int) -> List[List[int]]:
    """Contiguous even-length slices; empty groups dropped."""
    if not winners:
        return []
    size = 2 * math.ceil(len(winners) / (2 * group_count))
    groups = [winners[i * size:(i + 1) * size] for i in range(group_count)]
    return [g for g in groups if g]


async def populate_next_round(
    tournament_id: int,
    db: AsyncSession,
    notifier: Optional[EventNotifier] = None,
) -> PopulateNextRoundResult:
    """
    Create the next round's heats.

    Raises:
        RoundAdvanceInProgressError: Another advance holds the tournament lock
        RoundNotCompleteError: Source round gate did not pass
        NoWinnersFoundError: No heats or no decided heats
        InvalidInputError: Only one winner remains (tournament is decided)
        InsufficientStationsError: Fewer than REQUIRED_STATIONS AVAILABLE stations
    """
    storage = BracketStorage(db)
    notifier = notifier or get_notifier()

    async with tournament_advance_locks.try_hold(tournament_id, advance_in_progress(tournament_id)):
        try:
            tournament = await storage.require_tournament(tournament_id, for_update=True)
            source_round = await storage.get_max_round(tournament_id)
            if source_round == 0:
                raise NoWinnersFoundError(
                    f"Tournament {tournament_id} has no heats yet",
                    details={"tournament_id": tournament_id},
                )

            matches = await storage.get_tournament_matches(tournament_id, round=source_round)
            gate = evaluate_round(tournament_id, source_round, matches, await storage.get_all_stations(tournament_id))
            if not gate.is_complete:
                raise RoundNotCompleteError(
                    f"Round {source_round} must be complete before populating the next round",
                    details=gate.model_dump(),
                )

            winners = [m.winner_id for m in matches if m.winner_id is not None]
            if not winners:
                raise NoWinnersFoundError(
                    f"No winners found in round {source_round}",
                    details={"tournament_id": tournament_id, "round": source_round},
                )
            if len(winners) == 1:
                raise InvalidInputError(
                    f"Round {source_round} left a single winner; the tournament is decided",
                    details={"tournament_id": tournament_id, "winner_id": winners[0]},
                )

            stations = await StationScheduler.available_stations(db, tournament)
            if len(stations) < settings.REQUIRED_STATIONS:
                raise InsufficientStationsError(
                    f"Need at least {settings.REQUIRED_STATIONS} available stations, got {len(stations)}",
                    details={"tournament_id": tournament_id, "available_station_ids": [s.id for s in stations]},
                )

            next_round = source_round + 1
            round_time = await StationScheduler.get_or_create_round_times(db, tournament_id, next_round)
            heat_number = await storage.get_max_heat_number(tournament_id)
            now = utcnow()

            result = PopulateNextRoundResult(
                tournament_id=tournament_id,
                source_round=source_round,
                next_round=next_round,
                winners=winners,
            )
            for station, group in zip(stations, group_winners(winners, settings.REQUIRED_STATIONS)):
                result.station_groups[station.name] = list(group)
                for i in range(0, len(group), 2):
                    heat_number += 1
                    if i + 1 < len(group):
                        match = await create_scheduled_heat(
                            storage, tournament, next_round, heat_number,
                            group[i], group[i + 1], round_time, station_id=station.id,
                        )
                    else:
                        match = await create_bye_heat(
                            storage, tournament_id, next_round, heat_number, group[i], now
                        )
                        result.bye_user_ids.append(group[i])
                    result.match_ids.append(match.id)

            await storage.commit()
        except Exception:
            await storage.rollback()
            raise

    logger.info(
        f"Populated round {next_round} for tournament {tournament_id}: "
        f"{len(result.match_ids)} heats, {len(result.bye_user_ids)} bye(s)"
    )
    await notifier.emit(
        BracketEvent.NEXT_ROUND_POPULATED,
        tournament_id,
        {"round": next_round, "match_ids": result.match_ids},
    )
    return result
