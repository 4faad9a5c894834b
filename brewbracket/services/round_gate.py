"""
Round Gate

A round may advance only when, at the same time:
1. every heat of the round is DONE
2. every heat of the round has a winner
3. every station with at least one heat in the round has all of them
   DONE with winners (a station with no heats is vacuously complete)

Pure read: one pass over the round's heats and the tournament's stations,
no locks, no writes. Safe to poll.
"""
import logging
from typing import Dict, List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from brewbracket.orm.match import Match, MatchStatus
from brewbracket.orm.station import Station
from brewbracket.schemas.rounds import MatchSummary, RoundCompletionStatus, StationCompletionStatus
from brewbracket.storage import BracketStorage

logger = logging.getLogger(__name__)


def _summary(match: Match) -> MatchSummary:
    return MatchSummary(
        match_id=match.id,
        heat_number=match.heat_number,
        station_id=match.station_id,
        status=match.status,
        winner_id=match.winner_id,
    )


def _is_decided(match: Match) -> bool:
    return match.status == MatchStatus.DONE and match.winner_id is not None


def evaluate_round(
    tournament_id: int,
    round: int,
    matches: Sequence[Match],
    stations: Sequence[Station],
) -> RoundCompletionStatus:
    """Build the gate report from already-loaded rows."""
    not_done = [m for m in matches if m.status != MatchStatus.DONE]
    without_winner = [m for m in matches if m.winner_id is None]

    by_station: Dict[int, List[Match]] = {}
    for match in matches:
        if match.station_id is not None:
            by_station.setdefault(match.station_id, []).append(match)

    station_status: List[StationCompletionStatus] = []
    errors: List[str] = []
    known_ids = set()
    for station in stations:
        known_ids.add(station.id)
        heats = by_station.get(station.id, [])
        incomplete = [m for m in heats if not _is_decided(m)]
        station_status.append(StationCompletionStatus(
            station_id=station.id,
            station_name=station.name,
            total_matches=len(heats),
            completed_matches=len(heats) - len(incomplete),
            is_complete=not incomplete,
            incomplete_matches=[_summary(m) for m in incomplete],
        ))
        if incomplete:
            errors.append(
                f"Station {station.name} has {len(incomplete)} incomplete "
                f"match(es) in round {round}"
            )

    # Heats pointing at a station row that no longer belongs to the tournament
    for station_id, heats in by_station.items():
        if station_id in known_ids:
            continue
        incomplete = [m for m in heats if not _is_decided(m)]
        station_status.append(StationCompletionStatus(
            station_id=station_id,
            station_name=f"#{station_id}",
            total_matches=len(heats),
            completed_matches=len(heats) - len(incomplete),
            is_complete=not incomplete,
            incomplete_matches=[_summary(m) for m in incomplete],
        ))

    all_done = not not_done
    all_winners = not without_winner
    all_stations = all(s.is_complete for s in station_status)

    if not matches:
        errors.insert(0, f"No matches found for round {round}")
    if not_done:
        errors.append(f"{len(not_done)} match(es) in round {round} are not DONE")
    if without_winner:
        errors.append(f"{len(without_winner)} match(es) in round {round} have no winner")

    return RoundCompletionStatus(
        tournament_id=tournament_id,
        round=round,
        is_complete=bool(matches) and all_done and all_winners and all_stations,
        all_matches_done=all_done,
        all_matches_have_winners=all_winners,
        all_stations_complete=all_stations,
        total_matches=len(matches),
        completed_matches=len(matches) - len(not_done),
        matches_with_winners=len(matches) - len(without_winner),
        incomplete_matches=[_summary(m) for m in not_done],
        matches_without_winners=[_summary(m) for m in without_winner],
        station_status=station_status,
        errors=errors,
    )


async def check_round_completion(
    tournament_id: int,
    round: int,
    db: AsyncSession,
) -> RoundCompletionStatus:
    """Evaluate the round gate for (tournament, round)."""
    storage = BracketStorage(db)
    await storage.require_tournament(tournament_id)
    matches = await storage.get_tournament_matches(tournament_id, round=round)
    stations = await storage.get_all_stations(tournament_id)
    status = evaluate_round(tournament_id, round, matches, stations)
    logger.debug(
        f"Round gate t={tournament_id} r={round}: complete={status.is_complete} "
        f"({status.completed_matches}/{status.total_matches} done)"
    )
    return status
