"""
Round Progression

Closes a round once the round gate passes:
- recompute heat scores (best-effort)
- add round scores to each participant's cumulative score
- mark losers eliminated (first elimination round wins, never cleared)
- finalize the tournament once a single winner remains, or move
  current_round to R + 1

Only one advance per tournament runs at a time; a concurrent call fails
fast with RoundAdvanceInProgressError instead of queueing behind it.
"""
import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from brewbracket.exceptions import (
    InvalidInputError,
    RoundAdvanceInProgressError,
    RoundNotCompleteError,
)
from brewbracket.orm.match import Match
from brewbracket.orm.scoring import HeatScore
from brewbracket.orm.tournament import TournamentParticipant, TournamentStatus
from brewbracket.realtime.events import BracketEvent, EventNotifier, get_notifier
from brewbracket.schemas.rounds import LeaderboardEntry, RoundCompletionResult, RoundScore
from brewbracket.services.locks import tournament_advance_locks
from brewbracket.services.round_gate import evaluate_round
from brewbracket.services.score_aggregator import store_heat_scores
from brewbracket.storage import BracketStorage

logger = logging.getLogger(__name__)


class RoundType(str, Enum):
    QUALIFYING = "QUALIFYING"
    SEMIFINAL = "SEMIFINAL"
    FINAL = "FINAL"


def determine_round_type(round: int, total_rounds: Optional[int]) -> RoundType:
    if total_rounds is None or round >= total_rounds:
        return RoundType.FINAL
    if round == total_rounds - 1:
        return RoundType.SEMIFINAL
    return RoundType.QUALIFYING


def get_round_display_name(round: int, total_rounds: Optional[int]) -> str:
    round_type = determine_round_type(round, total_rounds)
    if round_type == RoundType.FINAL:
        return "Final"
    if round_type == RoundType.SEMIFINAL:
        return "Semifinal"
    return f"Round {round}"


def advance_in_progress(tournament_id: int):
    """Factory for the try-lock failure of a tournament."""
    def _error():
        return RoundAdvanceInProgressError(
            f"Another round advance is already running for tournament {tournament_id}",
            details={"tournament_id": tournament_id},
        )
    return _error


def compute_round_scores(
    matches: Sequence[Match],
    heat_scores: Sequence[HeatScore],
    participants: Sequence[TournamentParticipant],
) -> List[RoundScore]:
    """
    Per-participant round totals from cached heat scores.

    A bye counts as played and won, with no points.
    """
    by_user = {p.user_id: p for p in participants}
    points: Dict[tuple, int] = {}
    for row in heat_scores:
        key = (row.match_id, row.competitor_id)
        points[key] = points.get(key, 0) + row.score

    scores: Dict[int, RoundScore] = {}
    for match in matches:
        for competitor_id in match.competitor_ids:
            participant = by_user.get(competitor_id)
            if participant is None:
                continue
            entry = scores.setdefault(participant.id, RoundScore(
                participant_id=participant.id,
                user_id=competitor_id,
            ))
            entry.round_score += points.get((match.id, competitor_id), 0)
            entry.matches_played += 1
            if match.winner_id == competitor_id:
                entry.matches_won += 1

    return sorted(scores.values(), key=lambda s: (-s.round_score, s.participant_id))


async def get_leaderboard(tournament_id: int, db: AsyncSession) -> List[LeaderboardEntry]:
    """Cumulative score desc, then matches won desc, then seed asc."""
    storage = BracketStorage(db)
    await storage.require_tournament(tournament_id)
    participants = await storage.get_tournament_participants(tournament_id)
    decided = [m for m in await storage.get_tournament_matches(tournament_id) if m.winner_id is not None]

    entries = []
    for p in participants:
        played = [m for m in decided if p.user_id in m.competitor_ids]
        entries.append(LeaderboardEntry(
            rank=0,
            participant_id=p.id,
            user_id=p.user_id,
            display_name=p.display_name or f"Participant {p.id}",
            seed=p.seed,
            cumulative_score=p.total_score or 0,
            matches_won=sum(1 for m in played if m.winner_id == p.user_id),
            matches_played=len(played),
            eliminated_round=p.eliminated_round,
            final_rank=p.final_rank,
        ))

    entries.sort(key=lambda e: (
        -e.cumulative_score,
        -e.matches_won,
        e.seed if e.seed is not None else float("inf"),
    ))
    for index, entry in enumerate(entries, start=1):
        entry.rank = index
    return entries


async def _recompute_heat_scores(storage: BracketStorage, matches: Sequence[Match]) -> List[str]:
    """Each heat in its own savepoint; a failed heat keeps its previous rows."""
    errors = []
    for match in matches:
        match_id = match.id
        try:
            async with storage.db.begin_nested():
                await store_heat_scores(storage, match)
        except Exception as e:
            errors.append(f"Match {match_id}: {str(e)}")
            logger.warning(f"Failed to calculate scores for match {match_id}: {str(e)}")
    return errors


async def complete_round(
    tournament_id: int,
    round: int,
    db: AsyncSession,
    notifier: Optional[EventNotifier] = None,
) -> RoundCompletionResult:
    """
    Close round R of a tournament.

    Raises:
        RoundAdvanceInProgressError: Another advance holds the tournament lock
        RoundNotCompleteError: Round gate did not pass (details carry the report)
        InvalidInputError: Tournament finished, R is not the current round,
            or the last planned round left more than one winner
    """
    storage = BracketStorage(db)
    notifier = notifier or get_notifier()

    async with tournament_advance_locks.try_hold(tournament_id, advance_in_progress(tournament_id)):
        try:
            tournament = await storage.require_tournament(tournament_id, for_update=True)
            if tournament.status == TournamentStatus.COMPLETED:
                raise InvalidInputError(
                    f"Tournament {tournament_id} is already completed",
                    details={"tournament_id": tournament_id},
                )
            if round != tournament.current_round:
                raise InvalidInputError(
                    f"Round {round} is not the current round ({tournament.current_round})",
                    details={"tournament_id": tournament_id, "round": round},
                )

            matches = await storage.get_tournament_matches(tournament_id, round=round)
            gate = evaluate_round(tournament_id, round, matches, await storage.get_all_stations(tournament_id))
            if not gate.is_complete:
                raise RoundNotCompleteError(
                    f"Round {round} is not complete: {'; '.join(gate.errors)}",
                    details=gate.model_dump(),
                )

            winners = [m.winner_id for m in matches]
            is_final = len(winners) == 1
            if not is_final and tournament.total_rounds is not None and round >= tournament.total_rounds:
                raise InvalidInputError(
                    f"Round {round} is the last planned round but left {len(winners)} winners",
                    details={"tournament_id": tournament_id, "round": round, "winner_ids": winners},
                )

            score_errors = await _recompute_heat_scores(storage, matches)
            participants = await storage.get_tournament_participants(tournament_id)
            round_scores = compute_round_scores(
                matches, await storage.get_round_heat_scores(tournament_id, round), participants
            )

            by_id = {p.id: p for p in participants}
            for score in round_scores:
                participant = by_id[score.participant_id]
                await storage.update_participant_total_score(
                    participant.id, (participant.total_score or 0) + score.round_score
                )

            by_user = {p.user_id: p for p in participants}
            eliminated: List[int] = []
            for match in matches:
                loser = by_user.get(match.loser_id())
                if loser and await storage.update_participant_elimination(loser.id, round):
                    eliminated.append(loser.user_id)

            round_type = RoundType.FINAL if is_final else determine_round_type(round, tournament.total_rounds)
            result = RoundCompletionResult(
                tournament_id=tournament_id,
                round=round,
                round_type=round_type.value,
                round_name=get_round_display_name(round, round if is_final else tournament.total_rounds),
                round_scores=round_scores,
                eliminated_user_ids=eliminated,
                is_final=is_final,
                score_errors=score_errors,
            )

            if is_final:
                champion = winners[0]
                await storage.set_tournament_winner(tournament_id, champion)
                await storage.update_participant_final_rank(by_user[champion].id, 1)
                await storage.update_tournament(tournament_id, status=TournamentStatus.COMPLETED.value)
                result.tournament_winner_id = champion
            else:
                await storage.update_tournament_current_round(tournament_id, round + 1)
                result.next_round = round + 1

            await storage.commit()
        except Exception:
            await storage.rollback()
            raise

    logger.info(
        f"Tournament {tournament_id} round {round} ({result.round_name}) completed: "
        f"{len(eliminated)} eliminated"
    )
    await notifier.emit(BracketEvent.ROUND_COMPLETED, tournament_id, result.event_payload())
    if result.is_final:
        logger.info(f"Tournament {tournament_id} finalized, winner {result.tournament_winner_id}")
        await notifier.emit(
            BracketEvent.TOURNAMENT_FINALIZED,
            tournament_id,
            {"winner_id": result.tournament_winner_id, "round": round},
        )
    return result
