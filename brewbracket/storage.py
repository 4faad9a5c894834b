"""
brewbracket/storage.py
Storage collaborator for the bracket engine

All engine reads and writes go through BracketStorage. Any SQLAlchemy
failure surfaces as StorageUnavailableError; nothing is retried here,
retry policy belongs to the caller.

Writes flush but do not commit. Services own the transaction boundary
and call commit()/rollback() explicitly.
"""
import functools
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brewbracket.exceptions import NotFoundError, StorageUnavailableError
from brewbracket.orm.tournament import Tournament, TournamentParticipant, TournamentRoundTime
from brewbracket.orm.station import Station
from brewbracket.orm.match import Match, MatchStatus, HeatSegment, HeatJudge, SEGMENT_ORDER
from brewbracket.orm.scoring import JudgeDetailedScore, MatchCupPosition, HeatScore

logger = logging.getLogger(__name__)


def storage_operation(func):
    """Map SQLAlchemy failures to StorageUnavailableError."""
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Storage failure in {func.__name__}: {str(e)}")
            raise StorageUnavailableError(
                f"Storage unavailable during {func.__name__}",
                details={"operation": func.__name__},
            ) from e
    return wrapper


class BracketStorage:
    """Async storage accessors over one AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Transactions
    # =========================================================================

    @storage_operation
    async def commit(self) -> None:
        await self.db.commit()

    @storage_operation
    async def rollback(self) -> None:
        await self.db.rollback()

    @storage_operation
    async def flush(self) -> None:
        await self.db.flush()

    # =========================================================================
    # Tournaments
    # =========================================================================

    @storage_operation
    async def get_tournament(self, tournament_id: int, for_update: bool = False) -> Optional[Tournament]:
        query = select(Tournament).where(Tournament.id == tournament_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def require_tournament(self, tournament_id: int, for_update: bool = False) -> Tournament:
        tournament = await self.get_tournament(tournament_id, for_update=for_update)
        if not tournament:
            raise NotFoundError(
                f"Tournament {tournament_id} not found",
                details={"tournament_id": tournament_id},
            )
        return tournament

    @storage_operation
    async def update_tournament(self, tournament_id: int, **fields) -> None:
        await self.db.execute(
            update(Tournament).where(Tournament.id == tournament_id).values(**fields)
        )
        await self.db.flush()

    async def set_tournament_winner(self, tournament_id: int, winner_id: int) -> None:
        await self.update_tournament(tournament_id, winner_id=winner_id)

    async def update_tournament_current_round(self, tournament_id: int, current_round: int) -> None:
        await self.update_tournament(tournament_id, current_round=current_round)

    # =========================================================================
    # Participants
    # =========================================================================

    @storage_operation
    async def get_tournament_participants(self, tournament_id: int) -> List[TournamentParticipant]:
        result = await self.db.execute(
            select(TournamentParticipant)
            .where(TournamentParticipant.tournament_id == tournament_id)
            .order_by(TournamentParticipant.seed.is_(None), TournamentParticipant.seed, TournamentParticipant.id)
        )
        return list(result.scalars().all())

    @storage_operation
    async def update_participant(self, participant_id: int, **fields) -> None:
        await self.db.execute(
            update(TournamentParticipant)
            .where(TournamentParticipant.id == participant_id)
            .values(**fields)
        )
        await self.db.flush()

    async def update_participant_total_score(self, participant_id: int, total_score: int) -> None:
        await self.update_participant(participant_id, total_score=total_score)

    @storage_operation
    async def update_participant_elimination(self, participant_id: int, eliminated_round: int) -> bool:
        """Set eliminated_round only if not already set. Returns True if written."""
        result = await self.db.execute(
            update(TournamentParticipant)
            .where(
                TournamentParticipant.id == participant_id,
                TournamentParticipant.eliminated_round.is_(None),
            )
            .values(eliminated_round=eliminated_round)
        )
        await self.db.flush()
        return result.rowcount == 1

    async def update_participant_final_rank(self, participant_id: int, final_rank: int) -> None:
        await self.update_participant(participant_id, final_rank=final_rank)

    # =========================================================================
    # Stations
    # =========================================================================

    @storage_operation
    async def get_all_stations(self, tournament_id: int) -> List[Station]:
        result = await self.db.execute(
            select(Station)
            .where(Station.tournament_id == tournament_id)
            .order_by(Station.name)
        )
        return list(result.scalars().all())

    async def get_tournament_stations(self, tournament: Tournament) -> List[Station]:
        """Enabled stations in rotation order."""
        rotation = list(tournament.enabled_stations or [])
        by_name = {s.name: s for s in await self.get_all_stations(tournament.id)}
        return [by_name[name] for name in rotation if name in by_name]

    @storage_operation
    async def get_station(self, station_id: int, for_update: bool = False) -> Optional[Station]:
        query = select(Station).where(Station.id == station_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    @storage_operation
    async def create_station(self, tournament_id: int, name: str, **fields) -> Station:
        station = Station(tournament_id=tournament_id, name=name, **fields)
        self.db.add(station)
        await self.db.flush()
        return station

    @storage_operation
    async def update_station(self, station_id: int, **fields) -> Optional[Station]:
        station = await self.db.get(Station, station_id)
        if not station:
            return None
        for key, value in fields.items():
            setattr(station, key, value)
        await self.db.flush()
        return station

    # =========================================================================
    # Matches
    # =========================================================================

    @storage_operation
    async def create_match(self, **fields) -> Match:
        match = Match(**fields)
        self.db.add(match)
        await self.db.flush()
        return match

    @storage_operation
    async def update_match(self, match_id: int, **fields) -> Optional[Match]:
        match = await self.db.get(Match, match_id)
        if not match:
            return None
        for key, value in fields.items():
            setattr(match, key, value)
        await self.db.flush()
        return match

    @storage_operation
    async def get_match(self, match_id: int, for_update: bool = False) -> Optional[Match]:
        query = select(Match).where(Match.id == match_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def require_match(self, match_id: int, for_update: bool = False) -> Match:
        match = await self.get_match(match_id, for_update=for_update)
        if not match:
            raise NotFoundError(f"Match {match_id} not found", details={"match_id": match_id})
        return match

    @storage_operation
    async def get_tournament_matches(self, tournament_id: int, round: Optional[int] = None) -> List[Match]:
        query = select(Match).where(Match.tournament_id == tournament_id)
        if round is not None:
            query = query.where(Match.round == round)
        result = await self.db.execute(query.order_by(Match.round, Match.heat_number))
        return list(result.scalars().all())

    @storage_operation
    async def get_station_matches(self, station_id: int, include_done: bool = False) -> List[Match]:
        query = select(Match).where(Match.station_id == station_id)
        if not include_done:
            query = query.where(Match.status != MatchStatus.DONE.value)
        result = await self.db.execute(
            query.order_by(Match.start_time.is_(None), Match.start_time, Match.heat_number)
        )
        return list(result.scalars().all())

    @storage_operation
    async def get_max_heat_number(self, tournament_id: int) -> int:
        result = await self.db.execute(
            select(func.max(Match.heat_number)).where(Match.tournament_id == tournament_id)
        )
        return result.scalar() or 0

    @storage_operation
    async def get_max_round(self, tournament_id: int) -> int:
        result = await self.db.execute(
            select(func.max(Match.round)).where(Match.tournament_id == tournament_id)
        )
        return result.scalar() or 0

    @storage_operation
    async def complete_match_if_open(
        self,
        match_id: int,
        winner_id: int,
        end_time: datetime,
        open_statuses: Sequence[str],
    ) -> bool:
        """
        Compare-and-swap: mark DONE with winner only while the heat is in
        one of open_statuses.

        Returns True if this call performed the write.
        """
        result = await self.db.execute(
            update(Match)
            .where(Match.id == match_id, Match.status.in_(open_statuses))
            .values(status=MatchStatus.DONE.value, winner_id=winner_id, end_time=end_time)
        )
        await self.db.flush()
        return result.rowcount == 1

    # =========================================================================
    # Segments
    # =========================================================================

    @storage_operation
    async def create_heat_segment(self, match_id: int, segment: str, planned_minutes: int) -> HeatSegment:
        row = HeatSegment(match_id=match_id, segment=segment, planned_minutes=planned_minutes)
        self.db.add(row)
        await self.db.flush()
        return row

    @storage_operation
    async def update_heat_segment(self, segment_id: int, **fields) -> Optional[HeatSegment]:
        row = await self.db.get(HeatSegment, segment_id)
        if not row:
            return None
        for key, value in fields.items():
            setattr(row, key, value)
        await self.db.flush()
        return row

    @storage_operation
    async def get_match_segments(self, match_id: int, for_update: bool = False) -> List[HeatSegment]:
        query = select(HeatSegment).where(HeatSegment.match_id == match_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        order = {code.value: i for i, code in enumerate(SEGMENT_ORDER)}
        return sorted(result.scalars().all(), key=lambda s: (order.get(s.segment, len(order)), s.id))

    # =========================================================================
    # Judging
    # =========================================================================

    @storage_operation
    async def assign_judge(self, match_id: int, judge_id: int, role: str) -> HeatJudge:
        result = await self.db.execute(
            select(HeatJudge).where(HeatJudge.match_id == match_id, HeatJudge.judge_id == judge_id)
        )
        row = result.scalar_one_or_none()
        if row:
            row.role = role
        else:
            row = HeatJudge(match_id=match_id, judge_id=judge_id, role=role)
            self.db.add(row)
        await self.db.flush()
        return row

    @storage_operation
    async def clear_match_judges(self, match_id: int) -> None:
        await self.db.execute(delete(HeatJudge).where(HeatJudge.match_id == match_id))
        await self.db.flush()

    @storage_operation
    async def get_match_judges(self, match_id: int) -> List[HeatJudge]:
        result = await self.db.execute(
            select(HeatJudge).where(HeatJudge.match_id == match_id).order_by(HeatJudge.id)
        )
        return list(result.scalars().all())

    @storage_operation
    async def get_match_detailed_scores(self, match_id: int) -> List[JudgeDetailedScore]:
        result = await self.db.execute(
            select(JudgeDetailedScore)
            .where(JudgeDetailedScore.match_id == match_id)
            .order_by(JudgeDetailedScore.id)
        )
        return list(result.scalars().all())

    @storage_operation
    async def upsert_detailed_score(self, match_id: int, judge_id: int, **fields) -> JudgeDetailedScore:
        """Insert a judge's sheet, or replace every field of the existing one."""
        result = await self.db.execute(
            select(JudgeDetailedScore).where(
                JudgeDetailedScore.match_id == match_id,
                JudgeDetailedScore.judge_id == judge_id,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = JudgeDetailedScore(match_id=match_id, judge_id=judge_id)
            self.db.add(row)
        for key in (
            "judge_name", "left_cup_code", "right_cup_code", "sensory_beverage",
            "visual_latte_art", "taste", "tactile", "flavour", "overall",
        ):
            setattr(row, key, fields.get(key))
        if "submitted_at" in fields:
            row.submitted_at = fields["submitted_at"]
        await self.db.flush()
        return row

    @storage_operation
    async def get_match_cup_positions(self, match_id: int) -> List[MatchCupPosition]:
        result = await self.db.execute(
            select(MatchCupPosition)
            .where(MatchCupPosition.match_id == match_id)
            .order_by(MatchCupPosition.position)
        )
        return list(result.scalars().all())

    @storage_operation
    async def replace_cup_positions(
        self,
        match_id: int,
        positions: Dict[str, str],
        assigned_by: Optional[int] = None,
    ) -> List[MatchCupPosition]:
        await self.db.execute(delete(MatchCupPosition).where(MatchCupPosition.match_id == match_id))
        rows = [
            MatchCupPosition(match_id=match_id, cup_code=code, position=side, assigned_by=assigned_by)
            for code, side in sorted(positions.items(), key=lambda item: item[1])
        ]
        self.db.add_all(rows)
        await self.db.flush()
        return rows

    # =========================================================================
    # Heat scores
    # =========================================================================

    @storage_operation
    async def delete_heat_scores_for_match(self, match_id: int) -> None:
        await self.db.execute(delete(HeatScore).where(HeatScore.match_id == match_id))
        await self.db.flush()

    @storage_operation
    async def insert_heat_scores(self, match_id: int, scores: Dict[int, int]) -> List[HeatScore]:
        rows = [
            HeatScore(match_id=match_id, competitor_id=competitor_id, score=score)
            for competitor_id, score in scores.items()
        ]
        self.db.add_all(rows)
        await self.db.flush()
        return rows

    @storage_operation
    async def get_match_heat_scores(self, match_id: int) -> List[HeatScore]:
        result = await self.db.execute(
            select(HeatScore).where(HeatScore.match_id == match_id).order_by(HeatScore.competitor_id)
        )
        return list(result.scalars().all())

    @storage_operation
    async def get_round_heat_scores(self, tournament_id: int, round: int) -> List[HeatScore]:
        result = await self.db.execute(
            select(HeatScore)
            .join(Match, Match.id == HeatScore.match_id)
            .where(Match.tournament_id == tournament_id, Match.round == round)
        )
        return list(result.scalars().all())

    # =========================================================================
    # Round times
    # =========================================================================

    @storage_operation
    async def get_round_times(self, tournament_id: int, round: int) -> Optional[TournamentRoundTime]:
        result = await self.db.execute(
            select(TournamentRoundTime).where(
                TournamentRoundTime.tournament_id == tournament_id,
                TournamentRoundTime.round == round,
            )
        )
        return result.scalar_one_or_none()

    @storage_operation
    async def set_round_times(
        self,
        tournament_id: int,
        round: int,
        dial_in_minutes: int,
        cappuccino_minutes: int,
        espresso_minutes: int,
    ) -> TournamentRoundTime:
        result = await self.db.execute(
            select(TournamentRoundTime).where(
                TournamentRoundTime.tournament_id == tournament_id,
                TournamentRoundTime.round == round,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = TournamentRoundTime(tournament_id=tournament_id, round=round)
            self.db.add(row)
        row.dial_in_minutes = dial_in_minutes
        row.cappuccino_minutes = cappuccino_minutes
        row.espresso_minutes = espresso_minutes
        row.total_minutes = dial_in_minutes + cappuccino_minutes + espresso_minutes
        await self.db.flush()
        return row
