"""
Bracket Service

Round-1 generation: seeds → pairings → heats on staggered stations.

Steps, all inside one transaction:
1. Lock the tournament row, refuse if heats already exist
2. Validate seeds 1..N, derive total_rounds when unset
3. Ensure station rows, require REQUIRED_STATIONS AVAILABLE
4. Stagger stations, load (or persist default) round-1 times
5. Create heats in pairing order: byes are DONE immediately,
   real heats get a station slot and their IDLE segment triple
6. Fill cup codes, rotate judges (best-effort)
7. Mark the tournament ACTIVE, commit, emit bracket:generated

Any failure rolls the whole generation back.
"""
import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from brewbracket.config.settings import settings
from brewbracket.exceptions import InvalidInputError, NoAvailableStationError
from brewbracket.orm.match import Match, MatchStatus
from brewbracket.orm.tournament import JudgeRoleModel, Tournament, TournamentRoundTime, TournamentStatus
from brewbracket.realtime.events import BracketEvent, EventNotifier, get_notifier
from brewbracket.schemas.bracket import BracketGenerationResult, GeneratedHeat
from brewbracket.services.judging_service import auto_assign_judges
from brewbracket.services.seeding_service import (
    assign_cup_codes,
    derive_total_rounds,
    generate_round1_pairings,
    validate_seed_sequence,
)
from brewbracket.services.station_scheduler import StationScheduler
from brewbracket.state_machines.heat_state import HeatStateMachine
from brewbracket.storage import BracketStorage
from brewbracket.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# Heat builders (shared with next-round population)
# =============================================================================

async def create_bye_heat(
    storage: BracketStorage,
    tournament_id: int,
    round: int,
    heat_number: int,
    competitor_id: int,
    now: Optional[datetime] = None,
) -> Match:
    """A bye: DONE on creation, sole competitor wins, no station time."""
    now = now or utcnow()
    match = await storage.create_match(
        tournament_id=tournament_id,
        round=round,
        heat_number=heat_number,
        station_id=None,
        competitor1_id=competitor_id,
        competitor2_id=None,
        status=MatchStatus.DONE.value,
        winner_id=competitor_id,
        start_time=now,
        end_time=now,
    )
    logger.info(f"Round {round} heat {heat_number}: bye for competitor {competitor_id}")
    return match


async def create_scheduled_heat(
    storage: BracketStorage,
    tournament: Tournament,
    round: int,
    heat_number: int,
    competitor1_id: int,
    competitor2_id: int,
    round_time: TournamentRoundTime,
    station_id: Optional[int] = None,
) -> Match:
    """
    A two-competitor heat with a reserved station slot and IDLE segments.

    Without station_id the earliest AVAILABLE station is chosen.
    """
    if station_id is None:
        slot = await StationScheduler.reserve_next_slot(storage.db, tournament, round_time.total_minutes)
    else:
        slot = await StationScheduler.reserve_on_station(storage.db, station_id, round_time.total_minutes)

    match = await storage.create_match(
        tournament_id=tournament.id,
        round=round,
        heat_number=heat_number,
        station_id=slot.station_id,
        competitor1_id=competitor1_id,
        competitor2_id=competitor2_id,
        status=MatchStatus.PENDING.value,
        start_time=slot.start_time,
    )
    await HeatStateMachine(storage.db).create_segments(match.id, round_time)
    logger.info(
        f"Round {round} heat {heat_number}: {competitor1_id} vs {competitor2_id} "
        f"at station {slot.station_name}, {slot.start_time.isoformat()}"
    )
    return match


def generated_heat(match: Match, station_names: dict) -> GeneratedHeat:
    return GeneratedHeat(
        match_id=match.id,
        heat_number=match.heat_number,
        round=match.round,
        competitor1_id=match.competitor1_id,
        competitor2_id=match.competitor2_id,
        station_id=match.station_id,
        station_name=station_names.get(match.station_id),
        status=match.status,
        start_time=match.start_time,
        is_bye=match.is_bye,
    )


# =============================================================================
# Generation
# =============================================================================

async def generate_bracket(
    tournament_id: int,
    db: AsyncSession,
    notifier: Optional[EventNotifier] = None,
    judge_roster: Optional[Sequence[int]] = None,
    now: Optional[datetime] = None,
) -> BracketGenerationResult:
    """
    Generate Round 1 for a seeded tournament.

    Raises:
        NotFoundError: Unknown tournament
        InvalidInputError: Bracket already generated, fewer than 2
            participants, seeds not exactly 1..N, or a preset
            total_rounds too small for the field
        NoAvailableStationError: Fewer than REQUIRED_STATIONS AVAILABLE stations
    """
    storage = BracketStorage(db)
    notifier = notifier or get_notifier()
    now = now or utcnow()

    try:
        tournament = await storage.require_tournament(tournament_id, for_update=True)
        if await storage.get_max_round(tournament_id) > 0:
            raise InvalidInputError(
                f"Tournament {tournament_id} already has a bracket",
                details={"tournament_id": tournament_id},
            )

        participants = await storage.get_tournament_participants(tournament_id)
        if len(participants) < 2:
            raise InvalidInputError(
                f"At least 2 participants are required to generate a bracket, got {len(participants)}",
                details={"tournament_id": tournament_id, "participant_count": len(participants)},
            )
        validate_seed_sequence([p.seed for p in participants])
        by_seed = {p.seed: p for p in participants}

        needed_rounds = derive_total_rounds(len(participants))
        if tournament.total_rounds is not None and tournament.total_rounds < needed_rounds:
            raise InvalidInputError(
                f"{len(participants)} participants need at least {needed_rounds} rounds, "
                f"tournament is set to {tournament.total_rounds}",
                details={"tournament_id": tournament_id, "total_rounds": tournament.total_rounds},
            )
        total_rounds = tournament.total_rounds or needed_rounds
        pairings = generate_round1_pairings(len(participants))

        await StationScheduler.ensure_stations(db, tournament)
        available = await StationScheduler.available_stations(db, tournament)
        if len(available) < settings.REQUIRED_STATIONS:
            raise NoAvailableStationError(
                f"Need at least {settings.REQUIRED_STATIONS} available stations, got {len(available)}",
                details={"tournament_id": tournament_id, "available_station_ids": [s.id for s in available]},
            )
        await StationScheduler.stagger_stations(db, tournament, now=now)
        round_time = await StationScheduler.get_or_create_round_times(db, tournament_id, 1)

        matches: List[Match] = []
        for heat_number, pair in enumerate(pairings, start=1):
            competitor1 = by_seed[pair.seed1].user_id
            if pair.is_bye:
                match = await create_bye_heat(storage, tournament_id, 1, heat_number, competitor1, now)
            else:
                competitor2 = by_seed[pair.seed2].user_id
                match = await create_scheduled_heat(
                    storage, tournament, 1, heat_number, competitor1, competitor2, round_time
                )
            matches.append(match)

        await assign_cup_codes(tournament_id, db)

        judge_errors: List[str] = []
        if judge_roster and settings.FEATURE_AUTO_ASSIGN_JUDGES:
            judge_errors = await auto_assign_judges(
                storage, matches, list(judge_roster), JudgeRoleModel(tournament.judge_role_model)
            )

        await storage.update_tournament(
            tournament_id,
            total_rounds=total_rounds,
            current_round=1,
            status=TournamentStatus.ACTIVE.value,
        )
        await storage.commit()
    except Exception:
        logger.error(f"Bracket generation failed for tournament {tournament_id}, rolling back")
        await storage.rollback()
        raise

    station_names = {s.id: s.name for s in available}
    result = BracketGenerationResult(
        tournament_id=tournament_id,
        total_rounds=total_rounds,
        pairings=pairings,
        heats=[generated_heat(m, station_names) for m in matches],
        judge_assignment_errors=judge_errors,
    )
    logger.info(
        f"Generated bracket for tournament {tournament_id}: {len(matches)} heats, "
        f"{result.bye_count} bye(s), {total_rounds} rounds"
    )
    await notifier.emit(BracketEvent.BRACKET_GENERATED, tournament_id, result.event_payload())
    return result
