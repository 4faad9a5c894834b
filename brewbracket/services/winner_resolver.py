"""
Winner Resolver

Picks a heat winner from the two aggregated totals.

Tie-break cascade on equal totals, in this fixed order:
1. Derived-overall wins
2. Latte-art wins (Cappuccino rows)
3. Taste + tactile + flavour wins
4. Still tied: no winner, manual resolution required

Rules:
- Every winner, automatic or manual, goes through this module
- Writing the winner is a compare-and-swap on the heat still being open
  (PENDING, READY or RUNNING), so a heat is never completed twice
- Manual resolution required is a normal result, not an exception
"""
import logging
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from brewbracket.exceptions import (
    InvalidInputError,
    MissingCompetitorError,
    MissingCupPositionsError,
    MissingJudgeScoresError,
)
from brewbracket.orm.match import Match, MatchStatus
from brewbracket.realtime.events import BracketEvent, EventNotifier, get_notifier
from brewbracket.schemas.scoring import CompetitorScore, WinnerCalculationResult
from brewbracket.services.score_aggregator import (
    CategoryTally,
    competitor_cup_codes,
    position_map,
    store_heat_scores,
    tally_categories,
)
from brewbracket.state_machines.heat_state import HeatStateMachine
from brewbracket.storage import BracketStorage
from brewbracket.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

MANUAL_RESOLUTION_REASON = "Complete tie after all tie-breakers - manual resolution required"

# (label, tally attribute) in cascade order
TIE_BREAKERS = [
    ("overall wins", "overall_wins"),
    ("latte art wins", "latte_art_wins"),
    ("sensory category wins", "sensory_wins"),
]


def resolve_winner(
    competitor1_id: int,
    competitor2_id: int,
    tally1: CategoryTally,
    tally2: CategoryTally,
) -> Tuple[Optional[int], bool, str]:
    """
    Apply totals then the tie-break cascade.

    Returns:
        (winner_id or None, tie_broken, reason)
    """
    if tally1.total > tally2.total:
        return competitor1_id, False, f"Higher total score: {tally1.total} vs {tally2.total}"
    if tally2.total > tally1.total:
        return competitor2_id, False, f"Higher total score: {tally2.total} vs {tally1.total}"

    for label, attribute in TIE_BREAKERS:
        wins1 = getattr(tally1, attribute)
        wins2 = getattr(tally2, attribute)
        if wins1 > wins2:
            return competitor1_id, True, f"Tie broken by {label}: {wins1} vs {wins2}"
        if wins2 > wins1:
            return competitor2_id, True, f"Tie broken by {label}: {wins2} vs {wins1}"

    return None, True, MANUAL_RESOLUTION_REASON


async def _check_preconditions(storage: BracketStorage, match: Match):
    """Load cup codes, judge rows and positions, or raise a precondition error."""
    if match.competitor1_id is None or match.competitor2_id is None:
        raise MissingCompetitorError(
            "Match must have both competitors to calculate winner",
            details={"match_id": match.id},
        )

    cup_codes = await competitor_cup_codes(storage, match)
    code1 = cup_codes.get(match.competitor1_id)
    code2 = cup_codes.get(match.competitor2_id)
    if not code1 or not code2:
        raise MissingCupPositionsError(
            "Both competitors must have cup codes assigned",
            details={"match_id": match.id},
        )

    positions = await storage.get_match_cup_positions(match.id)
    mapping = position_map(positions)
    if len(positions) != 2 or code1 not in mapping or code2 not in mapping:
        raise MissingCupPositionsError(
            "Cup positions must be assigned before calculating winner",
            details={"match_id": match.id, "assigned": [p.cup_code for p in positions]},
        )

    detailed = await storage.get_match_detailed_scores(match.id)
    if not detailed:
        raise MissingJudgeScoresError(
            "No detailed scores found for this match",
            details={"match_id": match.id},
        )

    return code1, code2, detailed, positions


async def calculate_match_winner(match_id: int, db: AsyncSession) -> WinnerCalculationResult:
    """
    Compute the winner of a heat without writing anything.

    Raises:
        MissingCompetitorError, MissingCupPositionsError, MissingJudgeScoresError
    """
    storage = BracketStorage(db)
    match = await storage.require_match(match_id)
    return await _calculate(storage, match)


async def _calculate(storage: BracketStorage, match: Match) -> WinnerCalculationResult:
    code1, code2, detailed, positions = await _check_preconditions(storage, match)

    tally1 = tally_categories(code1, detailed, positions)
    tally2 = tally_categories(code2, detailed, positions)
    winner_id, tie_broken, reason = resolve_winner(
        match.competitor1_id, match.competitor2_id, tally1, tally2
    )

    return WinnerCalculationResult(
        match_id=match.id,
        winner_id=winner_id,
        competitor1=CompetitorScore(competitor_id=match.competitor1_id, cup_code=code1, score=tally1.total),
        competitor2=CompetitorScore(competitor_id=match.competitor2_id, cup_code=code2, score=tally2.total),
        tie_broken=tie_broken and winner_id is not None,
        reason=reason,
        manual_resolution_required=winner_id is None,
    )


def _completed_result(match: Match) -> WinnerCalculationResult:
    return WinnerCalculationResult(
        match_id=match.id,
        winner_id=match.winner_id,
        competitor1=CompetitorScore(competitor_id=match.competitor1_id),
        competitor2=CompetitorScore(competitor_id=match.competitor2_id),
        reason="Heat already completed",
        already_completed=True,
    )


async def _apply_winner(
    storage: BracketStorage,
    match: Match,
    winner_id: int,
    notifier: EventNotifier,
    reason: str,
) -> bool:
    applied = await storage.complete_match_if_open(
        match.id, winner_id, utcnow(), HeatStateMachine.sources_of(MatchStatus.DONE)
    )
    await storage.commit()
    if not applied:
        logger.warning(f"Match {match.id} was already completed; winner left untouched")
        return False

    logger.info(f"Heat {match.heat_number} (match {match.id}) completed, winner {winner_id}: {reason}")
    payload = match.to_dict()
    payload["reason"] = reason
    await notifier.emit(BracketEvent.HEAT_COMPLETED, match.tournament_id, payload)
    return True


async def resolve_heat(
    match_id: int,
    db: AsyncSession,
    notifier: Optional[EventNotifier] = None,
) -> WinnerCalculationResult:
    """
    Compute the winner, refresh cached heat scores and close the heat.

    A heat needing manual resolution keeps its status. Losing the
    completion race returns applied=False with the stored winner intact.
    """
    storage = BracketStorage(db)
    notifier = notifier or get_notifier()
    match = await storage.require_match(match_id)
    if match.status == MatchStatus.DONE:
        return _completed_result(match)

    result = await _calculate(storage, match)
    await store_heat_scores(storage, match)

    if result.winner_id is None:
        await storage.commit()
        logger.warning(f"Match {match_id}: {result.reason}")
        return result

    result.applied = await _apply_winner(storage, match, result.winner_id, notifier, result.reason)
    if not result.applied:
        stored = await storage.require_match(match_id, for_update=True)
        result.winner_id = stored.winner_id
        result.already_completed = True
    return result


async def manual_resolve_heat(
    match_id: int,
    winner_id: int,
    db: AsyncSession,
    notifier: Optional[EventNotifier] = None,
) -> WinnerCalculationResult:
    """Admin picks the winner of an unresolvable tie (or any open heat)."""
    storage = BracketStorage(db)
    notifier = notifier or get_notifier()
    match = await storage.require_match(match_id)
    if match.status == MatchStatus.DONE:
        return _completed_result(match)

    if match.competitor2_id is None:
        raise MissingCompetitorError(
            "Match must have both competitors to pick a winner",
            details={"match_id": match_id},
        )
    if winner_id not in (match.competitor1_id, match.competitor2_id):
        raise InvalidInputError(
            f"Winner {winner_id} is not a competitor in match {match_id}",
            details={"match_id": match_id, "winner_id": winner_id},
        )

    await store_heat_scores(storage, match)
    reason = "Winner selected manually"
    applied = await _apply_winner(storage, match, winner_id, notifier, reason)
    stored = match if applied else await storage.require_match(match_id, for_update=True)
    return WinnerCalculationResult(
        match_id=match_id,
        winner_id=stored.winner_id,
        competitor1=CompetitorScore(competitor_id=match.competitor1_id),
        competitor2=CompetitorScore(competitor_id=match.competitor2_id),
        reason=reason,
        applied=applied,
        already_completed=not applied,
    )
