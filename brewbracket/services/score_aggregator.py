"""
Score Aggregator

Blind left/right verdicts + the admin cup-position mapping → points.

Points per judge row:
- Visual/latte art: 3 (Cappuccino rows only)
- Taste, tactile, flavour: 1 each
- Overall: 5, awarded to the side holding the majority of
  taste/tactile/flavour for that judge (the judge's own overall
  field is never read; a split with no majority awards nobody)

Rules:
- The cup side of a competitor is resolved once from the heat's
  CupPosition rows and applied to every judge row
- Missing positions or scores mean "not yet scored": 0, never an error
- Heat scores are always recomputed from scratch (delete-then-insert)
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from brewbracket.orm.match import Match
from brewbracket.orm.scoring import BeverageType, CupSide
from brewbracket.schemas.scoring import HeatScoreRecalculation
from brewbracket.storage import BracketStorage

logger = logging.getLogger(__name__)


CATEGORY_POINTS = {
    "visual_latte_art": 3,
    "taste": 1,
    "tactile": 1,
    "flavour": 1,
    "overall": 5,
}

SENSORY_CATEGORIES = ("taste", "tactile", "flavour")


# =============================================================================
# Pure scoring
# =============================================================================

def position_map(cup_positions: Iterable) -> Dict[str, str]:
    """
    cup_code -> side, from CupPosition rows or (cup_code, side) pairs.

    Empty unless both a left and a right cup are assigned.
    """
    mapping: Dict[str, str] = {}
    for pos in cup_positions:
        if isinstance(pos, tuple):
            code, side = pos
        else:
            code, side = pos.cup_code, pos.position
        if code:
            mapping[code] = side
    sides = set(mapping.values())
    if CupSide.LEFT.value not in sides or CupSide.RIGHT.value not in sides:
        return {}
    return mapping


def resolve_cup_side(cup_code: str, cup_positions: Iterable) -> Optional[str]:
    """'left', 'right', or None if the cup is not mapped for this heat."""
    return position_map(cup_positions).get(cup_code)


def derive_overall(score) -> Optional[str]:
    """Side with strictly more of taste/tactile/flavour, else None."""
    left = sum(1 for c in SENSORY_CATEGORIES if getattr(score, c) == CupSide.LEFT.value)
    right = sum(1 for c in SENSORY_CATEGORIES if getattr(score, c) == CupSide.RIGHT.value)
    if left > right:
        return CupSide.LEFT.value
    if right > left:
        return CupSide.RIGHT.value
    return None


def _is_cappuccino(score) -> bool:
    return score.sensory_beverage == BeverageType.CAPPUCCINO.value


@dataclass
class CategoryTally:
    """Per-competitor category wins across all judge rows of a heat."""
    total: int = 0
    overall_wins: int = 0
    latte_art_wins: int = 0
    sensory_wins: int = 0
    judges_counted: int = 0


def tally_categories(cup_code: str, detailed_scores: Iterable, cup_positions: Iterable) -> CategoryTally:
    """Points and category-win counts for one competitor's cup."""
    tally = CategoryTally()
    side = resolve_cup_side(cup_code, cup_positions) if cup_code else None
    if side is None:
        return tally

    for score in detailed_scores:
        tally.judges_counted += 1

        if _is_cappuccino(score) and score.visual_latte_art == side:
            tally.total += CATEGORY_POINTS["visual_latte_art"]
            tally.latte_art_wins += 1

        for category in SENSORY_CATEGORIES:
            if getattr(score, category) == side:
                tally.total += CATEGORY_POINTS[category]
                tally.sensory_wins += 1

        if derive_overall(score) == side:
            tally.total += CATEGORY_POINTS["overall"]
            tally.overall_wins += 1

    return tally


def calculate_competitor_score(cup_code: str, detailed_scores: Iterable, cup_positions: Iterable) -> int:
    """Total points for one cup. Pure and idempotent."""
    return tally_categories(cup_code, list(detailed_scores), list(cup_positions)).total


def calculate_match_scores(
    cup_code1: str,
    cup_code2: str,
    detailed_scores: Iterable,
    cup_positions: Iterable,
) -> Tuple[int, int]:
    scores = list(detailed_scores)
    positions = list(cup_positions)
    return (
        calculate_competitor_score(cup_code1, scores, positions),
        calculate_competitor_score(cup_code2, scores, positions),
    )


# =============================================================================
# Persistence
# =============================================================================

async def competitor_cup_codes(storage: BracketStorage, match: Match) -> Dict[int, Optional[str]]:
    """user_id -> cup code for the heat's competitors."""
    participants = await storage.get_tournament_participants(match.tournament_id)
    by_user = {p.user_id: p for p in participants}
    return {
        user_id: (by_user[user_id].cup_code if user_id in by_user else None)
        for user_id in match.competitor_ids
    }


async def store_heat_scores(storage: BracketStorage, match: Match) -> Dict[int, int]:
    """
    Recompute and replace the heat's HeatScore rows, without committing.

    Byes and heats with missing inputs end up with no cached rows.
    """
    await storage.delete_heat_scores_for_match(match.id)

    if match.is_bye or match.competitor2_id is None:
        return {}

    cup_codes = await competitor_cup_codes(storage, match)
    if not all(cup_codes.values()):
        logger.debug(f"Match {match.id}: cup codes not assigned, scores cleared")
        return {}

    detailed = await storage.get_match_detailed_scores(match.id)
    positions = await storage.get_match_cup_positions(match.id)
    if not detailed or not position_map(positions):
        return {competitor_id: 0 for competitor_id in cup_codes}

    scores = {
        competitor_id: calculate_competitor_score(code, detailed, positions)
        for competitor_id, code in cup_codes.items()
    }
    await storage.insert_heat_scores(match.id, scores)
    return scores


async def calculate_and_store_heat_scores(match_id: int, db: AsyncSession) -> Dict[int, int]:
    """
    Recompute one heat's scores and commit.

    Returns competitor user_id -> total.
    """
    storage = BracketStorage(db)
    match = await storage.require_match(match_id)
    scores = await store_heat_scores(storage, match)
    await storage.commit()
    logger.info(f"Heat scores for match {match_id}: {scores}")
    return scores


async def calculate_and_store_all_heat_scores(tournament_id: int, db: AsyncSession) -> HeatScoreRecalculation:
    """Recompute every heat of a tournament. Per-heat failures are collected, not raised."""
    storage = BracketStorage(db)
    await storage.require_tournament(tournament_id)
    summary = HeatScoreRecalculation(tournament_id=tournament_id)

    for match in await storage.get_tournament_matches(tournament_id):
        match_id = match.id
        try:
            async with db.begin_nested():
                await store_heat_scores(storage, match)
            summary.heats_processed += 1
        except Exception as e:
            summary.heats_failed += 1
            summary.errors.append(f"Match {match_id}: {str(e)}")
            logger.warning(f"Heat score recompute failed for match {match_id}: {str(e)}")

    await storage.commit()
    return summary
