"""
Judging Service

Judge panels, blind score intake and the admin cup reveal.

Judge role model is an explicit per-tournament choice:
- SPLIT: each panel is 2 ESPRESSO judges + 1 CAPPUCCINO judge, and a
  judge may only submit a sheet for their own beverage
- SENSORY: every judge is an interchangeable SENSORY judge
"""
import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from brewbracket.config.settings import settings
from brewbracket.exceptions import InvalidInputError
from brewbracket.orm.match import HeatJudge, JudgeRole, Match, MatchStatus
from brewbracket.orm.scoring import BeverageType, CupSide, JudgeDetailedScore, MatchCupPosition
from brewbracket.orm.tournament import JudgeRoleModel
from brewbracket.schemas.scoring import DetailedScoreSubmission
from brewbracket.services.score_aggregator import competitor_cup_codes
from brewbracket.storage import BracketStorage
from brewbracket.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

# Beverage a SPLIT-model judge is allowed to score
ROLE_BEVERAGE = {
    JudgeRole.ESPRESSO: BeverageType.ESPRESSO,
    JudgeRole.CAPPUCCINO: BeverageType.CAPPUCCINO,
}


def panel_roles(role_model: JudgeRoleModel, panel_size: int) -> List[JudgeRole]:
    """Role for each panel seat, in seat order."""
    if JudgeRoleModel(role_model) == JudgeRoleModel.SENSORY:
        return [JudgeRole.SENSORY] * panel_size
    if panel_size != 3:
        raise InvalidInputError(
            f"SPLIT panels need exactly 3 judges, got {panel_size}",
            details={"panel_size": panel_size},
        )
    return [JudgeRole.ESPRESSO, JudgeRole.ESPRESSO, JudgeRole.CAPPUCCINO]


def rotate_judges_for_heat(roster: Sequence[int], heat_number: int, panel_size: int) -> List[int]:
    """
    Deterministic panel for a heat: panel_size judges starting at
    (heat_number - 1) mod len(roster), wrapping around.
    """
    if len(set(roster)) < panel_size:
        raise InvalidInputError(
            f"Need at least {panel_size} distinct judges, got {len(set(roster))}",
            details={"roster_size": len(set(roster))},
        )
    start = (heat_number - 1) % len(roster)
    panel: List[int] = []
    index = start
    while len(panel) < panel_size:
        judge_id = roster[index % len(roster)]
        if judge_id not in panel:
            panel.append(judge_id)
        index += 1
    return panel


async def _assign_panel(
    storage: BracketStorage,
    match: Match,
    judge_ids: Sequence[int],
    role_model: JudgeRoleModel,
) -> List[HeatJudge]:
    if len(judge_ids) != settings.JUDGES_PER_HEAT or len(set(judge_ids)) != len(judge_ids):
        raise InvalidInputError(
            f"A heat needs exactly {settings.JUDGES_PER_HEAT} distinct judges",
            details={"match_id": match.id, "judge_ids": list(judge_ids)},
        )
    if match.is_bye:
        raise InvalidInputError("Bye heats are not judged", details={"match_id": match.id})

    roles = panel_roles(role_model, len(judge_ids))
    await storage.clear_match_judges(match.id)
    return [
        await storage.assign_judge(match.id, judge_id, role.value)
        for judge_id, role in zip(judge_ids, roles)
    ]


async def assign_judges(
    match_id: int,
    judge_ids: Sequence[int],
    db: AsyncSession,
    role_model: Optional[JudgeRoleModel] = None,
) -> List[HeatJudge]:
    """Replace the judge panel of one heat."""
    storage = BracketStorage(db)
    match = await storage.require_match(match_id, for_update=True)
    if role_model is None:
        tournament = await storage.require_tournament(match.tournament_id)
        role_model = JudgeRoleModel(tournament.judge_role_model)
    panel = await _assign_panel(storage, match, judge_ids, role_model)
    await storage.commit()
    logger.info(f"Assigned judges {list(judge_ids)} to match {match_id} ({JudgeRoleModel(role_model).value})")
    return panel


async def auto_assign_judges(
    storage: BracketStorage,
    matches: Sequence[Match],
    roster: Sequence[int],
    role_model: JudgeRoleModel,
) -> List[str]:
    """
    Rotate a roster across heats without committing.

    Failures are returned as messages and never block the caller.
    """
    errors: List[str] = []
    for match in matches:
        if match.is_bye:
            continue
        try:
            panel = rotate_judges_for_heat(roster, match.heat_number, settings.JUDGES_PER_HEAT)
            await _assign_panel(storage, match, panel, role_model)
        except InvalidInputError as e:
            errors.append(f"Heat {match.heat_number}: {e.message}")
            logger.warning(f"Judge assignment skipped for heat {match.heat_number}: {e.message}")
    return errors


async def submit_detailed_score(
    match_id: int,
    submission: DetailedScoreSubmission,
    db: AsyncSession,
) -> JudgeDetailedScore:
    """
    Store one judge's blind sheet, replacing any earlier one by that judge.

    Raises:
        InvalidInputError: Heat closed or a bye, judge not on the panel,
            beverage not matching the judge's role, or latte art on an
            Espresso sheet
    """
    storage = BracketStorage(db)
    match = await storage.require_match(match_id)
    if match.is_bye:
        raise InvalidInputError("Bye heats are not judged", details={"match_id": match_id})
    if match.status == MatchStatus.DONE:
        raise InvalidInputError(
            f"Heat {match.heat_number} is already completed",
            details={"match_id": match_id},
        )

    if submission.sensory_beverage == BeverageType.ESPRESSO.value and submission.visual_latte_art:
        raise InvalidInputError(
            "Visual latte art is only scored on Cappuccino sheets",
            details={"match_id": match_id, "judge_id": submission.judge_id},
        )

    panel = {j.judge_id: JudgeRole(j.role) for j in await storage.get_match_judges(match_id)}
    if panel:
        role = panel.get(submission.judge_id)
        if role is None:
            raise InvalidInputError(
                f"Judge {submission.judge_id} is not on the panel for heat {match.heat_number}",
                details={"match_id": match_id, "judge_id": submission.judge_id},
            )
        expected = ROLE_BEVERAGE.get(role)
        if expected is not None and submission.sensory_beverage != expected.value:
            raise InvalidInputError(
                f"{role.value} judges score {expected.value}, not {submission.sensory_beverage}",
                details={"match_id": match_id, "judge_id": submission.judge_id},
            )

    row = await storage.upsert_detailed_score(
        match_id,
        submission.judge_id,
        submitted_at=utcnow(),
        **submission.model_dump(exclude={"judge_id"}),
    )
    await storage.commit()
    logger.info(f"Judge {submission.judge_id} submitted {submission.sensory_beverage} sheet for match {match_id}")
    return row


async def assign_cup_positions(
    match_id: int,
    positions: Dict[str, str],
    db: AsyncSession,
    assigned_by: Optional[int] = None,
) -> List[MatchCupPosition]:
    """
    Admin reveal: which competitor cup sat left and which sat right.

    Exactly two cup codes, one per side, both belonging to this heat.
    """
    storage = BracketStorage(db)
    match = await storage.require_match(match_id)

    sides = sorted(positions.values())
    if len(positions) != 2 or sides != [CupSide.LEFT.value, CupSide.RIGHT.value]:
        raise InvalidInputError(
            "Cup positions need exactly one left and one right cup",
            details={"match_id": match_id, "positions": dict(positions)},
        )

    heat_codes = {code for code in (await competitor_cup_codes(storage, match)).values() if code}
    unknown = [code for code in positions if code not in heat_codes]
    if unknown:
        raise InvalidInputError(
            f"Cup codes {unknown} do not belong to heat {match.heat_number}",
            details={"match_id": match_id, "unknown_cup_codes": unknown},
        )

    rows = await storage.replace_cup_positions(match_id, positions, assigned_by=assigned_by)
    await storage.commit()
    logger.info(f"Cup positions for match {match_id}: {positions}")
    return rows
