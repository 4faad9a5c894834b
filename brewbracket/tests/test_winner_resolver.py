"""
Winner resolution tests.

Covers the tie-break cascade, precondition errors, the completion
compare-and-swap and manual resolution.
"""
import pytest

from brewbracket.exceptions import (
    InvalidInputError,
    MissingCompetitorError,
    MissingCupPositionsError,
    MissingJudgeScoresError,
)
from brewbracket.orm import MatchStatus
from brewbracket.realtime.events import BracketEvent
from brewbracket.services.judging_service import assign_cup_positions
from brewbracket.services.score_aggregator import CategoryTally
from brewbracket.services.winner_resolver import (
    MANUAL_RESOLUTION_REASON,
    calculate_match_winner,
    manual_resolve_heat,
    resolve_heat,
    resolve_winner,
)
from brewbracket.storage import BracketStorage
from brewbracket.utils.time_utils import utcnow

OPEN = ["PENDING", "READY", "RUNNING"]


# A sits left, B sits right. Two Cappuccino sheets favour A, one Espresso
# sheet favours B: 15 points each, overall wins 2 vs 1.
SCENARIO_C = [
    (1, dict(sensory_beverage="Cappuccino", visual_latte_art="right", taste="left", tactile="left", flavour="right")),
    (2, dict(sensory_beverage="Cappuccino", visual_latte_art="right", taste="left", tactile="left", flavour="right")),
    (3, dict(sensory_beverage="Espresso", taste="left", tactile="right", flavour="right")),
]


async def _scored_heat(db, make_tournament, make_heat, sheets, positions=None, status=MatchStatus.RUNNING):
    tournament = await make_tournament(names=["Ava", "Ben"], cup_codes=["AV1", "BE2"])
    match = await make_heat(tournament.id, 1, 101, 102, status=status)
    storage = BracketStorage(db)
    if positions is not False:
        await assign_cup_positions(match.id, positions or {"AV1": "left", "BE2": "right"}, db)
    for judge_id, fields in sheets:
        await storage.upsert_detailed_score(match.id, judge_id, **fields)
    await storage.commit()
    return tournament, match


# =============================================================================
# Pure cascade
# =============================================================================

class TestResolveWinner:

    def test_higher_total_wins(self):
        winner, tie_broken, reason = resolve_winner(1, 2, CategoryTally(total=20), CategoryTally(total=9))
        assert winner == 1
        assert tie_broken is False
        assert reason == "Higher total score: 20 vs 9"

    def test_overall_wins_break_tie(self):
        winner, tie_broken, reason = resolve_winner(
            1, 2,
            CategoryTally(total=15, overall_wins=1),
            CategoryTally(total=15, overall_wins=2),
        )
        assert winner == 2
        assert tie_broken is True
        assert reason == "Tie broken by overall wins: 2 vs 1"

    def test_latte_art_is_second_breaker(self):
        winner, _, reason = resolve_winner(
            1, 2,
            CategoryTally(total=12, overall_wins=1, latte_art_wins=1),
            CategoryTally(total=12, overall_wins=1, latte_art_wins=0),
        )
        assert winner == 1
        assert reason == "Tie broken by latte art wins: 1 vs 0"

    def test_sensory_is_third_breaker(self):
        winner, _, reason = resolve_winner(
            1, 2,
            CategoryTally(total=8, sensory_wins=2),
            CategoryTally(total=8, sensory_wins=3),
        )
        assert winner == 2
        assert reason == "Tie broken by sensory category wins: 3 vs 2"

    def test_complete_tie_needs_manual_resolution(self):
        winner, _, reason = resolve_winner(1, 2, CategoryTally(total=4), CategoryTally(total=4))
        assert winner is None
        assert reason == MANUAL_RESOLUTION_REASON


# =============================================================================
# Preconditions
# =============================================================================

class TestPreconditions:

    @pytest.mark.asyncio
    async def test_bye_has_no_second_competitor(self, db, make_tournament, make_heat):
        tournament = await make_tournament(names=["Ava", "Ben"], cup_codes=["AV1", "BE2"])
        bye = await make_heat(tournament.id, 1, 101, None)

        with pytest.raises(MissingCompetitorError):
            await calculate_match_winner(bye.id, db)

    @pytest.mark.asyncio
    async def test_missing_cup_positions(self, db, make_tournament, make_heat):
        _, match = await _scored_heat(db, make_tournament, make_heat, SCENARIO_C, positions=False)

        with pytest.raises(MissingCupPositionsError) as exc:
            await calculate_match_winner(match.id, db)
        assert exc.value.message == "Cup positions must be assigned before calculating winner"

    @pytest.mark.asyncio
    async def test_missing_judge_scores(self, db, make_tournament, make_heat):
        _, match = await _scored_heat(db, make_tournament, make_heat, [])

        with pytest.raises(MissingJudgeScoresError):
            await calculate_match_winner(match.id, db)


# =============================================================================
# Resolution
# =============================================================================

class TestResolveHeat:

    @pytest.mark.asyncio
    async def test_scenario_c_tie_broken_by_overall_wins(self, db, make_tournament, make_heat):
        _, match = await _scored_heat(db, make_tournament, make_heat, SCENARIO_C)

        result = await calculate_match_winner(match.id, db)

        assert result.competitor1.score == 15
        assert result.competitor2.score == 15
        assert result.winner_id == 101
        assert result.tie_broken is True
        assert "overall wins: 2 vs 1" in result.reason
        assert result.applied is False

    @pytest.mark.asyncio
    async def test_resolve_closes_heat_and_emits(self, db, make_tournament, make_heat, notifier, events):
        tournament, match = await _scored_heat(db, make_tournament, make_heat, SCENARIO_C)

        result = await resolve_heat(match.id, db, notifier=notifier)

        assert result.applied is True
        stored = await BracketStorage(db).require_match(match.id)
        assert stored.status == MatchStatus.DONE
        assert stored.winner_id == 101
        assert stored.end_time is not None
        scores = await BracketStorage(db).get_match_heat_scores(match.id)
        assert [(s.competitor_id, s.score) for s in scores] == [(101, 15), (102, 15)]
        assert events(tournament.id) == [BracketEvent.HEAT_COMPLETED]

    @pytest.mark.asyncio
    async def test_second_resolve_is_noop(self, db, make_tournament, make_heat, notifier, events):
        tournament, match = await _scored_heat(db, make_tournament, make_heat, SCENARIO_C)
        await resolve_heat(match.id, db, notifier=notifier)

        again = await resolve_heat(match.id, db, notifier=notifier)

        assert again.already_completed is True
        assert again.applied is False
        assert again.winner_id == 101
        assert events(tournament.id) == [BracketEvent.HEAT_COMPLETED]

    @pytest.mark.asyncio
    async def test_completion_compare_and_swap(self, db, make_tournament, make_heat):
        _, match = await _scored_heat(db, make_tournament, make_heat, SCENARIO_C)
        storage = BracketStorage(db)

        first = await storage.complete_match_if_open(match.id, 101, utcnow(), OPEN)
        second = await storage.complete_match_if_open(match.id, 102, utcnow(), OPEN)
        await storage.commit()

        assert first is True
        assert second is False
        assert (await storage.require_match(match.id)).winner_id == 101

    @pytest.mark.asyncio
    async def test_compare_and_swap_needs_listed_status(self, db, make_tournament, make_heat):
        _, match = await _scored_heat(db, make_tournament, make_heat, SCENARIO_C, status=MatchStatus.PENDING)
        storage = BracketStorage(db)

        applied = await storage.complete_match_if_open(match.id, 101, utcnow(), ["RUNNING"])
        await storage.commit()

        assert applied is False
        stored = await storage.require_match(match.id)
        assert stored.status == MatchStatus.PENDING
        assert stored.winner_id is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [MatchStatus.PENDING, MatchStatus.READY])
    async def test_resolve_closes_heat_never_started(self, db, make_tournament, make_heat, notifier, events, status):
        tournament, match = await _scored_heat(db, make_tournament, make_heat, SCENARIO_C, status=status)

        result = await resolve_heat(match.id, db, notifier=notifier)

        assert result.applied is True
        stored = await BracketStorage(db).require_match(match.id)
        assert stored.status == MatchStatus.DONE
        assert stored.winner_id == 101
        assert events(tournament.id) == [BracketEvent.HEAT_COMPLETED]

    @pytest.mark.asyncio
    async def test_full_tie_leaves_heat_open(self, db, make_tournament, make_heat, notifier):
        sheets = [(1, dict(sensory_beverage="Espresso", taste="left", tactile="right"))]
        _, match = await _scored_heat(db, make_tournament, make_heat, sheets)

        result = await resolve_heat(match.id, db, notifier=notifier)

        assert result.winner_id is None
        assert result.manual_resolution_required is True
        assert result.reason == MANUAL_RESOLUTION_REASON
        stored = await BracketStorage(db).require_match(match.id)
        assert stored.status == MatchStatus.RUNNING
        assert stored.winner_id is None


class TestManualResolution:

    @pytest.mark.asyncio
    async def test_admin_picks_winner_after_full_tie(self, db, make_tournament, make_heat, notifier, events):
        sheets = [(1, dict(sensory_beverage="Espresso", taste="left", tactile="right"))]
        tournament, match = await _scored_heat(db, make_tournament, make_heat, sheets)

        result = await manual_resolve_heat(match.id, 102, db, notifier=notifier)

        assert result.applied is True
        assert result.winner_id == 102
        stored = await BracketStorage(db).require_match(match.id)
        assert stored.status == MatchStatus.DONE
        assert events(tournament.id) == [BracketEvent.HEAT_COMPLETED]

    @pytest.mark.asyncio
    async def test_winner_must_be_competitor(self, db, make_tournament, make_heat):
        _, match = await _scored_heat(db, make_tournament, make_heat, SCENARIO_C)

        with pytest.raises(InvalidInputError):
            await manual_resolve_heat(match.id, 999, db)

    @pytest.mark.asyncio
    async def test_cannot_override_completed_heat(self, db, make_tournament, make_heat, notifier):
        _, match = await _scored_heat(db, make_tournament, make_heat, SCENARIO_C)
        await resolve_heat(match.id, db, notifier=notifier)

        result = await manual_resolve_heat(match.id, 102, db, notifier=notifier)

        assert result.already_completed is True
        assert result.winner_id == 101
