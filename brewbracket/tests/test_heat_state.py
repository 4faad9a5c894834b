"""
Heat state machine tests.

Heat:    PENDING → READY → RUNNING → DONE (any open heat may be closed by winner resolution)
Segment: IDLE → RUNNING → ENDED, in order DIAL_IN, CAPPUCCINO, ESPRESSO
"""
import pytest

from brewbracket.exceptions import (
    IncompleteSegmentSetError,
    InvalidHeatTransitionError,
    InvalidSegmentError,
    SegmentNotRunningError,
    SegmentOrderViolationError,
    SegmentStateError,
)
from brewbracket.orm import MatchStatus, SegmentStatus, TournamentRoundTime
from brewbracket.realtime.events import BracketEvent
from brewbracket.state_machines.heat_state import HeatStateMachine, parse_segment_code
from brewbracket.storage import BracketStorage


async def _heat_with_segments(db, make_tournament, make_heat, status=MatchStatus.PENDING):
    tournament = await make_tournament()
    match = await make_heat(tournament.id, 1, 101, 102, status=status)
    machine = HeatStateMachine(db)
    await machine.create_segments(match.id, TournamentRoundTime(
        dial_in_minutes=10, cappuccino_minutes=3, espresso_minutes=2, total_minutes=15,
    ))
    await db.commit()
    return tournament, match


class TestTransitionTable:

    def test_pending_to_ready(self):
        assert HeatStateMachine._is_valid_transition(MatchStatus.PENDING, MatchStatus.READY) is True

    def test_pending_straight_to_running(self):
        assert HeatStateMachine._is_valid_transition(MatchStatus.PENDING, MatchStatus.RUNNING) is True

    def test_done_is_terminal(self):
        for status in MatchStatus:
            assert HeatStateMachine._is_valid_transition(MatchStatus.DONE, status) is False

    def test_no_going_back(self):
        assert HeatStateMachine._is_valid_transition(MatchStatus.RUNNING, MatchStatus.READY) is False

    def test_any_open_heat_can_close(self):
        assert HeatStateMachine.sources_of(MatchStatus.DONE) == ["PENDING", "READY", "RUNNING"]
        assert HeatStateMachine.sources_of(MatchStatus.READY) == ["PENDING"]


class TestSegmentCodes:

    def test_normalizes_case(self):
        assert parse_segment_code(" dial_in ").value == "DIAL_IN"

    def test_rejects_unknown(self):
        with pytest.raises(InvalidSegmentError) as exc:
            parse_segment_code("MILK")
        assert exc.value.message == "Invalid segment code. Must be DIAL_IN, CAPPUCCINO, or ESPRESSO"


class TestHeatLifecycle:

    @pytest.mark.asyncio
    async def test_segments_created_idle_with_plan(self, db, make_tournament, make_heat):
        _, match = await _heat_with_segments(db, make_tournament, make_heat)

        segments = await BracketStorage(db).get_match_segments(match.id)

        assert [(s.segment, s.status, s.planned_minutes) for s in segments] == [
            ("DIAL_IN", "IDLE", 10),
            ("CAPPUCCINO", "IDLE", 3),
            ("ESPRESSO", "IDLE", 2),
        ]
        validation = await HeatStateMachine(db).validate_segments(match.id)
        assert validation.is_valid is True

    @pytest.mark.asyncio
    async def test_ready_then_start(self, db, make_tournament, make_heat, notifier, events):
        tournament, match = await _heat_with_segments(db, make_tournament, make_heat)
        machine = HeatStateMachine(db, notifier)

        await machine.mark_ready(match.id)
        started = await machine.start_heat(match.id)

        assert started.status == MatchStatus.RUNNING
        assert started.start_time is not None
        assert events(tournament.id) == [BracketEvent.HEAT_STARTED]

    @pytest.mark.asyncio
    async def test_cannot_ready_twice(self, db, make_tournament, make_heat):
        _, match = await _heat_with_segments(db, make_tournament, make_heat)
        machine = HeatStateMachine(db)
        await machine.mark_ready(match.id)

        with pytest.raises(InvalidHeatTransitionError):
            await machine.mark_ready(match.id)

    @pytest.mark.asyncio
    async def test_done_heat_cannot_restart(self, db, make_tournament, make_heat):
        _, match = await _heat_with_segments(db, make_tournament, make_heat, status=MatchStatus.DONE)

        with pytest.raises(InvalidHeatTransitionError):
            await HeatStateMachine(db).start_heat(match.id)


class TestSegmentFlow:

    @pytest.mark.asyncio
    async def test_full_segment_run(self, db, make_tournament, make_heat, notifier, events):
        tournament, match = await _heat_with_segments(db, make_tournament, make_heat)
        machine = HeatStateMachine(db, notifier)

        for code in ("DIAL_IN", "CAPPUCCINO", "ESPRESSO"):
            await machine.start_segment(match.id, code)
            await machine.stop_segment(match.id, code)

        segments = await BracketStorage(db).get_match_segments(match.id)
        assert all(s.status == SegmentStatus.ENDED for s in segments)
        heat = await BracketStorage(db).require_match(match.id)
        # Only winner resolution closes a heat
        assert heat.status == MatchStatus.RUNNING
        assert events(tournament.id) == [
            BracketEvent.SEGMENT_STARTED, BracketEvent.SEGMENT_ENDED,
        ] * 3

    @pytest.mark.asyncio
    async def test_first_segment_starts_heat(self, db, make_tournament, make_heat):
        _, match = await _heat_with_segments(db, make_tournament, make_heat)

        await HeatStateMachine(db).start_segment(match.id, "DIAL_IN")

        heat = await BracketStorage(db).require_match(match.id)
        assert heat.status == MatchStatus.RUNNING
        assert heat.start_time is not None

    @pytest.mark.asyncio
    async def test_out_of_order_start(self, db, make_tournament, make_heat):
        _, match = await _heat_with_segments(db, make_tournament, make_heat)

        with pytest.raises(SegmentOrderViolationError) as exc:
            await HeatStateMachine(db).start_segment(match.id, "CAPPUCCINO")
        assert exc.value.message == "Previous segment DIAL_IN must be completed before starting CAPPUCCINO"

    @pytest.mark.asyncio
    async def test_previous_still_running(self, db, make_tournament, make_heat):
        _, match = await _heat_with_segments(db, make_tournament, make_heat)
        machine = HeatStateMachine(db)
        await machine.start_segment(match.id, "DIAL_IN")

        with pytest.raises(SegmentOrderViolationError):
            await machine.start_segment(match.id, "CAPPUCCINO")

    @pytest.mark.asyncio
    async def test_segment_cannot_restart(self, db, make_tournament, make_heat):
        _, match = await _heat_with_segments(db, make_tournament, make_heat)
        machine = HeatStateMachine(db)
        await machine.start_segment(match.id, "DIAL_IN")
        await machine.stop_segment(match.id, "DIAL_IN")

        with pytest.raises(SegmentStateError):
            await machine.start_segment(match.id, "DIAL_IN")

    @pytest.mark.asyncio
    async def test_stop_idle_segment(self, db, make_tournament, make_heat):
        _, match = await _heat_with_segments(db, make_tournament, make_heat)

        with pytest.raises(SegmentNotRunningError) as exc:
            await HeatStateMachine(db).stop_segment(match.id, "DIAL_IN")
        assert exc.value.message == "Segment DIAL_IN is not currently running. Current status: IDLE"

    @pytest.mark.asyncio
    async def test_missing_segments(self, db, make_tournament, make_heat):
        tournament = await make_tournament()
        match = await make_heat(tournament.id, 1, 101, 102)

        with pytest.raises(IncompleteSegmentSetError) as exc:
            await HeatStateMachine(db).start_segment(match.id, "DIAL_IN")
        assert exc.value.message == "Match is missing required segments: DIAL_IN, CAPPUCCINO, ESPRESSO"

        validation = await HeatStateMachine(db).validate_segments(match.id)
        assert validation.is_valid is False
        assert validation.missing_segments == ["DIAL_IN", "CAPPUCCINO", "ESPRESSO"]

    @pytest.mark.asyncio
    async def test_segments_of_done_heat_cannot_start(self, db, make_tournament, make_heat):
        _, match = await _heat_with_segments(db, make_tournament, make_heat, status=MatchStatus.DONE)

        with pytest.raises(InvalidHeatTransitionError):
            await HeatStateMachine(db).start_segment(match.id, "DIAL_IN")
