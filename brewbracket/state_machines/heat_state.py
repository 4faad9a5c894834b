"""
Heat State Machine
Strict server-side state enforcement for heats and their timed segments.

Heat:    PENDING → READY → RUNNING → DONE (PENDING may go straight to RUNNING;
         winner resolution may close any open heat)
Segment: IDLE → RUNNING → ENDED, in fixed order DIAL_IN, CAPPUCCINO, ESPRESSO

DONE is only ever written by winner resolution, never by segment completion.
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from brewbracket.exceptions import (
    InvalidHeatTransitionError,
    InvalidSegmentError,
    IncompleteSegmentSetError,
    SegmentOrderViolationError,
    SegmentNotRunningError,
    SegmentStateError,
)
from brewbracket.orm.match import (
    Match, HeatSegment, MatchStatus, SegmentCode, SegmentStatus, SEGMENT_ORDER
)
from brewbracket.orm.tournament import TournamentRoundTime
from brewbracket.realtime.events import BracketEvent, EventNotifier, get_notifier
from brewbracket.schemas.bracket import SegmentValidationResult
from brewbracket.storage import BracketStorage
from brewbracket.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

REQUIRED_SEGMENTS = [code.value for code in SEGMENT_ORDER]


def parse_segment_code(segment_code: str) -> SegmentCode:
    """Normalize and validate a segment code."""
    code = (segment_code or "").strip().upper()
    if code not in REQUIRED_SEGMENTS:
        raise InvalidSegmentError(
            "Invalid segment code. Must be DIAL_IN, CAPPUCCINO, or ESPRESSO",
            details={"segment": segment_code},
        )
    return SegmentCode(code)


class HeatStateMachine:
    """
    Server-side state machine for heats.

    Every mutation locks the affected rows, validates the transition,
    commits, then emits an event.
    """

    # Valid state transitions: {current_state: [allowed_next_states]}
    ALLOWED_TRANSITIONS: Dict[MatchStatus, List[MatchStatus]] = {
        # DONE from an open heat is written only by winner resolution
        MatchStatus.PENDING: [
            MatchStatus.READY,
            MatchStatus.RUNNING,
            MatchStatus.DONE,
        ],
        MatchStatus.READY: [
            MatchStatus.RUNNING,
            MatchStatus.DONE,
        ],
        MatchStatus.RUNNING: [
            MatchStatus.DONE,
        ],
        MatchStatus.DONE: [],
    }

    SEGMENT_TRANSITIONS: Dict[SegmentStatus, List[SegmentStatus]] = {
        SegmentStatus.IDLE: [SegmentStatus.RUNNING],
        SegmentStatus.RUNNING: [SegmentStatus.ENDED],
        SegmentStatus.ENDED: [],
    }

    def __init__(self, db: AsyncSession, notifier: Optional[EventNotifier] = None):
        self.db = db
        self.storage = BracketStorage(db)
        self.notifier = notifier or get_notifier()

    @classmethod
    def _is_valid_transition(cls, from_state: MatchStatus, to_state: MatchStatus) -> bool:
        return to_state in cls.ALLOWED_TRANSITIONS.get(MatchStatus(from_state), [])

    @classmethod
    def sources_of(cls, to_state: MatchStatus) -> List[str]:
        """Statuses from which to_state may be entered."""
        return [state.value for state, targets in cls.ALLOWED_TRANSITIONS.items() if to_state in targets]

    def _check_transition(self, match: Match, to_state: MatchStatus) -> None:
        if not self._is_valid_transition(match.status, to_state):
            allowed = [s.value for s in self.ALLOWED_TRANSITIONS.get(MatchStatus(match.status), [])]
            raise InvalidHeatTransitionError(
                f"Cannot transition heat {match.id} from {match.status} to {to_state.value}. "
                f"Allowed: {allowed}",
                details={"match_id": match.id, "status": match.status},
            )

    # =========================================================================
    # Segment setup
    # =========================================================================

    async def create_segments(self, match_id: int, round_time: TournamentRoundTime) -> List[HeatSegment]:
        """Create the fixed IDLE segment triple for a heat."""
        planned = {
            SegmentCode.DIAL_IN: round_time.dial_in_minutes,
            SegmentCode.CAPPUCCINO: round_time.cappuccino_minutes,
            SegmentCode.ESPRESSO: round_time.espresso_minutes,
        }
        return [
            await self.storage.create_heat_segment(match_id, code.value, planned[code])
            for code in SEGMENT_ORDER
        ]

    async def validate_segments(self, match_id: int) -> SegmentValidationResult:
        await self.storage.require_match(match_id)
        segments = await self.storage.get_match_segments(match_id)
        existing = [s.segment for s in segments]
        missing = [code for code in REQUIRED_SEGMENTS if code not in existing]
        extra = [code for code in existing if code not in REQUIRED_SEGMENTS]
        is_valid = not missing and not extra
        return SegmentValidationResult(
            match_id=match_id,
            is_valid=is_valid,
            required_segments=REQUIRED_SEGMENTS,
            existing_segments=existing,
            missing_segments=missing,
            extra_segments=extra,
            message=(
                "Match has all required segments" if is_valid
                else f"Match is invalid: missing {', '.join(missing)}, extra {', '.join(extra)}"
            ),
        )

    # =========================================================================
    # Heat transitions
    # =========================================================================

    async def mark_ready(self, match_id: int) -> Match:
        """Station confirms setup: PENDING → READY."""
        match = await self.storage.require_match(match_id, for_update=True)
        self._check_transition(match, MatchStatus.READY)
        match.status = MatchStatus.READY.value
        await self.storage.commit()
        logger.info(f"Heat {match.heat_number} (match {match.id}) is READY")
        return match

    async def start_heat(self, match_id: int) -> Match:
        """PENDING/READY → RUNNING, records start time."""
        match = await self.storage.require_match(match_id, for_update=True)
        self._check_transition(match, MatchStatus.RUNNING)
        match.status = MatchStatus.RUNNING.value
        match.start_time = utcnow()
        await self.storage.commit()

        logger.info(f"Heat {match.heat_number} (match {match.id}) started")
        await self.notifier.emit(BracketEvent.HEAT_STARTED, match.tournament_id, match.to_dict())
        return match

    # =========================================================================
    # Segment transitions
    # =========================================================================

    async def start_segment(self, match_id: int, segment_code: str) -> HeatSegment:
        """
        Start one segment of a heat.

        Starting a segment of a PENDING or READY heat also moves the heat
        to RUNNING.

        Raises:
            InvalidSegmentError: Code not in the fixed triple
            IncompleteSegmentSetError: Heat is missing a required segment
            SegmentOrderViolationError: Preceding segment not ENDED
            SegmentStateError: Segment already started
            InvalidHeatTransitionError: Heat is already DONE
        """
        code = parse_segment_code(segment_code)
        match = await self.storage.require_match(match_id, for_update=True)
        segments = {s.segment: s for s in await self.storage.get_match_segments(match_id, for_update=True)}

        missing = [c for c in REQUIRED_SEGMENTS if c not in segments]
        if missing:
            raise IncompleteSegmentSetError(
                f"Match is missing required segments: {', '.join(missing)}",
                details={"match_id": match_id, "missing_segments": missing},
            )

        index = REQUIRED_SEGMENTS.index(code.value)
        if index > 0:
            previous_code = REQUIRED_SEGMENTS[index - 1]
            previous = segments.get(previous_code)
            if previous is not None and previous.status != SegmentStatus.ENDED:
                raise SegmentOrderViolationError(
                    f"Previous segment {previous_code} must be completed before starting {code.value}",
                    details={"match_id": match_id, "segment": code.value, "blocking_segment": previous_code},
                )

        segment = segments[code.value]
        if segment.status != SegmentStatus.IDLE:
            raise SegmentStateError(
                f"Segment {code.value} cannot start from status {segment.status}",
                details={"match_id": match_id, "segment": code.value, "status": segment.status},
            )

        if match.status != MatchStatus.RUNNING:
            self._check_transition(match, MatchStatus.RUNNING)
            match.status = MatchStatus.RUNNING.value
            match.start_time = match.start_time or utcnow()

        segment.status = SegmentStatus.RUNNING.value
        segment.start_time = utcnow()
        await self.storage.commit()

        logger.info(f"Segment {code.value} started for match {match_id}")
        await self.notifier.emit(BracketEvent.SEGMENT_STARTED, match.tournament_id, segment.to_dict())
        return segment

    async def stop_segment(self, match_id: int, segment_code: str) -> HeatSegment:
        """
        End a RUNNING segment.

        Raises:
            InvalidSegmentError: Code not in the fixed triple, or not on this heat
            SegmentNotRunningError: Segment is not RUNNING
        """
        code = parse_segment_code(segment_code)
        match = await self.storage.require_match(match_id)
        segments = {s.segment: s for s in await self.storage.get_match_segments(match_id, for_update=True)}

        segment = segments.get(code.value)
        if segment is None:
            raise InvalidSegmentError(
                f"Segment {code.value} not found for match {match_id}",
                details={"match_id": match_id, "segment": code.value},
            )
        if segment.status != SegmentStatus.RUNNING:
            raise SegmentNotRunningError(
                f"Segment {code.value} is not currently running. Current status: {segment.status}",
                details={"match_id": match_id, "segment": code.value, "status": segment.status},
            )

        segment.status = SegmentStatus.ENDED.value
        segment.end_time = utcnow()
        await self.storage.commit()

        logger.info(f"Segment {code.value} ended for match {match_id}")
        await self.notifier.emit(BracketEvent.SEGMENT_ENDED, match.tournament_id, segment.to_dict())
        return segment
