"""
brewbracket/exceptions.py
Typed exceptions for the bracket-and-scoring engine

Every engine error carries:
- a human-readable message
- an HTTP status hint for the transport layer
- a details dict with offending heat/station/tournament IDs
"""
from typing import Any, Dict, Optional


class BracketEngineError(Exception):
    """Base exception for the bracket engine"""
    status_code: int = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if status_code:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class InvalidInputError(BracketEngineError):
    """
    Raised for bad arguments.

    Examples:
    - Fewer than two participants
    - Seeds that are not exactly 1..N
    - Unknown cup position side
    """
    status_code = 400


class NotFoundError(BracketEngineError):
    """Raised when a tournament, heat or station does not exist."""
    status_code = 404


# =============================================================================
# Scheduling
# =============================================================================

class NoAvailableStationError(BracketEngineError):
    """No AVAILABLE station can take a new heat."""
    status_code = 409


class InsufficientStationsError(BracketEngineError):
    """Fewer AVAILABLE stations than a next round needs."""
    status_code = 409


# =============================================================================
# Heat / segment state machine
# =============================================================================

class InvalidHeatTransitionError(BracketEngineError):
    """Raised when a heat status transition is not allowed."""
    status_code = 409


class HeatSegmentError(BracketEngineError):
    """Base for segment misuse."""
    status_code = 400


class InvalidSegmentError(HeatSegmentError):
    pass


class IncompleteSegmentSetError(HeatSegmentError):
    pass


class SegmentOrderViolationError(HeatSegmentError):
    status_code = 409


class SegmentNotRunningError(HeatSegmentError):
    status_code = 409


class SegmentStateError(HeatSegmentError):
    """Segment cannot start because it already ran or is running."""
    status_code = 409


# =============================================================================
# Winner resolution
# =============================================================================

class WinnerPreconditionError(BracketEngineError):
    """
    Winner cannot be computed yet.

    Recoverable: the caller should wait for the missing input
    (cup positions, judge scores, second competitor) rather than retry.
    """
    status_code = 409


class MissingCupPositionsError(WinnerPreconditionError):
    pass


class MissingCompetitorError(WinnerPreconditionError):
    pass


class MissingJudgeScoresError(WinnerPreconditionError):
    pass


# =============================================================================
# Round progression
# =============================================================================

class RoundNotCompleteError(BracketEngineError):
    """Raised when the round gate has not passed."""
    status_code = 409


class RoundAdvanceInProgressError(BracketEngineError):
    """Another advance for the same tournament holds the lock."""
    status_code = 409


class NoWinnersFoundError(BracketEngineError):
    status_code = 409


# =============================================================================
# Storage
# =============================================================================

class StorageUnavailableError(BracketEngineError):
    """Storage collaborator failed. Not retried by the engine."""
    status_code = 503
