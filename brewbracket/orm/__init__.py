from .base import Base

from .tournament import (
    Tournament, TournamentParticipant, TournamentRoundTime,
    TournamentStatus, JudgeRoleModel
)
from .station import Station, StationStatus
from .match import (
    Match, HeatSegment, HeatJudge,
    MatchStatus, SegmentCode, SegmentStatus, JudgeRole, SEGMENT_ORDER
)
from .scoring import (
    JudgeDetailedScore, MatchCupPosition, HeatScore,
    BeverageType, CupSide, VERDICT_FIELDS
)


__all__ = [
    "Base",
    "Tournament",
    "TournamentParticipant",
    "TournamentRoundTime",
    "TournamentStatus",
    "JudgeRoleModel",
    "Station",
    "StationStatus",
    "Match",
    "HeatSegment",
    "HeatJudge",
    "MatchStatus",
    "SegmentCode",
    "SegmentStatus",
    "JudgeRole",
    "SEGMENT_ORDER",
    "JudgeDetailedScore",
    "MatchCupPosition",
    "HeatScore",
    "BeverageType",
    "CupSide",
    "VERDICT_FIELDS",
]
