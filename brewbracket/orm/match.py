"""
Heat (match), heat segment and judge panel models.

Heat lifecycle:  PENDING → READY → RUNNING → DONE
Segment lifecycle: IDLE → RUNNING → ENDED, in order DIAL_IN, CAPPUCCINO, ESPRESSO

Competitor and winner references are participant user_ids.
competitor2_id NULL denotes a bye.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, UniqueConstraint,
    CheckConstraint, Index
)

from brewbracket.orm.base import Base, TimestampMixin, iso


# =============================================================================
# Enums
# =============================================================================

class MatchStatus(str, Enum):
    PENDING = "PENDING"
    READY = "READY"
    RUNNING = "RUNNING"
    DONE = "DONE"


class SegmentCode(str, Enum):
    DIAL_IN = "DIAL_IN"
    CAPPUCCINO = "CAPPUCCINO"
    ESPRESSO = "ESPRESSO"


class SegmentStatus(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    ENDED = "ENDED"


class JudgeRole(str, Enum):
    ESPRESSO = "ESPRESSO"
    CAPPUCCINO = "CAPPUCCINO"
    SENSORY = "SENSORY"


# Fixed segment order for every heat
SEGMENT_ORDER = [
    SegmentCode.DIAL_IN,
    SegmentCode.CAPPUCCINO,
    SegmentCode.ESPRESSO,
]


# =============================================================================
# Table: matches
# =============================================================================

class Match(TimestampMixin, Base):
    """
    One head-to-head heat.

    A DONE heat with two competitors always has a winner.
    A bye heat is created DONE with the sole competitor as winner
    and no station.
    """
    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round = Column(Integer, nullable=False)
    heat_number = Column(Integer, nullable=False)
    station_id = Column(
        Integer,
        ForeignKey("stations.id", ondelete="SET NULL"),
        nullable=True
    )
    competitor1_id = Column(Integer, nullable=True)
    competitor2_id = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default=MatchStatus.PENDING.value)
    winner_id = Column(Integer, nullable=True)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("tournament_id", "heat_number", name="uq_match_tournament_heat"),
        CheckConstraint("round >= 1", name="ck_match_round_positive"),
        CheckConstraint(
            "status IN ('PENDING', 'READY', 'RUNNING', 'DONE')",
            name="ck_match_status_valid"
        ),
        Index("idx_match_tournament_round", "tournament_id", "round"),
        Index("idx_match_station", "station_id"),
    )

    @property
    def is_bye(self) -> bool:
        return self.competitor1_id is not None and self.competitor2_id is None

    @property
    def competitor_ids(self):
        return [c for c in (self.competitor1_id, self.competitor2_id) if c is not None]

    def loser_id(self):
        """Loser of a decided two-competitor heat, else None."""
        if self.winner_id is None or self.competitor2_id is None:
            return None
        if self.winner_id == self.competitor1_id:
            return self.competitor2_id
        if self.winner_id == self.competitor2_id:
            return self.competitor1_id
        return None

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "round": self.round,
            "heat_number": self.heat_number,
            "station_id": self.station_id,
            "competitor1_id": self.competitor1_id,
            "competitor2_id": self.competitor2_id,
            "status": self.status,
            "winner_id": self.winner_id,
            "start_time": iso(self.start_time),
            "end_time": iso(self.end_time),
        }


# =============================================================================
# Table: heat_segments
# =============================================================================

class HeatSegment(Base):
    __tablename__ = "heat_segments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(
        Integer,
        ForeignKey("matches.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    segment = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=SegmentStatus.IDLE.value)
    planned_minutes = Column(Integer, nullable=False)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("match_id", "segment", name="uq_segment_match_code"),
        CheckConstraint(
            "segment IN ('DIAL_IN', 'CAPPUCCINO', 'ESPRESSO')",
            name="ck_segment_code_valid"
        ),
        CheckConstraint(
            "status IN ('IDLE', 'RUNNING', 'ENDED')",
            name="ck_segment_status_valid"
        ),
        CheckConstraint("planned_minutes >= 0", name="ck_segment_minutes_non_negative"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "match_id": self.match_id,
            "segment": self.segment,
            "status": self.status,
            "planned_minutes": self.planned_minutes,
            "start_time": iso(self.start_time),
            "end_time": iso(self.end_time),
        }


# =============================================================================
# Table: heat_judges
# =============================================================================

class HeatJudge(Base):
    """Judge panel membership for one heat."""
    __tablename__ = "heat_judges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(
        Integer,
        ForeignKey("matches.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    judge_id = Column(Integer, nullable=False)
    role = Column(String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint("match_id", "judge_id", name="uq_heat_judge"),
        CheckConstraint(
            "role IN ('ESPRESSO', 'CAPPUCCINO', 'SENSORY')",
            name="ck_heat_judge_role_valid"
        ),
    )

    def to_dict(self):
        return {
            "match_id": self.match_id,
            "judge_id": self.judge_id,
            "role": self.role,
        }
