"""
Blind judging models.

Judges see only physical left/right cups. The admin reveals which
competitor's cup code sat on which side via MatchCupPosition, and the
aggregator reinterprets every judge row against that one mapping.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
)

from brewbracket.orm.base import Base, iso
from brewbracket.utils.time_utils import utcnow


class BeverageType(str, Enum):
    CAPPUCCINO = "Cappuccino"
    ESPRESSO = "Espresso"


class CupSide(str, Enum):
    LEFT = "left"
    RIGHT = "right"


VERDICT_FIELDS = ["visual_latte_art", "taste", "tactile", "flavour", "overall"]


# =============================================================================
# Table: judge_detailed_scores
# =============================================================================

class JudgeDetailedScore(Base):
    """
    One judge's blind verdicts for one heat.

    Re-submission by the same judge replaces the row.
    Each verdict is 'left', 'right' or NULL (unset).
    """
    __tablename__ = "judge_detailed_scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(
        Integer,
        ForeignKey("matches.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    judge_id = Column(Integer, nullable=False)
    judge_name = Column(String(200), nullable=True)
    left_cup_code = Column(String(20), nullable=True)
    right_cup_code = Column(String(20), nullable=True)
    sensory_beverage = Column(String(20), nullable=False)
    visual_latte_art = Column(String(5), nullable=True)
    taste = Column(String(5), nullable=True)
    tactile = Column(String(5), nullable=True)
    flavour = Column(String(5), nullable=True)
    overall = Column(String(5), nullable=True)
    submitted_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("match_id", "judge_id", name="uq_detailed_score_match_judge"),
        CheckConstraint(
            "sensory_beverage IN ('Cappuccino', 'Espresso')",
            name="ck_detailed_score_beverage_valid"
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "match_id": self.match_id,
            "judge_id": self.judge_id,
            "judge_name": self.judge_name,
            "left_cup_code": self.left_cup_code,
            "right_cup_code": self.right_cup_code,
            "sensory_beverage": self.sensory_beverage,
            "visual_latte_art": self.visual_latte_art,
            "taste": self.taste,
            "tactile": self.tactile,
            "flavour": self.flavour,
            "overall": self.overall,
            "submitted_at": iso(self.submitted_at),
        }


# =============================================================================
# Table: match_cup_positions
# =============================================================================

class MatchCupPosition(Base):
    __tablename__ = "match_cup_positions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(
        Integer,
        ForeignKey("matches.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    cup_code = Column(String(20), nullable=False)
    position = Column(String(5), nullable=False)
    assigned_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("match_id", "position", name="uq_cup_position_match_side"),
        UniqueConstraint("match_id", "cup_code", name="uq_cup_position_match_code"),
        CheckConstraint("position IN ('left', 'right')", name="ck_cup_position_side_valid"),
    )

    def to_dict(self):
        return {
            "match_id": self.match_id,
            "cup_code": self.cup_code,
            "position": self.position,
            "assigned_by": self.assigned_by,
        }


# =============================================================================
# Table: heat_scores
# =============================================================================

class HeatScore(Base):
    """Derived total per competitor. Always recomputed, never patched."""
    __tablename__ = "heat_scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(
        Integer,
        ForeignKey("matches.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    competitor_id = Column(Integer, nullable=False)
    score = Column(Integer, nullable=False, default=0)
    computed_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("match_id", "competitor_id", name="uq_heat_score_match_competitor"),
    )

    def to_dict(self):
        return {
            "match_id": self.match_id,
            "competitor_id": self.competitor_id,
            "score": self.score,
            "computed_at": iso(self.computed_at),
        }
