"""
Tournament, participant and per-round timing models.

Participants are owned by a tournament: created at registration,
mutated only by round progression, never deleted mid-tournament.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, ForeignKey, UniqueConstraint,
    CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from brewbracket.config.settings import settings
from brewbracket.core.db_types import StationNameList
from brewbracket.orm.base import Base, TimestampMixin, iso


class TournamentStatus(str, Enum):
    SETUP = "SETUP"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class JudgeRoleModel(str, Enum):
    """
    How judges are split across a heat.

    SPLIT: dedicated ESPRESSO and CAPPUCCINO judges.
    SENSORY: every judge is an interchangeable sensory judge.
    """
    SPLIT = "SPLIT"
    SENSORY = "SENSORY"


def _default_stations():
    return list(settings.DEFAULT_ENABLED_STATIONS)


class Tournament(TimestampMixin, Base):
    """
    A single-elimination tournament.

    Attributes:
        total_rounds: Derived as ceil(log2 N) at bracket generation when unset
        current_round: Round currently being played (starts at 1)
        winner_id: Participant user_id of the champion, set on finalization
        enabled_stations: Station rotation, in order
    """
    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    status = Column(String(20), nullable=False, default=TournamentStatus.SETUP.value)
    total_rounds = Column(Integer, nullable=True)
    current_round = Column(Integer, nullable=False, default=1)
    winner_id = Column(Integer, nullable=True)
    enabled_stations = Column(StationNameList, nullable=False, default=_default_stations)
    judge_role_model = Column(
        String(20),
        nullable=False,
        default=lambda: settings.JUDGE_ROLE_MODEL
    )

    participants = relationship(
        "TournamentParticipant",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="TournamentParticipant.seed"
    )

    __table_args__ = (
        CheckConstraint("current_round >= 1", name="ck_tournament_current_round_positive"),
        CheckConstraint(
            "status IN ('SETUP', 'ACTIVE', 'COMPLETED', 'CANCELLED')",
            name="ck_tournament_status_valid"
        ),
        CheckConstraint(
            "judge_role_model IN ('SPLIT', 'SENSORY')",
            name="ck_tournament_judge_role_model_valid"
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "total_rounds": self.total_rounds,
            "current_round": self.current_round,
            "winner_id": self.winner_id,
            "enabled_stations": list(self.enabled_stations or []),
            "judge_role_model": self.judge_role_model,
            "created_at": iso(self.created_at),
        }


class TournamentParticipant(TimestampMixin, Base):
    """
    A competitor registered in a tournament.

    total_score is the cumulative score: always added to, never overwritten.
    eliminated_round is set once and never cleared.
    final_rank is set only on tournament finalization.
    """
    __tablename__ = "tournament_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(Integer, nullable=False)
    display_name = Column(String(200), nullable=False, default="")
    seed = Column(Integer, nullable=True)
    cup_code = Column(String(20), nullable=True)
    total_score = Column(Integer, nullable=False, default=0)
    eliminated_round = Column(Integer, nullable=True)
    final_rank = Column(Integer, nullable=True)

    tournament = relationship("Tournament", back_populates="participants")

    __table_args__ = (
        UniqueConstraint("tournament_id", "user_id", name="uq_participant_tournament_user"),
        UniqueConstraint("tournament_id", "seed", name="uq_participant_tournament_seed"),
        CheckConstraint("seed IS NULL OR seed > 0", name="ck_participant_seed_positive"),
        Index("idx_participant_tournament_seed", "tournament_id", "seed"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "seed": self.seed,
            "cup_code": self.cup_code,
            "total_score": self.total_score,
            "eliminated_round": self.eliminated_round,
            "final_rank": self.final_rank,
        }


class TournamentRoundTime(Base):
    """Segment plan minutes for one round of one tournament."""
    __tablename__ = "tournament_round_times"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round = Column(Integer, nullable=False)
    dial_in_minutes = Column(Integer, nullable=False)
    cappuccino_minutes = Column(Integer, nullable=False)
    espresso_minutes = Column(Integer, nullable=False)
    total_minutes = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("tournament_id", "round", name="uq_round_time_tournament_round"),
        CheckConstraint("round >= 1", name="ck_round_time_round_positive"),
        CheckConstraint(
            "dial_in_minutes >= 0 AND cappuccino_minutes >= 0 AND espresso_minutes >= 0",
            name="ck_round_time_minutes_non_negative"
        ),
    )

    def to_dict(self):
        return {
            "tournament_id": self.tournament_id,
            "round": self.round,
            "dial_in_minutes": self.dial_in_minutes,
            "cappuccino_minutes": self.cappuccino_minutes,
            "espresso_minutes": self.espresso_minutes,
            "total_minutes": self.total_minutes,
        }
