"""
Physical station where heats are run.

Only the station scheduler mutates next_available_at.
The heat currently at a station is derived from matches.station_id,
never stored on the station row.
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
)

from brewbracket.orm.base import Base, TimestampMixin, iso
from brewbracket.utils.time_utils import utcnow


class StationStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    BUSY = "BUSY"
    OFFLINE = "OFFLINE"


class Station(TimestampMixin, Base):
    __tablename__ = "stations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=StationStatus.AVAILABLE.value)
    next_available_at = Column(DateTime, nullable=False, default=utcnow)
    station_lead_id = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("tournament_id", "name", name="uq_station_tournament_name"),
        CheckConstraint(
            "status IN ('AVAILABLE', 'BUSY', 'OFFLINE')",
            name="ck_station_status_valid"
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "name": self.name,
            "status": self.status,
            "next_available_at": iso(self.next_available_at),
            "station_lead_id": self.station_lead_id,
        }
