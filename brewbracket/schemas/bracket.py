"""
Pydantic Schemas for bracket generation and scheduling

Result models for seeding, station scheduling and round timing.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


# ============================================================================
# Seeding
# ============================================================================

class BracketPair(BaseModel):
    """One Round-1 pairing by seed. seed2 is None for a bye."""
    seed1: int = Field(..., ge=1)
    seed2: Optional[int] = Field(None, ge=1, description="Opponent seed, None for a bye")

    @property
    def is_bye(self) -> bool:
        return self.seed2 is None


class SeedAssignment(BaseModel):
    participant_id: int
    user_id: int
    seed: int
    cup_code: str


# ============================================================================
# Scheduling
# ============================================================================

class RoundTimeConfig(BaseModel):
    """Segment plan minutes for one round."""
    dial_in_minutes: int = Field(10, ge=0)
    cappuccino_minutes: int = Field(3, ge=0)
    espresso_minutes: int = Field(2, ge=0)

    @property
    def total_minutes(self) -> int:
        return self.dial_in_minutes + self.cappuccino_minutes + self.espresso_minutes


class StationSlot(BaseModel):
    """A reserved station time slot for one heat."""
    station_id: int
    station_name: str
    start_time: datetime
    next_available_at: datetime


class StationQueueEntry(BaseModel):
    match_id: int
    heat_number: int
    round: int
    status: str
    start_time: Optional[datetime] = None


# ============================================================================
# Bracket generation
# ============================================================================

class GeneratedHeat(BaseModel):
    match_id: int
    heat_number: int
    round: int
    competitor1_id: int
    competitor2_id: Optional[int] = None
    station_id: Optional[int] = None
    station_name: Optional[str] = None
    status: str
    start_time: Optional[datetime] = None
    is_bye: bool = False


class BracketGenerationResult(BaseModel):
    """Outcome of generating Round 1 for a tournament."""
    tournament_id: int
    total_rounds: int
    pairings: List[BracketPair]
    heats: List[GeneratedHeat]
    judge_assignment_errors: List[str] = Field(default_factory=list)

    @property
    def bye_count(self) -> int:
        return sum(1 for h in self.heats if h.is_bye)

    def event_payload(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "total_rounds": self.total_rounds,
            "heat_ids": [h.match_id for h in self.heats],
            "bye_count": self.bye_count,
        }


# ============================================================================
# Segments
# ============================================================================

class SegmentValidationResult(BaseModel):
    match_id: int
    is_valid: bool
    required_segments: List[str]
    existing_segments: List[str]
    missing_segments: List[str] = Field(default_factory=list)
    extra_segments: List[str] = Field(default_factory=list)
    message: str
