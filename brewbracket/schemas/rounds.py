"""
Pydantic Schemas for round gating, progression and next-round population
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


# ============================================================================
# Round gate
# ============================================================================

class MatchSummary(BaseModel):
    match_id: int
    heat_number: int
    station_id: Optional[int] = None
    status: str
    winner_id: Optional[int] = None


class StationCompletionStatus(BaseModel):
    station_id: int
    station_name: str
    total_matches: int
    completed_matches: int
    is_complete: bool
    incomplete_matches: List[MatchSummary] = Field(default_factory=list)


class RoundCompletionStatus(BaseModel):
    """Structured report from the round gate."""
    tournament_id: int
    round: int
    is_complete: bool
    all_matches_done: bool
    all_matches_have_winners: bool
    all_stations_complete: bool
    total_matches: int
    completed_matches: int
    matches_with_winners: int
    incomplete_matches: List[MatchSummary] = Field(default_factory=list)
    matches_without_winners: List[MatchSummary] = Field(default_factory=list)
    station_status: List[StationCompletionStatus] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


# ============================================================================
# Round progression
# ============================================================================

class RoundScore(BaseModel):
    participant_id: int
    user_id: int
    round_score: int = 0
    matches_won: int = 0
    matches_played: int = 0


class RoundCompletionResult(BaseModel):
    tournament_id: int
    round: int
    round_type: str
    round_name: str
    round_scores: List[RoundScore] = Field(default_factory=list)
    eliminated_user_ids: List[int] = Field(default_factory=list)
    is_final: bool = False
    tournament_winner_id: Optional[int] = None
    next_round: Optional[int] = None
    score_errors: List[str] = Field(default_factory=list)

    def event_payload(self) -> Dict[str, Any]:
        return {
            "round": self.round,
            "round_type": self.round_type,
            "is_final": self.is_final,
            "next_round": self.next_round,
            "eliminated_user_ids": self.eliminated_user_ids,
        }


class LeaderboardEntry(BaseModel):
    rank: int
    participant_id: int
    user_id: int
    display_name: str = ""
    seed: Optional[int] = None
    cumulative_score: int = 0
    matches_won: int = 0
    matches_played: int = 0
    eliminated_round: Optional[int] = None
    final_rank: Optional[int] = None


# ============================================================================
# Next round
# ============================================================================

class PopulateNextRoundResult(BaseModel):
    tournament_id: int
    source_round: int
    next_round: int
    winners: List[int]
    match_ids: List[int] = Field(default_factory=list)
    bye_user_ids: List[int] = Field(default_factory=list)
    station_groups: Dict[str, List[int]] = Field(default_factory=dict)
