"""
Pydantic Schemas for blind judging and winner resolution
"""
from typing import Optional, List, Literal
from pydantic import BaseModel, Field


Verdict = Optional[Literal["left", "right"]]


class DetailedScoreSubmission(BaseModel):
    """One judge's blind left/right verdicts for one heat."""
    judge_id: int = Field(..., description="Judge submitting the sheet")
    judge_name: Optional[str] = None
    left_cup_code: Optional[str] = Field(None, description="Cup label the judge saw on the left")
    right_cup_code: Optional[str] = Field(None, description="Cup label the judge saw on the right")
    sensory_beverage: Literal["Cappuccino", "Espresso"]
    visual_latte_art: Verdict = None
    taste: Verdict = None
    tactile: Verdict = None
    flavour: Verdict = None
    overall: Verdict = Field(None, description="Recorded for audit, never scored")


class CompetitorScore(BaseModel):
    competitor_id: Optional[int] = None
    cup_code: Optional[str] = None
    score: int = 0


class WinnerCalculationResult(BaseModel):
    """
    Outcome of resolving a heat.

    winner_id None with manual_resolution_required True is a valid
    terminal outcome: a human must pick the winner.
    applied is True only when this call wrote the winner to the heat.
    """
    match_id: int
    winner_id: Optional[int] = None
    competitor1: CompetitorScore
    competitor2: CompetitorScore
    tie_broken: bool = False
    reason: str = ""
    manual_resolution_required: bool = False
    applied: bool = False
    already_completed: bool = False


class HeatScoreRecalculation(BaseModel):
    """Batch recompute summary for a tournament."""
    tournament_id: int
    heats_processed: int = 0
    heats_failed: int = 0
    errors: List[str] = Field(default_factory=list)
