from dataclasses import dataclass
from enum import StrEnum
from typing import Literal, Optional
from pydantic import BaseModel, Field


class ExitIntent(StrEnum):
    BOOKING = "BOOKING"
    WRAP_UP = "WRAP_UP"
    FRUSTRATION = "FRUSTRATION"
    FORCE_EXIT = "FORCE_EXIT"


class ExitDetectionResult(BaseModel):
    intent: Optional[ExitIntent] = None
    confidence: float = Field(default=0.0, ge=0, le=1.0)
    should_force_exit: bool = False
    reason: Optional[str] = None
    suggested_response: Optional[str] = None


@dataclass
class ExitAttemptState:
    """Frustration counter for one session."""
    attempts: int = 0
    last_attempt_at: Optional[float] = None


class SentimentTrend(BaseModel):
    trend: Literal["improving", "declining", "stable"]
    average_sentiment: float = Field(ge=0, le=1.0)
