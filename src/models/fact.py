from enum import StrEnum
from typing import Annotated, List, Optional
from pydantic import BaseModel, Field
from src.models.base import MongoBaseModel


class FactCategory(StrEnum):
    CONSTRAINTS = "constraints"
    PREFERENCES = "preferences"
    STACK = "stack"
    BUDGET = "budget"
    TIMELINE = "timeline"
    GOALS = "goals"
    PAIN_POINTS = "pain_points"
    OTHER = "other"


class Fact(MongoBaseModel):
    """
    A durable, atomic fact about an identity.
    Owned by the email, not the session, so it is recalled in later sessions.
    """
    text: str = Field(..., min_length=1)
    category: FactCategory = FactCategory.OTHER
    confidence: Annotated[float, Field(ge=0, le=1.0)] = 0.7
    session_id: str
    email: str
    source_message_id: Optional[str] = None


class ExtractedFact(BaseModel):
    fact: str = Field(..., description="Atomic fact about the user (constraints, preferences, stack, etc.)")
    category: Optional[FactCategory] = None
    confidence: Optional[Annotated[float, Field(ge=0, le=1.0)]] = Field(
        default=None, description="Confidence in this fact (0-1)"
    )


class ExtractedFacts(BaseModel):
    """Structured output contract for fact extraction."""
    facts: List[ExtractedFact] = Field(default_factory=list)
