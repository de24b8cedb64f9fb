from enum import StrEnum
from typing import Literal, Optional
from pydantic import BaseModel, Field
from src.models.intelligence import BudgetSignal, TimelineSignal, UnitFloat

CompanySizeBucket = Literal["1-10", "11-50", "51-200", "201-1000", "1000+", "unknown"]


class ObjectionType(StrEnum):
    PRICE = "price"
    TIMING = "timing"
    AUTHORITY = "authority"
    NEED = "need"
    TRUST = "trust"


class CompanySizeExtraction(BaseModel):
    """Structured output: how big the user's company is, per the conversation."""
    size: CompanySizeBucket = Field(
        default="unknown",
        description="Employee bucket; 'unknown' when the conversation never says",
    )
    employee_count: Optional[int] = Field(
        default=None,
        ge=1,
        description="Exact head count if the user stated one",
    )


class BudgetExtraction(BaseModel):
    """Structured output: budget statements and how pressing the spend is."""
    has_explicit: bool = Field(..., description="True only when the user named an amount or range")
    min_usd: Optional[float] = Field(default=None, ge=0)
    max_usd: Optional[float] = Field(default=None, ge=0)
    urgency: UnitFloat = Field(
        default=0.5,
        description="0.5 without a clear signal, 0.7-1.0 when urgent, 0.0-0.3 when not",
    )


class TimelineExtraction(BaseModel):
    """Structured output: deadline pressure."""
    urgency: UnitFloat = Field(..., description="0 = no urgency, 1 = very urgent")
    explicit: Optional[str] = Field(default=None, description="Verbatim timeline mention, e.g. 'next quarter'")


class InterestExtraction(BaseModel):
    """Structured output: buyer interest after a pitch."""
    level: UnitFloat


class ObjectionExtraction(BaseModel):
    """Structured output: the objection in the latest message, if any."""
    type: Optional[ObjectionType] = Field(default=None, description="null when there is no objection")
    confidence: UnitFloat = 0.0


class ConversationSignals(BaseModel):
    """
    Funnel-progression facts the user stated in the conversation.

    None means "no update": a failed or skipped extraction never clears
    what the context already knows.
    """
    company_size: Optional[str] = None
    employee_count: Optional[int] = None
    seniority: Optional[str] = None
    budget: Optional[BudgetSignal] = None
    timeline: Optional[TimelineSignal] = None
    interest_level: Optional[UnitFloat] = None
    objection: Optional[ObjectionType] = None

    @property
    def has_updates(self) -> bool:
        return any(value is not None for value in self.model_dump().values())
