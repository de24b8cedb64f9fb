from enum import StrEnum
from typing import Any, Optional
from pydantic import BaseModel, Field


class ToolExecutionResult(BaseModel):
    """Outcome of a single Tool Executor call. Failures are values, not exceptions."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    cached: bool = False
    attempt: int = 0


class Product(StrEnum):
    WORKSHOP = "workshop"
    CONSULTING = "consulting"


class RoiEstimate(BaseModel):
    """Structured output for the calculate_roi tool."""
    projected_roi: float = Field(..., description="Projected return as a multiple of the investment")
    payback_months: float = Field(..., ge=0, description="Months until the investment pays back")
    reasoning: str = Field(..., description="Short justification of the estimate")
