from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from src.models.exit_signal import ExitIntent, SentimentTrend
from src.models.funnel import FunnelStage
from src.models.intelligence import FitScore
from src.models.signals import ConversationSignals
from src.models.validation import ValidationIssue


class AgentResult(BaseModel):
    """What a stage agent hands back to the router."""
    output: str
    agent: str
    model: Optional[str] = None
    tools_used: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ResponseMetadata(BaseModel):
    lead_score: Optional[float] = None
    fit_score: Optional[FitScore] = None
    tools_used: List[str] = Field(default_factory=list)
    validation_issues: List[ValidationIssue] = Field(default_factory=list)
    exit_intent: Optional[ExitIntent] = None
    sentiment_trend: Optional[SentimentTrend] = None
    signals: Optional[ConversationSignals] = None
    regenerated: bool = False
    blocked: bool = False
    facts_loaded: int = 0
    duration_ms: Optional[float] = None
    error: Optional[str] = None


class ResponseEnvelope(BaseModel):
    """
    The router's answer for one turn.
    `output` has always passed validation (or is a safe substitute).
    """
    output: str
    agent: str
    stage: FunnelStage
    success: bool = True
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)
