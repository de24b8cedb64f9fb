from enum import StrEnum
from typing import Any, Dict
import datetime as dt
from pydantic import BaseModel, Field
from src.models.base import utc_now


class AuditAction(StrEnum):
    AGENT_ROUTED = "agent_routed"
    AGENT_STAGE_TRANSITION = "agent_stage_transition"
    AGENT_EXECUTION = "agent_execution"
    TOOL_EXECUTED = "tool_executed"


class AuditEvent(BaseModel):
    session_id: str
    action: AuditAction
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: dt.datetime = Field(default_factory=utc_now)
