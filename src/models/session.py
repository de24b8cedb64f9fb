from typing import Any, Dict, Optional
from pydantic import Field
from src.models.base import MongoBaseModel


class SessionRecord(MongoBaseModel):
    """
    One conversation session as held by the record store.
    `version` backs optimistic locking for concurrent writers.
    """
    session_id: str
    intelligence_context: Dict[str, Any] = Field(default_factory=dict)
    last_agent: Optional[str] = None
    last_stage: Optional[str] = None
    last_event_id: Optional[str] = None
    version: int = 0
