from typing import Dict, List, Optional
from pydantic import BaseModel, Field
from src.models.tool_result import Product


class ConversationSummary(BaseModel):
    """Stakeholder-ready recap produced when a conversation ends."""
    executive_summary: str
    key_findings: Dict[str, str] = Field(default_factory=dict)
    pain_points: List[str] = Field(default_factory=list)
    recommended_solution: Optional[Product] = None
    solution_rationale: Optional[str] = None
    pricing_ballpark: Optional[str] = None
    next_steps: Optional[str] = None
