from enum import StrEnum
from typing import List, Optional
from pydantic import BaseModel, Field


class IssueType(StrEnum):
    FABRICATED_ROI = "fabricated_roi"
    FALSE_BOOKING_CLAIM = "false_booking_claim"
    SKIPPED_QUESTION = "skipped_question"
    HALLUCINATED_ACTION = "hallucinated_action"
    HALLUCINATED_IDENTITY_FACT = "hallucinated_identity_fact"
    IDENTITY_LEAK = "identity_leak"


class Severity(StrEnum):
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ValidationIssue(BaseModel):
    type: IssueType
    severity: Severity
    message: str
    suggestion: Optional[str] = None


class IdentityClaims(BaseModel):
    """What the user has actually confirmed about themselves."""
    confirmed: bool = False
    name: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None


class ValidationContext(BaseModel):
    tools_used: List[str] = Field(default_factory=list)
    user_question: Optional[str] = None
    agent_name: str
    stage: str
    identity: Optional[IdentityClaims] = None


class ValidationResult(BaseModel):
    is_valid: bool
    issues: List[ValidationIssue] = Field(default_factory=list)
    should_block: bool = False
    corrected_response: Optional[str] = None

    @property
    def has_critical_issues(self) -> bool:
        return any(i.severity == Severity.CRITICAL for i in self.issues)


class QuickValidationResult(BaseModel):
    has_critical_issue: bool
    issue: Optional[IssueType] = None
