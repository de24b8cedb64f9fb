# src/models/intelligence.py
import datetime as dt
from typing import Annotated, Any, Dict, List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UnitFloat = Annotated[float, Field(ge=0, le=1.0)]

SENIOR_SENIORITIES = ("C-Level", "VP", "Director")


class ContextModel(BaseModel):
    """
    Shared config for context records.
    Accepts both snake_case and the camelCase keys the storage layer writes.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class CompanyProfile(ContextModel):
    domain: Optional[str] = None
    name: Optional[str] = None
    industry: Optional[str] = None
    size: Optional[str] = None  # '1-10' | '11-50' | '51-200' | '201-1000' | '1000+' | 'unknown'
    employee_count: Optional[int] = None
    summary: Optional[str] = None
    website: Optional[str] = None
    linkedin: Optional[str] = None


class PersonProfile(ContextModel):
    full_name: Optional[str] = None
    role: Optional[str] = None
    seniority: Optional[str] = None  # 'C-Level' | 'VP' | 'Director' | 'Manager' | ...
    profile_url: Optional[str] = None


class Location(ContextModel):
    latitude: float = Field(validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(validation_alias=AliasChoices("longitude", "lng"))
    city: Optional[str] = None
    country: Optional[str] = None


class ResearchData(ContextModel):
    citations: List[Any] = Field(default_factory=list)


class BudgetSignal(ContextModel):
    has_explicit: bool = False
    min_usd: Optional[float] = None
    max_usd: Optional[float] = None
    urgency: UnitFloat = 0.5


class TimelineSignal(ContextModel):
    urgency: UnitFloat = 0.5
    explicit: Optional[str] = None


class FitScore(ContextModel):
    workshop: UnitFloat = 0.0
    consulting: UnitFloat = 0.0


class IntelligenceContext(ContextModel):
    """
    Mutable, partially-untrusted record describing the counterpart.

    Research-derived identity fields (company name, person full name, role,
    profile, strategic context, facts) may only reach a prompt after the user
    has confirmed their identity. See src.utils.context_sanitizer.
    """
    email: Optional[str] = None
    name: Optional[str] = None
    identity_confirmed: bool = False

    company: Optional[CompanyProfile] = None
    person: Optional[PersonProfile] = None
    role: Optional[str] = None
    role_confidence: Optional[UnitFloat] = None
    research_confidence: UnitFloat = 0.0
    location: Optional[Location] = None
    research: Optional[ResearchData] = None

    # Funnel progression
    lead_score: Optional[float] = None
    fit_score: Optional[FitScore] = None
    budget: Optional[BudgetSignal] = None
    timeline: Optional[TimelineSignal] = None
    interest_level: Optional[UnitFloat] = None
    current_objection: Optional[str] = None
    calendar_booked: Optional[bool] = None
    pitch_delivered: Optional[bool] = None

    # High-risk research output
    profile: Optional[Dict[str, Any]] = None
    strategic_context: Optional[Dict[str, Any]] = None
    facts: Optional[List[str]] = None

    session_id: Optional[str] = None
    last_updated: Optional[dt.datetime] = None

    @property
    def email_domain(self) -> Optional[str]:
        if not self.email or "@" not in self.email:
            return None
        domain = self.email.split("@", 1)[1].strip()
        return domain or None

    @property
    def has_asserted_identity(self) -> bool:
        """True when the record already names a company or a person."""
        return bool(
            (self.company and self.company.name)
            or (self.person and self.person.full_name)
        )

    @property
    def is_fully_qualified(self) -> bool:
        """Company size, an explicit budget and a senior buyer are all known."""
        size = self.company.size if self.company else None
        seniority = self.person.seniority if self.person else None
        return bool(
            size
            and size != "unknown"
            and self.budget is not None
            and self.budget.has_explicit
            and seniority in SENIOR_SENIORITIES
        )


class CompanyCorrection(ContextModel):
    name: Optional[str] = None
    domain: Optional[str] = None


class PersonCorrection(ContextModel):
    full_name: Optional[str] = None
    role: Optional[str] = None


class CorrectionData(ContextModel):
    """Fields the user explicitly corrected about themselves."""
    name: Optional[str] = None
    company: Optional[CompanyCorrection] = None
    role: Optional[str] = None
    person: Optional[PersonCorrection] = None
    confidence: UnitFloat

    @property
    def has_identity_fields(self) -> bool:
        return bool(
            self.name
            or self.role
            or (self.company and (self.company.name or self.company.domain))
            or (self.person and (self.person.full_name or self.person.role))
        )
