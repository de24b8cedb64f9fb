"""
Intelligence Context Sanitizer
Gates untrusted research data before it reaches any generation call.

Research can be wrong (wrong company, wrong role, wrong person). Identity
facts only flow into prompts after the user has confirmed who they are;
fields that drive funnel progression always flow.
"""
from typing import Any, Dict, Mapping, Optional
from loguru import logger
from pydantic import ValidationError
from pydantic.alias_generators import to_camel
from src.models.intelligence import IntelligenceContext

CITATION_LIMIT = 12
VERIFIED_RESEARCH_CONFIDENCE = 0.85

PASSTHROUGH_KEYS = (
    "lead_score",
    "fit_score",
    "budget",
    "timeline",
    "interest_level",
    "current_objection",
    "calendar_booked",
    "pitch_delivered",
    "role_confidence",
    "research_confidence",
    "last_updated",
    "session_id",
)

CONFIRMED_COMPANY_KEYS = ("name", "industry", "summary", "website", "linkedin")
CONFIRMED_PERSON_KEYS = ("full_name", "role", "profile_url")


def _pick(record: Mapping[str, Any], key: str, *fallbacks: str) -> Any:
    """Reads a snake_case key, falling back to its camelCase spelling."""
    for candidate in (key, to_camel(key), *fallbacks):
        if candidate in record:
            return record[candidate]
    return None


def _has(record: Mapping[str, Any], key: str) -> bool:
    return key in record or to_camel(key) in record


def _non_empty_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    return value if isinstance(value, Mapping) else None


def _coerce_location(value: Any) -> Optional[Dict[str, Any]]:
    location = _as_mapping(value)
    if location is None:
        return None
    latitude = _pick(location, "latitude", "lat")
    longitude = _pick(location, "longitude", "lng")
    if not (_is_number(latitude) and _is_number(longitude)):
        return None
    result: Dict[str, Any] = {"latitude": latitude, "longitude": longitude}
    for key in ("city", "country"):
        text = _non_empty_string(location.get(key))
        if text:
            result[key] = text
    return result


def _citations(record: Mapping[str, Any]) -> Optional[list]:
    research = _as_mapping(_pick(record, "research"))
    if research is None:
        return None
    citations = research.get("citations")
    return list(citations) if isinstance(citations, (list, tuple)) else None


def is_identity_verified(record: Mapping[str, Any]) -> bool:
    """
    Research counts as verified only when it is grounded:
    profile.identity.verified, research confidence >= 0.85 and at least one citation.
    Verification alone never authorizes identity fields.
    """
    profile = _as_mapping(_pick(record, "profile"))
    identity = _as_mapping(profile.get("identity")) if profile else None
    profile_verified = bool(identity) and identity.get("verified") is True

    confidence = _pick(record, "research_confidence")
    confidence = confidence if _is_number(confidence) else 0

    citations = _citations(record) or []
    return profile_verified and confidence >= VERIFIED_RESEARCH_CONFIDENCE and len(citations) > 0


def _to_record(raw: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(raw, IntelligenceContext):
        return raw.model_dump(exclude_none=True)
    return _as_mapping(raw)


def _validate_dropping_malformed(data: Dict[str, Any]) -> IntelligenceContext:
    """
    Validates the sanitized record, discarding top-level fields whose values
    are malformed instead of failing the whole turn.
    """
    while True:
        try:
            return IntelligenceContext.model_validate(data)
        except ValidationError as e:
            bad = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
            dropped = [key for key in list(data) if key in bad or to_camel(key) in bad]
            if not dropped:
                raise
            logger.warning(f"⚠️ Dropping malformed context fields: {dropped}")
            for key in dropped:
                data.pop(key)


def sanitize_intelligence_context(raw: Any) -> Optional[IntelligenceContext]:
    """
    Produces the only context view an agent is allowed to see.

    Args:
        raw: IntelligenceContext, or a raw (snake_case or camelCase) mapping
             as read from the record store.

    Returns:
        A new IntelligenceContext, or None when the input is not a record or
        carries neither a non-blank email nor a non-blank name.
        The input is never mutated.
    """
    record = _to_record(raw)
    if record is None:
        return None

    email = _non_empty_string(_pick(record, "email"))
    name = _non_empty_string(_pick(record, "name"))
    if not email and not name:
        return None

    confirmed = _pick(record, "identity_confirmed") is True
    verified = is_identity_verified(record)

    sanitized: Dict[str, Any] = {"identity_confirmed": confirmed}
    if email:
        sanitized["email"] = email
    if name:
        sanitized["name"] = name

    for key in PASSTHROUGH_KEYS:
        if _has(record, key):
            value = _pick(record, key)
            if value is not None:
                sanitized[key] = value

    location = _coerce_location(_pick(record, "location"))
    if location:
        sanitized["location"] = location

    citations = _citations(record)
    if confirmed and verified and citations is not None:
        sanitized["research"] = {"citations": citations[:CITATION_LIMIT]}

    # Company: domain always survives, identity-heavy fields only once confirmed.
    company_in = _as_mapping(_pick(record, "company"))
    email_domain = email.split("@", 1)[1].strip() if email and "@" in email else None
    domain = _non_empty_string(company_in.get("domain")) if company_in else None
    domain = domain or email_domain or None
    if domain:
        company_out: Dict[str, Any] = {"domain": domain}
        if company_in is not None:
            size = company_in.get("size")
            if size is not None:
                company_out["size"] = size
            employee_count = _pick(company_in, "employee_count")
            if _is_number(employee_count):
                company_out["employee_count"] = employee_count
            if confirmed:
                for key in CONFIRMED_COMPANY_KEYS:
                    text = _non_empty_string(company_in.get(key))
                    if text:
                        company_out[key] = text
        sanitized["company"] = company_out

    # Person: seniority drives stage progression, so it survives unconfirmed.
    person_in = _as_mapping(_pick(record, "person"))
    if person_in is not None:
        person_out: Dict[str, Any] = {}
        seniority = _non_empty_string(person_in.get("seniority"))
        if seniority:
            person_out["seniority"] = seniority
        if confirmed:
            for key in CONFIRMED_PERSON_KEYS:
                text = _non_empty_string(_pick(person_in, key))
                if text:
                    person_out[key] = text
        if person_out:
            sanitized["person"] = person_out

    if confirmed:
        role = _non_empty_string(_pick(record, "role"))
        if role:
            sanitized["role"] = role

    # Research output needs confirmation and grounding; memory facts need confirmation.
    if confirmed and verified:
        profile = _as_mapping(_pick(record, "profile"))
        if profile is not None:
            sanitized["profile"] = dict(profile)
        strategic = _as_mapping(_pick(record, "strategic_context"))
        if strategic is not None:
            sanitized["strategic_context"] = dict(strategic)

    facts = _pick(record, "facts")
    if confirmed and isinstance(facts, (list, tuple)):
        sanitized["facts"] = list(facts)

    return _validate_dropping_malformed(sanitized)


def parse_intelligence_context(raw: Any) -> Optional[IntelligenceContext]:
    """
    Full, unsanitized view of a stored record. For merging corrections and
    writing back; never hand the result to a generation call directly.
    """
    record = _to_record(raw)
    if record is None:
        return None
    return _validate_dropping_malformed(dict(record))
