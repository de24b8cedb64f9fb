"""
Correction Detector
Notices when the user corrects what we believe about them ("actually, I'm
the CTO at Acme") and folds the correction back into the context.

A correction is the user asserting their own identity, so applying one
marks the identity as confirmed.
"""
import json
from typing import Optional
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from src.models.base import utc_now
from src.models.intelligence import (
    CompanyCorrection,
    CompanyProfile,
    CorrectionData,
    IntelligenceContext,
    PersonCorrection,
    PersonProfile,
)
from src.models.message import ConversationTurn, MessageRole
from src.utils import patterns
from src.utils.llm_client import GenerationService

CORRECTION_TEMPERATURE = 0.1
MIN_CORRECTION_CONFIDENCE = 0.3


class CorrectionResponse(BaseModel):
    """The JSON contract the detection prompt asks for."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_correction: bool = False
    corrected_name: Optional[str] = None
    corrected_company: Optional[str] = None
    corrected_role: Optional[str] = None
    corrected_full_name: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0, le=1.0)


def _build_prompt(user_message: str, context: IntelligenceContext) -> str:
    company = context.company.name if context.company and context.company.name else None
    role = context.person.role if context.person and context.person.role else None
    full_name = context.person.full_name if context.person and context.person.full_name else None

    return f"""You are analyzing a user message to detect if they are correcting information about themselves.

Current context (may be incorrect):
Name: {context.name or 'Not provided'}
Company: {company or 'Not provided'}
Role: {role or 'Not provided'}
Full Name: {full_name or 'Not provided'}

User message: "{user_message}"

Analyze if the user is correcting any of this information. Extract ONLY the corrected information they provide.

Return JSON with this structure:
{{
  "isCorrection": boolean,
  "correctedName": string | null,
  "correctedCompany": string | null,
  "correctedRole": string | null,
  "correctedFullName": string | null,
  "confidence": number (0-1)
}}

Rules:
- Only return corrected fields if user explicitly provides new information
- If user says "that's wrong" but doesn't provide correct info, set confidence to 0.3
- If user provides specific corrected info, set confidence to 0.9
- If user is just clarifying (not correcting), set isCorrection to false
- Return null for fields that weren't corrected"""


def _to_correction(parsed: CorrectionResponse) -> CorrectionData:
    name = parsed.corrected_name or None
    person: Optional[PersonCorrection] = None
    company: Optional[CompanyCorrection] = None
    role: Optional[str] = None

    if parsed.corrected_full_name:
        person = PersonCorrection(full_name=parsed.corrected_full_name)
        if not name:
            name = parsed.corrected_full_name.split(" ")[0] or parsed.corrected_full_name

    if parsed.corrected_company:
        company = CompanyCorrection(name=parsed.corrected_company)

    if parsed.corrected_role:
        role = parsed.corrected_role
        person = (person or PersonCorrection()).model_copy(update={"role": parsed.corrected_role})

    return CorrectionData(
        name=name,
        company=company,
        role=role,
        person=person,
        confidence=parsed.confidence,
    )


class CorrectionDetector:
    """
    Detects self-corrections in a user message.

    Skips the generation call entirely when the message has no correction
    phrase and the context asserts no identity that could be wrong.
    """

    def __init__(self, generation: GenerationService):
        self.generation = generation

    @staticmethod
    def has_correction_phrase(message: str) -> bool:
        return patterns.matches_any(patterns.CORRECTION_PATTERNS, message)

    async def detect_correction(
        self,
        user_message: str,
        current_context: Optional[IntelligenceContext],
    ) -> Optional[CorrectionData]:
        if not user_message or current_context is None:
            return None

        if not self.has_correction_phrase(user_message) and not current_context.has_asserted_identity:
            return None

        try:
            response = await self.generation.generate(
                system_prompt=_build_prompt(user_message, current_context),
                messages=[ConversationTurn(role=MessageRole.USER, content=user_message)],
                temperature=CORRECTION_TEMPERATURE,
            )
            if not response or not response.text:
                return None

            json_match = patterns.JSON_OBJECT.search(response.text)
            if not json_match:
                logger.debug("Correction detector: no JSON object in response")
                return None

            parsed = CorrectionResponse.model_validate(json.loads(json_match.group(0)))
            if not parsed.is_correction or parsed.confidence < MIN_CORRECTION_CONFIDENCE:
                return None

            correction = _to_correction(parsed)
            logger.info(
                f"✏️ Correction detected | confidence={correction.confidence} | "
                f"identity_fields={correction.has_identity_fields}"
            )
            return correction

        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"⚠️ Correction detector got malformed output: {e}")
            return None
        except Exception as e:
            logger.warning(f"⚠️ Failed to detect corrections: {e}")
            return None


def apply_corrections(context: IntelligenceContext, corrections: CorrectionData) -> IntelligenceContext:
    """
    Returns a new context with the corrections merged in.

    Idempotent: re-applying the same correction changes nothing, including
    `last_updated`, which only moves when a field value actually changes.
    """
    updates: dict = {}
    person = context.person.model_copy() if context.person else None
    company = context.company.model_copy() if context.company else None

    if corrections.name:
        updates["name"] = corrections.name

    if corrections.person and corrections.person.full_name:
        person = person or PersonProfile()
        person = person.model_copy(update={"full_name": corrections.person.full_name})

    role = corrections.role or (corrections.person.role if corrections.person else None)
    if role:
        updates["role"] = role
        person = person or PersonProfile()
        if not person.full_name:
            person = person.model_copy(update={"full_name": updates.get("name") or context.name})
        person = person.model_copy(update={"role": role})

    if corrections.company and corrections.company.name:
        company = company or CompanyProfile()
        company = company.model_copy(update={"name": corrections.company.name})

    if corrections.company and corrections.company.domain:
        company = company or CompanyProfile()
        company = company.model_copy(update={"domain": corrections.company.domain})

    if person != context.person:
        updates["person"] = person
    if company != context.company:
        updates["company"] = company

    if corrections.has_identity_fields:
        updates["identity_confirmed"] = True

    changed = {k: v for k, v in updates.items() if getattr(context, k) != v}
    if not changed:
        return context.model_copy()

    changed["last_updated"] = utc_now()
    return context.model_copy(update=changed)
