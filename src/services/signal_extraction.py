"""
Conversation Signal Extraction
Reads funnel-progression signals out of what the user actually said, so a
lead can qualify from the conversation alone.

Before qualification: company size, budget, timeline and self-stated
seniority. After the pitch: interest level and the objection in the
latest message. Each extractor degrades to "no update" on failure.
"""
import asyncio
from typing import Optional, Sequence, Type, TypeVar
from pydantic import BaseModel
from src.config import get_settings
from src.models.intelligence import (
    BudgetSignal,
    CompanyProfile,
    IntelligenceContext,
    PersonProfile,
    TimelineSignal,
)
from src.models.message import ConversationTurn, format_transcript, user_turns
from src.models.signals import (
    BudgetExtraction,
    CompanySizeExtraction,
    ConversationSignals,
    InterestExtraction,
    ObjectionExtraction,
    TimelineExtraction,
)
from src.utils.llm_client import GenerationService
from src.utils.observability import logger
from src.utils.patterns import SENIORITY_PATTERNS

EXTRACTION_TEMPERATURE = 0.3
TRANSCRIPT_WINDOW = 12
MESSAGE_CHAR_LIMIT = 500

M = TypeVar("M", bound=BaseModel)


def detect_seniority(messages: Sequence[ConversationTurn]) -> Optional[str]:
    """Seniority the user stated about themselves, newest statement first."""
    for message in reversed(user_turns(messages)):
        for seniority, pattern in SENIORITY_PATTERNS:
            if pattern.search(message.content):
                return seniority
    return None


def build_company_size_prompt(transcript: str) -> str:
    return f"""Read this sales conversation and work out how many people work at the user's company.

Buckets: 1-10, 11-50, 51-200, 201-1000, 1000+.
Use "unknown" unless the user stated a head count or something that clearly implies one.
Set employee_count only when the user gave a number.

Conversation:
{transcript}"""


def build_budget_prompt(transcript: str) -> str:
    return f"""Read this sales conversation and extract what the user said about budget.

- has_explicit: true only if the user named an amount or a range
- min_usd / max_usd: the amounts in US dollars ("$120k" = 120000), null when not stated
- urgency: how pressing the spend is, 0.5 when there is no clear signal

Conversation:
{transcript}"""


def build_timeline_prompt(transcript: str) -> str:
    return f"""Read this sales conversation and rate how urgently the user needs a solution.

- urgency: 0.0 (no rush) to 1.0 (needs it immediately)
- explicit: the user's own timeline words ("within a month", "next quarter"), null when absent

Conversation:
{transcript}"""


def build_interest_prompt(transcript: str) -> str:
    return f"""A product was just pitched in this conversation. Rate the user's buying interest
from 0.0 (not interested) to 1.0 (ready to buy), based on their replies.

Conversation:
{transcript}"""


def build_objection_prompt(message: str) -> str:
    return f"""Classify the sales objection in this message, if there is one.

Types: price, timing, authority (someone else decides), need (not sure they need it),
trust (doubts it will work). Use null when the message raises no objection.
confidence: 0.0 to 1.0.

Message: {message}"""


def apply_signals(context: IntelligenceContext, signals: ConversationSignals) -> IntelligenceContext:
    """
    Returns a copy of the context with the signals merged in. Only
    progression fields change; an explicit budget is never downgraded.
    """
    update = {}

    if signals.company_size or signals.employee_count:
        company = context.company or CompanyProfile()
        changes = {}
        if signals.company_size:
            changes["size"] = signals.company_size
        if signals.employee_count:
            changes["employee_count"] = signals.employee_count
        update["company"] = company.model_copy(update=changes)

    if signals.seniority:
        person = context.person or PersonProfile()
        update["person"] = person.model_copy(update={"seniority": signals.seniority})

    if signals.budget is not None:
        previous = context.budget or BudgetSignal()
        update["budget"] = BudgetSignal(
            has_explicit=previous.has_explicit or signals.budget.has_explicit,
            min_usd=signals.budget.min_usd if signals.budget.min_usd is not None else previous.min_usd,
            max_usd=signals.budget.max_usd if signals.budget.max_usd is not None else previous.max_usd,
            urgency=signals.budget.urgency,
        )

    if signals.timeline is not None:
        update["timeline"] = signals.timeline
    if signals.interest_level is not None:
        update["interest_level"] = signals.interest_level
    if signals.objection is not None:
        update["current_objection"] = signals.objection.value

    return context.model_copy(update=update) if update else context


class ConversationSignalExtractor:
    """
    Runs the structured extractors for one turn.

    Usage:
        >>> extractor = ConversationSignalExtractor(generation)
        >>> signals = await extractor.extract(turns, context, "sess-1")
        >>> if signals.has_updates:
        ...     context = apply_signals(context, signals)
    """

    def __init__(
        self,
        generation: GenerationService,
        enabled: bool | None = None,
        objection_min_confidence: float | None = None,
    ):
        settings = get_settings()
        self.generation = generation
        self.enabled = settings.signal_extraction_enabled if enabled is None else enabled
        self.objection_min_confidence = (
            settings.objection_min_confidence if objection_min_confidence is None else objection_min_confidence
        )

    async def _extract(self, schema: Type[M], prompt: str, session_id: str) -> Optional[M]:
        try:
            return await self.generation.generate_object(schema, prompt, temperature=EXTRACTION_TEMPERATURE)
        except Exception as e:
            logger.warning(f"⚠️ [Signals] {schema.__name__} extraction failed for {session_id}: {e}")
            return None

    async def extract(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
        session_id: str,
        pitch_delivered: bool = False,
    ) -> ConversationSignals:
        """
        Args:
            messages: Conversation so far, latest user turn last
            context: Sanitized context; qualification extractors are skipped once it is fully qualified
            session_id: Used for logging only
            pitch_delivered: Enables the interest and objection extractors

        Returns:
            ConversationSignals; fields left None are "no update"
        """
        signals = ConversationSignals()
        users = user_turns(messages)
        if not self.enabled or not users:
            return signals

        transcript = format_transcript(list(messages)[-TRANSCRIPT_WINDOW:], max_chars=MESSAGE_CHAR_LIMIT)

        if context is None or not context.is_fully_qualified:
            signals.seniority = detect_seniority(messages)
            size, budget, timeline = await asyncio.gather(
                self._extract(CompanySizeExtraction, build_company_size_prompt(transcript), session_id),
                self._extract(BudgetExtraction, build_budget_prompt(transcript), session_id),
                self._extract(TimelineExtraction, build_timeline_prompt(transcript), session_id),
            )
            if size is not None and size.size != "unknown":
                signals.company_size = size.size
                signals.employee_count = size.employee_count
            if budget is not None:
                signals.budget = BudgetSignal(
                    has_explicit=budget.has_explicit,
                    min_usd=budget.min_usd,
                    max_usd=budget.max_usd,
                    urgency=budget.urgency,
                )
            if timeline is not None:
                signals.timeline = TimelineSignal(urgency=timeline.urgency, explicit=timeline.explicit)

        if pitch_delivered:
            latest = users[-1].content[:MESSAGE_CHAR_LIMIT]
            interest, objection = await asyncio.gather(
                self._extract(InterestExtraction, build_interest_prompt(transcript), session_id),
                self._extract(ObjectionExtraction, build_objection_prompt(latest), session_id),
            )
            if interest is not None:
                signals.interest_level = interest.level
            if (
                objection is not None
                and objection.type is not None
                and objection.confidence >= self.objection_min_confidence
            ):
                signals.objection = objection.type

        if signals.has_updates:
            logger.debug(
                f"[Signals] {session_id}: "
                f"{signals.model_dump(exclude_none=True, mode='json')}"
            )
        return signals
