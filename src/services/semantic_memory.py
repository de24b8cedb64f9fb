"""
Semantic Memory
Extracts durable facts about a person from the conversation and recalls
them in later sessions, keyed by email.

Extraction runs in the background every few user turns and must never
break the conversation; retrieval degrades to an empty list.
"""
from typing import List, Optional, Sequence
from src.config import get_settings
from src.models.fact import ExtractedFacts, Fact, FactCategory
from src.models.message import ConversationTurn, user_turns
from src.repositories.base import FactStore
from src.utils.background import BackgroundTaskRunner
from src.utils.llm_client import GenerationService
from src.utils.observability import logger

PLACEHOLDER_EMAIL = "unknown@example.com"
EXTRACTION_WINDOW = 20
MIN_MESSAGES = 2
MESSAGE_CHAR_LIMIT = 500
DEFAULT_FACT_CONFIDENCE = 0.7
EXTRACTION_TEMPERATURE = 0.3


def is_usable_email(email: Optional[str]) -> bool:
    return bool(email) and email != PLACEHOLDER_EMAIL


def build_extraction_prompt(messages: Sequence[ConversationTurn], existing_facts: Sequence[str]) -> str:
    existing = ""
    if existing_facts:
        numbered = "\n".join(f"{i}. {fact}" for i, fact in enumerate(existing_facts, start=1))
        existing = f"\n\nEXISTING FACTS (avoid duplicates):\n{numbered}"

    conversation = "\n\n".join(
        f"{m.role.value}: {m.content[:MESSAGE_CHAR_LIMIT]}" for m in messages
    )

    return f"""Extract permanent facts about the user from this conversation.

Focus on:
- Constraints (privacy requirements, budget limits, technical constraints)
- Preferences (communication style, tool preferences, local vs cloud)
- Tech stack (tools, platforms, frameworks they use)
- Budget/timeline information (explicit mentions)
- Goals and pain points (what they're trying to achieve, what's blocking them)

EXCLUDE:
- Temporary states ("I'm testing X")
- Questions they asked (unless it reveals a constraint)
- Generic statements without specifics
{existing}

Conversation:
{conversation}

Extract only NEW facts that aren't already in the existing facts list."""


class SemanticMemoryService:
    """
    Fact extraction and retrieval over a FactStore.

    Usage:
        >>> memory = SemanticMemoryService(generation, MongoFactRepository(db))
        >>> facts = await memory.retrieve_facts("ana@acme.com")
        >>> if memory.should_extract(turn_count):
        ...     memory.schedule_extraction(runner, turns, facts, session_id, email)
    """

    def __init__(
        self,
        generation: GenerationService,
        fact_store: FactStore,
        extraction_interval: int | None = None,
        retrieval_limit: int | None = None,
        min_confidence: float | None = None,
    ):
        settings = get_settings()
        self.generation = generation
        self.fact_store = fact_store
        self.extraction_interval = extraction_interval or settings.fact_extraction_interval
        self.retrieval_limit = retrieval_limit or settings.fact_retrieval_limit
        self.min_confidence = settings.fact_min_confidence if min_confidence is None else min_confidence

    def should_extract(self, turn_count: int) -> bool:
        """True on every Nth user turn."""
        return turn_count > 0 and turn_count % self.extraction_interval == 0

    async def extract_facts(
        self,
        messages: Sequence[ConversationTurn],
        existing_facts: Sequence[str],
        session_id: str,
        email: Optional[str],
    ) -> None:
        if not is_usable_email(email):
            logger.debug("[SemanticMemory] Skipping fact extraction - no valid email")
            return

        try:
            recent = list(messages)[-EXTRACTION_WINDOW:]
            if len(recent) < MIN_MESSAGES:
                logger.debug("[SemanticMemory] Not enough messages to extract facts")
                return

            extracted = await self.generation.generate_object(
                ExtractedFacts,
                build_extraction_prompt(recent, existing_facts),
                temperature=EXTRACTION_TEMPERATURE,
            )
            if not extracted or not extracted.facts:
                logger.debug("[SemanticMemory] No new facts extracted")
                return

            facts = [
                Fact(
                    text=item.fact.strip(),
                    category=item.category or FactCategory.OTHER,
                    confidence=item.confidence if item.confidence is not None else DEFAULT_FACT_CONFIDENCE,
                    session_id=session_id,
                    email=email,
                )
                for item in extracted.facts
                if item.fact and item.fact.strip()
            ]
            if not facts:
                logger.debug("[SemanticMemory] No valid facts to insert")
                return

            await self.fact_store.insert_facts(facts)
            logger.info(f"🧠 Stored {len(facts)} facts for session {session_id}")

        except Exception as e:
            logger.warning(f"⚠️ [SemanticMemory] Fact extraction failed for session {session_id}: {e}")

    async def retrieve_facts(self, email: Optional[str]) -> List[str]:
        """Most recent facts for an identity, filtered by confidence. Never raises."""
        if not is_usable_email(email):
            return []

        try:
            records = await self.fact_store.find_recent_by_email(email, limit=self.retrieval_limit)
        except Exception as e:
            logger.warning(f"⚠️ [SemanticMemory] Fact retrieval failed: {e}")
            return []

        records = list(records)[:self.retrieval_limit]
        facts = [
            record.text for record in records
            if (record.confidence if record.confidence is not None else 0.5) >= self.min_confidence
        ]
        logger.debug(f"[SemanticMemory] Retrieved {len(facts)} facts")
        return facts

    def schedule_extraction(
        self,
        runner: BackgroundTaskRunner,
        messages: Sequence[ConversationTurn],
        existing_facts: Sequence[str],
        session_id: str,
        email: Optional[str],
    ) -> bool:
        """
        Fire-and-forget extraction on the runner.

        Returns:
            True when a task was scheduled
        """
        if not is_usable_email(email):
            return False
        runner.schedule(
            self.extract_facts(list(messages), list(existing_facts), session_id, email),
            name=f"fact_extraction:{session_id}",
        )
        return True

    def maybe_schedule_extraction(
        self,
        runner: BackgroundTaskRunner,
        messages: Sequence[ConversationTurn],
        existing_facts: Sequence[str],
        session_id: str,
        email: Optional[str],
    ) -> bool:
        if not self.should_extract(len(user_turns(messages))):
            return False
        return self.schedule_extraction(runner, messages, existing_facts, session_id, email)
