"""
Agent Result Persistence

Writes the outcome of each routed turn (agent, stage, scores) back to the
session record with optimistic locking. Runs in the background; failures
are logged, never raised to the conversation.
"""
import uuid
from typing import Any, Dict, Optional
from src.config import get_settings
from src.models.agent_response import AgentResult
from src.models.funnel import FunnelStage
from src.models.intelligence import IntelligenceContext
from src.models.signals import ConversationSignals
from src.repositories.base import ContextStore
from src.utils.errors import VersionConflictError
from src.utils.observability import logger

ANONYMOUS_SESSION = "anonymous"
CORRECTED_FIELDS = {"name", "role", "person", "company", "identity_confirmed", "last_updated"}


def signal_fields(signals: ConversationSignals) -> Dict[str, Any]:
    """
    Dotted `$set` keys for conversation signals. Size, head count and
    seniority are written leaf by leaf so research identity fields next to
    them survive.
    """
    fields: Dict[str, Any] = {}
    if signals.company_size:
        fields["intelligence_context.company.size"] = signals.company_size
    if signals.employee_count:
        fields["intelligence_context.company.employeeCount"] = signals.employee_count
    if signals.seniority:
        fields["intelligence_context.person.seniority"] = signals.seniority
    if signals.budget is not None:
        fields["intelligence_context.budget"] = signals.budget.model_dump(by_alias=True)
    if signals.timeline is not None:
        fields["intelligence_context.timeline"] = signals.timeline.model_dump(by_alias=True)
    if signals.interest_level is not None:
        fields["intelligence_context.interestLevel"] = signals.interest_level
    if signals.objection is not None:
        fields["intelligence_context.currentObjection"] = signals.objection.value
    return fields


class AgentPersistenceService:
    def __init__(
        self,
        store: ContextStore,
        attempts: int | None = None,
        backoff_seconds: float | None = None,
    ):
        settings = get_settings()
        self.store = store
        self.attempts = attempts or settings.persistence_version_attempts
        self.backoff_seconds = (
            settings.persistence_version_backoff_seconds if backoff_seconds is None else backoff_seconds
        )

    @staticmethod
    def build_update(result: AgentResult, stage: FunnelStage, event_id: str) -> Dict[str, Any]:
        """
        `$set`-style partial. Only scores, progression flags and conversation
        signals touch the stored intelligence context; identity fields are
        never written here.
        """
        update: Dict[str, Any] = {
            "last_agent": result.agent,
            "last_stage": stage.value,
            "last_event_id": event_id,
        }
        lead_score = result.metadata.get("lead_score")
        if lead_score is not None:
            update["intelligence_context.leadScore"] = lead_score
        fit_score = result.metadata.get("fit_score")
        if fit_score is not None:
            update["intelligence_context.fitScore"] = (
                fit_score.model_dump(by_alias=True) if hasattr(fit_score, "model_dump") else fit_score
            )
        if result.metadata.get("pitch_delivered"):
            update["intelligence_context.pitchDelivered"] = True
        signals = result.metadata.get("signals")
        if isinstance(signals, ConversationSignals):
            update.update(signal_fields(signals))
        return update

    async def persist_agent_result(
        self,
        session_id: Optional[str],
        result: AgentResult,
        stage: FunnelStage,
    ) -> bool:
        """
        Returns:
            True when the session record was updated
        """
        if not session_id or session_id == ANONYMOUS_SESSION:
            return False

        event_id = str(uuid.uuid4())
        update = self.build_update(result, stage, event_id)

        try:
            record = await self.store.update_with_version_check(
                session_id,
                update,
                attempts=self.attempts,
                backoff_seconds=self.backoff_seconds,
            )
            logger.debug(f"💾 Persisted {result.agent} result for {session_id} (v{record.version})")
            return True
        except VersionConflictError as e:
            logger.warning(f"⚠️ Agent result not persisted: {e}")
            return False
        except Exception as e:
            logger.warning(f"⚠️ Agent persistence failed for {session_id}: {e}")
            return False

    async def persist_corrections(self, session_id: Optional[str], context: IntelligenceContext) -> bool:
        """Writes user-confirmed identity fields back after a correction was applied."""
        if not session_id or session_id == ANONYMOUS_SESSION:
            return False

        fields = context.model_dump(
            by_alias=True,
            mode="json",
            include=CORRECTED_FIELDS,
            exclude_none=True,
        )
        update = {f"intelligence_context.{key}": value for key, value in fields.items()}

        try:
            await self.store.update_with_version_check(
                session_id,
                update,
                attempts=self.attempts,
                backoff_seconds=self.backoff_seconds,
            )
            logger.info(f"✏️ Persisted corrected identity for {session_id}")
            return True
        except VersionConflictError as e:
            logger.warning(f"⚠️ Corrections not persisted: {e}")
            return False
        except Exception as e:
            logger.warning(f"⚠️ Correction persistence failed for {session_id}: {e}")
            return False
