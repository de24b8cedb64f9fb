"""
Agent Router
The central coordinator for one conversation turn.

Pipeline:
    facts → corrections → sanitize → conversation signals → stage
    → (background) fact extraction → exit detection → stage agent → validation (+1 regeneration)
    → (background) persistence & audit → ResponseEnvelope

Nothing the user sees skips validation: a draft that is still blocked
after regeneration is replaced by a safe substitute.
"""
import time
from typing import Any, Dict, List, Optional, Sequence
from loguru import logger
from src.agents.base_agent import StageAgent, last_user_message
from src.agents.closer_agent import CloserAgent
from src.agents.correction_detector import CorrectionDetector, apply_corrections
from src.agents.discovery_agent import DiscoveryAgent
from src.agents.exit_detector import ExitIntentTracker, analyze_sentiment_trend, exit_tracker as default_exit_tracker
from src.agents.pitch_agent import PitchAgent
from src.agents.response_validator import ResponseValidator
from src.agents.scoring_agent import ScoringAgent
from src.agents.summary_agent import SummaryAgent
from src.config import get_settings
from src.core.funnel_stage import determine_funnel_stage, stage_after_pitch, stage_after_scoring
from src.models.agent_response import AgentResult, ResponseEnvelope, ResponseMetadata
from src.models.exit_signal import ExitDetectionResult, ExitIntent
from src.models.funnel import FunnelStage, RoutingTrigger
from src.models.intelligence import IntelligenceContext
from src.models.message import ConversationTurn, user_turns
from src.models.signals import ConversationSignals
from src.models.validation import IdentityClaims, Severity, ValidationContext, ValidationIssue, ValidationResult
from src.repositories.base import ContextStore, FactStore
from src.repositories.memory import InMemoryContextStore, InMemoryFactStore
from src.services.agent_persistence import ANONYMOUS_SESSION, AgentPersistenceService
from src.services.audit_logger import AuditLogger
from src.services.semantic_memory import SemanticMemoryService
from src.services.signal_extraction import ConversationSignalExtractor, apply_signals
from src.services.tool_executor import ToolExecutor
from src.utils.background import BackgroundTaskRunner
from src.utils.context_sanitizer import parse_intelligence_context, sanitize_intelligence_context
from src.utils.fallback_responses import get_blocked_response_fallback, get_error_fallback
from src.utils.llm_client import GenerationService
from src.utils.observability import log_agent_execution, log_business_event

ROUTER_NAME = "Agent Router"
SCORE_KEYS = ("lead_score", "fit_score")
CONVERSATIONAL_TRIGGERS = (RoutingTrigger.CHAT, RoutingTrigger.VOICE)


def build_default_agents(
    generation: GenerationService,
    tool_executor: ToolExecutor,
) -> Dict[FunnelStage, StageAgent]:
    return {
        FunnelStage.DISCOVERY: DiscoveryAgent(generation, tool_executor),
        FunnelStage.SCORING: ScoringAgent(generation, tool_executor),
        FunnelStage.PITCHING: PitchAgent(generation, tool_executor),
        FunnelStage.CLOSING: CloserAgent(generation, tool_executor),
        FunnelStage.SUMMARY: SummaryAgent(generation, tool_executor),
    }


def identity_claims(context: Optional[IntelligenceContext]) -> IdentityClaims:
    """What the validator may treat as known about the user."""
    if context is None:
        return IdentityClaims()
    person = context.person
    return IdentityClaims(
        confirmed=context.identity_confirmed,
        name=(person.full_name if person else None) or context.name,
        company=context.company.name if context.company else None,
        role=context.role or (person.role if person else None),
    )


def build_regeneration_instructions(issues: Sequence[ValidationIssue]) -> str:
    lines = ["Your previous draft was rejected. Rewrite it and fix these problems:"]
    for issue in issues:
        if issue.severity == Severity.WARNING:
            continue
        fix = f" {issue.suggestion}." if issue.suggestion else ""
        lines.append(f"- {issue.message}.{fix}")
    return "\n".join(lines)


def stage_for_exit(stage: FunnelStage, exit_result: ExitDetectionResult) -> FunnelStage:
    if exit_result.intent == ExitIntent.FORCE_EXIT:
        return FunnelStage.SUMMARY
    if exit_result.intent == ExitIntent.BOOKING and stage != FunnelStage.SUMMARY:
        return FunnelStage.CLOSING
    return stage


def is_conversational(trigger: RoutingTrigger | str) -> bool:
    """Chat and voice turns carry user speech worth reading signals from. Unknown triggers count as chat."""
    try:
        return RoutingTrigger(trigger) in CONVERSATIONAL_TRIGGERS
    except ValueError:
        return True


class AgentRouter:
    """
    Routes each turn to the right stage agent and guards its output.

    Usage:
        >>> router = AgentRouter(PydanticAIGenerationService(), context_store=MongoContextRepository(db))
        >>> envelope = await router.route(turns, raw_context, session_id="sess-1")
        >>> print(envelope.output, envelope.stage)
        >>> await router.shutdown()
    """

    def __init__(
        self,
        generation: GenerationService,
        context_store: ContextStore | None = None,
        fact_store: FactStore | None = None,
        audit: AuditLogger | None = None,
        tool_executor: ToolExecutor | None = None,
        exit_tracker: ExitIntentTracker | None = None,
        validator: ResponseValidator | None = None,
        runner: BackgroundTaskRunner | None = None,
        agents: Dict[FunnelStage, StageAgent] | None = None,
        max_regenerations: int | None = None,
        signal_extractor: ConversationSignalExtractor | None = None,
    ):
        settings = get_settings()
        self.generation = generation
        self.context_store = context_store or InMemoryContextStore()
        self.fact_store = fact_store or InMemoryFactStore()
        self.audit = audit or AuditLogger()
        self.tool_executor = tool_executor or ToolExecutor(audit=self.audit)
        self.exit_tracker = exit_tracker or default_exit_tracker
        self.validator = validator or ResponseValidator()
        self.runner = runner or BackgroundTaskRunner()
        self.agents = agents or build_default_agents(generation, self.tool_executor)
        self.max_regenerations = (
            settings.max_regenerations if max_regenerations is None else max_regenerations
        )

        self.memory = SemanticMemoryService(generation, self.fact_store)
        self.correction_detector = CorrectionDetector(generation)
        self.signal_extractor = signal_extractor or ConversationSignalExtractor(generation)
        self.persistence = AgentPersistenceService(self.context_store)

        logger.info("Agent Router initialized")

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Waits for background persistence and extraction to finish."""
        await self.runner.drain(timeout)

    async def route(
        self,
        messages: Sequence[ConversationTurn],
        raw_context: Any = None,
        session_id: str = ANONYMOUS_SESSION,
        trigger: RoutingTrigger | str = RoutingTrigger.CHAT,
    ) -> ResponseEnvelope:
        """
        Produces the validated response for one turn.

        Args:
            messages: Conversation so far, oldest first, latest user turn last
            raw_context: Stored intelligence context (model or raw mapping), unsanitized
            session_id: Conversation session id
            trigger: What caused this turn (chat, booking, conversation_end, ...)

        Returns:
            ResponseEnvelope; `success=False` with a safe message when the turn failed
        """
        start = time.perf_counter()
        try:
            return await self._route(list(messages), raw_context, session_id, trigger, start)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(f"❌ Routing failed for session {session_id}: {e}")
            log_agent_execution(ROUTER_NAME, session_id, "route_failed", duration_ms, error=str(e))
            return ResponseEnvelope(
                output=get_error_fallback(),
                agent=ROUTER_NAME,
                stage=determine_funnel_stage(trigger, None),
                success=False,
                metadata=ResponseMetadata(error=str(e), duration_ms=duration_ms),
            )

    async def _route(
        self,
        messages: List[ConversationTurn],
        raw_context: Any,
        session_id: str,
        trigger: RoutingTrigger | str,
        start: float,
    ) -> ResponseEnvelope:
        user_message = last_user_message(messages)

        # 1. Long-term memory for this identity
        full_context = parse_intelligence_context(raw_context)
        facts = await self.memory.retrieve_facts(full_context.email if full_context else None)

        # 2. User corrections, detected against what the agents were allowed to see
        if full_context is not None and user_message:
            visible = sanitize_intelligence_context(full_context)
            correction = await self.correction_detector.detect_correction(user_message, visible)
            if correction:
                full_context = apply_corrections(full_context, correction)
                self.runner.schedule(
                    self.persistence.persist_corrections(session_id, full_context),
                    name=f"persist_corrections:{session_id}",
                )

        # 3. Sanitize
        context = sanitize_intelligence_context(full_context)
        if context is not None and facts and context.identity_confirmed:
            merged = list(dict.fromkeys([*(context.facts or []), *facts]))
            context = context.model_copy(update={"facts": merged})

        # 4. What the user told us this turn, then the stage
        previous_stage = await self._previous_stage(session_id)
        signals = ConversationSignals()
        if is_conversational(trigger):
            pitch_delivered = bool(context and context.pitch_delivered) or previous_stage == FunnelStage.PITCHING
            signals = await self.signal_extractor.extract(messages, context, session_id, pitch_delivered)
            if signals.has_updates:
                context = apply_signals(context or IntelligenceContext(session_id=session_id), signals)
                if signals.budget is not None:
                    # Report and persist the merged budget, never a downgrade
                    signals = signals.model_copy(update={"budget": context.budget})
            if pitch_delivered and context is not None and not context.pitch_delivered:
                context = context.model_copy(update={"pitch_delivered": True})

        stage = determine_funnel_stage(trigger, context)
        if signals.objection is not None:
            log_business_event("objection_detected", session_id, objection=signals.objection.value)
        reason = f"trigger:{trigger}"
        after_pitch = stage_after_pitch(stage, context, objection_raised=signals.objection is not None)
        if after_pitch != stage:
            reason = "objection" if signals.objection is not None else "interest"
            stage = after_pitch
        await self._track_stage(session_id, previous_stage, stage, reason)

        # 5. Periodic fact extraction
        if context is not None:
            self.memory.maybe_schedule_extraction(self.runner, messages, facts, session_id, context.email)

        # 6. Exit intent
        if len(user_turns(messages)) <= 1:
            self.exit_tracker.reset(session_id)
        exit_result = self.exit_tracker.detect_exit_intent(messages, session_id=session_id)
        sentiment = analyze_sentiment_trend(messages)
        if exit_result.intent:
            log_business_event(
                "exit_intent_detected",
                session_id,
                intent=exit_result.intent.value,
                confidence=exit_result.confidence,
                sentiment_trend=sentiment.trend,
                average_sentiment=sentiment.average_sentiment,
            )
        stage = stage_for_exit(stage, exit_result)

        # 7. Dispatch
        agent = self.agents[stage]
        result = await agent.run(messages, context, session_id)
        scores: Dict[str, Any] = {}

        if stage == FunnelStage.SCORING:
            scores = {key: result.metadata[key] for key in SCORE_KEYS if key in result.metadata}
            if context is not None:
                context = context.model_copy(update=scores)
            handoff = stage_after_scoring(context)
            logger.info(f"➡️ Scoring handed off to {handoff} for {session_id}")
            await self._log_transition(session_id, stage, handoff, "scoring_complete")
            stage = handoff
            agent = self.agents[stage]
            result = await agent.run(messages, context, session_id)
            result.metadata.update(scores)

        # 8. Validate, regenerate once, substitute if still blocked
        result, validation, regenerations = await self._validate_with_regeneration(
            agent, result, messages, context, session_id, stage, user_message, scores
        )
        output = result.output
        if validation.should_block:
            output = validation.corrected_response or get_blocked_response_fallback()
            logger.error(
                f"🛑 Blocked response from {result.agent} after {regenerations} regeneration(s) | "
                f"session={session_id}"
            )

        duration_ms = (time.perf_counter() - start) * 1000

        # 9. Background persistence and audit
        if signals.has_updates:
            result.metadata["signals"] = signals
        self.runner.schedule(
            self.persistence.persist_agent_result(session_id, result, stage),
            name=f"persist_result:{session_id}",
        )
        self.runner.schedule(
            self.audit.log_agent_routed(
                session_id, result.agent, stage.value, str(trigger),
                exit_intent=exit_result.intent.value if exit_result.intent else None,
            ),
            name=f"audit_routed:{session_id}",
        )
        self.runner.schedule(
            self.audit.log_agent_execution(
                session_id, result.agent, stage.value, duration_ms, True,
                tools_used=result.tools_used,
                blocked=validation.should_block,
                regenerated=regenerations > 0,
            ),
            name=f"audit_execution:{session_id}",
        )

        log_agent_execution(
            result.agent,
            session_id,
            "route",
            duration_ms,
            stage=stage.value,
            tools=result.tools_used,
            issues=len(validation.issues),
            blocked=validation.should_block,
        )

        lead_score = result.metadata.get("lead_score")
        fit_score = result.metadata.get("fit_score")
        return ResponseEnvelope(
            output=output,
            agent=result.agent,
            stage=stage,
            success=True,
            metadata=ResponseMetadata(
                lead_score=lead_score if lead_score is not None else (context.lead_score if context else None),
                fit_score=fit_score or (context.fit_score if context else None),
                tools_used=result.tools_used,
                validation_issues=validation.issues,
                exit_intent=exit_result.intent,
                sentiment_trend=sentiment,
                signals=signals if signals.has_updates else None,
                regenerated=regenerations > 0,
                blocked=validation.should_block,
                facts_loaded=len(facts),
                duration_ms=duration_ms,
            ),
        )

    async def _validate_with_regeneration(
        self,
        agent: StageAgent,
        result: AgentResult,
        messages: List[ConversationTurn],
        context: Optional[IntelligenceContext],
        session_id: str,
        stage: FunnelStage,
        user_message: str,
        scores: Dict[str, Any],
    ) -> tuple[AgentResult, ValidationResult, int]:
        identity = identity_claims(context)

        def validate(candidate: AgentResult) -> ValidationResult:
            return self.validator.validate(candidate.output, ValidationContext(
                tools_used=candidate.tools_used,
                user_question=user_message or None,
                agent_name=candidate.agent,
                stage=stage.value,
                identity=identity,
            ))

        validation = validate(result)
        regenerations = 0

        while validation.should_block and regenerations < self.max_regenerations:
            regenerations += 1
            logger.warning(
                f"🔄 Regenerating blocked draft from {result.agent} "
                f"({regenerations}/{self.max_regenerations}) | session={session_id}"
            )
            result = await agent.run(
                messages,
                context,
                session_id,
                instructions=build_regeneration_instructions(validation.issues),
            )
            result.metadata.update(scores)
            validation = validate(result)

        return result, validation, regenerations

    async def _previous_stage(self, session_id: str) -> Optional[str]:
        """Stage of the last persisted turn; None for anonymous or unreadable sessions."""
        if session_id == ANONYMOUS_SESSION:
            return None
        try:
            record = await self.context_store.get(session_id)
        except Exception as e:
            logger.warning(f"⚠️ Could not read previous stage for {session_id}: {e}")
            return None
        return record.last_stage if record else None

    async def _track_stage(
        self,
        session_id: str,
        previous: Optional[str],
        stage: FunnelStage,
        reason: str,
    ) -> None:
        if session_id == ANONYMOUS_SESSION:
            return
        if previous != stage.value:
            await self._log_transition(session_id, previous, stage, reason)

    async def _log_transition(
        self,
        session_id: str,
        from_stage: Optional[FunnelStage | str],
        to_stage: FunnelStage,
        reason: str,
    ) -> None:
        logger.info(f"🔀 Stage transition {from_stage or 'START'} → {to_stage} | session={session_id}")
        self.runner.schedule(
            self.audit.log_stage_transition(
                session_id,
                str(from_stage) if from_stage else None,
                to_stage.value,
                reason,
            ),
            name=f"audit_transition:{session_id}",
        )
