"""
End-to-end tests for the Agent Router with in-memory stores and a
scripted generation service.
"""
import pytest
from loguru import logger
from src.agents.exit_detector import ExitIntentTracker
from src.core.agent_router import (
    AgentRouter,
    build_regeneration_instructions,
    identity_claims,
    stage_for_exit,
)
from src.models.audit import AuditAction
from src.models.exit_signal import ExitDetectionResult, ExitIntent
from src.models.fact import ExtractedFact, ExtractedFacts, Fact
from src.models.funnel import FunnelStage
from src.models.intelligence import IntelligenceContext
from src.models.signals import (
    BudgetExtraction,
    CompanySizeExtraction,
    InterestExtraction,
    ObjectionExtraction,
    ObjectionType,
    TimelineExtraction,
)
from src.models.summary import ConversationSummary
from src.models.tool_result import RoiEstimate
from src.models.validation import IssueType, Severity, ValidationIssue
from src.utils.errors import GenerationError
from src.utils.fallback_responses import (
    EXIT_RESPONSES,
    IDENTITY_CONFIRMATION_MESSAGE,
    get_blocked_response_fallback,
    get_error_fallback,
)
from tests.fakes import FakeGenerationService, turn

SIMPLE_CONTEXT = {"email": "ana@acme.com", "name": "Ana"}


@pytest.fixture
def tracker():
    return ExitIntentTracker(cooldown_seconds=30, force_threshold=2, clock=lambda: 1000.0)


@pytest.fixture
def make_router(context_store, fact_store, audit_logger, tracker):
    def factory(generation, **kwargs):
        return AgentRouter(
            generation,
            context_store=context_store,
            fact_store=fact_store,
            audit=audit_logger,
            exit_tracker=tracker,
            **kwargs,
        )
    return factory


class TestHelpers:

    def test_stage_for_exit(self):
        force = ExitDetectionResult(intent=ExitIntent.FORCE_EXIT)
        booking = ExitDetectionResult(intent=ExitIntent.BOOKING)
        frustration = ExitDetectionResult(intent=ExitIntent.FRUSTRATION)

        assert stage_for_exit(FunnelStage.PITCHING, force) == FunnelStage.SUMMARY
        assert stage_for_exit(FunnelStage.DISCOVERY, booking) == FunnelStage.CLOSING
        assert stage_for_exit(FunnelStage.SUMMARY, booking) == FunnelStage.SUMMARY
        assert stage_for_exit(FunnelStage.DISCOVERY, frustration) == FunnelStage.DISCOVERY

    def test_identity_claims(self):
        context = IntelligenceContext(
            name="Ana",
            identity_confirmed=True,
            company={"name": "Acme Corp"},
            person={"role": "CTO"},
        )

        claims = identity_claims(context)

        assert claims.confirmed is True
        assert (claims.name, claims.company, claims.role) == ("Ana", "Acme Corp", "CTO")
        assert identity_claims(None).confirmed is False

    def test_regeneration_instructions_skip_warnings(self):
        issues = [
            ValidationIssue(type=IssueType.FABRICATED_ROI, severity=Severity.CRITICAL,
                            message="ROI numbers mentioned", suggestion="Use the tool"),
            ValidationIssue(type=IssueType.SKIPPED_QUESTION, severity=Severity.WARNING,
                            message="Question skipped"),
        ]

        text = build_regeneration_instructions(issues)

        assert "- ROI numbers mentioned. Use the tool." in text
        assert "Question skipped" not in text


@pytest.mark.asyncio
class TestRouting:

    async def test_discovery_turn(self, make_router, discovery_turns, context_store, audit_sink):
        generation = FakeGenerationService(replies=["What would you like AI to achieve first?"])
        router = make_router(generation)

        envelope = await router.route(discovery_turns, SIMPLE_CONTEXT, session_id="sess-1")
        await router.shutdown()

        assert envelope.success is True
        assert envelope.agent == "Discovery Agent"
        assert envelope.stage == FunnelStage.DISCOVERY
        assert envelope.output == "What would you like AI to achieve first?"
        assert envelope.metadata.blocked is False
        assert envelope.metadata.validation_issues == []

        record = await context_store.get("sess-1")
        assert record.last_agent == "Discovery Agent"
        assert record.last_stage == "DISCOVERY"
        assert record.version == 1
        assert {"agent_stage_transition", "agent_routed", "agent_execution"} <= set(audit_sink.actions())

    async def test_scoring_hands_off_to_pitch(self, make_router, confirmed_raw_context, context_store, audit_sink):
        generation = FakeGenerationService(
            replies=["The Custom AI Transformation Program is built for teams at your scale."],
            objects={RoiEstimate: RoiEstimate(projected_roi=4.0, payback_months=6, reasoning="Platform reuse")},
        )
        router = make_router(generation)
        messages = [turn("user", "We need a custom build for our data platform.")]

        envelope = await router.route(messages, confirmed_raw_context, session_id="sess-2")
        await router.shutdown()

        assert envelope.stage == FunnelStage.PITCHING
        assert envelope.agent == "Pitch Agent"
        assert envelope.metadata.lead_score == 70
        assert envelope.metadata.fit_score.consulting == pytest.approx(0.7)
        assert envelope.metadata.tools_used == ["calculate_roi"]
        assert "Custom AI Transformation Program" in generation.calls[0]["system_prompt"]

        stored = (await context_store.get("sess-2")).intelligence_context
        assert stored["leadScore"] == 70
        assert stored["pitchDelivered"] is True
        reasons = [e.details["reason"] for e in audit_sink.events if e.action == AuditAction.AGENT_STAGE_TRANSITION]
        assert "scoring_complete" in reasons

    async def test_booking_intent_routes_to_closer(self, make_router):
        generation = FakeGenerationService(
            replies=["Happy to book a call: pick any slot next week from the calendar below."],
        )
        router = make_router(generation)
        messages = [
            turn("user", "Hi"),
            turn("assistant", "Hello! How can I help?"),
            turn("user", "Can we book a call next week?"),
        ]

        envelope = await router.route(messages, SIMPLE_CONTEXT, session_id="sess-3")
        await router.shutdown()

        assert envelope.stage == FunnelStage.CLOSING
        assert envelope.agent == "Closer Agent"
        assert envelope.metadata.exit_intent == ExitIntent.BOOKING
        assert envelope.metadata.tools_used == ["get_booking_link", "create_calendar_widget"]
        assert envelope.metadata.blocked is False

    async def test_repeated_frustration_forces_summary(self, make_router):
        summary = ConversationSummary(executive_summary="The lead was not ready to continue.")
        generation = FakeGenerationService(objects={ConversationSummary: summary})
        router = make_router(generation)
        messages = [turn("user", "hi"), turn("assistant", "Hello!"), turn("user", "this is annoying")]

        first = await router.route(messages, None, session_id="sess-4")
        messages += [turn("assistant", "Sorry about that."), turn("user", "not interested, leave me alone")]
        second = await router.route(messages, None, session_id="sess-4")
        await router.shutdown()

        assert first.metadata.exit_intent == ExitIntent.FRUSTRATION
        assert first.stage == FunnelStage.DISCOVERY
        assert second.metadata.exit_intent == ExitIntent.FORCE_EXIT
        assert second.stage == FunnelStage.SUMMARY
        assert second.output.startswith(EXIT_RESPONSES[ExitIntent.WRAP_UP])
        assert "The lead was not ready to continue." in second.output

    async def test_blocked_draft_is_regenerated(self, make_router):
        generation = FakeGenerationService(replies=[
            "You'll see a 340% ROI within a year.",
            "Happy to walk through how teams like yours use this.",
        ])
        router = make_router(generation)

        envelope = await router.route([turn("user", "We mostly work in spreadsheets.")], None, session_id="sess-5")
        await router.shutdown()

        assert envelope.output == "Happy to walk through how teams like yours use this."
        assert envelope.metadata.regenerated is True
        assert envelope.metadata.blocked is False
        assert len(generation.calls) == 2
        retry_prompt = generation.calls[1]["system_prompt"]
        assert "Your previous draft was rejected" in retry_prompt
        assert "ROI numbers mentioned without using calculate_roi tool" in retry_prompt

    async def test_still_blocked_draft_is_substituted(self, make_router):
        generation = FakeGenerationService(replies=["I've booked your meeting for Tuesday."])
        router = make_router(generation)

        envelope = await router.route([turn("user", "We mostly work in spreadsheets.")], None, session_id="sess-6")
        await router.shutdown()

        assert envelope.output == get_blocked_response_fallback()
        assert envelope.metadata.blocked is True
        assert envelope.metadata.regenerated is True
        assert len(generation.calls) == 2
        assert envelope.metadata.validation_issues[0].type == IssueType.FALSE_BOOKING_CLAIM

    async def test_unconfirmed_identity_claim_asks_for_confirmation(self, make_router):
        generation = FakeGenerationService(replies=["Since you're the CTO at Acme Corp, this is a great fit."])
        router = make_router(generation)
        raw = {**SIMPLE_CONTEXT, "company": {"name": "Acme Corp", "domain": "acme.com"}}

        envelope = await router.route([turn("user", "We need help with reporting.")], raw, session_id="sess-7")
        await router.shutdown()

        assert envelope.output == IDENTITY_CONFIRMATION_MESSAGE
        assert envelope.metadata.blocked is True
        assert "Acme Corp" not in generation.calls[0]["system_prompt"]

    async def test_correction_is_applied_and_persisted(self, make_router, context_store):
        generation = FakeGenerationService(correction_reply=(
            '{"isCorrection": true, "correctedCompany": "Globex", '
            '"correctedRole": "Head of Data", "confidence": 0.9}'
        ))
        router = make_router(generation)

        envelope = await router.route(
            [turn("user", "Actually I'm the Head of Data at Globex")],
            SIMPLE_CONTEXT,
            session_id="sess-8",
        )
        await router.shutdown()

        assert envelope.success is True
        prompt = generation.calls[0]["system_prompt"]
        assert "Company: Globex" in prompt
        assert "Identity confirmed by user: yes" in prompt

        stored = (await context_store.get("sess-8")).intelligence_context
        assert stored["company"]["name"] == "Globex"
        assert stored["role"] == "Head of Data"
        assert stored["identityConfirmed"] is True

    async def test_facts_reach_prompt_only_when_confirmed(self, make_router, fact_store):
        fact_store.facts = [Fact(text="Runs on Azure", confidence=0.9, session_id="old", email="ana@acme.com")]
        generation = FakeGenerationService()
        router = make_router(generation)
        messages = [turn("user", "We use spreadsheets.")]

        confirmed = await router.route(messages, {**SIMPLE_CONTEXT, "identityConfirmed": True}, session_id="sess-9")
        unconfirmed = await router.route(messages, SIMPLE_CONTEXT, session_id="sess-10")
        await router.shutdown()

        assert confirmed.metadata.facts_loaded == 1
        assert unconfirmed.metadata.facts_loaded == 1
        assert "- Runs on Azure" in generation.calls[0]["system_prompt"]
        assert "Runs on Azure" not in generation.calls[1]["system_prompt"]

    async def test_third_user_turn_schedules_fact_extraction(self, make_router, fact_store):
        generation = FakeGenerationService(objects={
            ExtractedFacts: ExtractedFacts(facts=[ExtractedFact(fact="Reports are built in spreadsheets")]),
        })
        router = make_router(generation)
        messages = [
            turn("user", "We use spreadsheets."),
            turn("assistant", "Got it."),
            turn("user", "Reports take days."),
            turn("assistant", "That sounds painful."),
            turn("user", "The team is small."),
        ]

        await router.route(messages, {**SIMPLE_CONTEXT, "identityConfirmed": True}, session_id="sess-11")
        await router.shutdown()

        assert [f.text for f in fact_store.facts] == ["Reports are built in spreadsheets"]
        assert fact_store.facts[0].session_id == "sess-11"

    async def test_failure_returns_safe_envelope(self, make_router):
        router = make_router(FakeGenerationService(error=RuntimeError("model down")))

        envelope = await router.route([turn("user", "Hello there")], None, session_id="sess-12")
        booking = await router.route([turn("user", "Hello there")], None, session_id="sess-12", trigger="booking")
        await router.shutdown()

        assert envelope.success is False
        assert envelope.output == get_error_fallback()
        assert envelope.agent == "Agent Router"
        assert envelope.stage == FunnelStage.DISCOVERY
        assert envelope.metadata.error == "model down"
        assert booking.stage == FunnelStage.CLOSING

    async def test_anonymous_sessions_are_not_persisted(self, make_router, context_store, audit_sink):
        router = make_router(FakeGenerationService())

        envelope = await router.route([turn("user", "We use spreadsheets.")], SIMPLE_CONTEXT)
        await router.shutdown()

        assert envelope.success is True
        assert await context_store.get("anonymous") is None
        assert "agent_stage_transition" not in audit_sink.actions()


@pytest.mark.asyncio
class TestConversationSignals:

    async def test_stated_size_budget_and_role_reach_scoring(self, make_router, context_store, audit_sink):
        generation = FakeGenerationService(
            replies=["Thanks, that helps. Where does your reporting data live today?"],
            objects={CompanySizeExtraction: CompanySizeExtraction(size="201-1000", employee_count=800)},
        )
        router = make_router(generation)
        messages = [turn("user", "I'm the CTO, we have 800 employees")]

        first = await router.route(messages, SIMPLE_CONTEXT, session_id="sess-20")
        await router.shutdown()

        generation.objects.update({
            BudgetExtraction: BudgetExtraction(has_explicit=True, min_usd=120000, max_usd=120000, urgency=0.8),
            TimelineExtraction: TimelineExtraction(urgency=0.9, explicit="within a month"),
        })
        messages += [
            turn("assistant", first.output),
            turn("user", "Our budget is $120k and we need this within a month"),
        ]
        second = await router.route(messages, SIMPLE_CONTEXT, session_id="sess-20")
        await router.shutdown()

        assert first.stage == FunnelStage.DISCOVERY
        assert first.metadata.signals.company_size == "201-1000"
        assert first.metadata.signals.seniority == "C-Level"
        assert second.stage == FunnelStage.PITCHING
        assert second.agent == "Pitch Agent"
        assert second.metadata.lead_score is not None
        assert second.metadata.signals.budget.has_explicit is True

        stored = (await context_store.get("sess-20")).intelligence_context
        assert stored["company"] == {"size": "201-1000", "employeeCount": 800}
        assert stored["person"] == {"seniority": "C-Level"}
        assert stored["budget"]["hasExplicit"] is True
        assert stored["timeline"]["explicit"] == "within a month"
        assert stored["pitchDelivered"] is True
        assert "name" not in stored["company"]
        reasons = [e.details["reason"] for e in audit_sink.events if e.action == AuditAction.AGENT_STAGE_TRANSITION]
        assert "scoring_complete" in reasons

    async def test_failed_extraction_changes_nothing(self, make_router, context_store):
        generation = FakeGenerationService(objects={CompanySizeExtraction: GenerationError("model down")})
        router = make_router(generation)

        envelope = await router.route([turn("user", "We have a few hundred people")], SIMPLE_CONTEXT, session_id="sess-21")
        await router.shutdown()

        assert envelope.success is True
        assert envelope.stage == FunnelStage.DISCOVERY
        assert envelope.metadata.signals is None
        stored = (await context_store.get("sess-21")).intelligence_context
        assert "company" not in stored

    async def test_objection_after_pitch_routes_to_closer(self, make_router, confirmed_raw_context, context_store, audit_sink):
        generation = FakeGenerationService(
            replies=["Understood. Many teams start with the workshop; pick a slot below and we can talk budget."],
            objects={
                ObjectionExtraction: ObjectionExtraction(type=ObjectionType.PRICE, confidence=0.9),
                InterestExtraction: InterestExtraction(level=0.4),
            },
        )
        router = make_router(generation)
        raw = {**confirmed_raw_context, "pitchDelivered": True}
        messages = [
            turn("user", "What would you suggest?"),
            turn("assistant", "The Custom AI Transformation Program fits your scale."),
            turn("user", "Honestly that's too expensive for us right now"),
        ]

        envelope = await router.route(messages, raw, session_id="sess-22")
        await router.shutdown()

        assert envelope.stage == FunnelStage.CLOSING
        assert envelope.agent == "Closer Agent"
        assert envelope.metadata.signals.objection == ObjectionType.PRICE
        stored = (await context_store.get("sess-22")).intelligence_context
        assert stored["currentObjection"] == "price"
        assert stored["interestLevel"] == 0.4
        reasons = [e.details["reason"] for e in audit_sink.events if e.action == AuditAction.AGENT_STAGE_TRANSITION]
        assert reasons == ["objection"]

    async def test_booking_trigger_skips_extraction(self, make_router):
        generation = FakeGenerationService(objects={
            CompanySizeExtraction: CompanySizeExtraction(size="11-50"),
        })
        router = make_router(generation)

        envelope = await router.route(
            [turn("user", "We are 30 people")], SIMPLE_CONTEXT, session_id="sess-23", trigger="booking",
        )
        await router.shutdown()

        assert envelope.stage == FunnelStage.CLOSING
        assert envelope.metadata.signals is None
        assert all(call["schema"] is not CompanySizeExtraction for call in generation.object_calls)


@pytest.mark.asyncio
class TestTurnDiagnostics:

    @pytest.fixture
    def records(self):
        captured = []
        handler_id = logger.add(lambda message: captured.append(message.record), level="DEBUG")
        yield captured
        logger.remove(handler_id)

    async def test_sentiment_trend_reported_with_exit_intent(self, make_router, records):
        router = make_router(FakeGenerationService(replies=["Understood, I'll keep this short."]))
        messages = [
            turn("user", "This is great, really helpful"),
            turn("assistant", "Glad to hear it!"),
            turn("user", "Awesome, love it"),
            turn("assistant", "What should we look at next?"),
            turn("user", "Hmm, I don't know"),
            turn("assistant", "No problem. Anything else on your mind?"),
            turn("user", "Not interested, stop"),
        ]

        envelope = await router.route(messages, None, session_id="sess-24")
        await router.shutdown()

        assert envelope.metadata.exit_intent == ExitIntent.FRUSTRATION
        assert envelope.metadata.sentiment_trend.trend == "declining"
        event = next(r for r in records if r["extra"].get("event_type") == "exit_intent_detected")
        assert event["extra"]["sentiment_trend"] == "declining"

    async def test_sentiment_trend_present_on_ordinary_turns(self, make_router, discovery_turns):
        router = make_router(FakeGenerationService())

        envelope = await router.route(discovery_turns, SIMPLE_CONTEXT, session_id="sess-25")
        await router.shutdown()

        assert envelope.metadata.sentiment_trend.trend == "stable"

    async def test_idle_exit_state_is_evicted(self, context_store, fact_store, audit_logger):
        clock = [0.0]
        tracker = ExitIntentTracker(clock=lambda: clock[0], state_ttl_seconds=600)
        router = AgentRouter(
            FakeGenerationService(),
            context_store=context_store,
            fact_store=fact_store,
            audit=audit_logger,
            exit_tracker=tracker,
        )
        for i in range(20):
            messages = [turn("user", "hi"), turn("assistant", "Hello!"), turn("user", "stop messaging me")]
            await router.route(messages, None, session_id=f"idle-{i}")
        assert tracker.tracked_sessions == 20

        clock[0] = 700.0
        await router.route([turn("user", "We use spreadsheets.")], None, session_id="fresh")
        await router.shutdown()

        assert tracker.tracked_sessions == 0

    async def test_everyday_phrasing_is_not_blocked(self, make_router):
        reply = "Happy to dig in if you're okay with that. Where does your data live?"
        router = make_router(FakeGenerationService(replies=[reply]))

        envelope = await router.route([turn("user", "We want better reporting.")], SIMPLE_CONTEXT, session_id="sess-26")
        await router.shutdown()

        assert envelope.output == reply
        assert envelope.metadata.blocked is False
        assert envelope.metadata.regenerated is False
