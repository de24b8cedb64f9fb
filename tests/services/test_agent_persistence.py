"""
Tests for writing agent results and corrections back to the session record.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from src.models.agent_response import AgentResult
from src.models.funnel import FunnelStage
from src.models.intelligence import BudgetSignal, FitScore, IntelligenceContext, TimelineSignal
from src.models.signals import ConversationSignals, ObjectionType
from src.services.agent_persistence import AgentPersistenceService
from src.utils.errors import VersionConflictError


@pytest.fixture
def pitch_result():
    return AgentResult(
        output="Here's what the workshop looks like...",
        agent="Pitch Agent",
        metadata={"pitch_delivered": True, "lead_score": 75, "fit_score": FitScore(workshop=0.8, consulting=0.3)},
    )


def test_build_update_writes_scores_and_flags(pitch_result):
    update = AgentPersistenceService.build_update(pitch_result, FunnelStage.PITCHING, "evt-1")

    assert update == {
        "last_agent": "Pitch Agent",
        "last_stage": "PITCHING",
        "last_event_id": "evt-1",
        "intelligence_context.leadScore": 75,
        "intelligence_context.fitScore": {"workshop": 0.8, "consulting": 0.3},
        "intelligence_context.pitchDelivered": True,
    }


def test_build_update_writes_signals_leaf_by_leaf():
    signals = ConversationSignals(
        company_size="201-1000",
        employee_count=800,
        seniority="C-Level",
        budget=BudgetSignal(has_explicit=True, min_usd=120000, max_usd=120000, urgency=0.8),
        timeline=TimelineSignal(urgency=0.9, explicit="within a month"),
        objection=ObjectionType.PRICE,
    )
    result = AgentResult(output="hi", agent="Discovery Agent", metadata={"signals": signals})

    update = AgentPersistenceService.build_update(result, FunnelStage.DISCOVERY, "evt-3")

    assert update["intelligence_context.company.size"] == "201-1000"
    assert update["intelligence_context.company.employeeCount"] == 800
    assert update["intelligence_context.person.seniority"] == "C-Level"
    assert update["intelligence_context.budget"] == {
        "hasExplicit": True, "minUsd": 120000, "maxUsd": 120000, "urgency": 0.8,
    }
    assert update["intelligence_context.timeline"] == {"urgency": 0.9, "explicit": "within a month"}
    assert update["intelligence_context.currentObjection"] == "price"
    assert "intelligence_context.interestLevel" not in update
    assert not any(key.endswith((".name", ".fullName", ".role", "identityConfirmed")) for key in update)


def test_build_update_never_touches_identity():
    result = AgentResult(output="hi", agent="Discovery Agent", metadata={"categories_covered": 2})

    update = AgentPersistenceService.build_update(result, FunnelStage.DISCOVERY, "evt-2")

    assert set(update) == {"last_agent", "last_stage", "last_event_id"}


@pytest.mark.asyncio
class TestPersistAgentResult:

    async def test_updates_record_and_bumps_version(self, context_store, pitch_result):
        service = AgentPersistenceService(context_store)

        assert await service.persist_agent_result("sess-1", pitch_result, FunnelStage.PITCHING) is True

        record = await context_store.get("sess-1")
        assert record.version == 1
        assert record.last_agent == "Pitch Agent"
        assert record.last_stage == "PITCHING"
        assert record.last_event_id
        assert record.intelligence_context["leadScore"] == 75
        assert record.intelligence_context["pitchDelivered"] is True

    async def test_keeps_existing_context_fields(self, context_store, pitch_result):
        context_store.seed("sess-1", {"email": "ana@acme.com", "name": "Ana"})
        service = AgentPersistenceService(context_store)

        await service.persist_agent_result("sess-1", pitch_result, FunnelStage.PITCHING)

        record = await context_store.get("sess-1")
        assert record.intelligence_context["email"] == "ana@acme.com"
        assert record.intelligence_context["fitScore"] == {"workshop": 0.8, "consulting": 0.3}

    async def test_signals_keep_research_identity(self, context_store):
        context_store.seed("sess-1", {
            "email": "ana@acme.com",
            "company": {"name": "Acme Corp", "size": "51-200"},
            "person": {"fullName": "Ana Torres"},
        })
        result = AgentResult(
            output="hi",
            agent="Discovery Agent",
            metadata={"signals": ConversationSignals(company_size="1000+", seniority="VP")},
        )
        service = AgentPersistenceService(context_store)

        await service.persist_agent_result("sess-1", result, FunnelStage.DISCOVERY)

        stored = (await context_store.get("sess-1")).intelligence_context
        assert stored["company"] == {"name": "Acme Corp", "size": "1000+"}
        assert stored["person"] == {"fullName": "Ana Torres", "seniority": "VP"}

    @pytest.mark.parametrize("session_id", [None, "", "anonymous"])
    async def test_skips_anonymous_sessions(self, pitch_result, session_id):
        store = MagicMock()
        store.update_with_version_check = AsyncMock()
        service = AgentPersistenceService(store)

        assert await service.persist_agent_result(session_id, pitch_result, FunnelStage.PITCHING) is False
        store.update_with_version_check.assert_not_called()

    async def test_version_conflict_is_logged_not_raised(self, pitch_result):
        store = MagicMock()
        store.update_with_version_check = AsyncMock(side_effect=VersionConflictError("sess-1", 2))
        service = AgentPersistenceService(store, attempts=2, backoff_seconds=0)

        assert await service.persist_agent_result("sess-1", pitch_result, FunnelStage.PITCHING) is False
        store.update_with_version_check.assert_awaited_once()
        assert store.update_with_version_check.await_args.kwargs == {"attempts": 2, "backoff_seconds": 0}

    async def test_store_failure_is_logged_not_raised(self, pitch_result):
        store = MagicMock()
        store.update_with_version_check = AsyncMock(side_effect=RuntimeError("mongo down"))
        service = AgentPersistenceService(store)

        assert await service.persist_agent_result("sess-1", pitch_result, FunnelStage.PITCHING) is False


@pytest.mark.asyncio
class TestPersistCorrections:

    async def test_writes_only_identity_fields(self, context_store):
        context_store.seed("sess-1", {"email": "ana@acme.com", "leadScore": 40})
        context = IntelligenceContext(
            email="ana@acme.com",
            name="Ana",
            role="VP Sales",
            identity_confirmed=True,
            company={"name": "Globex"},
            lead_score=99,
        )
        service = AgentPersistenceService(context_store)

        assert await service.persist_corrections("sess-1", context) is True

        stored = (await context_store.get("sess-1")).intelligence_context
        assert stored["identityConfirmed"] is True
        assert stored["role"] == "VP Sales"
        assert stored["company"] == {"name": "Globex"}
        assert stored["leadScore"] == 40

    async def test_skips_anonymous(self, context_store):
        service = AgentPersistenceService(context_store)

        assert await service.persist_corrections("anonymous", IntelligenceContext(name="Ana")) is False
