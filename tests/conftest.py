import pytest
import datetime as dt
from typing import Any, Dict, List
from src.config import get_settings
from src.models.message import ConversationTurn
from src.repositories.memory import InMemoryAuditSink, InMemoryContextStore, InMemoryFactStore
from src.services.audit_logger import AuditLogger
from tests.fakes import FakeGenerationService, turn


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings tests mutate the cached singleton; start and end every test clean."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_generation():
    return FakeGenerationService()


@pytest.fixture
def context_store():
    return InMemoryContextStore()


@pytest.fixture
def fact_store():
    return InMemoryFactStore()


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def audit_logger(audit_sink):
    return AuditLogger(audit_sink, enabled=True)


@pytest.fixture
def unconfirmed_raw_context() -> Dict[str, Any]:
    """Research says a lot; the user has confirmed none of it."""
    return {
        "email": "ana@acme.com",
        "name": "Ana",
        "identityConfirmed": False,
        "company": {
            "domain": "acme.com",
            "name": "Acme Corp",
            "industry": "Logistics",
            "size": "201-1000",
            "employeeCount": 450,
            "summary": "Freight forwarding at scale",
            "website": "https://acme.com",
        },
        "person": {
            "fullName": "Ana Torres",
            "role": "CTO",
            "seniority": "C-Level",
            "profileUrl": "https://linkedin.com/in/anatorres",
        },
        "role": "CTO",
        "researchConfidence": 0.92,
        "research": {"citations": [{"uri": f"https://source/{i}"} for i in range(15)]},
        "profile": {"identity": {"verified": True}},
        "strategicContext": {"priorities": ["automation"]},
        "facts": ["Prefers on-prem deployments"],
        "leadScore": 40,
        "budget": {"hasExplicit": True, "minUsd": 60000, "urgency": 0.8},
        "location": {"lat": 40.4, "lng": -3.7, "city": "Madrid"},
        "lastUpdated": dt.datetime(2026, 1, 1, tzinfo=dt.UTC).isoformat(),
    }


@pytest.fixture
def confirmed_raw_context(unconfirmed_raw_context) -> Dict[str, Any]:
    return {**unconfirmed_raw_context, "identityConfirmed": True}


@pytest.fixture
def discovery_turns() -> List[ConversationTurn]:
    return [
        turn("user", "Hi, I run operations for a mid-size team."),
        turn("assistant", "Great to meet you. What brings you here today?"),
        turn("user", "Our reporting is slow and very manual."),
    ]
