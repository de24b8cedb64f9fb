"""
In-Memory Record Stores
Process-local implementations of the store protocols, for tests and
for running the engine without MongoDB.
"""
import asyncio
import datetime as dt
from typing import Any, Dict, List, Optional, Sequence

from .base import apply_partial
from ..models.audit import AuditEvent
from ..models.fact import Fact
from ..models.session import SessionRecord


class InMemoryContextStore:
    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        document = self._records.get(session_id)
        return SessionRecord.model_validate(document) if document else None

    def _current(self, session_id: str) -> Dict[str, Any]:
        return self._records.get(session_id) or SessionRecord(session_id=session_id).model_dump(
            by_alias=True, exclude={"id"}
        )

    async def update(self, session_id: str, partial: Dict[str, Any]) -> None:
        async with self._lock:
            document = apply_partial(self._current(session_id), partial)
            document["updated_at"] = dt.datetime.now(dt.UTC)
            self._records[session_id] = document

    async def update_with_version_check(
        self,
        session_id: str,
        partial: Dict[str, Any],
        attempts: int = 2,
        backoff_seconds: float = 0.05,
    ) -> SessionRecord:
        # The lock serializes writers, so the read version always matches.
        async with self._lock:
            current = self._current(session_id)
            document = apply_partial(current, partial)
            document["version"] = current.get("version", 0) + 1
            document["updated_at"] = dt.datetime.now(dt.UTC)
            self._records[session_id] = document
            return SessionRecord.model_validate(document)

    def seed(self, session_id: str, intelligence_context: Dict[str, Any]) -> None:
        self._records[session_id] = SessionRecord(
            session_id=session_id,
            intelligence_context=intelligence_context,
        ).model_dump(by_alias=True, exclude={"id"})


class InMemoryFactStore:
    def __init__(self):
        self.facts: List[Fact] = []

    async def insert_facts(self, facts: Sequence[Fact]) -> None:
        self.facts.extend(facts)

    async def find_recent_by_email(self, email: str, limit: int) -> List[Fact]:
        matching = [f for f in self.facts if f.email == email]
        matching.sort(key=lambda f: f.created_at, reverse=True)
        return matching[:limit]


class InMemoryAuditSink:
    def __init__(self):
        self.events: List[AuditEvent] = []

    async def log(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> List[str]:
        return [e.action.value for e in self.events]
