"""
Record Store Contracts & Generic Repository Base Class
The engine depends on the protocols; MongoDB and in-memory adapters implement them.
"""
from typing import Any, Dict, Generic, List, Optional, Protocol, Sequence, Type, TypeVar
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
import datetime as dt

from ..models.audit import AuditEvent
from ..models.base import MongoBaseModel
from ..models.fact import Fact
from ..models.session import SessionRecord
from ..utils.observability import logger

# Generic type for domain models
T = TypeVar("T", bound=MongoBaseModel)


class ContextStore(Protocol):
    async def get(self, session_id: str) -> Optional[SessionRecord]:
        ...

    async def update(self, session_id: str, partial: Dict[str, Any]) -> None:
        ...

    async def update_with_version_check(
        self,
        session_id: str,
        partial: Dict[str, Any],
        attempts: int = 2,
        backoff_seconds: float = 0.05,
    ) -> SessionRecord:
        """Raises VersionConflictError once every attempt lost the race."""
        ...


class FactStore(Protocol):
    async def insert_facts(self, facts: Sequence[Fact]) -> None:
        ...

    async def find_recent_by_email(self, email: str, limit: int) -> List[Fact]:
        """Newest first."""
        ...


class AuditSink(Protocol):
    async def log(self, event: AuditEvent) -> None:
        ...


def apply_partial(document: Dict[str, Any], partial: Dict[str, Any]) -> Dict[str, Any]:
    """
    Applies a `$set`-style partial (dotted keys address nested fields)
    to a copy of `document`.
    """
    result = {k: (dict(v) if isinstance(v, dict) else v) for k, v in document.items()}
    for path, value in partial.items():
        keys = path.split(".")
        target = result
        for key in keys[:-1]:
            child = target.get(key)
            child = dict(child) if isinstance(child, dict) else {}
            target[key] = child
            target = child
        target[keys[-1]] = value
    return result


class BaseRepository(Generic[T]):
    """
    Typed access to one MongoDB collection.

    Usage:
        class MongoFactRepository(BaseRepository[Fact]):
            def __init__(self, database: AsyncIOMotorDatabase):
                super().__init__(database, "lead_facts", Fact)
    """

    def __init__(self, database: AsyncIOMotorDatabase, collection_name: str, model_class: Type[T]):
        self.database = database
        self.collection: AsyncIOMotorCollection = database[collection_name]
        self.collection_name = collection_name
        self.model_class = model_class

    async def find_one(self, filter_dict: Dict[str, Any]) -> Optional[T]:
        doc = await self.collection.find_one(filter_dict)
        return None if doc is None else self._to_model(doc)

    async def find_many(
        self,
        filter_dict: Dict[str, Any],
        limit: int = 100,
        sort: Optional[List[tuple]] = None,
    ) -> List[T]:
        """Documents matching `filter_dict`, optionally sorted, at most `limit`."""
        cursor = self.collection.find(filter_dict)
        if sort:
            cursor = cursor.sort(sort)
        docs = await cursor.limit(limit).to_list(length=limit)
        return [self._to_model(doc) for doc in docs]

    async def insert_models(self, documents: Sequence[T]) -> List[T]:
        """Stamps and inserts `documents` in one round trip; ids are written back."""
        if not documents:
            return []

        now = dt.datetime.now(dt.UTC)
        payload = []
        for doc in documents:
            doc.created_at = doc.updated_at = now
            payload.append(doc.model_dump(by_alias=True, exclude={"id"}))

        result = await self.collection.insert_many(payload)
        for doc, inserted_id in zip(documents, result.inserted_ids):
            doc.id = str(inserted_id)

        logger.bind(count=len(documents)).debug(f"Inserted into {self.collection_name}")
        return list(documents)

    def _to_model(self, doc: Dict[str, Any]) -> T:
        # Drop fields the model does not declare; MongoBaseModel forbids extras.
        known = self.model_class.model_fields.keys()
        cleaned = {k: v for k, v in doc.items() if k in known}
        if "_id" in doc:
            cleaned["_id"] = str(doc["_id"])
        return self.model_class.model_validate(cleaned)
