"""
Session Context Repository
Per-session intelligence context with optimistic locking.
"""
import asyncio
import datetime as dt
from typing import Any, Dict, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from .base import BaseRepository, apply_partial
from ..models.session import SessionRecord
from ..utils.errors import VersionConflictError
from ..utils.observability import logger


class MongoContextRepository(BaseRepository[SessionRecord]):
    """
    Session records keyed by `session_id`.

    Concurrent writers (the router and the background persistence task)
    update through `update_with_version_check`, which only writes when the
    stored version is the one that was read.
    """

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "sessions", SessionRecord)

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        return await self.find_one({"session_id": session_id})

    async def update(self, session_id: str, partial: Dict[str, Any]) -> None:
        """Last-writer-wins upsert. Dotted keys address nested fields."""
        now = dt.datetime.now(dt.UTC)
        await self.collection.update_one(
            {"session_id": session_id},
            {
                "$set": {**partial, "updated_at": now.isoformat()},
                "$setOnInsert": {"created_at": now.isoformat(), "version": 0},
            },
            upsert=True,
        )

    async def update_with_version_check(
        self,
        session_id: str,
        partial: Dict[str, Any],
        attempts: int = 2,
        backoff_seconds: float = 0.05,
    ) -> SessionRecord:
        for attempt in range(1, attempts + 1):
            current = await self.get(session_id)
            now = dt.datetime.now(dt.UTC).isoformat()

            if current is None:
                fresh = SessionRecord(session_id=session_id).model_dump(by_alias=True, exclude={"id"})
                document = apply_partial(fresh, partial)
                document["version"] = 1
                try:
                    await self.collection.insert_one(dict(document))
                    return SessionRecord.model_validate(document)
                except DuplicateKeyError:
                    logger.warning(f"⚠️ Session {session_id} created concurrently (attempt {attempt}/{attempts})")
            else:
                next_version = current.version + 1
                result = await self.collection.update_one(
                    {"session_id": session_id, "version": current.version},
                    {"$set": {**partial, "version": next_version, "updated_at": now}},
                )
                if result.matched_count == 1:
                    document = apply_partial(current.model_dump(exclude={"id"}), partial)
                    document.update({"version": next_version, "updated_at": now})
                    return SessionRecord.model_validate(document)
                logger.warning(
                    f"⚠️ Version conflict on session {session_id} "
                    f"(expected v{current.version}, attempt {attempt}/{attempts})"
                )

            if attempt < attempts:
                await asyncio.sleep(backoff_seconds * attempt)

        raise VersionConflictError(session_id, attempts)
