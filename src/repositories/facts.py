"""
Lead Facts Repository
Durable per-identity facts for semantic memory.
"""
from typing import List, Sequence
from motor.motor_asyncio import AsyncIOMotorDatabase

from .base import BaseRepository
from ..models.fact import Fact


class MongoFactRepository(BaseRepository[Fact]):
    """Facts are owned by the email, so they are recalled across sessions."""

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "lead_facts", Fact)

    async def insert_facts(self, facts: Sequence[Fact]) -> None:
        await self.insert_models(list(facts))

    async def find_recent_by_email(self, email: str, limit: int) -> List[Fact]:
        return await self.find_many(
            {"email": email},
            limit=limit,
            sort=[("created_at", -1)],
        )
