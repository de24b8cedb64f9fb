"""
Audit Log Repository
Append-only store for agent and tool audit events.
"""
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase

from ..models.audit import AuditEvent


class MongoAuditRepository:
    """AuditSink writing to the `audit_log` collection."""

    def __init__(self, database: AsyncIOMotorDatabase):
        self.collection: AsyncIOMotorCollection = database["audit_log"]

    async def log(self, event: AuditEvent) -> None:
        await self.collection.insert_one(event.model_dump())
