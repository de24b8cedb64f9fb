"""
Database Connection Tests
Tests for MongoDB client lifecycle and connection management.
No server is needed: Motor clients connect lazily and pings are mocked.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorClient

from src.repositories.connection import DatabaseManager, db_manager, get_database
from src.config import settings


pytestmark = pytest.mark.asyncio


@pytest.fixture(autouse=True)
async def clean_manager():
    await db_manager.disconnect()
    yield
    await db_manager.disconnect()
    db_manager._client = None
    db_manager._database = None


def healthy_client(ping_error=None):
    client = MagicMock()
    client.admin.command = AsyncMock(side_effect=ping_error, return_value={"ok": 1.0})
    return client


class TestDatabaseManager:
    """Test suite for DatabaseManager singleton."""

    async def test_singleton_pattern(self):
        """DatabaseManager should return same instance."""
        assert DatabaseManager() is DatabaseManager() is db_manager

    async def test_connect_initializes_client(self):
        """Connect should initialize Motor client and database."""
        await db_manager.connect()

        assert isinstance(db_manager.client, AsyncIOMotorClient)
        assert isinstance(db_manager.database, AsyncIOMotorDatabase)
        assert db_manager.database.name == settings.mongodb_database

    async def test_connect_reuses_healthy_client(self):
        """A client that answers ping is kept."""
        client = healthy_client()
        db_manager._client = client

        await db_manager.connect()

        assert db_manager._client is client
        client.admin.command.assert_awaited_once_with("ping")

    async def test_connect_rebuilds_dead_client(self):
        """A client that fails ping is replaced."""
        dead = healthy_client(ping_error=ConnectionError("connection refused"))
        db_manager._client = dead

        await db_manager.connect()

        assert db_manager._client is not dead
        assert isinstance(db_manager.client, AsyncIOMotorClient)

    async def test_disconnect_is_idempotent(self):
        """Multiple disconnect calls should not raise errors."""
        await db_manager.connect()
        await db_manager.disconnect()
        await db_manager.disconnect()

        assert db_manager._client is None
        assert db_manager._database is None

    async def test_properties_raise_when_not_connected(self):
        with pytest.raises(RuntimeError, match="Database not connected"):
            _ = db_manager.database
        with pytest.raises(RuntimeError, match="Database client not connected"):
            _ = db_manager.client

    async def test_get_database(self):
        await db_manager.connect()

        assert await get_database() is db_manager.database

    async def test_create_indexes(self):
        """Sessions are unique per id; facts and audit are indexed for recency."""
        collections = {name: MagicMock() for name in ("sessions", "lead_facts", "audit_log")}
        for collection in collections.values():
            collection.create_index = AsyncMock()
        database = MagicMock()
        database.__getitem__.side_effect = collections.__getitem__
        db_manager._database = database

        await db_manager.create_indexes()

        collections["sessions"].create_index.assert_awaited_once_with(
            "session_id", unique=True, name="idx_session_id_unique"
        )
        collections["lead_facts"].create_index.assert_awaited_once_with(
            [("email", 1), ("created_at", -1)], name="idx_email_recent_facts"
        )
        collections["audit_log"].create_index.assert_awaited_once_with(
            [("session_id", 1), ("timestamp", -1)], name="idx_session_audit"
        )

    async def test_ping_without_client(self):
        assert await db_manager.ping() is False

    async def test_ping_reports_failure(self):
        db_manager._client = healthy_client(ping_error=TimeoutError("server selection timeout"))

        assert await db_manager.ping() is False
