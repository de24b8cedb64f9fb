"""
MongoDB Connection Management
One Motor client per process, shared by the session, fact and audit stores.
"""
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Any, Dict, Optional, Tuple
from ..config import settings
from ..utils.observability import logger

# (collection, keys, index options)
INDEXES: Tuple[Tuple[str, Any, Dict[str, Any]], ...] = (
    ("sessions", "session_id", {"unique": True, "name": "idx_session_id_unique"}),
    ("lead_facts", [("email", 1), ("created_at", -1)], {"name": "idx_email_recent_facts"}),
    ("audit_log", [("session_id", 1), ("timestamp", -1)], {"name": "idx_session_audit"}),
)


class DatabaseManager:
    """
    Process-wide holder of the Motor client.

    connect() is idempotent: a client that still answers ping is kept, a
    client bound to a dead loop or a lost server is dropped and rebuilt.
    """

    _instance: Optional["DatabaseManager"] = None
    _client: Optional[AsyncIOMotorClient] = None
    _database: Optional[AsyncIOMotorDatabase] = None

    def __new__(cls) -> "DatabaseManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except Exception as e:
            logger.warning(f"⚠️ MongoDB ping failed: {e}")
            return False

    async def connect(self) -> None:
        if self._client is not None:
            if await self.ping():
                logger.debug("Reusing healthy MongoDB client")
                return
            logger.warning("🔄 MongoDB client unusable, rebuilding")
            self._reset()

        logger.bind(
            database=settings.mongodb_database,
            max_pool_size=settings.mongodb_max_pool_size,
            environment=settings.environment,
        ).info(f"🔌 Connecting to MongoDB at {settings.mongodb_uri}")

        self._client = AsyncIOMotorClient(
            settings.mongodb_uri,
            maxPoolSize=settings.mongodb_max_pool_size,
            minPoolSize=settings.mongodb_min_pool_size,
            serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
        )
        self._database = self._client[settings.mongodb_database]

    async def disconnect(self) -> None:
        if self._client is None:
            return
        self._client.close()
        self._reset()
        logger.info("👋 MongoDB connection closed")

    def _reset(self) -> None:
        self._client = None
        self._database = None

    @property
    def database(self) -> AsyncIOMotorDatabase:
        if self._database is None:
            raise RuntimeError("Database not connected. Call await db_manager.connect() first.")
        return self._database

    @property
    def client(self) -> AsyncIOMotorClient:
        if self._client is None:
            raise RuntimeError("Database client not connected. Call await db_manager.connect() first.")
        return self._client

    async def create_indexes(self) -> None:
        """Session ids are unique; facts and audit events are read newest first."""
        db = self.database
        for collection, keys, options in INDEXES:
            await db[collection].create_index(keys, **options)
            logger.debug(f"Index {options['name']} ensured on {collection}")
        logger.success(f"✅ {len(INDEXES)} MongoDB indexes ensured")


db_manager = DatabaseManager()


async def get_database() -> AsyncIOMotorDatabase:
    """Connected database for repository construction."""
    return db_manager.database
