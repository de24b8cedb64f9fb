"""
Repositories Layer
Record-store protocols and their MongoDB and in-memory implementations.
"""
from .connection import db_manager, get_database, DatabaseManager
from .base import AuditSink, BaseRepository, ContextStore, FactStore, apply_partial
from .contexts import MongoContextRepository
from .facts import MongoFactRepository
from .audit import MongoAuditRepository
from .memory import InMemoryAuditSink, InMemoryContextStore, InMemoryFactStore

__all__ = [
    "db_manager",
    "get_database",
    "DatabaseManager",
    "BaseRepository",
    "ContextStore",
    "FactStore",
    "AuditSink",
    "apply_partial",
    "MongoContextRepository",
    "MongoFactRepository",
    "MongoAuditRepository",
    "InMemoryContextStore",
    "InMemoryFactStore",
    "InMemoryAuditSink",
]
