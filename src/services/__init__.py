"""Services package."""
from src.services.agent_persistence import AgentPersistenceService
from src.services.audit_logger import AuditLogger
from src.services.semantic_memory import SemanticMemoryService
from src.services.tool_executor import ToolExecutor

__all__ = [
    "AgentPersistenceService",
    "AuditLogger",
    "SemanticMemoryService",
    "ToolExecutor",
]
