"""
Agent Audit Logger

Writes routing, stage, agent and tool events to an AuditSink.
Audit is important but never on the critical path: sink failures are
logged and swallowed.
"""
from typing import Any, Dict, Optional
from src.config import get_settings
from src.models.audit import AuditAction, AuditEvent
from src.repositories.base import AuditSink
from src.utils.observability import logger


class AuditLogger:
    """
    Non-blocking audit facade.

    Args:
        sink: Where events go (MongoAuditRepository, InMemoryAuditSink, ...)
        enabled: Override for the `audit_enabled` setting
    """

    def __init__(self, sink: Optional[AuditSink] = None, enabled: Optional[bool] = None):
        self.sink = sink
        self.enabled = get_settings().audit_enabled if enabled is None else enabled

    async def log(self, event: AuditEvent) -> None:
        if not self.enabled or self.sink is None:
            return
        try:
            await self.sink.log(event)
            logger.debug(f"Audit logged: {event.action} for {event.session_id}")
        except Exception as e:
            logger.warning(f"⚠️ Audit log write failed (non-fatal): {e}")

    async def log_agent_routed(
        self,
        session_id: str,
        agent: str,
        stage: str,
        trigger: str,
        **metadata: Any,
    ) -> None:
        await self.log(AuditEvent(
            session_id=session_id,
            action=AuditAction.AGENT_ROUTED,
            details={"agent": agent, "stage": stage, "trigger": trigger, **metadata},
        ))

    async def log_stage_transition(
        self,
        session_id: str,
        from_stage: Optional[str],
        to_stage: str,
        reason: str,
        **metadata: Any,
    ) -> None:
        await self.log(AuditEvent(
            session_id=session_id,
            action=AuditAction.AGENT_STAGE_TRANSITION,
            details={"from_stage": from_stage, "to_stage": to_stage, "reason": reason, **metadata},
        ))

    async def log_agent_execution(
        self,
        session_id: str,
        agent: str,
        stage: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
        **metadata: Any,
    ) -> None:
        performance: Dict[str, Any] = {"duration_ms": round(duration_ms, 2), "success": success}
        if error:
            performance["error"] = error
        await self.log(AuditEvent(
            session_id=session_id,
            action=AuditAction.AGENT_EXECUTION,
            details={"agent": agent, "stage": stage, "performance": performance, **metadata},
        ))

    async def log_tool_execution(
        self,
        session_id: str,
        tool_name: str,
        agent: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
        **metadata: Any,
    ) -> None:
        performance: Dict[str, Any] = {"duration_ms": round(duration_ms, 2), "success": success}
        if error:
            performance["error"] = error
        await self.log(AuditEvent(
            session_id=session_id or "anonymous",
            action=AuditAction.TOOL_EXECUTED,
            details={"tool_name": tool_name, "agent": agent, "performance": performance, **metadata},
        ))
