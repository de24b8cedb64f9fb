"""
Structured Logging & Observability
Console output for people, JSON lines for log pipelines.
"""
import sys
from loguru import logger
from typing import Any, Dict, TextIO
from src.config import get_settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{message}"
)


def configure_logging(sink: TextIO | None = None, level: str | None = None) -> int:
    """
    Replace loguru's handlers with the engine's single handler.

    ENABLE_STRUCTURED_LOGGING switches from the colorized console format to
    serialized JSON records. Returns the handler id.
    """
    settings = get_settings()
    sink = sink or sys.stderr
    level = level or settings.log_level
    structured = settings.enable_structured_logging

    logger.remove()
    if structured:
        handler_id = logger.add(sink, format="{message}", level=level, serialize=True)
    else:
        handler_id = logger.add(sink, format=CONSOLE_FORMAT, level=level, colorize=True)

    logger.info(f"📝 Logging configured: level={level}, structured={structured}, env={settings.environment}")
    return handler_id


def log_agent_execution(
    agent_name: str,
    session_id: str,
    action: str,
    duration_ms: float | None = None,
    **context
):
    """
    Structured logging for agent executions.

    Args:
        agent_name: Name of the agent (e.g., "Discovery Agent")
        session_id: The conversation session being processed
        action: What action was performed (e.g., "route", "generate")
        duration_ms: Execution time in milliseconds
        **context: Additional context (stage, tools, exit intent, etc.)

    Example:
        >>> log_agent_execution(
        ...     agent_name="Pitch Agent",
        ...     session_id="sess-42",
        ...     action="generate",
        ...     duration_ms=234.5,
        ...     stage="PITCHING",
        ... )
    """
    log_data = {
        "agent": agent_name,
        "session_id": session_id,
        "action": action,
    }

    if duration_ms is not None:
        log_data["duration_ms"] = round(duration_ms, 2)

    log_data.update(context)

    logger.bind(**log_data).info(f"{agent_name} | {action}")


def log_tool_execution(
    tool_name: str,
    session_id: str,
    success: bool,
    duration_ms: float,
    attempt: int,
    cached: bool = False,
    error: str | None = None,
):
    """Structured logging for Tool Executor calls."""
    log_data = {
        "event_type": "tool_execution",
        "tool": tool_name,
        "session_id": session_id,
        "success": success,
        "duration_ms": round(duration_ms, 2),
        "attempt": attempt,
        "cached": cached,
    }

    if error:
        log_data["error"] = error

    level = "INFO" if success else "WARNING"
    logger.bind(**log_data).log(
        level,
        f"Tool: {tool_name} | success={success} | attempt={attempt} | cached={cached}"
    )


def log_business_event(
    event_type: str,
    session_id: str,
    **details: Dict[str, Any]
):
    """
    Log business-critical events for analytics.

    Examples:
        - Funnel stage transitions
        - Exit intent detected
        - Response blocked by guardrails

    Args:
        event_type: Type of event (e.g., "stage_transition", "response_blocked")
        session_id: The session involved
        **details: Event-specific data
    """
    log_data = {
        "event_type": event_type,
        "session_id": session_id,
        **details
    }

    logger.bind(**log_data).success(f"Business Event: {event_type}")
