"""
Tool Executor
Uniform execution layer for agent tools: retries for transient failures,
optional result caching, timing and audit.

Tool failures come back as ToolExecutionResult(success=False); the
executor itself never raises on a handler error.
"""
import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional
from src.config import get_settings
from src.models.tool_result import ToolExecutionResult
from src.services.audit_logger import AuditLogger
from src.utils.cache import ResultCache, TTLCache
from src.utils.observability import log_tool_execution, logger
from src.utils.patterns import TRANSIENT_ERROR_MARKERS

ToolHandler = Callable[[], Awaitable[Any]]


def is_transient_error(error: BaseException) -> bool:
    """Network, timeout, rate-limit and 5xx-gateway style failures are worth retrying."""
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_ERROR_MARKERS)


def build_cache_key(tool_name: str, inputs: Dict[str, Any]) -> str:
    return f"{tool_name}:{json.dumps(inputs, sort_keys=True, default=str)}"


def sanitize_payload(data: Any, max_chars: Optional[int] = None) -> Optional[Any]:
    """Audit-safe view of tool inputs/outputs; oversized payloads become a size marker."""
    if data is None:
        return None
    limit = max_chars or get_settings().tool_audit_max_payload_chars
    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    serialized = json.dumps(data, default=str)
    if len(serialized) > limit:
        return {"_truncated": True, "_size": len(serialized)}
    return data


class ToolExecutor:
    """
    Runs a tool handler with retry, cache and audit.

    Usage:
        >>> executor = ToolExecutor(audit=AuditLogger(sink))
        >>> result = await executor.execute(
        ...     tool_name="get_booking_link",
        ...     session_id="sess-1",
        ...     agent="Closer Agent",
        ...     inputs={},
        ...     handler=lambda: booking_tools.get_booking_link(),
        ... )
        >>> if result.success: ...
    """

    def __init__(
        self,
        max_retries: int | None = None,
        cache_enabled: bool | None = None,
        cache_ttl_seconds: float | None = None,
        initial_delay: float | None = None,
        backoff_multiplier: float | None = None,
        audit: AuditLogger | None = None,
        cache: ResultCache | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.max_retries = max_retries or settings.tool_retry_max
        self.cache_enabled = settings.enable_tool_caching if cache_enabled is None else cache_enabled
        self.cache_ttl_seconds = cache_ttl_seconds or settings.tool_cache_ttl_seconds
        self.initial_delay = settings.tool_retry_initial_delay_seconds if initial_delay is None else initial_delay
        self.backoff_multiplier = backoff_multiplier or settings.tool_retry_backoff_multiplier
        self.audit = audit or AuditLogger()
        self.cache = cache or TTLCache()
        self._sleep = sleep

    def _cache_get(self, tool_name: str, key: str) -> Optional[Any]:
        try:
            return self.cache.get(key)
        except Exception as e:
            logger.warning(f"[ToolExecutor] Cache check failed for {tool_name}: {e}")
            return None

    def _cache_set(self, tool_name: str, key: str, value: Any) -> None:
        try:
            self.cache.set(key, value, self.cache_ttl_seconds)
        except Exception as e:
            logger.warning(f"[ToolExecutor] Cache set failed for {tool_name}: {e}")

    async def _audit(
        self,
        tool_name: str,
        session_id: str,
        agent: str,
        inputs: Dict[str, Any],
        outputs: Any,
        duration_ms: float,
        success: bool,
        cached: bool,
        attempt: int,
        error: Optional[str] = None,
    ) -> None:
        log_tool_execution(tool_name, session_id, success, duration_ms, attempt, cached=cached, error=error)
        try:
            metadata: Dict[str, Any] = {"cached": cached, "attempt": attempt}
            sanitized_inputs = sanitize_payload(inputs)
            if sanitized_inputs is not None:
                metadata["inputs"] = sanitized_inputs
            sanitized_outputs = sanitize_payload(outputs)
            if sanitized_outputs is not None:
                metadata["outputs"] = sanitized_outputs
            await self.audit.log_tool_execution(
                session_id, tool_name, agent, duration_ms, success, error=error, **metadata
            )
        except Exception as e:
            logger.warning(f"[ToolExecutor] Audit logging failed: {e}")

    async def execute(
        self,
        tool_name: str,
        session_id: str,
        agent: str,
        inputs: Dict[str, Any],
        handler: ToolHandler,
        cacheable: bool = False,
    ) -> ToolExecutionResult:
        start = time.perf_counter()
        cache_key = build_cache_key(tool_name, inputs) if cacheable and self.cache_enabled else None

        if cache_key:
            hit = self._cache_get(tool_name, cache_key)
            if hit is not None:
                duration_ms = (time.perf_counter() - start) * 1000
                await self._audit(tool_name, session_id, agent, inputs, hit, duration_ms, True, True, 0)
                return ToolExecutionResult(success=True, data=hit, duration_ms=duration_ms, cached=True, attempt=0)

        attempt = 0
        delay = self.initial_delay
        last_error: Optional[BaseException] = None

        while attempt < self.max_retries:
            attempt += 1
            try:
                data = await handler()
            except Exception as e:
                last_error = e
                if not is_transient_error(e) or attempt >= self.max_retries:
                    break
                logger.warning(
                    f"🔁 Tool {tool_name} transient failure (attempt {attempt}/{self.max_retries}): {e}"
                )
                await self._sleep(delay)
                delay *= self.backoff_multiplier
                continue

            if cache_key:
                self._cache_set(tool_name, cache_key, data)

            duration_ms = (time.perf_counter() - start) * 1000
            await self._audit(tool_name, session_id, agent, inputs, data, duration_ms, True, False, attempt)
            return ToolExecutionResult(success=True, data=data, duration_ms=duration_ms, cached=False, attempt=attempt)

        duration_ms = (time.perf_counter() - start) * 1000
        error_message = str(last_error) if last_error else "Unknown error"
        logger.error(f"❌ Tool {tool_name} failed after {attempt} attempt(s): {error_message}")
        await self._audit(
            tool_name, session_id, agent, inputs, None, duration_ms, False, False, attempt, error=error_message
        )
        return ToolExecutionResult(
            success=False, error=error_message, duration_ms=duration_ms, cached=False, attempt=attempt
        )
