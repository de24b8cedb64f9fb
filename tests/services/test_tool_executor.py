"""
Tests for the Tool Executor: retries, caching and audit isolation.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from src.models.audit import AuditAction
from src.services.audit_logger import AuditLogger
from src.services.tool_executor import (
    ToolExecutor,
    build_cache_key,
    is_transient_error,
    sanitize_payload,
)


class FlakyHandler:
    """Fails with the given errors in order, then returns `value`."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def executor(audit_logger, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return ToolExecutor(
        max_retries=3,
        cache_enabled=True,
        initial_delay=1.0,
        backoff_multiplier=2.0,
        audit=audit_logger,
        sleep=fake_sleep,
    )


def test_transient_classification():
    assert is_transient_error(RuntimeError("Request timeout"))
    assert is_transient_error(ConnectionError("ECONNRESET by peer"))
    assert is_transient_error(RuntimeError("Rate limit exceeded (429)"))
    assert not is_transient_error(ValueError("invalid team size"))


def test_cache_key_is_order_independent():
    assert build_cache_key("calculate_roi", {"a": 1, "b": 2}) == build_cache_key("calculate_roi", {"b": 2, "a": 1})


def test_sanitize_payload():
    assert sanitize_payload(None) is None
    assert sanitize_payload({"team_size": 5}) == {"team_size": 5}
    assert sanitize_payload({"blob": "x" * 2000}, max_chars=100) == {"_truncated": True, "_size": 2012}


@pytest.mark.asyncio
class TestExecute:

    async def test_succeeds_after_transient_failures(self, executor, sleeps, audit_sink):
        handler = FlakyHandler([RuntimeError("network down"), RuntimeError("timeout")], value={"url": "x"})

        result = await executor.execute("get_booking_link", "sess-1", "Closer Agent", {}, handler)

        assert result.success is True
        assert result.attempt == 3
        assert result.data == {"url": "x"}
        assert handler.calls == 3
        assert sleeps == [1.0, 2.0]
        assert audit_sink.events[-1].action == AuditAction.TOOL_EXECUTED
        assert audit_sink.events[-1].details["attempt"] == 3

    async def test_non_transient_failure_is_not_retried(self, executor, sleeps, audit_sink):
        handler = FlakyHandler([ValueError("bad input")])

        result = await executor.execute("calculate_roi", "sess-1", "Pitch Agent", {"team_size": 5}, handler)

        assert result.success is False
        assert result.attempt == 1
        assert result.error == "bad input"
        assert handler.calls == 1
        assert sleeps == []
        details = audit_sink.events[-1].details
        assert details["performance"]["success"] is False
        assert details["performance"]["error"] == "bad input"

    async def test_gives_up_after_max_retries(self, executor, sleeps):
        handler = FlakyHandler([RuntimeError("timeout")] * 5)

        result = await executor.execute("get_booking_link", "sess-1", "Closer Agent", {}, handler)

        assert result.success is False
        assert result.attempt == 3
        assert handler.calls == 3
        assert sleeps == [1.0, 2.0]

    async def test_cache_hit_skips_handler(self, executor, audit_sink):
        handler = FlakyHandler([], value={"projected_roi": 3.2})

        first = await executor.execute("calculate_roi", "s", "Pitch Agent", {"team_size": 5}, handler, cacheable=True)
        second = await executor.execute("calculate_roi", "s", "Pitch Agent", {"team_size": 5}, handler, cacheable=True)

        assert first.cached is False and first.attempt == 1
        assert second.cached is True
        assert second.attempt == 0
        assert second.data == {"projected_roi": 3.2}
        assert handler.calls == 1
        assert audit_sink.events[-1].details["cached"] is True

    async def test_uncacheable_calls_always_run(self, executor):
        handler = FlakyHandler([])

        await executor.execute("get_booking_link", "s", "Closer Agent", {}, handler)
        await executor.execute("get_booking_link", "s", "Closer Agent", {}, handler)

        assert handler.calls == 2

    async def test_cache_failures_are_swallowed(self, audit_logger):
        cache = MagicMock()
        cache.get.side_effect = RuntimeError("cache down")
        cache.set.side_effect = RuntimeError("cache down")
        executor = ToolExecutor(cache_enabled=True, audit=audit_logger, cache=cache)

        result = await executor.execute("calculate_roi", "s", "Pitch Agent", {}, FlakyHandler([]), cacheable=True)

        assert result.success is True
        assert result.data == "ok"

    async def test_audit_failures_are_swallowed(self):
        audit = MagicMock(spec=AuditLogger)
        audit.log_tool_execution = AsyncMock(side_effect=RuntimeError("sink down"))
        executor = ToolExecutor(audit=audit)

        result = await executor.execute("get_booking_link", "s", "Closer Agent", {}, FlakyHandler([]))

        assert result.success is True
        audit.log_tool_execution.assert_awaited_once()

    async def test_oversized_outputs_are_truncated_in_audit(self, executor, audit_sink):
        handler = FlakyHandler([], value="x" * 5000)

        await executor.execute("calculate_roi", "s", "Pitch Agent", {}, handler)

        assert audit_sink.events[-1].details["outputs"]["_truncated"] is True
