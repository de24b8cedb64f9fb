"""
Background Task Runner

Fire-and-forget dispatch for work that must never delay or fail a turn:
fact extraction, agent-result persistence.
"""
import asyncio
from typing import Awaitable, Optional
from loguru import logger


class BackgroundTaskRunner:
    """
    Holds strong references to in-flight tasks and logs their failures.

    Each task runs inside its own error boundary; an exception in one
    task is logged and never propagates to the caller that scheduled it.

    Usage:
        >>> runner = BackgroundTaskRunner()
        >>> runner.schedule(memory.extract_facts(...), name="fact_extraction")
        >>> await runner.drain(timeout=5.0)
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, coro: Awaitable[None], name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(self._guard(coro, name or "background"), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, coro: Awaitable[None], name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.warning(f"Background task '{name}' cancelled")
            raise
        except Exception as e:
            logger.error(f"❌ Background task '{name}' failed: {e}")

    async def drain(self, timeout: float = 30.0) -> None:
        """
        Waits for in-flight tasks to complete, cancelling whatever is
        still running once the timeout elapses.
        """
        if not self._tasks:
            return

        logger.info(f"Waiting for {len(self._tasks)} background tasks to complete...")
        try:
            await asyncio.wait_for(
                asyncio.gather(*self._tasks, return_exceptions=True),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Timeout waiting for background tasks, cancelling remaining")
            for task in list(self._tasks):
                task.cancel()
