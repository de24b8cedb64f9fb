"""
TTL Cache
Small in-process cache for tool results. Entries expire lazily on read.
"""
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol


class ResultCache(Protocol):
    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        ...


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """
    Key/value store where each entry carries its own time-to-live.

    Args:
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
