"""In-memory TTL cache for rate, gateway and order lookups."""

import time
from collections.abc import Callable
from typing import Any

from checkoutflow.application.ports import Cache


class InMemoryCache(Cache):
    """Process-local cache with per-entry expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize cache.

        Args:
            clock: Monotonic clock in seconds, injectable for tests.
        """
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = (self._clock() + ttl_seconds, value)

    async def invalidate_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def __len__(self) -> int:
        return len(self._entries)
