"""In-memory LRU cache with per-key TTL."""

from __future__ import annotations

import time
from collections import OrderedDict


class MemoryCache:
    """Process-local LRU cache. Expired keys are dropped lazily on access."""

    def __init__(self, max_size: int = 1024) -> None:
        self._max_size = max_size
        # key -> (value, monotonic expiry or None)
        self._entries: OrderedDict[str, tuple[bytes, float | None]] = OrderedDict()

    async def connect(self) -> None:  # noqa: ASYNC910
        """No-op for the in-memory backend."""

    async def close(self) -> None:  # noqa: ASYNC910
        self._entries.clear()

    async def get(self, key: str) -> bytes | None:  # noqa: ASYNC910
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expiry = entry
        if expiry is not None and time.monotonic() >= expiry:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    async def set(self, key: str, value: bytes, ttl: int | None = None) -> None:  # noqa: ASYNC910
        expiry = None if ttl is None else time.monotonic() + ttl
        self._entries.pop(key, None)
        self._entries[key] = (value, expiry)
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    async def delete(self, key: str) -> None:  # noqa: ASYNC910
        self._entries.pop(key, None)

    async def flush(self) -> None:  # noqa: ASYNC910
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
