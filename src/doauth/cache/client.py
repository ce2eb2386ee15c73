"""Ciphertext cache with in-memory LRU and Redis backends.

Only opaque ciphertext is ever cached; the cache never sees plaintext and
plays no part in access decisions. A deployment can turn it off entirely
(``DOAUTH_CACHE__ENGINE=disabled``) and the decrypt path behaves the same.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from doauth.config.settings import CacheEngine

if TYPE_CHECKING:
    from doauth.config.settings import CacheConfig

logger = logging.getLogger(__name__)

_KEY_PREFIX = "doauth:"


class CacheClient:
    """Byte-valued cache delegating to a Redis or in-memory LRU backend."""

    def __init__(self, config: CacheConfig) -> None:
        self._config = config
        self._backend: CacheBackend | None = None

    async def connect(self) -> None:
        """Create and connect the configured backend.

        Raises:
            ValueError: If the engine is ``disabled`` or unknown.
        """
        from doauth.cache.memory import MemoryCache
        from doauth.cache.redis import RedisCache

        engine = self._config.engine
        if engine == CacheEngine.REDIS:
            self._backend = RedisCache(self._config)
        elif engine == CacheEngine.MEMORY:
            self._backend = MemoryCache()
        else:
            msg = f"Cache engine {engine!s} cannot be connected"
            raise ValueError(msg)

        await self._backend.connect()
        logger.info("Cache connected (engine=%s)", engine)

    async def close(self) -> None:
        """Close the backend (idempotent)."""
        if self._backend is not None:
            await self._backend.close()
            self._backend = None

    @property
    def is_connected(self) -> bool:
        return self._backend is not None

    @property
    def default_ttl(self) -> int:
        """TTL in seconds applied when callers pass none."""
        return self._config.ttl_seconds

    async def get(self, key: str) -> bytes | None:
        """Return the cached bytes for *key*, or None on a miss."""
        return await self._ensure_connected().get(_KEY_PREFIX + key)

    async def set(self, key: str, value: bytes, ttl: int | None = None) -> None:
        """Store *value* under *key* for *ttl* seconds (config default if None)."""
        effective = self._config.ttl_seconds if ttl is None else ttl
        await self._ensure_connected().set(_KEY_PREFIX + key, value, ttl=effective)

    async def delete(self, key: str) -> None:
        await self._ensure_connected().delete(_KEY_PREFIX + key)

    async def flush(self) -> None:
        """Drop every key (development/testing only)."""
        await self._ensure_connected().flush()

    def _ensure_connected(self) -> CacheBackend:
        if self._backend is None:
            msg = "Cache not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._backend


class CacheBackend(Protocol):
    """Protocol for cache backend implementations."""

    async def connect(self) -> None: ...
    async def close(self) -> None: ...
    async def get(self, key: str) -> bytes | None: ...
    async def set(self, key: str, value: bytes, ttl: int | None = None) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def flush(self) -> None: ...
