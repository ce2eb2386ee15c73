"""Redis backend for the ciphertext cache (``pip install 'py-doauth[redis]'``).

Values are raw ciphertext bytes, so the client never decodes responses.
Several engine replicas can share one Redis and reuse each other's fetched
blobs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from doauth.config.settings import CacheConfig

logger = logging.getLogger(__name__)


class RedisCache:
    def __init__(self, config: CacheConfig) -> None:
        self._config = config
        self._client: Redis | None = None

    async def connect(self) -> None:
        """Open the connection pool and check the server answers.

        Raises:
            ImportError: The ``redis`` extra is missing.
            ConnectionError: The server at ``cache.url`` is unreachable.
        """
        try:
            from redis.asyncio import Redis
            from redis.exceptions import RedisError
        except ImportError as e:
            msg = "Redis cache requires the redis extra: pip install 'py-doauth[redis]'"
            raise ImportError(msg) from e

        client = Redis.from_url(
            self._config.url,
            decode_responses=False,
            max_connections=self._config.max_connections,
        )
        try:
            await client.ping()
        except RedisError as e:
            await client.aclose()
            msg = f"Redis cache unreachable at {self._config.url}"
            raise ConnectionError(msg) from e
        self._client = client
        logger.debug("Redis cache ready (%d connections max)", self._config.max_connections)

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    @property
    def _conn(self) -> Redis:
        if self._client is None:
            msg = "Redis cache is not connected"
            raise RuntimeError(msg)
        return self._client

    async def get(self, key: str) -> bytes | None:
        return await self._conn.get(key)

    async def set(self, key: str, value: bytes, ttl: int | None = None) -> None:
        if ttl == 0:
            return
        # ttl=None keeps the blob until Redis evicts it
        await self._conn.set(key, value, ex=ttl)

    async def delete(self, key: str) -> None:
        await self._conn.delete(key)

    async def flush(self) -> None:
        """Drop every key in the selected Redis database."""
        await self._conn.flushdb()
