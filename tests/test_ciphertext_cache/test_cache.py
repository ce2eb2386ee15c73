"""Tests for the ciphertext cache: LRU backend and the prefixed client."""

from __future__ import annotations

import pytest

from doauth.cache.client import CacheClient
from doauth.cache.memory import MemoryCache
from doauth.config.settings import CacheConfig, CacheEngine


class TestMemoryCache:
    """In-memory LRU with per-key TTL."""

    async def test_set_get(self) -> None:
        cache = MemoryCache()
        await cache.set("k", b"v")
        assert await cache.get("k") == b"v"
        assert await cache.get("missing") is None

    async def test_lru_eviction(self) -> None:
        cache = MemoryCache(max_size=2)
        await cache.set("a", b"1")
        await cache.set("b", b"2")
        await cache.get("a")  # a is now most recently used
        await cache.set("c", b"3")
        assert await cache.get("b") is None
        assert await cache.get("a") == b"1"
        assert len(cache) == 2

    async def test_zero_ttl_expires_immediately(self) -> None:
        cache = MemoryCache()
        await cache.set("k", b"v", ttl=0)
        assert await cache.get("k") is None
        assert len(cache) == 0

    async def test_delete_and_flush(self) -> None:
        cache = MemoryCache()
        await cache.set("a", b"1")
        await cache.set("b", b"2")
        await cache.delete("a")
        assert await cache.get("a") is None
        await cache.flush()
        assert len(cache) == 0


class TestCacheClient:
    async def test_memory_roundtrip(self) -> None:
        client = CacheClient(CacheConfig(engine=CacheEngine.MEMORY, ttl_seconds=60))
        await client.connect()
        assert client.is_connected
        assert client.default_ttl == 60
        await client.set("ciphertext:b1", b"\x00\x01")
        assert await client.get("ciphertext:b1") == b"\x00\x01"
        await client.delete("ciphertext:b1")
        assert await client.get("ciphertext:b1") is None
        await client.close()
        assert not client.is_connected

    async def test_keys_are_prefixed(self) -> None:
        client = CacheClient(CacheConfig(engine=CacheEngine.MEMORY))
        await client.connect()
        await client.set("x", b"1")
        backend = client._backend
        assert isinstance(backend, MemoryCache)
        assert await backend.get("doauth:x") == b"1"
        await client.close()

    async def test_disabled_cannot_connect(self) -> None:
        client = CacheClient(CacheConfig(engine=CacheEngine.DISABLED))
        with pytest.raises(ValueError, match="cannot be connected"):
            await client.connect()

    async def test_use_before_connect(self) -> None:
        client = CacheClient(CacheConfig(engine=CacheEngine.MEMORY))
        with pytest.raises(RuntimeError, match="not connected"):
            await client.get("x")
