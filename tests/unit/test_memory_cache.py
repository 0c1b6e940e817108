"""Unit tests for MemoryCacheProvider."""

from __future__ import annotations

import pytest

from src.providers.cache.memory_cache import MemoryCacheProvider


class TestMemoryCacheProvider:
    @pytest.fixture()
    def cache(self) -> MemoryCacheProvider:
        return MemoryCacheProvider(max_size=100, ttl=3600)

    async def test_get_missing_key_returns_none(self, cache: MemoryCacheProvider) -> None:
        assert await cache.get("nonexistent") is None

    async def test_set_and_get(self, cache: MemoryCacheProvider) -> None:
        await cache.set("key1", [0.1, 0.2])
        assert await cache.get("key1") == [0.1, 0.2]

    async def test_set_overwrites_existing(self, cache: MemoryCacheProvider) -> None:
        await cache.set("key1", "old")
        await cache.set("key1", "new")
        assert await cache.get("key1") == "new"
        assert len(cache) == 1

    async def test_delete(self, cache: MemoryCacheProvider) -> None:
        await cache.set("key1", "value1")
        await cache.delete("key1")
        await cache.delete("nonexistent")
        assert await cache.exists("key1") is False

    async def test_clear(self, cache: MemoryCacheProvider) -> None:
        for i in range(5):
            await cache.set(f"k{i}", i)
        await cache.clear()
        assert len(cache) == 0

    @pytest.mark.parametrize(("requested", "expected"), [(None, 3600), (0, 3600), (-5, 3600), (60, 60), (99999, 3600)])
    async def test_ttl_clamped(self, cache: MemoryCacheProvider, requested: int | None, expected: int) -> None:
        await cache.set("k", "v", ttl=requested)
        assert cache._cache["k"].ttl == expected

    async def test_size_bound(self) -> None:
        cache = MemoryCacheProvider(max_size=2, ttl=60)
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.set("c", 3)

        assert len(cache) == 2
        assert await cache.get("c") == 3
