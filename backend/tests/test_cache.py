# tests/test_cache.py - CacheManager behaviour
import pytest

import cache as cache_module
from cache import CacheManager, reset_caches


def test_add_get_remove():
    cache = CacheManager("test")
    cache.add(1, "one")
    assert cache.get(1) == "one"
    assert cache.size == 1
    cache.remove(1)
    assert cache.get(1) is None
    assert cache.size == 0


def test_entries_expire_after_ttl(monkeypatch):
    now = [100.0]
    monkeypatch.setattr(cache_module.time, "monotonic", lambda: now[0])
    cache = CacheManager("test", ttl_seconds=10)
    cache.add("a", 1)
    now[0] = 105.0
    assert cache.get("a") == 1
    now[0] = 111.0
    assert cache.get("a") is None
    assert cache.size == 0


def test_find_matches_live_values():
    cache = CacheManager("test")
    cache.add(1, {"osm": 10})
    cache.add(2, {"osm": 20})
    assert cache.find(lambda v: v["osm"] == 20) == {"osm": 20}
    assert cache.find(lambda v: v["osm"] == 30) is None


def test_reset_caches_clears_every_manager():
    first, second = CacheManager("first"), CacheManager("second")
    first.add(1, "x")
    second.add(2, "y")
    reset_caches()
    assert first.size == 0
    assert second.size == 0


@pytest.mark.asyncio
async def test_option_caching_loads_once():
    cache = CacheManager("test")
    calls = []

    async def loader():
        calls.append(1)
        return "value"

    assert await cache.with_option_caching(5, loader) == "value"
    assert await cache.with_option_caching(5, loader) == "value"
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_option_caching_does_not_cache_missing_values():
    cache = CacheManager("test")

    async def loader():
        return None

    assert await cache.with_option_caching(5, loader) is None
    assert cache.size == 0


@pytest.mark.asyncio
async def test_updating_cache_replaces_value():
    cache = CacheManager("test")
    cache.add(1, "old")

    async def retriever(key):
        raise AssertionError("cached value should be used")

    async def updater(current):
        return current + "-new"

    assert await cache.with_updating_cache(1, retriever, updater) == "old-new"
    assert cache.get(1) == "old-new"


@pytest.mark.asyncio
async def test_updating_cache_missing_item_skips_updater():
    cache = CacheManager("test")

    async def retriever(key):
        return None

    async def updater(current):
        raise AssertionError("updater should not run")

    assert await cache.with_updating_cache(1, retriever, updater) is None


@pytest.mark.asyncio
async def test_updating_cache_evicts_when_updater_returns_none():
    cache = CacheManager("test")
    cache.add(1, "old")

    async def retriever(key):
        return "old"

    async def updater(current):
        return None

    assert await cache.with_updating_cache(1, retriever, updater) is None
    assert cache.get(1) is None


@pytest.mark.asyncio
async def test_cache_id_deletion_evicts_after_delete():
    cache = CacheManager("test")
    cache.add(1, "a")
    cache.add(2, "b")
    cache.add(3, "c")

    async def deleter():
        return 2

    assert await cache.with_cache_id_deletion([1, 2], deleter) == 2
    assert cache.get(1) is None
    assert cache.get(2) is None
    assert cache.get(3) == "c"
