"""Tests for VariableCache.

Tests cover:
- TTL expiry and reload
- Caching of absent (None) results
- LRU eviction and the expired-entry sweep
- Targeted invalidation by key and by variable
"""

import asyncio

import pytest

from automacro.cache import VariableCache, global_key, local_key


class CountingLoader:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.value


# -----------------------------------------------------------------------------
# Keys
# -----------------------------------------------------------------------------


class TestKeys:
    """Tests for the cache key scheme."""

    def test_global_key(self):
        assert global_key("counter") == "VAR_GLOBAL_counter"

    def test_local_key(self):
        assert local_key("counter", 7) == "VAR_LOCAL_counter_7"


# -----------------------------------------------------------------------------
# Lookup
# -----------------------------------------------------------------------------


class TestGet:
    """Tests for get() freshness and reload."""

    @pytest.mark.asyncio
    async def test_fresh_entry_does_not_reload(self, cache):
        loader = CountingLoader("a")
        assert await cache.get("k", 1000, loader) == "a"
        assert await cache.get("k", 1000, loader) == "a"
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_stale_entry_reloads(self, cache, clock):
        loader = CountingLoader("a")
        await cache.get("k", 1000, loader)
        clock.advance(1000)
        loader.value = "b"
        assert await cache.get("k", 1000, loader) == "b"
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_entry_just_before_ttl_is_fresh(self, cache, clock):
        loader = CountingLoader("a")
        await cache.get("k", 1000, loader)
        clock.advance(999)
        await cache.get("k", 1000, loader)
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_none_results_are_cached(self, cache):
        loader = CountingLoader(None)
        assert await cache.get("k", 1000, loader) is None
        assert await cache.get("k", 1000, loader) is None
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_async_loader(self, cache):
        async def loader():
            await asyncio.sleep(0)
            return 42

        assert await cache.get("k", 1000, loader) == 42

    def test_get_unlocked(self, cache):
        loader = CountingLoader("x")
        assert cache.get_unlocked("k", 1000, loader) == "x"
        assert cache.get_unlocked("k", 1000, loader) == "x"
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_stats_count_hits_and_misses(self, cache):
        loader = CountingLoader(1)
        await cache.get("k", 1000, loader)
        await cache.get("k", 1000, loader)
        stats = cache.stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.size == 1


# -----------------------------------------------------------------------------
# Capacity
# -----------------------------------------------------------------------------


class TestCapacity:
    """Tests for LRU eviction and sweeping."""

    @pytest.mark.asyncio
    async def test_least_recently_used_is_evicted(self, clock):
        cache = VariableCache(capacity=2, clock=clock)
        await cache.get("a", 10_000, lambda: 1)
        await cache.get("b", 10_000, lambda: 2)
        await cache.get("a", 10_000, lambda: 1)  # a is now most recent
        await cache.get("c", 10_000, lambda: 3)

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache
        assert cache.stats().evictions == 1

    @pytest.mark.asyncio
    async def test_expired_entries_swept_near_capacity(self, clock):
        cache = VariableCache(capacity=10, clock=clock)
        for n in range(8):
            await cache.get(f"old{n}", 100, lambda: n)
        clock.advance(200)

        await cache.get("new", 100, lambda: "x")

        assert len(cache) == 1
        assert cache.stats().expired_sweeps == 1
        assert cache.stats().evictions == 0

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            VariableCache(capacity=0)


# -----------------------------------------------------------------------------
# Invalidation
# -----------------------------------------------------------------------------


class TestInvalidation:
    """Tests for invalidate() and invalidate_variable()."""

    @pytest.mark.asyncio
    async def test_invalidate_key(self, cache):
        await cache.get("k", 1000, lambda: 1)
        await cache.invalidate("k")
        assert "k" not in cache

    @pytest.mark.asyncio
    async def test_invalidate_variable_removes_exactly_its_keys(self, cache):
        for key in (
            global_key("x"),
            local_key("x", 1),
            local_key("x", 2),
            global_key("y"),
        ):
            await cache.get(key, 1000, lambda: "v")

        await cache.invalidate_variable("x", 1)

        assert global_key("x") not in cache
        assert local_key("x", 1) not in cache
        assert local_key("x", 2) in cache
        assert global_key("y") in cache

    @pytest.mark.asyncio
    async def test_invalidate_variable_without_macro_only_global(self, cache):
        await cache.get(global_key("x"), 1000, lambda: "g")
        await cache.get(local_key("x", 1), 1000, lambda: "l")

        await cache.invalidate_variable("x", None)

        assert global_key("x") not in cache
        assert local_key("x", 1) in cache

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        await cache.get("k", 1000, lambda: 1)
        await cache.clear()
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_clear_waits_for_pending_load(self, cache):
        release = asyncio.Event()

        async def slow_loader():
            await release.wait()
            return "loaded"

        pending = asyncio.create_task(cache.get("k", 1000, slow_loader))
        await asyncio.sleep(0)
        clearing = asyncio.create_task(cache.clear())
        await asyncio.sleep(0)
        assert not clearing.done()

        release.set()
        assert await pending == "loaded"
        await clearing
        assert "k" not in cache
