"""Tests for the TTL cache and its sweeper."""

import asyncio
import time

import pytest

from packages.core.cache import CacheSweeper, TTLCache


class TestTTLCache:
    """Test basic get/set/expiry behaviour."""

    def test_set_and_get(self, cache):
        """Stored values are returned until they expire."""
        cache.set("a@example.com|user:view", True)
        assert cache.get("a@example.com|user:view") is True

    def test_missing_key_returns_default(self, cache):
        """Absent keys return the default."""
        assert cache.get("nope") is None
        assert cache.get("nope", "fallback") == "fallback"

    def test_falsy_values_are_cached(self, cache):
        """A cached denial is distinguishable from a miss."""
        cache.set("k", False)
        assert cache.get("k", "missing") is False

    def test_entry_expires_after_ttl(self, cache, clock):
        """Entries disappear once the clock reaches expires_at."""
        cache.set("k", "v", ttl_seconds=10)

        clock.advance(9.9)
        assert cache.get("k") == "v"

        clock.advance(0.1)
        assert cache.get("k") is None

    def test_default_ttl_applies(self, clock):
        """A None TTL uses the cache default."""
        cache = TTLCache(default_ttl_seconds=5, clock=clock)
        cache.set("k", "v")

        clock.advance(4)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is None

    def test_zero_ttl_is_immediately_absent(self, cache):
        """A zero TTL stores an entry that is already expired."""
        cache.set("k", "v", ttl_seconds=0)
        assert cache.get("k") is None

    def test_negative_ttl_is_immediately_absent(self, cache):
        """A negative TTL behaves like zero."""
        cache.set("k", "v", ttl_seconds=-1)
        assert cache.get("k") is None

    def test_expired_read_purges_entry(self, cache, clock):
        """Reading an expired entry removes it physically."""
        cache.set("k", "v", ttl_seconds=1)
        clock.advance(2)

        assert cache.size() == 1
        cache.get("k")
        assert cache.size() == 0

    def test_set_replaces_value_and_ttl(self, cache, clock):
        """Setting an existing key resets its value and expiry."""
        cache.set("k", "old", ttl_seconds=1)
        cache.set("k", "new", ttl_seconds=100)
        clock.advance(50)

        assert cache.get("k") == "new"

    def test_delete(self, cache):
        """Delete reports whether the key existed."""
        cache.set("k", "v")
        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert cache.get("k") is None

    def test_delete_prefix_only_touches_matching_keys(self, cache):
        """Prefix deletion drops one identity's entries."""
        cache.set("a@example.com|role", "admin")
        cache.set("a@example.com|user:view", True)
        cache.set("ab@example.com|user:view", True)

        removed = cache.delete_prefix("a@example.com|")

        assert removed == 2
        assert cache.get("ab@example.com|user:view") is True
        assert len(cache) == 1

    def test_clear(self, cache):
        cache.set_many({"a": 1, "b": 2})
        cache.clear()
        assert cache.size() == 0

    def test_cleanup_removes_only_expired(self, cache, clock):
        """cleanup() returns how many expired entries it removed."""
        cache.set("short", 1, ttl_seconds=1)
        cache.set("long", 2, ttl_seconds=100)
        clock.advance(5)

        assert cache.cleanup() == 1
        assert cache.size() == 1
        assert cache.get("long") == 2

    def test_get_many_skips_missing_and_expired(self, cache, clock):
        """Bulk get returns only live keys."""
        cache.set_many({"a": 1, "b": 2}, ttl_seconds=10)
        cache.set("c", 3, ttl_seconds=1)
        clock.advance(2)

        assert cache.get_many(["a", "b", "c", "d"]) == {"a": 1, "b": 2}

    def test_stats_track_hits_and_misses(self, cache):
        """Hit rate is a percentage of lookups."""
        cache.set("k", "v")
        cache.get("k")
        cache.get("k")
        cache.get("missing")

        stats = cache.get_stats()
        assert stats.total_entries == 1
        assert stats.total_hits == 2
        assert stats.total_misses == 1
        assert stats.hit_rate == pytest.approx(66.666, rel=1e-3)


class TestGetOrSet:
    """Test compute-on-miss."""

    @pytest.mark.asyncio
    async def test_computes_on_miss_and_caches(self, cache):
        """compute runs once, later calls hit the cache."""
        calls = []

        async def compute():
            calls.append(1)
            return "value"

        assert await cache.get_or_set("k", compute) == "value"
        assert await cache.get_or_set("k", compute) == "value"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_accepts_sync_compute(self, cache):
        """A plain callable works as well as a coroutine function."""
        assert await cache.get_or_set("k", lambda: 42) == 42
        assert cache.get("k") == 42

    @pytest.mark.asyncio
    async def test_compute_error_is_not_cached(self, cache):
        """A failing compute propagates and leaves the key absent."""

        async def compute():
            raise ConnectionError("store down")

        with pytest.raises(ConnectionError):
            await cache.get_or_set("k", compute)

        assert cache.get("k") is None

    @pytest.mark.asyncio
    async def test_concurrent_misses_leave_one_entry(self, cache):
        """Two overlapping misses may both compute; one entry remains."""
        counter = iter(range(1, 100))

        async def compute():
            value = f"v{next(counter)}"
            await asyncio.sleep(0)
            return value

        results = await asyncio.gather(
            cache.get_or_set("k", compute),
            cache.get_or_set("k", compute),
        )

        assert cache.size() == 1
        assert cache.get("k") in set(results)
        assert set(results) <= {"v1", "v2"}


class TestCacheSweeper:
    """Test the background sweep thread."""

    def test_sweeper_removes_expired_entries(self):
        """Expired entries are purged without being read."""
        cache = TTLCache()
        cache.set("stale", 1, ttl_seconds=0)
        cache.set("fresh", 2, ttl_seconds=60)

        sweeper = CacheSweeper(cache, interval_seconds=0.01)
        sweeper.start()
        try:
            deadline = time.monotonic() + 2
            while cache.size() > 1 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            sweeper.stop()

        assert cache.size() == 1
        assert cache.get("fresh") == 2

    def test_start_stop(self):
        """The sweeper reports its running state."""
        sweeper = CacheSweeper(TTLCache(), interval_seconds=60)
        assert not sweeper.is_running()

        sweeper.start()
        assert sweeper.is_running()

        sweeper.stop()
        assert not sweeper.is_running()
