"""In-memory TTL cache for permission decisions and identity lookups."""

from __future__ import annotations

import inspect
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Iterable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60

_MISSING = object()


class CacheEntry(BaseModel):
    """A cached item.

    `expires_at` is an absolute timestamp on the cache's clock. The entry is
    logically absent once the clock reaches it, even while it is still
    physically stored.
    """

    key: str
    value: Any
    expires_at: float
    created_at: float = Field(default_factory=time.monotonic)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheStats(BaseModel):
    """Cache statistics."""

    total_entries: int = 0
    total_hits: int = 0
    total_misses: int = 0
    hit_rate: float = 0.0


class TTLCache:
    """Key/value store with per-entry expiry.

    Expiry is enforced lazily on every read and eagerly by `cleanup()`,
    which `CacheSweeper` runs on a fixed interval. There is no size bound.

    Usage:
        cache = TTLCache(default_ttl_seconds=300)
        cache.set("alice@example.com|user:view", True)
        decision = cache.get("alice@example.com|user:view")
    """

    def __init__(
        self,
        default_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

        # Stats
        self._hits = 0
        self._misses = 0

    def _lookup(self, key: str) -> Any:
        """Return the live value for key, or _MISSING. Purges expired entries."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return _MISSING

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return _MISSING

            self._hits += 1
            return entry.value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value, or `default` if absent or expired."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store a value.

        A TTL of None applies the default. Zero or negative TTLs store an
        entry that is already expired.
        """
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        now = self._clock()
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                expires_at=now + ttl,
                created_at=now,
            )

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix."""
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for key in keys:
                del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        """Number of physically stored entries, expired or not."""
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def cleanup(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, v in self._entries.items() if v.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    async def get_or_set(
        self,
        key: str,
        compute: Callable[[], Any | Awaitable[Any]],
        ttl_seconds: float | None = None,
    ) -> Any:
        """Return the cached value, computing and storing it on a miss.

        Not single-flight: concurrent misses for the same key may each run
        `compute`, and the last write wins.
        """
        cached = self._lookup(key)
        if cached is not _MISSING:
            return cached

        value = compute()
        if inspect.isawaitable(value):
            value = await value

        self.set(key, value, ttl_seconds)
        return value

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Get several keys. Only found, unexpired keys are returned."""
        results = {}
        for key in keys:
            value = self._lookup(key)
            if value is not _MISSING:
                results[key] = value
        return results

    def set_many(self, entries: dict[str, Any], ttl_seconds: float | None = None) -> None:
        """Store several values with the same TTL."""
        for key, value in entries.items():
            self.set(key, value, ttl_seconds)

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        total_requests = self._hits + self._misses
        return CacheStats(
            total_entries=self.size(),
            total_hits=self._hits,
            total_misses=self._misses,
            hit_rate=(self._hits / total_requests * 100) if total_requests > 0 else 0.0,
        )


class CacheSweeper:
    """Background thread that purges expired cache entries."""

    def __init__(
        self,
        cache: TTLCache,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ):
        self.cache = cache
        self.interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def _run_loop(self) -> None:
        """Main sweep loop."""
        while not self._stop_event.wait(self.interval):
            try:
                removed = self.cache.cleanup()
                if removed:
                    logger.debug("Cache sweep removed %d expired entries", removed)
            except Exception:
                logger.exception("Cache sweep failed")

    def start(self) -> None:
        """Start sweeping in a daemon thread."""
        if self.is_running():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="cache-sweeper", daemon=True
        )
        self._thread.start()
        logger.info("Cache sweeper started (interval %ss)", self.interval)

    def stop(self) -> None:
        """Stop the sweeper."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


__all__ = [
    "CacheEntry",
    "CacheStats",
    "TTLCache",
    "CacheSweeper",
    "DEFAULT_TTL_SECONDS",
    "DEFAULT_SWEEP_INTERVAL_SECONDS",
]
