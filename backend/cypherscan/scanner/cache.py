# cypherscan/scanner/cache.py
"""
In-memory TTL cache shared by every scan in the process.

    cache = ArtifactCache(max_entries=10_000, default_ttl=600, sweep_interval=300)
    cache.start()                       # background sweep of expired entries
    files = cache.get_or_set(key, fetch_fn, ttl=600)
    cache.stop()

Rules:
    - An entry is logically gone once `now - created_at > ttl`, even before
      the sweeper physically removes it.
    - Inserting a new key at capacity evicts the least-used entry (lowest
      hit count, oldest on ties).
    - All access goes through one RLock; safe for concurrent scans.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_MAX_ENTRIES = 10_000
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60


@dataclass
class CacheEntry(Generic[T]):
    payload: T
    created_at: float
    ttl: float
    hits: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


class ArtifactCache:
    """
    TTL + least-used eviction cache.

    `clock` is injectable so tests can move time without sleeping.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: Dict[str, CacheEntry[Any]] = {}
        self._lock = threading.RLock()
        self._scheduler: Optional[BackgroundScheduler] = None

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic expired-entry sweep. Idempotent."""
        if self._scheduler and self._scheduler.running:
            return
        self._scheduler = BackgroundScheduler(daemon=True)
        self._scheduler.add_job(
            self.sweep_expired,
            IntervalTrigger(seconds=self.sweep_interval),
            id="artifact-cache-sweep",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            f"Artifact cache started (max_entries={self.max_entries}, "
            f"ttl={self.default_ttl}s, sweep every {self.sweep_interval}s)"
        )

    def stop(self) -> None:
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self.clear()
        logger.info("Artifact cache stopped")

    @property
    def running(self) -> bool:
        return bool(self._scheduler and self._scheduler.running)

    # -------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        """Return the cached payload, or None on miss/expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                logger.debug(f"Expired cache entry removed: {key}")
                return None

            entry.hits += 1
            self._hits += 1
            logger.debug(f"Cache hit: {key} (hits: {entry.hits})")
            return entry.payload

    def set(self, key: str, payload: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_least_used()

            self._entries[key] = CacheEntry(
                payload=payload,
                created_at=self._clock(),
                ttl=self.default_ttl if ttl is None else ttl,
            )
            logger.debug(f"Cached {key} (ttl={self._entries[key].ttl}s)")

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            size = len(self._entries)
            self._entries.clear()
        if size:
            logger.info(f"Cache cleared: {size} entries removed")

    def get_or_set(self, key: str, compute: Callable[[], T], ttl: Optional[float] = None) -> T:
        """
        Return the cached value for `key`, computing and storing it on miss.

        `compute` runs outside the lock so a slow fetch never blocks other
        scans' cache reads. Exceptions from `compute` propagate and nothing
        is cached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        start = time.monotonic()
        value = compute()
        self.set(key, value, ttl)
        logger.debug(f"Computed and cached {key} in {time.monotonic() - start:.2f}s")
        return value

    # -------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------

    def sweep_expired(self) -> int:
        """Physically remove every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in expired:
                del self._entries[k]

        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def _evict_least_used(self) -> None:
        # caller holds the lock
        if not self._entries:
            return
        key, entry = min(
            self._entries.items(),
            key=lambda kv: (kv[1].hits, kv[1].created_at),
        )
        del self._entries[key]
        self._evictions += 1
        logger.debug(f"Evicted least used cache entry: {key} ({entry.hits} hits)")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "maxSize": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hitRate": round(self._hits / lookups * 100, 2) if lookups else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @staticmethod
    def make_key(*parts: Any) -> str:
        """Build a cache key from locator parts, e.g. ("github", "org/repo", "contracts")."""
        return ":".join(str(p if p is not None else "").strip() for p in parts)
