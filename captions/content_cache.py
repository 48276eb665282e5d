"""
Content Cache — Bounded in-memory cache for downloaded caption content.

Entries expire after a TTL. Before every insert, expired entries are
evicted first, then least-recently-accessed entries until both the entry
count and the total byte budget hold with the new entry included.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """One cached caption document."""
    key: str
    content: str
    cached_at: float
    last_accessed: float
    size_bytes: int
    access_count: int = 0
    access_seq: int = 0


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    rejected: int = 0


class ContentCache:
    """
    Caches caption content by key with TTL + LRU eviction.

    Thread-safe: every read-modify-write runs under one lock.
    """

    def __init__(self, max_entries: int = 5, max_bytes: int = 50 * 1024 * 1024,
                 ttl: float = 30 * 60, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._total_bytes = 0
        self._seq = 0
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def get(self, key: str) -> Optional[str]:
        """Get cached content, or None on a miss or an expired entry."""
        with self._lock:
            entry = self._entries.get(key)
            now = self._clock()
            if entry is not None and self._is_expired(entry, now):
                self._remove(key)
                self.stats.expirations += 1
                entry = None
            if entry is None:
                self.stats.misses += 1
                return None

            entry.last_accessed = now
            entry.access_count += 1
            entry.access_seq = self._next_seq()
            self.stats.hits += 1
            return entry.content

    def put(self, key: str, content: str) -> bool:
        """
        Cache content under a key, evicting as needed.

        Returns:
            True if the content was cached, False if it can never fit.
        """
        size = len(content.encode("utf-8"))
        with self._lock:
            if size > self.max_bytes:
                self.stats.rejected += 1
                logger.warning(
                    f"Not caching {key}: {size / 1024:.1f}KB exceeds cache budget "
                    f"of {self.max_bytes / 1024:.1f}KB"
                )
                return False

            if key in self._entries:
                self._remove(key)

            now = self._clock()
            self._evict_for(size, now, adding=True)

            self._entries[key] = CacheEntry(
                key, content, now, now, size, access_seq=self._next_seq()
            )
            self._total_bytes += size
            self._check_invariants()

        logger.debug(
            f"Cached content {key}: {size / 1024:.1f}KB "
            f"(total {self._total_bytes / 1024:.1f}KB, {len(self._entries)} entries)"
        )
        return True

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._is_expired(entry, self._clock())

    def remove(self, key: str) -> bool:
        with self._lock:
            return self._remove(key) is not None

    def enforce_limits(self) -> int:
        """Drop expired entries and trim to budget. Returns entries removed."""
        with self._lock:
            before = len(self._entries)
            self._evict_for(0, self._clock(), adding=False)
            return before - len(self._entries)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._total_bytes = 0

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    # ── Internals (caller holds the lock) ───────────────────

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return self.ttl > 0 and now - entry.cached_at > self.ttl

    def _remove(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._total_bytes -= entry.size_bytes
        return entry

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _evict_for(self, incoming_bytes: int, now: float, adding: bool):
        """Evict expired entries, then LRU, until a new entry of incoming_bytes fits."""
        for key in [k for k, e in self._entries.items() if self._is_expired(e, now)]:
            self._remove(key)
            self.stats.expirations += 1
            logger.debug(f"Expired cached content: {key}")

        extra = 1 if adding else 0
        while self._entries and (
            len(self._entries) + extra > self.max_entries
            or self._total_bytes + incoming_bytes > self.max_bytes
        ):
            oldest = min(self._entries.values(), key=lambda e: e.access_seq)
            self._remove(oldest.key)
            self.stats.evictions += 1
            logger.info(f"Evicted cached content: {oldest.key}")

    def _check_invariants(self):
        actual = sum(e.size_bytes for e in self._entries.values())
        if actual != self._total_bytes:
            logger.error(
                f"Cache byte accounting drifted ({self._total_bytes} != {actual}), resetting"
            )
            self._total_bytes = actual
        if len(self._entries) > self.max_entries or self._total_bytes > self.max_bytes:
            logger.error("Cache over budget after insert, evicting")
            self._evict_for(0, self._clock(), adding=False)
