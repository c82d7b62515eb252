"""
Branch data cache for branch-sync.

TTL-based, byte-bounded in-memory cache shared by every consumer of the
engine. Entries are keyed by data type plus the sorted branch ids they cover
and tagged with a branch id so a branch can be invalidated in one call.

All access happens on a single event loop, so there is no lock: a mutation
never interleaves with another between awaits. Two loads racing for the same
key both write, and the last write wins.
"""

import heapq
import json
import logging
import math
import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger("branch-sync.cache")

DEFAULT_MAX_BYTES = 50 * 1024 * 1024


class _Miss:
    """Sentinel returned by CacheStore.get when nothing valid is cached."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


@dataclass
class CacheEntry:
    """A single cached payload with metadata."""
    key: str
    data: Any
    captured_at: float
    ttl: float  # seconds
    size_bytes: int
    branch_id: int
    hit_count: int = 0

    def age_seconds(self, now: float) -> float:
        return now - self.captured_at

    def is_expired(self, now: float) -> bool:
        return (now - self.captured_at) > self.ttl

    def score(self, now: float) -> float:
        """Hits per second alive. Age is clamped to 1s so new entries are not penalized."""
        return self.hit_count / max(self.age_seconds(now), 1.0)


def estimate_size(data: Any) -> int:
    """Approximate size of a payload as the byte length of its JSON encoding."""
    try:
        return len(json.dumps(data, default=str, separators=(",", ":")).encode("utf-8"))
    except (TypeError, ValueError):
        return len(repr(data).encode("utf-8")) * 2


class CacheStore:
    """
    Keyed, size-bounded TTL cache with hit tracking.

    Usage:
        cache = CacheStore(default_ttl=300)

        key = CacheStore.make_key("sales", [2, 1])   # "sales_1_2"
        data = cache.get(key)
        if data is MISS:
            data = await fetch()
            cache.set(key, data, branch_id=1)
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        max_size: int = DEFAULT_MAX_BYTES,
        cleanup_threshold: float = 0.8,
        cleanup_fraction: float = 0.3,
        clock: Callable[[], float] = time.time,
    ):
        self._store: dict[str, CacheEntry] = {}
        self._current_size = 0
        self.default_ttl = default_ttl
        self.max_size = max_size
        self.cleanup_threshold = cleanup_threshold
        self.cleanup_fraction = cleanup_fraction
        self._clock = clock

        # Stats
        self._total_hits = 0
        self._total_misses = 0
        self._total_sets = 0
        self._total_evictions = 0
        self._created_at = clock()

    @staticmethod
    def make_key(data_type: Any, branch_ids: Iterable[int]) -> str:
        """Create a deterministic cache key from a data type and branch ids."""
        kind = getattr(data_type, "value", data_type)
        ids = "_".join(str(b) for b in sorted(branch_ids))
        return f"{kind}_{ids}"

    @staticmethod
    def make_page_key(branch_ids: Iterable[int], page: int) -> str:
        return f"paged_{','.join(str(b) for b in branch_ids)}_{page}"

    @property
    def current_size(self) -> int:
        return self._current_size

    @property
    def utilization(self) -> float:
        return self._current_size / self.max_size if self.max_size else 0.0

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        """True if the key is stored, expired or not. Does not count as an access."""
        return key in self._store

    def get(self, key: str) -> Any:
        """Return cached data, or MISS if absent or expired. Expired entries are dropped."""
        entry = self._store.get(key)

        if entry is None:
            self._total_misses += 1
            return MISS

        if entry.is_expired(self._clock()):
            self._remove(key)
            self._total_misses += 1
            return MISS

        entry.hit_count += 1
        self._total_hits += 1
        return entry.data

    def set(self, key: str, data: Any, branch_id: int = 0, ttl: Optional[float] = None) -> bool:
        """
        Store data under key, evicting the least valuable entries if the byte
        budget would be exceeded. Returns False if the payload alone is larger
        than the whole budget and was not stored.
        """
        size = estimate_size(data)

        if size > self.max_size:
            logger.warning(
                "Not caching %s: %dKB exceeds the %dKB budget",
                key, size // 1024, self.max_size // 1024,
            )
            return False

        # Replacing a key releases the old payload first
        if key in self._store:
            self._remove(key)

        if self._current_size + size > self.max_size:
            self._evict_for(self._current_size + size - self.max_size)

        self._store[key] = CacheEntry(
            key=key,
            data=data,
            captured_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
            size_bytes=size,
            branch_id=branch_id,
        )
        self._current_size += size
        self._total_sets += 1

        if self.utilization > self.cleanup_threshold:
            self.aggressive_cleanup(keep=key)
        return True

    def invalidate(self, key: str) -> bool:
        """Remove a specific key. Returns True if it existed."""
        if key in self._store:
            self._remove(key)
            return True
        return False

    def invalidate_branch(self, branch_id: int) -> int:
        """Remove every entry tagged with branch_id. Returns count removed."""
        keys = [k for k, e in self._store.items() if e.branch_id == branch_id]
        freed = sum(self._store[k].size_bytes for k in keys)
        for k in keys:
            self._remove(k)
        logger.info(
            "Invalidated %d cache entries for branch %d, freed %dKB",
            len(keys), branch_id, freed // 1024,
        )
        return len(keys)

    def clear(self) -> int:
        """Clear all entries. Returns count of cleared entries."""
        count = len(self._store)
        self._store.clear()
        self._current_size = 0
        logger.info("Cache cleared completely (%d entries)", count)
        return count

    def sweep_expired(self) -> int:
        """Remove every expired entry regardless of access."""
        now = self._clock()
        expired = [k for k, e in self._store.items() if e.is_expired(now)]
        freed = sum(self._store[k].size_bytes for k in expired)
        for k in expired:
            self._remove(k)
        if expired:
            logger.info(
                "Cache cleanup: removed %d expired entries, freed %dKB",
                len(expired), freed // 1024,
            )
        return len(expired)

    def aggressive_cleanup(self, keep: Optional[str] = None) -> int:
        """
        Drop the lowest-scoring share of entries, expired or not. Runs whenever
        a write leaves utilization above the cleanup threshold. `keep` is never
        removed.
        """
        to_remove = math.floor(len(self._store) * self.cleanup_fraction)
        if to_remove <= 0:
            return 0
        for key in self._lowest_scoring(to_remove, keep):
            self._remove(key)
            self._total_evictions += 1
        logger.info("Aggressive cleanup: removed %d entries", to_remove)
        return to_remove

    def maintain(self) -> None:
        """Periodic pass: sweep expired entries, then thin out if still crowded."""
        self.sweep_expired()
        if self.utilization > self.cleanup_threshold:
            self.aggressive_cleanup()

    def entries_for_branch(self, branch_id: int) -> list[CacheEntry]:
        return [e for e in self._store.values() if e.branch_id == branch_id]

    def stats(self) -> dict:
        """Return cache statistics."""
        now = self._clock()
        total_requests = self._total_hits + self._total_misses
        hit_rate = (
            round(self._total_hits / total_requests * 100, 1)
            if total_requests > 0 else 0
        )
        per_branch = Counter(e.branch_id for e in self._store.values())

        oldest = min(self._store.values(), key=lambda e: e.captured_at, default=None)
        newest = max(self._store.values(), key=lambda e: e.captured_at, default=None)

        return {
            "total_entries": len(self._store),
            "total_size_mb": round(self._current_size / (1024 * 1024), 2),
            "utilization_percent": round(self.utilization * 100, 2),
            "entries_per_branch": [
                {"branch_id": b, "entry_count": c} for b, c in sorted(per_branch.items())
            ],
            "oldest_entry": (
                {"key": oldest.key, "age_seconds": round(oldest.age_seconds(now), 1)}
                if oldest else None
            ),
            "newest_entry": (
                {"key": newest.key, "age_seconds": round(newest.age_seconds(now), 1)}
                if newest else None
            ),
            "total_hits": self._total_hits,
            "total_misses": self._total_misses,
            "total_sets": self._total_sets,
            "total_evictions": self._total_evictions,
            "hit_rate_percent": hit_rate,
            "default_ttl_seconds": self.default_ttl,
            "uptime_seconds": int(now - self._created_at),
        }

    def _remove(self, key: str) -> None:
        entry = self._store.pop(key)
        self._current_size -= entry.size_bytes

    def _scored(self) -> list[tuple[float, float, int, str]]:
        # (score, captured_at, insertion order, key): ties go to the older entry
        now = self._clock()
        return [
            (e.score(now), e.captured_at, i, e.key)
            for i, e in enumerate(self._store.values())
        ]

    def _score_heap(self) -> list[tuple[float, float, int, str]]:
        heap = self._scored()
        heapq.heapify(heap)
        return heap

    def _lowest_scoring(self, n: int, keep: Optional[str] = None) -> list[str]:
        candidates = [s for s in self._scored() if s[3] != keep]
        return [key for *_, key in heapq.nsmallest(n, candidates)]

    def _evict_for(self, needed: int) -> None:
        """Evict ascending by score until `needed` bytes are freed."""
        heap = self._score_heap()
        freed = 0
        evicted = 0
        while heap and freed < needed:
            _, _, _, key = heapq.heappop(heap)
            freed += self._store[key].size_bytes
            self._remove(key)
            evicted += 1
        self._total_evictions += evicted
        logger.info(
            "Evicted %d least used cache entries, freed %dKB", evicted, freed // 1024
        )
