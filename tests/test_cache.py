"""
Unit tests for the branch data cache
Run with: pytest tests/
"""

import os
import sys

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cache import MISS, CacheEntry, CacheStore, estimate_size
from models import DataType


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def payload(size: int) -> str:
    """A string payload whose JSON encoding is exactly `size` bytes."""
    return "x" * (size - 2)


# ── Fixtures ─────────────────────────────────────────────────────────────────
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheStore(default_ttl=300, max_size=1000, clock=clock)


# ── Keys & sizing ────────────────────────────────────────────────────────────
def test_make_key_sorts_branch_ids():
    assert CacheStore.make_key(DataType.SALES, [2, 1]) == "sales_1_2"
    assert CacheStore.make_key("inventory", [3]) == "inventory_3"


def test_make_page_key():
    assert CacheStore.make_page_key([1, 2], 0) == "paged_1,2_0"


def test_estimate_size_is_json_length():
    assert estimate_size(payload(400)) == 400
    assert estimate_size([{"a": 1}]) == len('[{"a":1}]')


def test_miss_sentinel_is_falsy():
    assert not MISS
    assert repr(MISS) == "MISS"


# ── Get / set ────────────────────────────────────────────────────────────────
def test_set_then_get_round_trip(cache):
    assert cache.set("sales_1", [{"id": 1}], branch_id=1) is True
    assert cache.get("sales_1") == [{"id": 1}]
    assert "sales_1" in cache
    assert len(cache) == 1


def test_get_missing_key_returns_miss(cache):
    assert cache.get("nope") is MISS
    assert cache.stats()["total_misses"] == 1


def test_empty_list_is_a_hit_not_a_miss(cache):
    cache.set("sales_1", [], branch_id=1)
    assert cache.get("sales_1") == []


def test_entry_expires_after_ttl(cache, clock):
    cache.set("sales_1", [1, 2, 3], branch_id=1)
    clock.advance(301)
    assert cache.get("sales_1") is MISS
    assert "sales_1" not in cache
    assert cache.current_size == 0


def test_entry_valid_at_exact_ttl(cache, clock):
    cache.set("sales_1", [1], branch_id=1)
    clock.advance(300)
    assert cache.get("sales_1") == [1]


def test_per_entry_ttl_overrides_default(cache, clock):
    cache.set("notifications_1", [1], branch_id=1, ttl=30)
    clock.advance(31)
    assert cache.get("notifications_1") is MISS


def test_replacing_key_releases_old_size(cache):
    cache.set("k", payload(400))
    cache.set("k", payload(100))
    assert cache.current_size == 100
    assert len(cache) == 1


def test_hits_are_counted(cache):
    cache.set("k", [1])
    cache.get("k")
    cache.get("k")
    entry = cache.entries_for_branch(0)[0]
    assert entry.hit_count == 2
    assert cache.stats()["total_hits"] == 2


# ── Eviction ─────────────────────────────────────────────────────────────────
def test_eviction_keeps_frequently_used_entry(cache, clock):
    cache.set("a", payload(400))
    clock.advance(1)
    cache.set("b", payload(400))
    for _ in range(5):
        cache.get("b")
    clock.advance(1)
    cache.set("c", payload(400))
    clock.advance(1)
    cache.set("d", payload(400))

    assert "b" in cache
    assert "a" not in cache
    assert "c" not in cache
    assert "d" in cache
    assert cache.current_size <= cache.max_size


def test_eviction_tie_goes_to_older_entry(cache, clock):
    cache.set("old", payload(400))
    clock.advance(5)
    cache.set("new", payload(400))
    clock.advance(5)
    cache.set("third", payload(400))

    assert "old" not in cache
    assert "new" in cache
    assert "third" in cache


def test_oversized_payload_is_not_stored(cache):
    cache.set("small", payload(100))
    assert cache.set("huge", payload(2000)) is False
    assert "huge" not in cache
    assert "small" in cache


def test_oversized_replacement_keeps_old_entry(cache):
    cache.set("k", payload(100))
    assert cache.set("k", payload(2000)) is False
    assert cache.get("k") == payload(100)
    assert cache.current_size == 100


def test_size_never_exceeds_budget(cache, clock):
    for i in range(50):
        cache.set(f"k{i}", payload(50 + (i * 37) % 300), branch_id=i % 3)
        clock.advance(0.5)
        assert cache.current_size <= cache.max_size
        assert cache.current_size == sum(
            e.size_bytes for b in range(3) for e in cache.entries_for_branch(b)
        )


def test_score_clamps_young_age():
    entry = CacheEntry(key="k", data=1, captured_at=100.0, ttl=300, size_bytes=1, branch_id=0, hit_count=4)
    assert entry.score(100.2) == 4
    assert entry.score(104.0) == 1


# ── Invalidation & maintenance ───────────────────────────────────────────────
def test_invalidate_branch(cache):
    cache.set("sales_1", [1], branch_id=1)
    cache.set("inventory_1", [1], branch_id=1)
    cache.set("sales_2", [2], branch_id=2)

    assert cache.invalidate_branch(1) == 2
    assert "sales_1" not in cache
    assert "sales_2" in cache


def test_invalidate_single_key(cache):
    cache.set("k", [1])
    assert cache.invalidate("k") is True
    assert cache.invalidate("k") is False


def test_clear(cache):
    cache.set("a", [1])
    cache.set("b", [2])
    assert cache.clear() == 2
    assert len(cache) == 0
    assert cache.current_size == 0


def test_sweep_expired_removes_only_expired(cache, clock):
    cache.set("short", [1], ttl=10)
    cache.set("long", [2], ttl=1000)
    clock.advance(11)
    assert cache.sweep_expired() == 1
    assert "long" in cache


def test_aggressive_cleanup_removes_fraction(clock):
    cache = CacheStore(default_ttl=300, max_size=10_000, cleanup_fraction=0.3, clock=clock)
    for i in range(10):
        cache.set(f"k{i}", [i])
    cache.get("k0")

    assert cache.aggressive_cleanup() == 3
    assert len(cache) == 7
    assert "k0" in cache


def test_crowded_cache_is_thinned_on_write(clock):
    cache = CacheStore(default_ttl=300, max_size=1000, cleanup_threshold=0.8, clock=clock)
    for i in range(8):
        cache.set(f"k{i}", payload(100))
    assert len(cache) == 8

    cache.set("k8", payload(100))

    assert len(cache) == 7
    assert cache.utilization <= 0.8
    assert "k8" in cache


def test_write_cleanup_keeps_the_entry_just_written(clock):
    cache = CacheStore(default_ttl=300, max_size=1000, cleanup_threshold=0.8, clock=clock)
    for i in range(8):
        cache.set(f"k{i}", payload(100))
        cache.get(f"k{i}")

    cache.set("fresh", payload(100))

    assert "fresh" in cache
    assert len(cache) == 7


def test_maintain_thins_out_crowded_cache(clock):
    cache = CacheStore(default_ttl=300, max_size=1000, cleanup_threshold=0.95, clock=clock)
    for i in range(9):
        cache.set(f"k{i}", payload(100))
    assert len(cache) == 9

    cache.cleanup_threshold = 0.8
    cache.maintain()
    assert len(cache) == 7


def test_stats_shape(cache, clock):
    cache.set("sales_1", [1], branch_id=1)
    clock.advance(10)
    cache.set("sales_2", [1], branch_id=2)
    cache.get("sales_1")
    cache.get("missing")

    stats = cache.stats()
    assert stats["total_entries"] == 2
    assert stats["hit_rate_percent"] == 50.0
    assert stats["oldest_entry"]["key"] == "sales_1"
    assert stats["newest_entry"]["key"] == "sales_2"
    assert stats["entries_per_branch"] == [
        {"branch_id": 1, "entry_count": 1},
        {"branch_id": 2, "entry_count": 1},
    ]
