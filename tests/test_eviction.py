"""
Tests for least-recently-used eviction.
"""

from __future__ import annotations

import pytest

from hcache.engine import Cache


async def present_keys(cache: Cache, keys: list[str]) -> list[str]:
    return [key for key in keys if await cache.index.fetch(key) is not None]


class TestLRUEviction:
    """Test eviction by entry count."""

    @pytest.mark.asyncio
    async def test_keeps_most_recent_writes(self, make_cache, clock) -> None:
        """Test that N+k writes leave the N most recently written keys."""
        cache = await make_cache(max_entries=3)
        keys = [f"k{i}" for i in range(5)]

        for key in keys:
            await cache.set(key, b"v")
            clock.advance(1)

        assert await cache.count() == 3
        assert await present_keys(cache, keys) == ["k2", "k3", "k4"]

    @pytest.mark.asyncio
    async def test_read_counts_as_use(self, make_cache, clock) -> None:
        """Test that a read protects a key from eviction."""
        cache = await make_cache(max_entries=3)
        for key in ("a", "b", "c"):
            await cache.set(key, b"v")
            clock.advance(1)

        await cache.get("a")
        clock.advance(1)
        await cache.set("d", b"v")

        assert await present_keys(cache, ["a", "b", "c", "d"]) == ["a", "c", "d"]

    @pytest.mark.asyncio
    async def test_rewrite_counts_as_use(self, make_cache, clock) -> None:
        """Test that rewriting a key refreshes its recency."""
        cache = await make_cache(max_entries=2)
        await cache.set("a", b"1")
        clock.advance(1)
        await cache.set("b", b"1")
        clock.advance(1)
        await cache.set("a", b"2")
        clock.advance(1)
        await cache.set("c", b"1")

        assert await present_keys(cache, ["a", "b", "c"]) == ["a", "c"]

    @pytest.mark.asyncio
    async def test_ties_broken_by_insertion_order(self, make_cache) -> None:
        """Test that equal access times evict the earliest inserted keys."""
        cache = await make_cache(max_entries=3)
        keys = [f"k{i}" for i in range(6)]

        await cache.set_many([(key, b"v") for key in keys])

        assert await present_keys(cache, keys) == ["k3", "k4", "k5"]

    @pytest.mark.asyncio
    async def test_evicted_blobs_deleted(self, make_cache, clock, blob_files) -> None:
        """Test that evicting a file-backed entry removes its blob."""
        cache = await make_cache(max_entries=1)
        await cache.set("big", b"B" * 100)
        clock.advance(1)
        await cache.set("next", b"N" * 100)

        assert await cache.get("big") is None
        assert blob_files(cache.path) == [
            cache.blobs.path_for(cache.blobs.filename_for("next"))
        ]

    @pytest.mark.asyncio
    async def test_stale_entries_do_not_count(self, make_cache, clock) -> None:
        """Test that expired rows are neither counted nor evicted."""
        cache = await make_cache(max_entries=2)
        await cache.set("old", b"v", ttl=1)
        clock.advance(2)

        await cache.set("a", b"v")
        clock.advance(1)
        await cache.set("b", b"v")
        clock.advance(1)

        assert await cache.count() == 3

        await cache.set("c", b"v")

        assert await present_keys(cache, ["old", "a", "b", "c"]) == ["old", "b", "c"]

    @pytest.mark.asyncio
    async def test_under_limit_is_noop(self, make_cache) -> None:
        """Test that nothing is evicted at or below the limit."""
        cache = await make_cache(max_entries=3)
        await cache.set_many([("a", b"1"), ("b", b"2"), ("c", b"3")])

        assert await cache.evict_lru() == 0
        assert await cache.count() == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_entries", [None, 0])
    async def test_disabled_without_positive_limit(self, make_cache, max_entries) -> None:
        """Test that eviction is off when max_entries is unset or zero."""
        cache = await make_cache(max_entries=max_entries)
        await cache.set_many([(f"k{i}", b"v") for i in range(10)])

        assert await cache.evict_lru() == 0
        assert await cache.count() == 10
