"""
Unit tests for BoundedCache.
"""

import json
import pytest
from unittest.mock import Mock

from mailclean.cache.bounded import BoundedCache, FIELDS
from mailclean.errors import CacheCorruptionError
from mailclean.storage.local_state import InMemoryStorage
from tests.mocks.timing import FakeClock


def stored(storage, key="testCache"):
    return json.loads(storage.get(key))


class TestBoundedCacheBounds:
    """Size and TTL bounds."""

    def test_oldest_key_evicted_at_capacity(self):
        clock = FakeClock(0.0)
        cache = BoundedCache(ttl=60, max_size=2, clock=clock)

        for t, key in enumerate("ABC"):
            clock.now = float(t)
            cache.set_entry(key, count=1, ids=[f"{key}1"], metadata={"name": key})

        assert sorted(cache.keys()) == ["B", "C"]
        for field in FIELDS:
            assert cache.get("A", field) is None
        assert "A" not in cache

    def test_expired_entry_is_absent_and_removed(self, storage):
        clock = FakeClock(0.0)
        cache = BoundedCache(storage, cache_key="testCache", ttl=1.0, clock=clock)
        cache.set_entry("X", count=2, ids=["a", "b"], metadata={"n": 1})

        clock.now = 1.5

        assert cache.get("X", "count") is None
        assert cache.timestamp("X") is None
        snap = stored(storage)
        assert snap["counts"] == [] and snap["message_ids"] == [] and snap["items"] == []

    def test_entry_alive_until_ttl(self, clock):
        cache = BoundedCache(ttl=10, clock=clock)
        cache.set_entry("k", count=1, ids=["x"])
        clock.advance(10)
        assert cache.get("k", "ids") == ["x"]
        clock.advance(0.01)
        assert cache.get("k", "ids") is None

    def test_eviction_uses_latest_touch(self):
        clock = FakeClock(0.0)
        cache = BoundedCache(ttl=60, max_size=2, clock=clock)
        cache.set_entry("A", count=0, ids=[])
        clock.now = 1
        cache.set_entry("B", count=0, ids=[])
        clock.now = 2
        cache.set("A", "metadata", {"touched": True})
        clock.now = 3
        cache.set_entry("C", count=0, ids=[])

        assert sorted(cache.keys()) == ["A", "C"]

    def test_updating_existing_key_at_capacity_does_not_evict(self, clock):
        cache = BoundedCache(ttl=60, max_size=2, clock=clock)
        cache.set_entry("A", count=1, ids=["1"])
        clock.advance(1)
        cache.set_entry("B", count=1, ids=["2"])
        clock.advance(1)
        cache.set_entry("A", count=2, ids=["1", "3"])

        assert sorted(cache.keys()) == ["A", "B"]
        assert cache.get("A", "count") == 2

    def test_write_sweeps_expired_entries(self, clock):
        cache = BoundedCache(ttl=5, max_size=3, clock=clock)
        cache.set_entry("old", count=0, ids=[])
        clock.advance(6)
        cache.set_entry("new", count=0, ids=[])

        assert cache.keys() == ["new"]

    def test_size_never_exceeds_max(self, clock):
        cache = BoundedCache(ttl=600, max_size=3, clock=clock)
        for i in range(10):
            clock.advance(1)
            cache.set(f"k{i}", "count", i)
            assert len(cache) <= 3
        assert sorted(cache.keys()) == ["k7", "k8", "k9"]

    def test_evict_expired_reports_count(self, clock):
        cache = BoundedCache(ttl=5, clock=clock)
        cache.set("a", "count", 1)
        cache.set("b", "count", 1)
        clock.advance(6)
        assert cache.evict_expired() == 2
        assert len(cache) == 0


class TestBoundedCacheEntries:
    """Field access and entry semantics."""

    def test_fields_share_one_timestamp(self, cache, clock):
        cache.set("k", "metadata", {"name": "n"})
        clock.advance(30)
        cache.set("k", "count", 0)
        clock.advance(45)
        # 75s after the first write but only 45s after the last one
        assert cache.get("k", "metadata") == {"name": "n"}

    def test_unknown_field(self, cache):
        with pytest.raises(KeyError):
            cache.set("k", "size", 1)
        with pytest.raises(KeyError):
            cache.get("k", "size")

    def test_set_entry_rejects_mismatch(self, cache):
        with pytest.raises(ValueError):
            cache.set_entry("k", count=2, ids=["only-one"])
        assert "k" not in cache

    def test_set_entry_keeps_metadata_when_omitted(self, cache):
        cache.set_entry("k", count=1, ids=["a"], metadata={"name": "n"})
        cache.set_entry("k", count=2, ids=["a", "b"])
        assert cache.get("k", "metadata") == {"name": "n"}
        assert cache.get("k", "ids") == ["a", "b"]

    def test_zero_is_idempotent(self, cache):
        cache.set_entry("k", count=2, ids=["a", "b"], metadata={"name": "n"})
        cache.zero("k")
        cache.zero("k")
        assert cache.get("k", "count") == 0
        assert cache.get("k", "ids") == []
        assert cache.get("k", "metadata") == {"name": "n"}

    def test_default_for_missing(self, cache):
        assert cache.get("missing", "ids", []) == []

    def test_delete_and_clear(self, cache, storage):
        cache.set_entry("a", count=0, ids=[])
        cache.set_entry("b", count=0, ids=[])
        cache.delete("a")
        assert cache.keys() == ["b"]
        cache.clear()
        assert len(cache) == 0
        assert stored(storage)["timestamps"] == []

    @pytest.mark.parametrize("kwargs", [{"ttl": 0}, {"max_size": 0}])
    def test_invalid_bounds(self, kwargs):
        with pytest.raises(ValueError):
            BoundedCache(**kwargs)


class TestBoundedCachePersistence:
    """Snapshot write-through and restore."""

    def test_every_mutation_writes_snapshot(self, cache, storage, clock):
        cache.set_entry("label:INBOX", count=2, ids=["a", "b"], metadata={"labelName": "Inbox"})

        snap = stored(storage)
        assert snap["items"] == [["label:INBOX", {"labelName": "Inbox"}]]
        assert snap["counts"] == [["label:INBOX", 2]]
        assert snap["message_ids"] == [["label:INBOX", ["a", "b"]]]
        assert snap["timestamps"] == [["label:INBOX", clock.now]]
        assert snap["ttl"] == 60
        assert snap["max_size"] == 10

    def test_restore_from_storage(self, storage, clock):
        first = BoundedCache(storage, cache_key="testCache", ttl=60, clock=clock)
        first.set_entry("k", count=1, ids=["x"], metadata={"name": "n"})

        second = BoundedCache(storage, cache_key="testCache", ttl=60, clock=clock)

        assert second.get("k", "ids") == ["x"]
        assert second.get("k", "metadata") == {"name": "n"}
        assert second.timestamp("k") == first.timestamp("k")

    def test_restore_drops_expired_and_trims(self, storage):
        clock = FakeClock(100.0)
        storage.set("testCache", json.dumps({
            "items": [],
            "counts": [["a", 0], ["b", 0], ["c", 0], ["d", 0]],
            "message_ids": [["a", []], ["b", []], ["c", []], ["d", []]],
            "timestamps": [["a", 10.0], ["b", 97.0], ["c", 98.0], ["d", 99.0]],
            "ttl": 60,
            "max_size": 10,
        }))

        cache = BoundedCache(storage, cache_key="testCache", ttl=60, max_size=2, clock=clock)

        assert sorted(cache.keys()) == ["c", "d"]
        assert [k for k, _ in stored(storage)["timestamps"]] == ["c", "d"]

    def test_constructor_bounds_win_over_snapshot(self, storage, clock):
        storage.set("testCache", json.dumps({"timestamps": [], "ttl": 5, "max_size": 1}))
        cache = BoundedCache(storage, cache_key="testCache", ttl=60, max_size=10, clock=clock)
        assert cache.ttl == 60
        assert cache.max_size == 10

    @pytest.mark.parametrize("blob", [
        "not json",
        "[1, 2, 3]",
        json.dumps({"timestamps": "nope"}),
        json.dumps({"timestamps": [["k"]]}),
        json.dumps({"timestamps": [["k", "yesterday"]]}),
        json.dumps({"timestamps": [["k", 1.0]], "message_ids": [["k", "abc"]]}),
        json.dumps({"timestamps": [["k", 1.0]], "message_ids": [["k", ["a", 7]]]}),
        json.dumps({"timestamps": [["k", 1.0]], "counts": [["k", "3"]]}),
        json.dumps({"timestamps": [["k", 1.0]], "counts": [["k", True]]}),
        json.dumps({"timestamps": [["k", 1.0]], "items": [["k", ["name"]]]}),
    ])
    def test_corrupt_snapshot_leaves_cache_empty(self, storage, clock, blob):
        storage.set("testCache", blob)

        cache = BoundedCache(storage, cache_key="testCache", clock=clock)

        assert len(cache) == 0

    def test_live_entry_with_string_ids_is_discarded(self, storage, clock):
        storage.set("testCache", json.dumps({
            "counts": [["k", 3]],
            "message_ids": [["k", "abc"]],
            "timestamps": [["k", clock.now]],
        }))

        cache = BoundedCache(storage, cache_key="testCache", ttl=60, clock=clock)

        assert "k" not in cache
        assert cache.get("k", "ids") is None
        with pytest.raises(CacheCorruptionError, match="list of strings"):
            BoundedCache.decode(storage.get("testCache"))

    def test_decode_raises_on_corruption(self):
        with pytest.raises(CacheCorruptionError):
            BoundedCache.decode("{broken")

    def test_storage_read_failure_is_absorbed(self, clock):
        storage = Mock()
        storage.get.side_effect = ConnectionError("down")

        cache = BoundedCache(storage, cache_key="testCache", clock=clock)

        assert len(cache) == 0

    def test_storage_write_failure_is_absorbed(self, clock):
        storage = Mock()
        storage.get.return_value = None
        storage.set.side_effect = ConnectionError("down")
        cache = BoundedCache(storage, cache_key="testCache", clock=clock)

        cache.set_entry("k", count=1, ids=["x"])

        assert cache.get("k", "count") == 1

    def test_no_storage_means_no_persistence(self, clock):
        cache = BoundedCache(None, clock=clock)
        cache.set_entry("k", count=1, ids=["x"])
        cache.persist()
        assert cache.get("k", "ids") == ["x"]

    @pytest.mark.asyncio
    async def test_writes_inside_event_loop_land_in_order(self, clock):
        storage = InMemoryStorage()
        cache = BoundedCache(storage, cache_key="testCache", clock=clock)

        for i in range(20):
            cache.set_entry(f"k{i}", count=1, ids=[str(i)])
        await cache.flush()

        snap = stored(storage)
        assert len(snap["timestamps"]) == 20
        cache.close()

    @pytest.mark.asyncio
    async def test_flush_without_pending_writes(self, cache):
        await cache.flush()
