"""
TTL- and size-bounded cache for per-group listing results.

A logical entry is spread over three parallel maps (display metadata, message
count, message ids) that share one timestamp per key. TTL expiry and size
eviction always act on the whole entry. Every mutation writes the full cache
through to a SnapshotStorage as a single JSON blob, and the blob is read back
once when the cache is constructed.
"""

from __future__ import annotations
import asyncio
import json
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from mailclean.errors import CacheCorruptionError
from mailclean.logging import logger
from mailclean.storage.local_state import SnapshotStorage

#: Entry fields, in the order they are stored.
FIELDS = ("metadata", "count", "ids")

#: Snapshot section name per field.
_SNAPSHOT_SECTIONS = {"metadata": "items", "count": "counts", "ids": "message_ids"}

DEFAULT_TTL_SECONDS = 15 * 60
DEFAULT_MAX_SIZE = 1000


class BoundedCache:
    """
    Key -> {metadata, count, ids} store with TTL, size bound and persistence.

    - An entry older than `ttl` is treated as absent by every read, even before
      a sweep removes it.
    - Adding a new key while `max_size` keys are held evicts the key touched
      least recently across the whole cache.
    - Writes made inside a running event loop are persisted on a single worker
      thread, so snapshots reach storage in the order they were taken.
      Outside a loop they are written synchronously.
    - A snapshot that cannot be read or decoded leaves the cache empty; it
      never raises.
    """

    def __init__(
        self,
        storage: Optional[SnapshotStorage] = None,
        *,
        cache_key: str = "defaultCache",
        ttl: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            storage: Where snapshots are kept; None disables persistence
            cache_key: Storage key of this cache's snapshot
            ttl: Entry lifetime in seconds (default: 15 minutes)
            max_size: Maximum number of distinct keys (default: 1000)
            clock: Wall-clock source in seconds, injectable for tests
        """
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.storage = storage
        self.cache_key = cache_key
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._timestamps: Dict[str, float] = {}
        self._maps: Dict[str, Dict[str, Any]] = {f: {} for f in FIELDS}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: List[asyncio.Future] = []
        self.restore()

    # ---- internals ----
    def _reset(self) -> None:
        self._timestamps = {}
        self._maps = {f: {} for f in FIELDS}

    @staticmethod
    def _check_field(field: str) -> None:
        if field not in FIELDS:
            raise KeyError(f"Unknown cache field '{field}', expected one of {FIELDS}")

    def _is_expired(self, stamp: float, now: float) -> bool:
        return now - stamp > self.ttl

    def _drop(self, key: str) -> None:
        self._timestamps.pop(key, None)
        for values in self._maps.values():
            values.pop(key, None)

    def _oldest_key(self) -> Optional[str]:
        if not self._timestamps:
            return None
        return min(self._timestamps, key=self._timestamps.__getitem__)

    def _make_room(self, key: str) -> None:
        if key in self._timestamps:
            return
        while len(self._timestamps) >= self.max_size:
            oldest = self._oldest_key()
            logger.debug(f"Cache '{self.cache_key}' full ({self.max_size}), evicting '{oldest}'")
            self._drop(oldest)

    def _touch(self, key: str) -> None:
        self._timestamps[key] = self._clock()

    def _begin_write(self, key: str) -> None:
        self.evict_expired(persist=False)
        self._make_room(key)

    # ---- public API ----
    def set(self, key: str, field: str, value: Any) -> None:
        """
        Store one field of an entry and refresh the entry's timestamp.

        Args:
            key: Entry key
            field: One of "metadata", "count", "ids"
            value: JSON-serializable value
        """
        self._check_field(field)
        self._begin_write(key)
        self._maps[field][key] = value
        self._touch(key)
        self._schedule_persist()

    def set_entry(
        self,
        key: str,
        *,
        count: int,
        ids: Sequence[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Store count and ids (and optionally metadata) as one unit.

        Raises:
            ValueError: If count and ids disagree
        """
        if count != len(ids):
            raise ValueError(f"count ({count}) does not match number of ids ({len(ids)}) for '{key}'")
        self._begin_write(key)
        self._maps["count"][key] = count
        self._maps["ids"][key] = list(ids)
        if metadata is not None:
            self._maps["metadata"][key] = metadata
        self._touch(key)
        self._schedule_persist()

    def zero(self, key: str) -> None:
        """Record that an entry's messages are gone: count 0, no ids. Idempotent."""
        self._begin_write(key)
        self._maps["count"][key] = 0
        self._maps["ids"][key] = []
        self._touch(key)
        self._schedule_persist()

    def get(self, key: str, field: str, default: Any = None) -> Any:
        """
        Read one field of a live entry.

        An expired entry is removed from all maps and `default` is returned.
        """
        self._check_field(field)
        stamp = self._timestamps.get(key)
        if stamp is None:
            return default
        if self._is_expired(stamp, self._clock()):
            logger.debug(f"Cache '{self.cache_key}' entry '{key}' expired")
            self._drop(key)
            self._schedule_persist()
            return default
        return self._maps[field].get(key, default)

    def delete(self, key: str) -> None:
        if key in self._timestamps:
            self._drop(key)
            self._schedule_persist()

    def evict_expired(self, persist: bool = True) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [k for k, stamp in self._timestamps.items() if self._is_expired(stamp, now)]
        for key in expired:
            self._drop(key)
        if expired:
            logger.debug(f"Cache '{self.cache_key}' swept {len(expired)} expired entr(ies)")
            if persist:
                self._schedule_persist()
        return len(expired)

    def clear(self) -> None:
        self._reset()
        self._schedule_persist()

    def keys(self) -> List[str]:
        """Live keys, oldest insertion first."""
        self.evict_expired()
        return list(self._timestamps)

    def timestamp(self, key: str) -> Optional[float]:
        return self._timestamps.get(key)

    def __len__(self) -> int:
        return len(self.keys())

    def __contains__(self, key: str) -> bool:
        stamp = self._timestamps.get(key)
        return stamp is not None and not self._is_expired(stamp, self._clock())

    # ---- persistence ----
    def snapshot(self) -> Dict[str, Any]:
        """Full cache state as a JSON-ready dictionary."""
        data: Dict[str, Any] = {
            section: [[k, v] for k, v in self._maps[field].items()]
            for field, section in _SNAPSHOT_SECTIONS.items()
        }
        data["timestamps"] = [[k, v] for k, v in self._timestamps.items()]
        data["ttl"] = self.ttl
        data["max_size"] = self.max_size
        return data

    def _encode(self) -> str:
        return json.dumps(self.snapshot(), ensure_ascii=False)

    @staticmethod
    def _pairs(data: Dict[str, Any], section: str) -> Dict[str, Any]:
        raw = data.get(section, [])
        if not isinstance(raw, list):
            raise CacheCorruptionError(f"Snapshot section '{section}' is not a list")
        out: Dict[str, Any] = {}
        for pair in raw:
            if not isinstance(pair, list) or len(pair) != 2 or not isinstance(pair[0], str):
                raise CacheCorruptionError(f"Malformed entry in snapshot section '{section}': {pair!r}")
            out[pair[0]] = pair[1]
        return out

    @classmethod
    def decode(cls, blob: str) -> Tuple[Dict[str, float], Dict[str, Dict[str, Any]]]:
        """
        Parse a snapshot blob into (timestamps, field maps).

        Raises:
            CacheCorruptionError: If the blob is not a well-formed snapshot
        """
        try:
            data = json.loads(blob)
        except (TypeError, ValueError) as e:
            raise CacheCorruptionError(f"Snapshot is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CacheCorruptionError("Snapshot root is not an object")

        timestamps = cls._pairs(data, "timestamps")
        for key, stamp in timestamps.items():
            if isinstance(stamp, bool) or not isinstance(stamp, (int, float)):
                raise CacheCorruptionError(f"Timestamp for '{key}' is not a number")

        maps = {field: cls._pairs(data, section) for field, section in _SNAPSHOT_SECTIONS.items()}
        for key, count in maps["count"].items():
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise CacheCorruptionError(f"Count for '{key}' is not a non-negative integer")
        for key, ids in maps["ids"].items():
            if not isinstance(ids, list) or not all(isinstance(mid, str) for mid in ids):
                raise CacheCorruptionError(f"Message ids for '{key}' are not a list of strings")
        for key, metadata in maps["metadata"].items():
            if not isinstance(metadata, dict):
                raise CacheCorruptionError(f"Metadata for '{key}' is not an object")
        return timestamps, maps

    def restore(self) -> None:
        """Load the persisted snapshot, falling back to an empty cache."""
        if self.storage is None:
            return
        try:
            blob = self.storage.get(self.cache_key)
        except Exception as e:
            logger.warning(f"Could not read cache snapshot '{self.cache_key}': {e}. Starting empty")
            self._reset()
            return
        if not blob:
            return

        try:
            timestamps, maps = self.decode(blob)
        except CacheCorruptionError as e:
            logger.warning(f"Discarding corrupt cache snapshot '{self.cache_key}': {e}")
            self._reset()
            return

        self._timestamps = {k: float(v) for k, v in timestamps.items()}
        self._maps = {f: {k: v for k, v in maps[f].items() if k in self._timestamps} for f in FIELDS}

        restored = len(self._timestamps)
        while len(self._timestamps) > self.max_size:
            self._drop(self._oldest_key())
        self.evict_expired(persist=False)

        kept = len(self._timestamps)
        logger.debug(f"Restored cache '{self.cache_key}': {kept}/{restored} entr(ies) live")
        if kept != restored:
            self._schedule_persist()

    def persist(self) -> None:
        """Write the current snapshot synchronously."""
        self._write(self._encode())

    def _write(self, blob: str) -> None:
        if self.storage is None:
            return
        try:
            self.storage.set(self.cache_key, blob)
        except Exception as e:
            logger.error(f"Failed to persist cache '{self.cache_key}': {e}")

    def _schedule_persist(self) -> None:
        if self.storage is None:
            return
        blob = self._encode()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(blob)
            return

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"cache-{self.cache_key}")
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(loop.run_in_executor(self._executor, self._write, blob))

    async def flush(self) -> None:
        """Wait until every scheduled snapshot write has reached storage."""
        pending, self._pending = self._pending, []
        if pending:
            await asyncio.gather(*pending)

    def close(self) -> None:
        """Finish outstanding writes and release the writer thread."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._pending = []
