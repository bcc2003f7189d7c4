"""
Cleanup session: one set of Gmail helpers plus one cache and index per dimension.

Typical use:

    session = CleanupSession(_load_env())
    summaries = await session.discover("label")
    await session.delete("label", summaries[0].identifier)
    await session.close()
"""

from __future__ import annotations
import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from mailclean.cache.bounded import BoundedCache
from mailclean.config import Config, _init_gmail_service, _init_storage
from mailclean.gmail.client import GmailClient
from mailclean.gmail.fetcher import PagedFetcher
from mailclean.gmail.mutator import BatchMutator
from mailclean.gmail.requester import ResilientRequester
from mailclean.index.groupings import label_strategy, sender_strategy, subscription_strategy
from mailclean.index.query_index import GroupStrategy, QueryIndex
from mailclean.logging import logger
from mailclean.models import GroupDeletion, GroupSummary, MessageTable
from mailclean.storage.local_state import SnapshotStorage
from mailclean.utils.rate_limiter import QuotaLimiter

#: Storage key of each dimension's cache snapshot.
CACHE_KEYS = {
    "label": "labelCache",
    "sender": "senderCache",
    "subscription": "subscriptionCache",
}
DIMENSIONS = tuple(CACHE_KEYS)


class CleanupSession:
    """
    Owns everything a cleanup run needs; nothing here is a module global.

    The Gmail service is built lazily from the configured token, so commands
    that only read caches never touch the network or the credentials.
    """

    def __init__(
        self,
        cfg: Config,
        service: Any = None,
        storage: Optional[SnapshotStorage] = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            cfg: Validated configuration
            service: Pre-built Gmail API resource (built from cfg when None)
            storage: Snapshot storage (chosen from cfg when None)
            clock: Cache clock, injectable for tests
            sleep: Backoff and inter-chunk sleep, injectable for tests
        """
        self.cfg = cfg
        self._service = service
        self.storage = storage if storage is not None else _init_storage(cfg)

        self.requester = ResilientRequester(
            max_attempts=cfg["REQUEST_MAX_ATTEMPTS"],
            base_delay=cfg["REQUEST_BASE_DELAY"],
            retry_statuses=cfg["REQUEST_RETRY_STATUSES"],
            rate_limiter=QuotaLimiter(cfg["GMAIL_QUOTA_UNITS_PER_SECOND"]),
            sleep=sleep,
        )
        self.fetcher = PagedFetcher(self.requester, cfg["GMAIL_PAGE_SIZE"])
        self.mutator = BatchMutator(
            self.requester,
            cfg["DELETE_CHUNK_SIZE"],
            chunk_delay=cfg["DELETE_CHUNK_DELAY"],
            sleep=sleep,
        )
        self.client = GmailClient(self.requester)

        self.caches: Dict[str, BoundedCache] = {
            dim: BoundedCache(
                self.storage,
                cache_key=key,
                ttl=cfg["CACHE_TTL_SECONDS"],
                max_size=cfg["CACHE_MAX_SIZE"],
                clock=clock,
            )
            for dim, key in CACHE_KEYS.items()
        }
        self.unsubscribed: Set[str] = set()
        self._indexes: Dict[str, QueryIndex] = {}

    @property
    def service(self) -> Any:
        if self._service is None:
            self._service = _init_gmail_service(self.cfg)
        return self._service

    def _strategy(self, dimension: str, search_term: str = "", year: Optional[int] = None) -> GroupStrategy:
        if dimension == "label":
            return label_strategy(self.client)
        if dimension == "sender":
            return sender_strategy(self.client, self.fetcher, search_term)
        if dimension == "subscription":
            return subscription_strategy(
                self.client,
                self.fetcher,
                year if year is not None else datetime.now().year,
                self.unsubscribed,
            )
        raise ValueError(f"Unknown dimension '{dimension}', expected one of {', '.join(DIMENSIONS)}")

    def index(self, dimension: str, *, search_term: str = "", year: Optional[int] = None) -> QueryIndex:
        """
        QueryIndex for a dimension.

        The index is rebuilt when a search term or year is given, since those
        change where candidate groups come from; the cache is shared either way.
        """
        if dimension in self._indexes and not search_term and year is None:
            return self._indexes[dimension]

        strategy = self._strategy(dimension, search_term, year)
        index = QueryIndex(
            strategy,
            self.fetcher,
            self.mutator,
            self.caches[dimension],
            client=self.client,
            max_concurrent=self.cfg["DISCOVERY_MAX_CONCURRENT"],
        )
        self._indexes[dimension] = index
        return index

    # ---- operations ----
    async def discover(
        self,
        dimension: str,
        *,
        search_term: str = "",
        year: Optional[int] = None,
    ) -> List[GroupSummary]:
        index = self.index(dimension, search_term=search_term, year=year)
        summaries = await index.discover_groups(self.service)
        for identifier, error in index.failures.items():
            logger.warning(f"{dimension} '{identifier}' was skipped: {error}")
        return summaries

    async def delete(self, dimension: str, identifier: str) -> GroupDeletion:
        return await self.index(dimension).delete_group(self.service, identifier)

    async def show(self, dimension: str, identifier: str, *, limit: int = 50) -> Optional[MessageTable]:
        return await self.index(dimension).describe_group(self.service, identifier, limit=limit)

    def cached(self, dimension: str) -> List[GroupSummary]:
        return self.index(dimension).cached_summaries()

    def cached_summary(self, dimension: str, identifier: str) -> Optional[GroupSummary]:
        return self.index(dimension).cached_summary(identifier)

    def format_option(self, dimension: str, summary: GroupSummary) -> str:
        return self.index(dimension).format_option(summary)

    def mark_unsubscribed(self, address: str) -> None:
        self.unsubscribed.add(address)

    def clear_caches(self) -> None:
        for dimension in DIMENSIONS:
            self.index(dimension).clear()
        logger.info("All group caches cleared")

    async def close(self) -> None:
        """Wait for pending snapshot writes and release the cache workers."""
        for cache in self.caches.values():
            await cache.flush()
            cache.close()
