"""
Per-dimension grouping engine: count groups, cache them, delete them.

One QueryIndex serves one grouping dimension (labels, senders,
subscriptions). Everything dimension-specific (how a group becomes a Gmail
filter, how it is displayed, where candidate groups come from) is supplied
as a GroupStrategy value.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from mailclean.cache.bounded import BoundedCache
from mailclean.errors import GmailAccessError
from mailclean.gmail.client import GmailClient
from mailclean.gmail.fetcher import PagedFetcher
from mailclean.gmail.mutator import BatchMutator
from mailclean.logging import logger
from mailclean.models import (
    DeleteStatus,
    Group,
    GroupDeletion,
    GroupState,
    GroupSummary,
    MessageFilter,
    MessageTable,
)

QueryBuilder = Callable[[Group], Union[str, MessageFilter]]

#: Columns of the table produced by describe_group.
TABLE_COLUMNS = ["subject", "date", "time"]

#: Metadata flag of a cached group whose delete only partly went through.
STALE_FLAG = "stale"


@dataclass(frozen=True)
class GroupStrategy:
    """
    Everything that differs between grouping dimensions.

    Attributes:
        dimension: Short name, also the cache key prefix ("label", "sender"...)
        query_builder: Group -> Gmail search string or MessageFilter
        format_option: GroupSummary -> one-line display text
        table_title: Title for a table of the given group's messages
        candidates: Optional coroutine producing candidate groups from the
            mailbox itself (used when discover_groups gets no candidates)
    """
    dimension: str
    query_builder: QueryBuilder
    format_option: Callable[[GroupSummary], str]
    table_title: Callable[[Optional[GroupSummary]], str]
    candidates: Optional[Callable[[Any], Awaitable[List[Group]]]] = None


def as_filter(value: Union[str, MessageFilter, None]) -> MessageFilter:
    if isinstance(value, MessageFilter):
        return value
    return MessageFilter(query=value or "")


class QueryIndex:
    """
    Counts, caches, lists and deletes the groups of one dimension.

    The cached id list of a group is the only thing a delete ever targets:
    it reflects the last successful fetch, not the live mailbox.
    """

    def __init__(
        self,
        strategy: GroupStrategy,
        fetcher: PagedFetcher,
        mutator: BatchMutator,
        cache: BoundedCache,
        *,
        client: Optional[GmailClient] = None,
        max_concurrent: int = 5,
    ) -> None:
        """
        Args:
            strategy: Dimension-specific behaviour
            fetcher: Paginated id collector
            mutator: Chunked bulk deleter
            cache: Cache owned by this index's session
            client: Metadata reader, needed only by describe_group
            max_concurrent: Maximum number of groups fetched at the same time
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.strategy = strategy
        self.fetcher = fetcher
        self.mutator = mutator
        self.cache = cache
        self.client = client
        self.max_concurrent = max_concurrent
        self.failures: Dict[str, GmailAccessError] = {}
        self._deleting: Set[str] = set()

    @property
    def dimension(self) -> str:
        return self.strategy.dimension

    def cache_key(self, identifier: str) -> str:
        return f"{self.strategy.dimension}:{identifier}"

    def format_option(self, summary: GroupSummary) -> str:
        return self.strategy.format_option(summary)

    def table_title(self, summary: Optional[GroupSummary] = None) -> str:
        return self.strategy.table_title(summary)

    # ---- discovery ----
    async def _fetch_group(self, service: Any, group: Group, semaphore: asyncio.Semaphore) -> GroupSummary:
        scope = as_filter(self.strategy.query_builder(group))
        async with semaphore:
            result = await self.fetcher.fetch_all(service, scope.query, label_ids=scope.label_ids or None)

        summary = GroupSummary(
            identifier=group.identifier,
            metadata=dict(group.metadata),
            count=result.count,
            ids=list(result.ids),
        )
        self.cache.set_entry(
            self.cache_key(group.identifier),
            count=summary.count,
            ids=summary.ids,
            metadata=summary.metadata,
        )
        return summary

    async def discover_groups(
        self,
        service: Any,
        candidates: Optional[Iterable[Group]] = None,
        *,
        raise_on_error: bool = False,
    ) -> List[GroupSummary]:
        """
        Count every candidate group and return the non-empty ones.

        Args:
            service: Authorized Gmail API resource
            candidates: Groups to count; when None the strategy discovers them
            raise_on_error: Re-raise the first per-group failure once all
                successful groups are cached

        Returns:
            Summaries with count > 0, largest first; equal counts keep
            candidate order

        Raises:
            ValueError: If no candidates are given and the strategy has no source
            GmailAccessError: Candidate discovery failed, or a group failed and
                `raise_on_error` is set
        """
        if candidates is None:
            if self.strategy.candidates is None:
                raise ValueError(f"No candidates given and '{self.dimension}' strategy cannot discover any")
            candidates = await self.strategy.candidates(service)

        unique: Dict[str, Group] = {}
        for group in candidates:
            unique.setdefault(group.identifier, group)
        groups = list(unique.values())

        self.failures = {}
        if not groups:
            logger.info(f"No {self.dimension} candidates found")
            return []

        semaphore = asyncio.Semaphore(self.max_concurrent)
        results = await asyncio.gather(
            *(self._fetch_group(service, g, semaphore) for g in groups),
            return_exceptions=True,
        )

        summaries: List[GroupSummary] = []
        for group, result in zip(groups, results):
            if isinstance(result, GmailAccessError):
                logger.error(f"Could not count {self.dimension} '{group.identifier}': {result}")
                self.failures[group.identifier] = result
                continue
            if isinstance(result, BaseException):
                raise result
            if result.count > 0:
                summaries.append(result)

        summaries.sort(key=lambda s: s.count, reverse=True)
        logger.info(
            f"Discovered {len(summaries)} non-empty {self.dimension} group(s) "
            f"out of {len(groups)} ({len(self.failures)} failed)"
        )

        if raise_on_error and self.failures:
            raise next(iter(self.failures.values()))
        return summaries

    # ---- deletion ----
    async def delete_group(self, service: Any, identifier: str) -> GroupDeletion:
        """
        Delete every message cached for `identifier`.

        On full success the cache entry is zeroed. On a partial failure the
        cache keeps the pre-delete count and ids and the entry's metadata is
        flagged stale, so later sessions see it too: only a re-fetch can tell
        what is left.
        """
        ids = self.cache.get(self.cache_key(identifier), "ids")
        if not ids:
            logger.info(f"Nothing to delete for {self.dimension} '{identifier}'")
            return GroupDeletion(identifier=identifier, status=DeleteStatus.NOTHING_TO_DELETE)

        self._deleting.add(identifier)
        try:
            result = await self.mutator.delete_all(service, ids)
        finally:
            self._deleting.discard(identifier)

        if result.complete:
            self.zero_group(identifier)
            logger.info(f"Deleted {result.succeeded_count} message(s) of {self.dimension} '{identifier}'")
            return GroupDeletion(identifier=identifier, status=DeleteStatus.DELETED, result=result)

        self._mark_stale(identifier, True)
        logger.warning(
            f"Partial delete of {self.dimension} '{identifier}': {result.succeeded_count} deleted, "
            f"{len(result.failed_remainder)} left; re-fetch to see the current state"
        )
        return GroupDeletion(identifier=identifier, status=DeleteStatus.PARTIAL, result=result)

    def zero_group(self, identifier: str) -> None:
        """Mark a group as emptied in the cache. Safe to repeat."""
        self.cache.zero(self.cache_key(identifier))
        self._mark_stale(identifier, False)

    def _mark_stale(self, identifier: str, stale: bool) -> None:
        key = self.cache_key(identifier)
        metadata = dict(self.cache.get(key, "metadata") or {})
        if bool(metadata.get(STALE_FLAG)) == stale:
            return
        if stale:
            metadata[STALE_FLAG] = True
        else:
            metadata.pop(STALE_FLAG, None)
        self.cache.set(key, "metadata", metadata)

    # ---- cached views ----
    def group_state(self, identifier: str) -> GroupState:
        if identifier in self._deleting:
            return GroupState.DELETING
        key = self.cache_key(identifier)
        if key not in self.cache:
            return GroupState.UNKNOWN
        if (self.cache.get(key, "metadata") or {}).get(STALE_FLAG):
            return GroupState.STALE
        if self.cache.get(key, "count") == 0:
            return GroupState.EMPTIED
        return GroupState.COUNTED

    def cached_summary(self, identifier: str) -> Optional[GroupSummary]:
        key = self.cache_key(identifier)
        if key not in self.cache:
            return None
        ids = list(self.cache.get(key, "ids") or [])
        count = self.cache.get(key, "count")
        if count is not None and count != len(ids):
            logger.warning(f"Cached count {count} for '{key}' disagrees with {len(ids)} cached ids")
        return GroupSummary(
            identifier=identifier,
            metadata={k: v for k, v in (self.cache.get(key, "metadata") or {}).items() if k != STALE_FLAG},
            count=len(ids),
            ids=ids,
        )

    def cached_summaries(self) -> List[GroupSummary]:
        """Every live cached group of this dimension, zeroed ones included, largest first."""
        prefix = f"{self.strategy.dimension}:"
        out: List[GroupSummary] = []
        for key in self.cache.keys():
            if not key.startswith(prefix):
                continue
            summary = self.cached_summary(key[len(prefix):])
            if summary is not None:
                out.append(summary)
        out.sort(key=lambda s: s.count, reverse=True)
        return out

    async def describe_group(self, service: Any, identifier: str, *, limit: int = 50) -> Optional[MessageTable]:
        """
        Subject/date/time table for the first `limit` cached messages of a group.

        Returns:
            MessageTable, or None when nothing is cached or no message could be read
        """
        if self.client is None:
            raise ValueError("describe_group needs a GmailClient")
        summary = self.cached_summary(identifier)
        if summary is None or not summary.ids:
            logger.info(f"No cached messages for {self.dimension} '{identifier}'")
            return None

        rows = await self.client.get_message_rows(service, summary.ids[:limit])
        if not rows:
            logger.warning(f"No message details could be retrieved for {self.dimension} '{identifier}'")
            return None
        return MessageTable(title=self.table_title(summary), columns=list(TABLE_COLUMNS), rows=rows)

    def clear(self) -> None:
        self.cache.clear()
        self.failures = {}
