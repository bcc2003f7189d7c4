"""
Chunked bulk deletion over users.messages.batchDelete.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator, List, Optional, Sequence

from mailclean.errors import GmailAccessError
from mailclean.gmail.requester import ResilientRequester
from mailclean.logging import logger
from mailclean.utils.rate_limiter import QUOTA_COSTS
from mailclean.utils.validation import validate_message_ids

#: Hard per-request id cap of batchDelete.
MAX_CHUNK_SIZE = 1000


def chunks(items: Sequence[str], size: int) -> Iterator[List[str]]:
    """Yield consecutive slices of at most `size` items."""
    lst = list(items)
    for i in range(0, len(lst), size):
        yield lst[i:i + size]


@dataclass(frozen=True)
class BatchResult:
    """
    Outcome of a bulk delete.

    `failed_remainder` holds every id from the first failed chunk onward; the
    state of the failed chunk itself is unknown (the call is not per-id).
    """
    succeeded_count: int
    failed_remainder: List[str] = field(default_factory=list)
    error: Optional[GmailAccessError] = None

    @property
    def complete(self) -> bool:
        return not self.failed_remainder


class BatchMutator:
    """
    Deletes large id sets in fixed-size chunks, one chunk at a time.

    Chunks run sequentially so a bulk delete never competes with itself for
    the per-user quota shared with concurrent listings. The remote side is not
    transactional: chunks that went through before a failure stay deleted.
    """

    def __init__(
        self,
        requester: ResilientRequester,
        chunk_size: int = MAX_CHUNK_SIZE,
        *,
        chunk_delay: float = 0.0,
        user_id: str = "me",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            requester: Retry-aware request executor
            chunk_size: Ids per batchDelete call (1..1000)
            chunk_delay: Optional pause between chunks in seconds
            user_id: Gmail user ID (typically "me")
            sleep: Awaitable sleep used for the inter-chunk pause
        """
        if not (1 <= chunk_size <= MAX_CHUNK_SIZE):
            raise ValueError(f"chunk_size must be between 1 and {MAX_CHUNK_SIZE}, got {chunk_size}")
        if chunk_delay < 0:
            raise ValueError(f"chunk_delay must not be negative, got {chunk_delay}")
        self.requester = requester
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self.user_id = user_id
        self._sleep = sleep

    async def delete_all(self, service: Any, ids: Sequence[str]) -> BatchResult:
        """
        Permanently delete `ids`.

        Args:
            service: Authorized Gmail API resource (needs the full mail scope)
            ids: Message ids to delete

        Returns:
            BatchResult with the confirmed count and the untouched remainder

        Raises:
            ValueError: If `ids` contains empty or non-string entries
        """
        ids = list(ids)
        if not validate_message_ids(ids):
            raise ValueError("Refusing to delete: id list contains invalid entries")

        batches = list(chunks(ids, self.chunk_size))
        deleted = 0

        for n, batch in enumerate(batches, start=1):
            if n > 1 and self.chunk_delay:
                await self._sleep(self.chunk_delay)
            try:
                await self.requester.request(
                    lambda batch=batch: self._batch_delete_request(service, batch),
                    description=f"messages.batchDelete chunk {n}/{len(batches)}",
                    cost=QUOTA_COSTS["messages.batchDelete"],
                )
            except GmailAccessError as e:
                remainder = ids[deleted:]
                logger.error(
                    f"Bulk delete stopped at chunk {n}/{len(batches)}: {deleted} deleted, "
                    f"{len(remainder)} left untouched ({e})"
                )
                return BatchResult(succeeded_count=deleted, failed_remainder=remainder, error=e)

            deleted += len(batch)
            logger.debug(f"Deleted chunk {n}/{len(batches)} ({deleted}/{len(ids)})")

        if ids:
            logger.info(f"Deleted {deleted} messages in {len(batches)} chunk(s)")
        return BatchResult(succeeded_count=deleted)

    def _batch_delete_request(self, service: Any, batch: List[str]):
        return service.users().messages().batchDelete(userId=self.user_id, body={"ids": batch})
