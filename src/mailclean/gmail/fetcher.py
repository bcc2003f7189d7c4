"""
Cursor-based traversal of the Gmail messages.list endpoint.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from mailclean.errors import GmailAccessError, IncompleteFetchError
from mailclean.gmail.requester import ResilientRequester
from mailclean.logging import logger
from mailclean.utils.rate_limiter import QUOTA_COSTS

#: Server-side cap on maxResults for messages.list.
MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class FetchResult:
    """Complete id set for one filter; count always equals len(ids)."""
    count: int
    ids: List[str] = field(default_factory=list)


class PagedFetcher:
    """
    Collects every message id matching a filter.

    Pages are requested strictly one after another because each page needs
    the previous page's cursor. A failure on any page aborts the whole fetch:
    a partial id list would under-report a group and later drive a delete
    against the wrong set.
    """

    def __init__(
        self,
        requester: ResilientRequester,
        page_size: int = MAX_PAGE_SIZE,
        *,
        user_id: str = "me",
    ) -> None:
        """
        Args:
            requester: Retry-aware request executor
            page_size: Upper bound on ids requested per page (1..500)
            user_id: Gmail user ID (typically "me")
        """
        if not (1 <= page_size <= MAX_PAGE_SIZE):
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {page_size}")
        self.requester = requester
        self.page_size = page_size
        self.user_id = user_id

    def _list_request(
        self,
        service: Any,
        query: str,
        label_ids: Optional[Sequence[str]],
        page_token: Optional[str],
    ):
        kwargs: Dict[str, Any] = {"userId": self.user_id, "maxResults": self.page_size}
        if query:
            kwargs["q"] = query
        if label_ids:
            kwargs["labelIds"] = list(label_ids)
        if page_token:
            kwargs["pageToken"] = page_token
        return service.users().messages().list(**kwargs)

    async def fetch_all(
        self,
        service: Any,
        query: str = "",
        *,
        label_ids: Optional[Sequence[str]] = None,
    ) -> FetchResult:
        """
        Walk all pages for `query` / `label_ids` and return every id.

        Args:
            service: Authorized Gmail API resource
            query: Gmail search query (may be empty)
            label_ids: Optional label ids every message must carry

        Returns:
            FetchResult with ids in arrival order

        Raises:
            IncompleteFetchError: If any page failed after retries
        """
        ids: List[str] = []
        count = 0
        pages = 0
        page_token: Optional[str] = None
        scope = query or ",".join(label_ids or ()) or "<all>"

        while True:
            try:
                resp = await self.requester.request(
                    lambda token=page_token: self._list_request(service, query, label_ids, token),
                    description=f"messages.list [{scope}] page {pages + 1}",
                    cost=QUOTA_COSTS["messages.list"],
                )
            except GmailAccessError as e:
                logger.error(f"Aborting fetch for [{scope}] after {pages} page(s): {e}")
                raise IncompleteFetchError(
                    f"Fetch for [{scope}] failed on page {pages + 1}",
                    query=scope,
                    pages_fetched=pages,
                ) from e

            page_ids = [m["id"] for m in resp.get("messages") or [] if m.get("id")]
            ids.extend(page_ids)
            count += len(page_ids)
            pages += 1

            page_token = resp.get("nextPageToken")
            if not page_token:
                break

        logger.debug(
            f"Fetched {count} ids for [{scope}] in {pages} page(s) "
            f"(server estimate: {resp.get('resultSizeEstimate')})"
        )
        return FetchResult(count=count, ids=ids)
