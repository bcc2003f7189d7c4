"""
Async Gmail helpers for metadata reads: labels and per-message headers.
"""

from __future__ import annotations
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from mailclean.errors import GmailAccessError
from mailclean.gmail.requester import ResilientRequester
from mailclean.logging import logger
from mailclean.utils.rate_limiter import QUOTA_COSTS
from mailclean.utils.transform import (
    format_date,
    format_time,
    headers_to_dict,
    parse_header_date,
)


class GmailClient:
    """
    Metadata reads used to derive group membership and to describe groups.

    Message bodies are never downloaded: every read uses format="metadata"
    with an explicit header list.
    """

    #: Scope needed for permanent deletion through batchDelete.
    SCOPES_FULL = ["https://mail.google.com/"]

    def __init__(
        self,
        requester: ResilientRequester,
        *,
        max_concurrent: int = 10,
        user_id: str = "me",
    ) -> None:
        """
        Args:
            requester: Retry-aware request executor
            max_concurrent: Maximum number of concurrent message reads (default: 10)
            user_id: Gmail user ID (typically "me")
        """
        self.requester = requester
        self.max_concurrent = max_concurrent
        self.user_id = user_id

    async def list_labels(self, service: Any) -> List[Dict[str, Any]]:
        """
        All labels of the mailbox, system and user labels alike.

        Raises:
            GmailAccessError: If the call fails after retries
        """
        resp = await self.requester.request(
            lambda: service.users().labels().list(userId=self.user_id),
            description="labels.list",
            cost=QUOTA_COSTS["labels.list"],
        )
        return list(resp.get("labels") or [])

    async def get_message_headers(
        self,
        service: Any,
        message_id: str,
        names: Sequence[str],
    ) -> Dict[str, str]:
        """
        Selected headers of one message.

        Args:
            service: Authorized Gmail API resource
            message_id: Gmail message ID
            names: Header names to request (e.g. ["From", "List-Unsubscribe"])

        Returns:
            Header name -> value for the headers the message actually has

        Raises:
            GmailAccessError: If the call fails after retries
        """
        resp = await self.requester.request(
            lambda: service.users().messages().get(
                userId=self.user_id,
                id=message_id,
                format="metadata",
                metadataHeaders=list(names),
            ),
            description=f"messages.get {message_id}",
            cost=QUOTA_COSTS["messages.get"],
        )
        return headers_to_dict((resp.get("payload") or {}).get("headers") or [])

    async def get_headers_many(
        self,
        service: Any,
        ids: Sequence[str],
        names: Sequence[str],
    ) -> Dict[str, Dict[str, str]]:
        """
        Headers for many messages in parallel.

        Messages whose read fails are logged and left out, so one bad id does
        not sink a whole sender scan.

        Returns:
            Message id -> headers, in the order of `ids`
        """
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def fetch_with_semaphore(mid: str) -> Optional[Dict[str, str]]:
            async with semaphore:
                try:
                    return await self.get_message_headers(service, mid, names)
                except GmailAccessError as e:
                    logger.error(f"Failed to fetch headers for message {mid}: {e}")
                    return None

        results = await asyncio.gather(*(fetch_with_semaphore(mid) for mid in ids))

        out: Dict[str, Dict[str, str]] = {}
        for mid, headers in zip(ids, results):
            if headers is not None:
                out[mid] = headers

        logger.debug(f"Fetched headers for {len(out)}/{len(ids)} messages")
        return out

    async def get_message_rows(self, service: Any, ids: Sequence[str]) -> List[Dict[str, str]]:
        """
        Subject / date / time rows for displaying a list of messages.

        Messages without a parseable Date header are shown with the current
        local date and time.
        """
        headers_by_id = await self.get_headers_many(service, ids, ["Subject", "Date"])
        rows: List[Dict[str, str]] = []
        for mid, headers in headers_by_id.items():
            moment = parse_header_date(headers.get("Date")) or datetime.now()
            rows.append({
                "id": mid,
                "subject": headers.get("Subject") or "(No Subject)",
                "date": format_date(moment),
                "time": format_time(moment),
            })
        return rows
