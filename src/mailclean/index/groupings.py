"""
Grouping strategies: labels, senders and subscriptions.

Each factory returns a GroupStrategy value for QueryIndex. Candidate groups
are found by listing labels or by a broad search whose hits are inspected
header by header.
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Set

from mailclean.gmail.client import GmailClient
from mailclean.gmail.fetcher import PagedFetcher
from mailclean.index.query_index import GroupStrategy
from mailclean.logging import logger
from mailclean.models import Group, GroupSummary, MessageFilter
from mailclean.utils.transform import (
    extract_email_address,
    extract_unsubscribe_link,
    format_label_name,
    sender_display_name,
)
from mailclean.utils.validation import sanitize_email_address, sanitize_search_query

#: Words that mark bulk/notification mail in the subscription scan (EN/HE).
SUBSCRIPTION_KEYWORDS = (
    "unsubscribe", "notifications", "alerts", "preferences", "mailing",
    "דיוור", "תפוצה", "לנהל",
)


def sender_query(group: Group) -> str:
    return f"in:anywhere from:{group.identifier}"


def subscription_query(year: int) -> str:
    """Search for the bulk mail of one calendar year."""
    keywords = " OR ".join(f'"{k}"' for k in SUBSCRIPTION_KEYWORDS)
    return f"after:{year}/01/01 before:{year + 1}/01/01 ({keywords})"


def groups_from_senders(headers: Iterable[Dict[str, str]], *, require_unsubscribe: bool = False) -> List[Group]:
    """
    One group per distinct sender address, in first-seen order.

    Args:
        headers: Per-message header dicts (From, optionally List-Unsubscribe)
        require_unsubscribe: Keep only senders whose message carries an http(s)
            List-Unsubscribe link, and record that link in the metadata
    """
    groups: Dict[str, Group] = {}
    for h in headers:
        from_header = h.get("From")
        if not from_header:
            continue

        link = None
        if require_unsubscribe:
            link = extract_unsubscribe_link(h.get("List-Unsubscribe", ""))
            if not link:
                continue

        address = sanitize_email_address(extract_email_address(from_header))
        if not address or address in groups:
            continue

        metadata: Dict[str, Any] = {"name": sender_display_name(from_header) or address}
        if link:
            metadata["unsubscribeLink"] = link
        groups[address] = Group(identifier=address, metadata=metadata)
    return list(groups.values())


# ---------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------
def label_strategy(client: GmailClient) -> GroupStrategy:
    """Groups are mailbox labels, scoped by label id."""

    async def candidates(service: Any) -> List[Group]:
        labels = await client.list_labels(service)
        return [
            Group(
                identifier=label["id"],
                metadata={
                    "labelName": format_label_name(label.get("name") or label["id"]),
                    "originalName": label.get("name") or "",
                },
            )
            for label in labels
            if label.get("id")
        ]

    def format_option(summary: GroupSummary) -> str:
        return f"{summary.metadata.get('labelName', summary.identifier)} ({summary.count} emails)"

    return GroupStrategy(
        dimension="label",
        query_builder=lambda group: MessageFilter(label_ids=(group.identifier,)),
        format_option=format_option,
        table_title=lambda summary=None: "Labeled Emails",
        candidates=candidates,
    )


# ---------------------------------------------------------------------
# Senders
# ---------------------------------------------------------------------
def sender_strategy(client: GmailClient, fetcher: PagedFetcher, search_term: str) -> GroupStrategy:
    """Groups are the senders of every message matching a free-text search."""
    term = sanitize_search_query(search_term)

    async def candidates(service: Any) -> List[Group]:
        if not term:
            logger.warning(f"Ignoring empty sender search term {search_term!r}")
            return []
        hits = await fetcher.fetch_all(service, f"in:anywhere {term}")
        if not hits.count:
            logger.info(f"No messages match '{term}'")
            return []
        headers = await client.get_headers_many(service, hits.ids, ["From"])
        groups = groups_from_senders(headers.values())
        logger.info(f"Found {len(groups)} sender(s) in {hits.count} message(s) matching '{term}'")
        return groups

    return GroupStrategy(
        dimension="sender",
        query_builder=sender_query,
        format_option=lambda summary: f"{summary.identifier} ({summary.count} emails)",
        table_title=lambda summary=None: "Email Subjects",
        candidates=candidates,
    )


# ---------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------
def subscription_strategy(
    client: GmailClient,
    fetcher: PagedFetcher,
    year: int,
    unsubscribed: Optional[Set[str]] = None,
) -> GroupStrategy:
    """
    Groups are senders of one year's bulk mail that offer an unsubscribe link.

    Args:
        client: Metadata reader
        fetcher: Paginated id collector for the broad scan
        year: Calendar year to scan
        unsubscribed: Caller-owned set of addresses already unsubscribed from;
            their option text gets an "(unsubscribed)" suffix
    """
    year = int(year)
    if not (1970 <= year <= 9999):
        raise ValueError(f"year must be between 1970 and 9999, got {year}")
    marked = unsubscribed if unsubscribed is not None else set()

    async def candidates(service: Any) -> List[Group]:
        hits = await fetcher.fetch_all(service, subscription_query(year))
        if not hits.count:
            logger.info(f"No subscription mail found for {year}")
            return []
        headers = await client.get_headers_many(service, hits.ids, ["From", "List-Unsubscribe"])
        groups = groups_from_senders(headers.values(), require_unsubscribe=True)
        logger.info(f"Found {len(groups)} subscription(s) in {hits.count} message(s) from {year}")
        return groups

    def format_option(summary: GroupSummary) -> str:
        text = f"{summary.metadata.get('name') or summary.identifier} ({summary.count} emails)"
        return f"{text} (unsubscribed)" if summary.identifier in marked else text

    def table_title(summary: Optional[GroupSummary] = None) -> str:
        if summary is None:
            return "Emails from Subscription"
        return f"Emails from {summary.metadata.get('name') or summary.identifier}"

    return GroupStrategy(
        dimension="subscription",
        query_builder=sender_query,
        format_option=format_option,
        table_title=table_title,
        candidates=candidates,
    )
