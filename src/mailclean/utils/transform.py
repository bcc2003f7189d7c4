# src/mailclean/utils/transform.py
"""
Header parsing and display formatting helpers.

Used by the grouping strategies to turn Gmail metadata responses into group
identifiers (sender addresses, unsubscribe links) and human-readable names.
"""

from __future__ import annotations
import re
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlparse

__all__ = [
    "headers_to_dict",
    "header_value",
    "extract_email_address",
    "sender_display_name",
    "extract_unsubscribe_link",
    "format_label_name",
    "parse_header_date",
    "format_date",
    "format_time",
]

_ANGLE_ADDR = re.compile(r"<([^>]+)>")


def headers_to_dict(headers: Iterable[Dict[str, str]]) -> Dict[str, str]:
    """
    Flatten Gmail's [{"name": ..., "value": ...}] header list.

    The first occurrence of a header name wins.
    """
    out: Dict[str, str] = {}
    for h in headers or []:
        name = h.get("name")
        if name and name not in out:
            out[name] = h.get("value", "")
    return out


def header_value(headers: List[Dict[str, str]], name: str) -> Optional[str]:
    """Value of the first header called `name`, or None."""
    for h in headers or []:
        if h.get("name") == name:
            return h.get("value")
    return None


def extract_email_address(from_header: str) -> str:
    """
    Pull the bare address out of a From header.

    'Jane <jane@example.com>' -> 'jane@example.com'; a header without angle
    brackets is returned trimmed.
    """
    if not from_header:
        return ""
    m = _ANGLE_ADDR.search(from_header)
    return m.group(1).strip() if m else from_header.strip()


def sender_display_name(from_header: str) -> str:
    """Display part of a From header ('Jane' for 'Jane <jane@example.com>')."""
    if not from_header:
        return ""
    return from_header.split("<")[0].strip().strip('"')


def extract_unsubscribe_link(header: str) -> Optional[str]:
    """
    First http(s) URL in a List-Unsubscribe header.

    mailto: targets are skipped; the header lists targets as
    '<mailto:...>, <https://...>'.
    """
    if not header:
        return None
    for part in header.split(","):
        url = re.sub(r"[<>]", "", part).strip()
        if url.lower().startswith("mailto:"):
            continue
        parsed = urlparse(url)
        if parsed.scheme in ("http", "https") and parsed.netloc:
            return url
    return None


def format_label_name(label_name: str) -> str:
    """
    Human-friendly label name.

    'CATEGORY_PROMOTIONS' -> 'Promotions', 'IMPORTANT' -> 'Important';
    user labels keep their own capitalization of the first letter.
    """
    if label_name.startswith("CATEGORY_"):
        label_name = label_name[len("CATEGORY_"):]
    return " ".join(word[:1] + word[1:].lower() for word in label_name.split("_"))


def parse_header_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 2822 Date header; None when missing or unparseable."""
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def format_date(moment: datetime) -> str:
    """DD/MM/YY"""
    return moment.strftime("%d/%m/%y")


def format_time(moment: datetime) -> str:
    """HH:MM"""
    return moment.strftime("%H:%M")
