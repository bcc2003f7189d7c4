"""
Input validation and sanitization utilities.
"""

from __future__ import annotations
import re
from typing import Any, List
from mailclean.logging import logger

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def sanitize_input(value: Any) -> str:
    """Strip angle brackets and surrounding whitespace; non-strings become ""."""
    if not isinstance(value, str):
        return ""
    return re.sub(r"[<>]", "", value).strip()


def sanitize_email_address(email: Any) -> str:
    """
    Validate and normalize an email address.

    Args:
        email: Candidate address

    Returns:
        Lower-cased address, or "" if it does not look like an address
    """
    if not isinstance(email, str):
        return ""
    email = email.strip()
    return email.lower() if _EMAIL_RE.match(email) else ""


def sanitize_search_query(query: Any) -> str:
    """
    Clean a free-text Gmail search term before it is embedded in a filter.

    Removes characters that could break out of the search syntax
    (angle brackets, braces, backslashes).
    """
    if not isinstance(query, str):
        return ""
    query = re.sub(r"[<>{}]", "", query)
    return query.replace("\\", "").strip()


def validate_message_ids(ids: List[str]) -> bool:
    """
    Validate list of Gmail message IDs.

    Args:
        ids: List of message ID strings

    Returns:
        True if valid, False otherwise
    """
    if not isinstance(ids, list):
        logger.warning(f"Message IDs is not a list: {type(ids)}")
        return False

    for msg_id in ids:
        if not isinstance(msg_id, str) or not msg_id.strip():
            logger.warning(f"Invalid message ID: {msg_id!r}")
            return False

    return True
