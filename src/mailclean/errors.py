"""
Error taxonomy for Gmail data access and result caching.

Transient failures are retried inside the requester and only surface once the
retry budget is spent. Permanent and incomplete-fetch failures propagate to the
calling workflow. Cache corruption never leaves the cache layer.
"""

from __future__ import annotations
from typing import Optional


class GmailAccessError(Exception):
    """Base exception for failures talking to the Gmail REST API."""


class TransientError(GmailAccessError):
    """Rate limiting or network flakiness that outlasted the retry budget."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        attempts: int = 0,
    ) -> None:
        self.status = status
        self.attempts = attempts
        super().__init__(message)


class PermanentError(GmailAccessError):
    """Non-retryable HTTP failure (bad request, authorization, not found...)."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        self.status = status
        super().__init__(message)


class IncompleteFetchError(GmailAccessError):
    """A paginated listing failed mid-traversal; no partial result is kept."""

    def __init__(self, message: str, *, query: str = "", pages_fetched: int = 0) -> None:
        self.query = query
        self.pages_fetched = pages_fetched
        super().__init__(message)


class CacheCorruptionError(Exception):
    """Persisted cache snapshot could not be decoded."""
