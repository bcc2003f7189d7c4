"""
Single Gmail API call with exponential-backoff retry.
"""

from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import httplib2
from googleapiclient.errors import HttpError

from mailclean.errors import PermanentError, TransientError
from mailclean.logging import logger
from mailclean.utils.rate_limiter import QuotaLimiter

#: Error reasons Gmail attaches to 403 responses that are really rate limits.
RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded")

#: Failures below HTTP level that are worth another attempt.
NETWORK_ERRORS = (ConnectionError, TimeoutError, httplib2.HttpLib2Error)


def http_status(error: HttpError) -> Optional[int]:
    """Return the numeric status of an HttpError, if the response carries one."""
    status = getattr(error.resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class ResilientRequester:
    """
    Executes one Gmail request, retrying rate limits and network flakes.

    The request is described by a zero-argument callable returning a
    googleapiclient HttpRequest. It is rebuilt for every attempt and executed
    in the default executor so the event loop stays free while the blocking
    client waits on the network. The requester keeps no state between calls.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 0.5,
        *,
        retry_statuses: Iterable[int] = (429,),
        rate_limiter: Optional[QuotaLimiter] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            max_attempts: Total attempts per request, first one included (default: 5)
            base_delay: Wait after the first failed attempt in seconds; doubles
                after every further failure (default: 0.5)
            retry_statuses: HTTP statuses treated as transient (default: 429 only)
            rate_limiter: Optional QuotaLimiter consulted before every attempt
            sleep: Awaitable sleep used between attempts
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        if base_delay < 0:
            raise ValueError(f"base_delay must not be negative, got {base_delay}")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.retry_statuses = frozenset(retry_statuses)
        self.rate_limiter = rate_limiter
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the failed attempt number `attempt` (0-based)."""
        return self.base_delay * (2 ** attempt)

    def _is_transient(self, error: HttpError, status: Optional[int]) -> bool:
        if status in self.retry_statuses:
            return True
        if status == 403:
            message = str(error)
            return any(reason in message for reason in RATE_LIMIT_REASONS)
        return False

    async def _execute(self, build_request: Callable[[], Any]) -> Dict:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: build_request().execute())

    async def request(
        self,
        build_request: Callable[[], Any],
        *,
        description: str = "Gmail request",
        cost: int = 1,
    ) -> Dict:
        """
        Execute the request and return its parsed JSON body.

        Args:
            build_request: Callable producing a fresh HttpRequest
            description: Human-readable label used in logs and errors
            cost: Quota units reserved on the rate limiter per attempt

        Returns:
            Parsed response body (empty dict for empty bodies)

        Raises:
            PermanentError: On any non-retryable HTTP status
            TransientError: When every attempt failed transiently
        """
        last_status: Optional[int] = None
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_attempts):
            if self.rate_limiter:
                await self.rate_limiter.acquire(cost, blocking=True)

            try:
                body = await self._execute(build_request)
                return body or {}
            except HttpError as e:
                status = http_status(e)
                if not self._is_transient(e, status):
                    logger.error(f"{description} failed with HTTP {status}: {e}")
                    raise PermanentError(f"{description} failed with HTTP {status}", status=status) from e
                last_status, last_error = status, e
            except NETWORK_ERRORS as e:
                last_status, last_error = None, e

            if attempt + 1 < self.max_attempts:
                delay = self.backoff_delay(attempt)
                cause = f"HTTP {last_status}" if last_status is not None else type(last_error).__name__
                logger.warning(
                    f"{description} transient failure ({cause}), attempt {attempt + 1}/{self.max_attempts}; "
                    f"retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        logger.error(f"{description} gave up after {self.max_attempts} attempts: {last_error}")
        raise TransientError(
            f"{description} failed after {self.max_attempts} attempts",
            status=last_status,
            attempts=self.max_attempts,
        ) from last_error
