"""
Quota-unit rate limiter for Gmail API calls.

Gmail meters usage in quota units per user per second rather than in raw
calls (messages.list and messages.get cost 5 units, messages.batchDelete 50).
"""

from __future__ import annotations
import time
import asyncio
from collections import deque
from typing import Callable, Deque, Optional, Tuple
from mailclean.logging import logger

#: Quota cost per Gmail endpoint, in units.
QUOTA_COSTS = {
    "labels.list": 1,
    "messages.list": 5,
    "messages.get": 5,
    "messages.batchDelete": 50,
}

#: Per-user Gmail allowance.
DEFAULT_UNITS_PER_SECOND = 250


class QuotaLimiter:
    """
    Async sliding-window limiter measured in quota units.

    Tracks the units spent within the last `window_seconds` and suspends the
    caller until enough of them age out of the window.
    Async-safe implementation using asyncio locks.
    """

    def __init__(
        self,
        max_units: int = DEFAULT_UNITS_PER_SECOND,
        window_seconds: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the limiter.

        Args:
            max_units: Units allowed within one window
            window_seconds: Window length in seconds (default: 1 second)
            clock: Monotonic time source, injectable for tests
        """
        if max_units < 1:
            raise ValueError(f"max_units must be positive, got {max_units}")
        self.max_units = max_units
        self.window = window_seconds
        self._clock = clock
        self._spent: Deque[Tuple[float, int]] = deque()
        self._lock = asyncio.Lock()

    def _used(self, now: float) -> int:
        while self._spent and (now - self._spent[0][0]) >= self.window:
            self._spent.popleft()
        return sum(units for _, units in self._spent)

    async def acquire(
        self,
        units: int = 1,
        blocking: bool = True,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Reserve `units` of quota for one API call.

        Args:
            units: Quota cost of the call
            blocking: If True, wait until the units are available
            timeout: Maximum time to wait in seconds (None = wait indefinitely)

        Returns:
            True if the units were reserved, False if not blocking or timed out

        Raises:
            ValueError: If a single call costs more than the whole window allows
        """
        if units > self.max_units:
            raise ValueError(f"Call costs {units} units but the window allows only {self.max_units}")

        deadline = None if timeout is None else self._clock() + timeout
        while True:
            async with self._lock:
                now = self._clock()
                used = self._used(now)
                if used + units <= self.max_units:
                    self._spent.append((now, units))
                    return True

                if not blocking:
                    logger.warning(f"Quota exhausted: {used}/{self.max_units} units in the last {self.window}s")
                    return False

                # Wait until enough of the oldest reservations leave the window
                freed = 0
                wait_time = 0.0
                for stamp, spent in self._spent:
                    freed += spent
                    wait_time = self.window - (now - stamp)
                    if used - freed + units <= self.max_units:
                        break

            if deadline is not None and now + wait_time > deadline:
                logger.warning(f"Quota wait ({wait_time:.2f}s) exceeds timeout ({timeout}s)")
                return False

            logger.debug(f"Quota limit reached, waiting {wait_time:.2f}s...")
            await asyncio.sleep(max(wait_time, 0.0))

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass
