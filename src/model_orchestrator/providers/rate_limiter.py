"""
Sliding-window rate limiter owned by each model adapter.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Bounds outbound calls to a per-minute quota.

    Only the request rate is enforced. Token volume is tracked over the same
    window for usage reporting but never delays a call.
    """

    WINDOW_SECONDS = 60.0

    def __init__(
        self,
        requests_per_minute: int,
        tokens_per_minute: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the rate limiter.

        Args:
            requests_per_minute: Hard limit on calls inside the window
            tokens_per_minute: Advisory token quota, reported only
            clock: Monotonic time source in seconds
            sleep: Coroutine used to wait for a free slot
        """
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        self.requests_per_minute = requests_per_minute
        self.tokens_per_minute = tokens_per_minute
        self._clock = clock
        self._sleep = sleep
        self._requests: Deque[float] = deque()
        self._tokens: Deque[Tuple[float, int]] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - self.WINDOW_SECONDS
        while self._requests and self._requests[0] <= cutoff:
            self._requests.popleft()
        while self._tokens and self._tokens[0][0] <= cutoff:
            self._tokens.popleft()

    async def acquire(self, timeout: Optional[float] = None) -> float:
        """
        Reserve a slot for one call, waiting if the window is full.

        Args:
            timeout: Longest total wait in seconds; None waits as long as needed

        Returns:
            Total seconds spent waiting

        Raises:
            asyncio.TimeoutError: If a slot would not free up within timeout
        """
        waited = 0.0
        while True:
            async with self._lock:
                now = self._clock()
                self._prune(now)
                if len(self._requests) < self.requests_per_minute:
                    self._requests.append(now)
                    return waited
                wait_time = self._requests[0] + self.WINDOW_SECONDS - now

            if timeout is not None and waited + wait_time > timeout:
                logger.info(
                    f"Rate limit wait of {wait_time:.2f}s exceeds remaining deadline",
                    extra={"wait_seconds": wait_time, "timeout": timeout},
                )
                raise asyncio.TimeoutError

            logger.info(
                f"Rate limit reached, waiting {wait_time:.2f}s",
                extra={"wait_seconds": wait_time, "limit": self.requests_per_minute},
            )
            await self._sleep(wait_time)
            waited += wait_time

    def release(self) -> None:
        """Give back the most recently reserved slot."""
        if self._requests:
            self._requests.pop()

    def record_tokens(self, tokens: int) -> None:
        if tokens > 0:
            self._tokens.append((self._clock(), tokens))

    def get_usage(self) -> Dict[str, int]:
        """Current window usage against the configured quota."""
        self._prune(self._clock())
        return {
            "requests": len(self._requests),
            "tokens": sum(count for _, count in self._tokens),
            "requests_per_minute": self.requests_per_minute,
            "tokens_per_minute": self.tokens_per_minute,
        }
