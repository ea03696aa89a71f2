"""Token bucket rate limiter for API backends."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class _Bucket:
    """Capacity refilled continuously at ``capacity`` per minute."""

    def __init__(self, capacity: float, now: float) -> None:
        self.capacity = capacity
        self.level = capacity
        self._stamp = now

    def refill(self, now: float) -> None:
        elapsed = now - self._stamp
        self._stamp = now
        self.level = min(self.capacity, self.level + elapsed * self.capacity / 60.0)


class TokenBucketRateLimiter:
    """Async limiter on requests per minute and, optionally, tokens per minute.

    A limit of 0 disables that bucket.
    """

    def __init__(
        self,
        requests_per_minute: int,
        tokens_per_minute: int = 0,
        acquire_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 0.1,
    ) -> None:
        self._clock = clock
        now = clock()
        self._requests = _Bucket(requests_per_minute, now) if requests_per_minute > 0 else None
        self._tokens = _Bucket(tokens_per_minute, now) if tokens_per_minute > 0 else None
        self._lock = asyncio.Lock()
        self._acquire_timeout = acquire_timeout
        self._poll_interval = poll_interval

    def _try_take(self, token_count: int) -> bool:
        now = self._clock()
        for bucket in (self._requests, self._tokens):
            if bucket is not None:
                bucket.refill(now)
        if self._requests is not None and self._requests.level < 1.0:
            return False
        if self._tokens is not None and self._tokens.level < token_count:
            return False
        if self._requests is not None:
            self._requests.level -= 1.0
        if self._tokens is not None:
            self._tokens.level -= token_count
        return True

    async def acquire(self, token_count: int = 0) -> None:
        """Wait until a request slot is available.

        Raises TimeoutError if the slot is not available within the timeout.
        """
        deadline = self._clock() + self._acquire_timeout
        while True:
            async with self._lock:
                if self._try_take(token_count):
                    return
            if self._clock() >= deadline:
                rpm = self._requests.capacity if self._requests else 0
                tpm = self._tokens.capacity if self._tokens else 0
                raise TimeoutError(
                    f"Rate limiter timed out after {self._acquire_timeout:.0f}s "
                    f"waiting for capacity (rpm={rpm:.0f}, tpm={tpm:.0f})"
                )
            logger.debug("Rate limit reached, waiting for capacity")
            await asyncio.sleep(self._poll_interval)
