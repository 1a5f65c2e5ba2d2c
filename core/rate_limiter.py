"""
core/rate_limiter.py
────────────────────
Token-bucket limiter shared by every paid intelligence call in a run.

The bucket is the only mutable state shared across concurrent position
refreshes, so every read-modify-write happens under an ``asyncio.Lock``.

Usage
  limiter = TokenBucket(capacity=10, refill_per_minute=10, max_wait_seconds=5)
  await limiter.acquire()        # raises RateLimitExceeded if no token in time
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimitExceeded(RuntimeError):
    """No token became available within the allowed wait."""


class TokenBucket:
    def __init__(
        self,
        capacity: int,
        refill_per_minute: float,
        *,
        max_wait_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0 or refill_per_minute <= 0:
            raise ValueError("capacity and refill_per_minute must be positive")
        self._capacity = float(capacity)
        self._rate = refill_per_minute / 60.0
        self._max_wait = max_wait_seconds
        self._clock = clock

        self._tokens = float(capacity)
        self._last = clock()
        self._lock = asyncio.Lock()
        self.granted = 0
        self.denied = 0

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._last = now

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self, tokens: int = 1) -> None:
        """Take *tokens*, sleeping for a refill if that fits inside ``max_wait_seconds``."""

        if tokens > self._capacity:
            raise ValueError(f"cannot acquire {tokens} tokens from a bucket of {self._capacity:g}")
        deadline = self._clock() + self._max_wait
        while True:
            async with self._lock:
                self._refill()
                if self._tokens >= tokens:
                    self._tokens -= tokens
                    self.granted += tokens
                    return
                wait = (tokens - self._tokens) / self._rate
            if self._clock() + wait > deadline:
                self.denied += 1
                logger.warning("Rate limit budget exhausted (wait %.1fs > allowed)", wait)
                raise RateLimitExceeded(f"no token within {self._max_wait:g}s")
            await asyncio.sleep(wait)
