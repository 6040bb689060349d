"""
HomeBase — Sync Rate Limiter.

Fixed-window request counting per key (the calendar source id): at most
max_requests per window_seconds. Rejected requests do not count.

Counters live behind RateLimitStore. InMemoryRateLimitStore keeps them in
process memory, which is only correct for a single process; a multi-instance
deployment needs a store backed by a shared counter service.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float     # clock value at which the window closes


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: float = 0.0


class RateLimitStore(Protocol):
    """Counter storage for RateLimiter."""

    def get(self, key: str) -> RateLimitEntry | None: ...

    def increment(self, key: str) -> RateLimitEntry: ...

    def reset(self, key: str, reset_at: float) -> RateLimitEntry: ...


class InMemoryRateLimitStore:
    """Process-local RateLimitStore."""

    def __init__(self) -> None:
        self._entries: dict[str, RateLimitEntry] = {}

    def get(self, key: str) -> RateLimitEntry | None:
        return self._entries.get(key)

    def increment(self, key: str) -> RateLimitEntry:
        entry = self._entries[key]
        entry.count += 1
        return entry

    def reset(self, key: str, reset_at: float) -> RateLimitEntry:
        """Start a new window holding one request."""
        entry = RateLimitEntry(count=1, reset_at=reset_at)
        self._entries[key] = entry
        return entry


class RateLimiter:
    def __init__(
        self,
        max_requests: int = 5,
        window_seconds: float = 60,
        store: RateLimitStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock

    def check(self, key: str) -> RateLimitDecision:
        """Record a request for key and say whether it may proceed."""
        now = self._clock()
        entry = self._store.get(key)

        if entry is None or now > entry.reset_at:
            self._store.reset(key, now + self.window_seconds)
            return RateLimitDecision(allowed=True, remaining=self.max_requests - 1)

        if entry.count >= self.max_requests:
            logger.info("Rate limit hit for %s", key)
            return RateLimitDecision(
                allowed=False, remaining=0, retry_after=max(entry.reset_at - now, 0.0),
            )

        entry = self._store.increment(key)
        return RateLimitDecision(allowed=True, remaining=self.max_requests - entry.count)
