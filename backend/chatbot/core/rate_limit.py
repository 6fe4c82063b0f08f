"""Sliding-window rate limiting per client and endpoint label.

Each key ``"<client>:<label>"`` keeps the timestamps of its accepted
requests inside the trailing window. Storage sits behind
:class:`RateLimitStore`; the in-memory store is single-process and
non-durable, so a multi-instance deployment needs a shared implementation.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import structlog

from chatbot.config import settings
from chatbot.core.exceptions import RateLimitExceededError

logger = structlog.get_logger()


class RateLimitStore(ABC):
    """Storage for per-key request timestamps."""

    @abstractmethod
    def get(self, key: str) -> list[float]:
        """Return the recorded timestamps for ``key`` (empty if unknown)."""

    @abstractmethod
    def set(self, key: str, timestamps: list[float]) -> None:
        """Replace the recorded timestamps for ``key``."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Forget ``key``."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Snapshot of all known keys."""


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(self) -> None:
        self._timestamps: dict[str, list[float]] = {}

    def get(self, key: str) -> list[float]:
        return list(self._timestamps.get(key, []))

    def set(self, key: str, timestamps: list[float]) -> None:
        self._timestamps[key] = timestamps

    def delete(self, key: str) -> None:
        self._timestamps.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._timestamps)

    def clear(self) -> None:
        self._timestamps.clear()


class RateLimiter:
    """Sliding-window limiter: at most ``limit`` requests per window."""

    def __init__(
        self,
        store: RateLimitStore | None = None,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store or InMemoryRateLimitStore()
        self.window = window_seconds
        self._clock = clock

    @staticmethod
    def make_key(caller_key: str, label: str) -> str:
        return f"{caller_key}:{label}"

    def check(self, caller_key: str, label: str, limit: int) -> None:
        """Record one request, or raise ``RateLimitExceededError``."""
        key = self.make_key(caller_key, label)
        now = self._clock()
        window_start = now - self.window

        recent = [t for t in self.store.get(key) if t > window_start]
        if len(recent) >= limit:
            self.store.set(key, recent)
            logger.warning("rate_limit_exceeded", key=key, limit=limit)
            raise RateLimitExceededError(retry_after=int(self.window))

        recent.append(now)
        self.store.set(key, recent)

    def sweep(self) -> int:
        """Drop keys with no timestamps left in the window. Returns the count removed."""
        window_start = self._clock() - self.window
        removed = 0
        for key in self.store.keys():
            valid = [t for t in self.store.get(key) if t > window_start]
            if valid:
                self.store.set(key, valid)
            else:
                self.store.delete(key)
                removed += 1
        return removed

    async def run_sweeper(self, interval: float) -> None:
        """Periodic sweep; runs until cancelled."""
        while True:
            await asyncio.sleep(interval)
            removed = self.sweep()
            if removed:
                logger.debug("rate_limit_swept", removed=removed)


limiter = RateLimiter(window_seconds=settings.rate_limit_window_seconds)


def get_rate_limiter() -> RateLimiter:
    """FastAPI dependency returning the process-wide limiter."""
    return limiter
