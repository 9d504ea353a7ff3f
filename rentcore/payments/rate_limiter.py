"""Fixed-window rate limiter shared by every payment-poll worker."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import redis

from rentcore.core.config import get_config

logger = logging.getLogger(__name__)

GATEWAY_POLL_KEY = "midtrans:poll:global"


class SharedCounter(Protocol):
    def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Increment ``key`` and return ``(count, seconds_left_in_window)``."""
        ...


class RedisCounter:
    """Counter stored in Redis so all workers draw from the same window."""

    def __init__(self, client: redis.Redis | None = None) -> None:
        self.client = client or redis.Redis.from_url(get_config().REDIS_URL)

    def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        pipe = self.client.pipeline()
        pipe.set(key, 0, ex=window_seconds, nx=True)
        pipe.incr(key)
        pipe.ttl(key)
        _, count, ttl = pipe.execute()
        if ttl is None or int(ttl) < 0:
            # Key lost its expiry (e.g. restored from a snapshot); start a new window.
            self.client.expire(key, window_seconds)
            ttl = window_seconds
        return int(count), int(ttl)


class InMemoryCounter:
    """Process-local counter for tests and single-process scripts."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        with self._lock:
            now = self._clock()
            expires_at, count = self._windows.get(key, (0.0, 0))
            if now >= expires_at:
                expires_at, count = now + window_seconds, 0
            count += 1
            self._windows[key] = (expires_at, count)
            return count, max(0, int(round(expires_at - now)))


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    retry_after: int = 0


class FixedWindowRateLimiter:
    """At most ``max_attempts`` grants per ``window_seconds`` for one key."""

    def __init__(
        self,
        counter: SharedCounter,
        max_attempts: int = 30,
        window_seconds: int = 60,
        min_delay_seconds: int = 5,
        key: str = GATEWAY_POLL_KEY,
    ) -> None:
        self.counter = counter
        self.max_attempts = max(1, max_attempts)
        self.window_seconds = max(1, window_seconds)
        self.min_delay_seconds = max(1, min_delay_seconds)
        self.key = key

    def attempt(self) -> RateLimitDecision:
        count, ttl = self.counter.hit(self.key, self.window_seconds)
        if count <= self.max_attempts:
            return RateLimitDecision(allowed=True, count=count)

        retry_after = max(self.min_delay_seconds, ttl)
        logger.info(
            "payments.poll.rate_limited",
            extra={
                "event": "payments.poll.rate_limited",
                "key": self.key,
                "count": count,
                "retry_after": retry_after,
            },
        )
        return RateLimitDecision(allowed=False, count=count, retry_after=retry_after)
