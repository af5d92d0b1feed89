"""Fixed-window rate limiting keyed by caller identity.

The counter store is pluggable: ``InMemoryCounterStore`` only limits within
one process, ``RedisCounterStore`` shares counters across instances.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass
from urllib.parse import urlsplit

import redis

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float


class InMemoryCounterStore:
    def __init__(self, clock=time.time):
        self._clock = clock
        self._entries: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def increment(self, key: str, ttl_seconds: int) -> tuple[int, float]:
        now = self._clock()
        with self._lock:
            count, expires_at = self._entries.get(key, (0, 0.0))
            if expires_at <= now:
                count, expires_at = 0, now + ttl_seconds
            count += 1
            self._entries[key] = (count, expires_at)
            self._purge(now)
            return count, expires_at

    def _purge(self, now: float):
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]


class RedisCounterStore:
    def __init__(self, client, prefix: str = "ratelimit"):
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "ratelimit") -> "RedisCounterStore":
        return cls(redis.from_url(url, decode_responses=True), prefix=prefix)

    def increment(self, key: str, ttl_seconds: int) -> tuple[int, float]:
        namespaced = f"{self._prefix}:{key}"
        pipe = self._client.pipeline()
        pipe.incr(namespaced)
        pipe.ttl(namespaced)
        count, ttl = pipe.execute()
        # a key left without expiry by an interrupted first hit is re-armed here
        if count == 1 or ttl is None or ttl < 0:
            self._client.expire(namespaced, ttl_seconds)
            ttl = ttl_seconds
        return int(count), time.time() + ttl


class RateLimiter:
    def __init__(self, store, limit: int, window_seconds: int = 60):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds

    def hit(self, identifier: str) -> RateLimitResult:
        count, reset_at = self.store.increment(identifier, self.window_seconds)
        if count > self.limit:
            logger.warning("Rate limit exceeded for %s (%s/%s)", identifier, count, self.limit)
            return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at)
        return RateLimitResult(allowed=True, remaining=self.limit - count, reset_at=reset_at)


def build_rate_limiter() -> RateLimiter:
    limit = int(os.getenv("QUIZPLATFORM_RATE_LIMIT_PER_MINUTE", "120"))
    redis_url = os.getenv("QUIZPLATFORM_REDIS_URL")
    if redis_url:
        logger.info("Using Redis rate-limit counters at %s", urlsplit(redis_url).hostname)
        store = RedisCounterStore.from_url(redis_url)
    else:
        store = InMemoryCounterStore()
    return RateLimiter(store, limit=limit, window_seconds=60)
