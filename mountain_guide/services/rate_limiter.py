from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import redis.asyncio as redis_async

from mountain_guide.config import (
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
    REDIS_ENABLED,
    REDIS_URL,
)

logger = logging.getLogger(__name__)

_PREFIX = "mountain_guide:ratelimit"
_REDIS_FAILURE_COOLDOWN_SECONDS = 60


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_in: float  # seconds until the window resets

    @property
    def retry_after(self) -> int:
        """Whole seconds for the Retry-After header."""
        return max(0, math.ceil(self.reset_in))


class RateLimiter(Protocol):
    async def check(self, key: str, now: Optional[float] = None) -> RateLimitDecision:
        """Admit or reject one request for `key`. Admission consumes one unit of quota."""


@dataclass
class _Entry:
    count: int
    reset_at: float


class InMemoryRateLimiter:
    """
    Fixed window per key, process-local. Check-and-increment happens under one lock,
    so two concurrent requests can never both take the last slot.
    """

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._checks_since_prune = 0

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()

    def _prune(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if now >= e.reset_at]
        for k in expired:
            del self._entries[k]

    def check_sync(self, key: str, now: Optional[float] = None) -> RateLimitDecision:
        now = time.time() if now is None else now
        with self._lock:
            self._checks_since_prune += 1
            if self._checks_since_prune >= 1000:
                self._prune(now)
                self._checks_since_prune = 0

            entry = self._entries.get(key)
            if entry is None or now >= entry.reset_at:
                entry = _Entry(count=0, reset_at=now + self.window_seconds)
                self._entries[key] = entry

            reset_in = max(0.0, entry.reset_at - now)
            if entry.count >= self.max_requests:
                return RateLimitDecision(allowed=False, remaining=0, reset_in=reset_in)

            entry.count += 1
            return RateLimitDecision(
                allowed=True,
                remaining=max(0, self.max_requests - entry.count),
                reset_in=reset_in,
            )

    async def check(self, key: str, now: Optional[float] = None) -> RateLimitDecision:
        return self.check_sync(key, now)


class RedisRateLimiter:
    """
    Same window semantics backed by a shared redis counter, for several serving processes.
    INCR is atomic on the server; the first hit of a window sets the expiry.
    Falls back to the in-process limiter while redis is unreachable.
    """

    def __init__(
        self,
        url: str = REDIS_URL,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        fallback: Optional[InMemoryRateLimiter] = None,
        client=None,
    ):
        self.url = url
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.fallback = fallback or InMemoryRateLimiter(max_requests, window_seconds)
        self._client = client
        self._disabled_until_ts = 0.0

    def _key(self, key: str) -> str:
        return f"{_PREFIX}:{key}"

    def _get_client(self):
        if self._client is None:
            self._client = redis_async.from_url(
                self.url,
                decode_responses=True,
                socket_connect_timeout=0.2,
                socket_timeout=0.2,
                retry_on_timeout=False,
            )
        return self._client

    async def check(self, key: str, now: Optional[float] = None) -> RateLimitDecision:
        if time.time() < self._disabled_until_ts:
            return await self.fallback.check(key, now)

        client = self._get_client()

        redis_key = self._key(key)
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.incr(redis_key)
                pipe.expire(redis_key, self.window_seconds, nx=True)
                pipe.pttl(redis_key)
                count, _, ttl_ms = await pipe.execute()
        except Exception as exc:
            self._disabled_until_ts = time.time() + _REDIS_FAILURE_COOLDOWN_SECONDS
            logger.warning("rate_limit_redis_failed key=%s error=%s", key, str(exc))
            return await self.fallback.check(key, now)

        reset_in = max(0.0, (ttl_ms if ttl_ms and ttl_ms > 0 else self.window_seconds * 1000) / 1000)
        count = int(count)
        if count > self.max_requests:
            return RateLimitDecision(allowed=False, remaining=0, reset_in=reset_in)
        return RateLimitDecision(
            allowed=True,
            remaining=max(0, self.max_requests - count),
            reset_in=reset_in,
        )


_default_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    global _default_limiter
    if _default_limiter is None:
        _default_limiter = RedisRateLimiter() if REDIS_ENABLED else InMemoryRateLimiter()
    return _default_limiter
