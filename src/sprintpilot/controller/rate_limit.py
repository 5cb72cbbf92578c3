"""Sliding-window rate limiter for run creation, backed by a Redis sorted set."""

from __future__ import annotations

import datetime
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable

from fastapi import Request

from sprintpilot.config.defaults import RATE_LIMIT_DEFAULTS

logger = logging.getLogger(__name__)

# reported when no Redis is configured (local development)
UNLIMITED = 999


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds

    @property
    def reset_time(self) -> datetime.datetime:
        return datetime.datetime.fromtimestamp(self.reset_at, tz=datetime.timezone.utc)

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_time.isoformat(),
        }


def client_identity(request: Request) -> str:
    """Caller identity: first forwarded address, then the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


class SlidingWindowRateLimiter:
    """Allows ``limit`` requests per identity in any trailing ``window_s`` seconds.

    Each accepted request is a member of ``{prefix}:ratelimit:{identity}``
    scored by its timestamp; members older than the window are trimmed on
    every check.
    """

    def __init__(
        self,
        redis: Any = None,
        limit: int = RATE_LIMIT_DEFAULTS["requests_per_window"],
        window_s: float = RATE_LIMIT_DEFAULTS["window_seconds"],
        prefix: str = RATE_LIMIT_DEFAULTS["prefix"],
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._redis = redis
        self.limit = limit
        self.window_s = window_s
        self.prefix = prefix
        self._clock = clock

    def _key(self, identity: str) -> str:
        return f"{self.prefix}:ratelimit:{identity}"

    async def check(self, identity: str) -> RateLimitResult:
        """Trim, record and count in one MULTI/EXEC block.

        The request is added before it is counted, so concurrent checks for
        one identity each see the others. A request over the limit takes its
        own entry back out.
        """
        now = self._clock()
        if self._redis is None:
            return RateLimitResult(True, UNLIMITED, UNLIMITED, now + self.window_s)

        key = self._key(identity)
        member = f"{now:.6f}:{uuid.uuid4().hex[:8]}"
        pipe = self._redis.pipeline(transaction=True)
        pipe.zremrangebyscore(key, 0, now - self.window_s)
        pipe.zadd(key, {member: now})
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.expire(key, int(self.window_s) + 1)
        _, _, count, oldest, _ = await pipe.execute()

        window_start = oldest[0][1] if oldest else now
        reset_at = window_start + self.window_s
        if count > self.limit:
            await self._redis.zrem(key, member)
            logger.info("Rate limit hit for %s (%d in window)", identity, count - 1)
            return RateLimitResult(False, self.limit, 0, reset_at)
        return RateLimitResult(True, self.limit, self.limit - count, reset_at)
