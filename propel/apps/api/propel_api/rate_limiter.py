"""Per-tenant abuse guard.

Fixed-window counter in Redis (INCR-first, TTL on first hit). This is a
spam guard for expensive endpoints, not part of quota accounting: when
Redis is unavailable the request is allowed and a warning is logged.
"""

import logging
import time
from abc import ABC, abstractmethod

import redis
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class RateLimitResult(BaseModel):
    allowed: bool
    policy_id: str
    quota: int
    window: int
    remaining: int
    reset: int  # seconds until the window resets


class RateLimiter(ABC):
    @abstractmethod
    def check_rate_limit(self, key: str, scope: str) -> RateLimitResult:
        """Count one hit for ``key`` within ``scope`` and report whether it is allowed."""


class NoOpRateLimiter(RateLimiter):
    """Always allows; used when REDIS_URL is not configured."""

    def __init__(self, quota: int = 1, window: int = 1, policy_id: str = "default"):
        self.quota = quota
        self.window = window
        self.policy_id = policy_id

    def check_rate_limit(self, key: str, scope: str) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            policy_id=self.policy_id,
            quota=self.quota,
            window=self.window,
            remaining=self.quota,
            reset=self.window,
        )


class RedisRateLimiter(RateLimiter):
    """INCR-first fixed window. Default: 1 request per second per key."""

    def __init__(
        self,
        client: redis.Redis,
        quota: int = 1,
        window: int = 1,
        policy_id: str = "default",
        clock=time.time,
    ):
        self.client = client
        self.quota = quota
        self.window = window
        self.policy_id = policy_id
        self.clock = clock

    def check_rate_limit(self, key: str, scope: str) -> RateLimitResult:
        now = self.clock()
        window_index = int(now // self.window)
        reset = max(1, int(self.window - (now % self.window)))
        redis_key = f"ratelimit:{scope}:{key}:{window_index}"

        try:
            count = self.client.incr(redis_key)
            if count == 1:
                self.client.expire(redis_key, self.window + 1)
        except redis.RedisError as exc:
            logger.warning(
                "RATE_LIMIT_BACKEND_UNAVAILABLE",
                extra={"scope": scope, "error_type": type(exc).__name__},
            )
            return RateLimitResult(
                allowed=True,
                policy_id=self.policy_id,
                quota=self.quota,
                window=self.window,
                remaining=self.quota,
                reset=reset,
            )

        allowed = count <= self.quota
        if not allowed:
            logger.info("RATE_LIMITED", extra={"scope": scope, "key": key, "count": count})
        return RateLimitResult(
            allowed=allowed,
            policy_id=self.policy_id,
            quota=self.quota,
            window=self.window,
            remaining=max(0, self.quota - count),
            reset=reset,
        )
