"""Redis client configuration for Propel."""

from typing import Optional

import redis

from propel_api.config.env import get_redis_url


class RedisClient:
    """Singleton Redis client."""

    _instance: Optional[redis.Redis] = None

    @classmethod
    def is_configured(cls) -> bool:
        return get_redis_url() is not None

    @classmethod
    def get_client(cls) -> redis.Redis:
        """
        Get Redis client instance built from REDIS_URL.

        Raises:
            ValueError: If REDIS_URL is not set
        """
        if cls._instance is None:
            redis_url = get_redis_url()
            if redis_url is None:
                raise ValueError("REDIS_URL is required for the Redis-backed rate limiter.")
            cls._instance = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
                health_check_interval=30,
            )
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset Redis client (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None


def check_redis() -> str:
    """Health probe. Returns "up", "disabled" or "down: <reason>"."""
    if not RedisClient.is_configured():
        return "disabled"
    try:
        RedisClient.get_client().ping()
        return "up"
    except redis.RedisError as e:
        return f"down: {str(e)[:50]}"
