"""Unit tests for the Redis fixed-window abuse guard."""

from unittest.mock import MagicMock

import redis

from propel_api.rate_limiter import NoOpRateLimiter, RedisRateLimiter


def test_noop_always_allows():
    result = NoOpRateLimiter(quota=5, window=60).check_rate_limit("org-1", "ai.generate")
    assert result.allowed is True
    assert result.remaining == 5


def test_first_hit_sets_ttl():
    client = MagicMock()
    client.incr.return_value = 1
    limiter = RedisRateLimiter(client, quota=1, window=1, clock=lambda: 1000.25)

    result = limiter.check_rate_limit("org-1", "ai.generate")

    assert result.allowed is True
    assert result.remaining == 0
    client.incr.assert_called_once_with("ratelimit:ai.generate:org-1:1000")
    client.expire.assert_called_once_with("ratelimit:ai.generate:org-1:1000", 2)


def test_second_hit_in_window_is_refused():
    client = MagicMock()
    client.incr.return_value = 2
    limiter = RedisRateLimiter(client, quota=1, window=1, clock=lambda: 1000.5)

    result = limiter.check_rate_limit("org-1", "ai.generate")

    assert result.allowed is False
    assert result.reset == 1
    client.expire.assert_not_called()


def test_window_index_moves_with_time():
    client = MagicMock()
    client.incr.return_value = 1
    limiter = RedisRateLimiter(client, quota=10, window=60, clock=lambda: 125.0)

    result = limiter.check_rate_limit("org-1", "ai.generate")

    client.incr.assert_called_once_with("ratelimit:ai.generate:org-1:2")
    assert result.reset == 55


def test_fails_open_when_redis_is_down():
    client = MagicMock()
    client.incr.side_effect = redis.ConnectionError("refused")
    limiter = RedisRateLimiter(client, quota=1, window=1)

    result = limiter.check_rate_limit("org-1", "ai.generate")

    assert result.allowed is True
