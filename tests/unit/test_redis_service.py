"""Unit tests for the Redis rate limiter."""

from unittest.mock import MagicMock, patch

import pytest

from chat_backend.services.redis_service import RateLimitService


@pytest.fixture
def production_settings():
    settings = MagicMock(
        is_development=False,
        rate_limit_login="5/900",
        rate_limit_login_dev="20/900",
        rate_limit_api="100/900",
        rate_limit_api_dev="1000/900",
    )
    with patch("chat_backend.services.redis_service.get_settings", return_value=settings):
        yield settings


class TestPolicies:

    def test_production_policy(self, production_settings):
        policy = RateLimitService().get_policy("login")
        assert (policy.limit, policy.window_seconds) == (5, 900)

    def test_development_policy_is_looser(self, production_settings):
        production_settings.is_development = True
        policy = RateLimitService().get_policy("login")
        assert (policy.limit, policy.window_seconds) == (20, 900)

    def test_unknown_policy(self, production_settings):
        with pytest.raises(KeyError):
            RateLimitService().get_policy("uploads")


class TestHit:

    async def test_first_hit_sets_window(self, production_settings, mock_redis):
        mock_redis.incr.return_value = 1

        result = await RateLimitService().hit("login", "10.0.0.1")

        assert result.allowed is True
        assert result.remaining == 4
        mock_redis.incr.assert_awaited_once_with("rate_limit:login:10.0.0.1")
        mock_redis.expire.assert_awaited_once_with("rate_limit:login:10.0.0.1", 900)

    async def test_under_limit_does_not_reset_window(self, production_settings, mock_redis):
        mock_redis.incr.return_value = 3

        result = await RateLimitService().hit("login", "10.0.0.1")

        assert result.allowed is True
        assert result.remaining == 2
        mock_redis.expire.assert_not_awaited()

    async def test_over_limit_blocked_with_retry_after(self, production_settings, mock_redis):
        mock_redis.incr.return_value = 6
        mock_redis.ttl.return_value = 120

        result = await RateLimitService().hit("login", "10.0.0.1")

        assert result.allowed is False
        assert result.remaining == 0
        assert result.retry_after == 120

    async def test_redis_unavailable_fails_open(self, production_settings):
        with patch("chat_backend.services.redis_service.get_redis", return_value=None):
            result = await RateLimitService().hit("login", "10.0.0.1")

        assert result.allowed is True
        assert result.remaining == -1

    async def test_redis_error_fails_open(self, production_settings, mock_redis):
        mock_redis.incr.side_effect = ConnectionError("gone")

        result = await RateLimitService().hit("api", "10.0.0.1")

        assert result.allowed is True
