"""Redis connection and fixed-window rate limiting."""

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
import structlog

from chat_backend.config import get_settings

logger = structlog.get_logger(__name__)

# Global Redis client
_redis_client: Optional[redis.Redis] = None

POLICIES = ("api", "auth", "login", "registration", "password_reset")


async def get_redis() -> Optional[redis.Redis]:
    """Get or create the Redis client.

    Returns:
        Redis client or None if connection fails (graceful degradation)
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    settings = get_settings()

    try:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        await _redis_client.ping()
        logger.info("redis_connected", url=settings.redis_url.split("@")[-1])
        return _redis_client
    except Exception as e:
        logger.warning("redis_connection_failed", error=str(e))
        _redis_client = None
        return None


async def close_redis() -> None:
    """Close the Redis connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None
        logger.info("redis_connection_closed")


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int = 0


class RateLimitService:
    """Fixed-window request counters keyed by policy and client."""

    def __init__(self):
        self.settings = get_settings()

    def get_policy(self, name: str) -> RateLimitPolicy:
        """Resolve a named policy from settings.

        Development uses the looser ``rate_limit_<name>_dev`` setting.

        Raises:
            KeyError: If the policy name is unknown
        """
        if name not in POLICIES:
            raise KeyError(f"Unknown rate limit policy: {name}")

        suffix = "_dev" if self.settings.is_development else ""
        raw = getattr(self.settings, f"rate_limit_{name}{suffix}")
        limit_str, window_str = raw.split("/", 1)
        return RateLimitPolicy(name=name, limit=int(limit_str), window_seconds=int(window_str))

    async def hit(self, policy_name: str, client_key: str) -> RateLimitResult:
        """Count one request against a policy for a client.

        Args:
            policy_name: One of POLICIES
            client_key: Client identifier, typically the remote IP

        Returns:
            RateLimitResult; allowed with remaining=-1 if Redis is unavailable
        """
        policy = self.get_policy(policy_name)
        client = await get_redis()
        if client is None:
            # Graceful degradation: allow if Redis unavailable
            return RateLimitResult(allowed=True, remaining=-1)

        key = f"rate_limit:{policy.name}:{client_key}"

        try:
            count = await client.incr(key)
            if count == 1:
                # First request in window
                await client.expire(key, policy.window_seconds)

            if count > policy.limit:
                ttl = await client.ttl(key)
                retry_after = ttl if ttl and ttl > 0 else policy.window_seconds
                logger.warning(
                    "rate_limit_exceeded",
                    policy=policy.name,
                    client=client_key,
                    retry_after=retry_after,
                )
                return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)

            return RateLimitResult(allowed=True, remaining=policy.limit - count)
        except Exception as e:
            logger.warning("redis_rate_limit_failed", error=str(e), policy=policy.name)
            # Graceful degradation: allow if error
            return RateLimitResult(allowed=True, remaining=-1)
