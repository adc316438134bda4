"""Redis async client wrapper for caching and shared queue state.

Provides high-level interface for Redis operations
with connection pooling and error handling.
"""

from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass
import structlog

import redis.asyncio as redis


logger = structlog.get_logger()


@dataclass
class RedisConfig:
    """Redis configuration."""
    url: str
    max_connections: int = 20
    timeout: int = 30
    retry_on_timeout: bool = True


def _ttl_ms(ttl: Optional[float]) -> Optional[int]:
    if ttl is None:
        return None
    return max(int(ttl * 1000), 1)


class RedisClient:
    """
    Async Redis client with connection pooling.

    Values are stored as strings; callers serialize.
    Every failure is logged with the key involved and re-raised.
    """

    def __init__(self, config: RedisConfig | str):
        if isinstance(config, str):
            config = RedisConfig(url=config)
        self.config = config
        self.logger = structlog.get_logger("redis-client")
        self.client: Optional[redis.Redis] = None
        self.is_connected: bool = False

    async def connect(self) -> None:
        """Connect to Redis."""
        if self.client:
            return

        self.client = redis.from_url(
            self.config.url,
            decode_responses=True,
            max_connections=self.config.max_connections,
            socket_timeout=self.config.timeout,
            retry_on_timeout=self.config.retry_on_timeout
        )

        await self.client.ping()
        self.is_connected = True
        self.logger.info("Connected to Redis")

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self.client:
            await self.client.aclose()
            self.client = None
            self.is_connected = False
            self.logger.info("Disconnected from Redis")

    async def close(self) -> None:
        """Close Redis connection."""
        await self.disconnect()

    async def get(self, key: str) -> Optional[str]:
        """Get raw value by key."""
        if not self.client:
            await self.connect()

        try:
            return await self.client.get(key)
        except Exception as e:
            self.logger.error("Redis get error", error=str(e), key=key)
            raise

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        """Set value with optional TTL in seconds."""
        if not self.client:
            await self.connect()

        try:
            await self.client.set(key, value, px=_ttl_ms(ttl))
            self.logger.debug("Value set", key=key, ttl=ttl)
        except Exception as e:
            self.logger.error("Redis set error", error=str(e), key=key)
            raise

    async def set_nx(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        """Set value only if the key does not exist. Returns True when written."""
        if not self.client:
            await self.connect()

        try:
            written = await self.client.set(key, value, px=_ttl_ms(ttl), nx=True)
            return bool(written)
        except Exception as e:
            self.logger.error("Redis set_nx error", error=str(e), key=key)
            raise

    async def delete(self, *keys: str) -> int:
        """Delete keys."""
        if not keys:
            return 0
        if not self.client:
            await self.connect()

        try:
            deleted = await self.client.delete(*keys)
            self.logger.debug("Keys deleted", keys=list(keys), deleted=deleted)
            return deleted
        except Exception as e:
            self.logger.error("Redis delete error", error=str(e), keys=list(keys))
            raise

    async def keys(self, pattern: str) -> List[str]:
        """Get keys matching pattern."""
        if not self.client:
            await self.connect()

        try:
            return await self.client.keys(pattern)
        except Exception as e:
            self.logger.error("Redis keys error", error=str(e), pattern=pattern)
            raise

    async def incr(self, key: str) -> int:
        """Increment an integer counter."""
        if not self.client:
            await self.connect()

        try:
            return await self.client.incr(key)
        except Exception as e:
            self.logger.error("Redis incr error", error=str(e), key=key)
            raise

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        """Add members to a sorted set."""
        if not self.client:
            await self.connect()

        try:
            return await self.client.zadd(key, mapping)
        except Exception as e:
            self.logger.error("Redis zadd error", error=str(e), key=key)
            raise

    async def zpopmin(self, key: str, count: int = 1) -> List[Tuple[str, float]]:
        """Pop the lowest-scored members of a sorted set."""
        if not self.client:
            await self.connect()

        try:
            return [(member, float(score)) for member, score in await self.client.zpopmin(key, count)]
        except Exception as e:
            self.logger.error("Redis zpopmin error", error=str(e), key=key)
            raise

    async def zrangebyscore(
        self, key: str, min_score: float, max_score: float, limit: Optional[int] = None
    ) -> List[str]:
        """Get sorted set members with scores in the given range."""
        if not self.client:
            await self.connect()

        try:
            if limit is None:
                return await self.client.zrangebyscore(key, min_score, max_score)
            return await self.client.zrangebyscore(key, min_score, max_score, start=0, num=limit)
        except Exception as e:
            self.logger.error("Redis zrangebyscore error", error=str(e), key=key)
            raise

    async def zrem(self, key: str, *members: str) -> int:
        """Remove members from a sorted set."""
        if not members:
            return 0
        if not self.client:
            await self.connect()

        try:
            return await self.client.zrem(key, *members)
        except Exception as e:
            self.logger.error("Redis zrem error", error=str(e), key=key)
            raise

    async def zcard(self, key: str) -> int:
        """Get sorted set size."""
        if not self.client:
            await self.connect()

        try:
            return await self.client.zcard(key)
        except Exception as e:
            self.logger.error("Redis zcard error", error=str(e), key=key)
            raise

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            if not self.client:
                await self.connect()
            result = await self.client.ping()
            return result is True
        except Exception as e:
            self.logger.error("Redis health check failed", error=str(e))
            return False

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()
