from typing import Optional
import logging
from redis import asyncio as aioredis
from redis.exceptions import RedisError
from app.core.config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    """Async Redis wrapper owned by the application lifespan.

    ``create_app`` builds one instance and keeps it on ``app.state.cache``;
    tests pass their own ``client`` instead of a URL.
    """

    def __init__(self, redis_url: Optional[str] = None, client: Optional[aioredis.Redis] = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self.redis: Optional[aioredis.Redis] = client

    @property
    def connected(self) -> bool:
        return self.redis is not None

    async def connect(self):
        if not self.redis:
            # from_url is lazy; the first command opens the socket.
            self.redis = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=1,
                socket_timeout=1,
            )
            logger.info("Redis client configured for %s", self.redis_url)

    async def incr_window(self, key: str, ttl: int) -> int:
        """Increment a fixed-window counter and make sure it expires.

        Raises ``RuntimeError`` when no client is configured and lets redis
        errors propagate; the caller decides whether to fail open.
        """
        if not self.redis:
            raise RuntimeError("Redis client is not connected")
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl)
            count, _ = await pipe.execute()
        return int(count)

    async def ping(self) -> bool:
        if not self.redis:
            return False
        try:
            return bool(await self.redis.ping())
        except (RedisError, OSError) as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def close(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None
