"""
Read access to live-stream state owned by the live-stream service
"""

from typing import Awaitable, Callable, Protocol
import logging

import redis.asyncio as redis

from app.config import settings
from app.core.redis import get_redis

logger = logging.getLogger(__name__)


class LiveStreamCounter(Protocol):
    async def count_live(self) -> int:
        ...


class RedisLiveStreamCounter:
    """
    Counts members of the Redis set in which the live-stream service keeps
    the ids of streams currently on air.
    """

    def __init__(
        self,
        redis_provider: Callable[[], Awaitable[redis.Redis]] = get_redis,
        key: str = settings.LIVE_STREAMS_REDIS_KEY
    ):
        self.redis_provider = redis_provider
        self.key = key

    async def count_live(self) -> int:
        client = await self.redis_provider()
        return int(await client.scard(self.key))


class StaticLiveStreamCounter:
    """Fixed count, for tests and deployments without live streaming"""

    def __init__(self, count: int = 0):
        self.count = count

    async def count_live(self) -> int:
        return self.count
