"""
Redis-backed cache for computed analytics views
"""

import json
import logging
import hashlib
from typing import Any, Awaitable, Callable, Dict, Optional

import redis.asyncio as redis

from app.core.redis import get_redis

logger = logging.getLogger(__name__)


class CacheManager:
    """
    JSON cache with versioned keys. Every Redis failure degrades to a cache
    miss; callers never see a cache exception.
    """

    def __init__(self, redis_provider: Callable[[], Awaitable[redis.Redis]] = get_redis):
        self.redis_provider = redis_provider
        self.logger = logging.getLogger(__name__)
        # Bump to orphan every key written by an older payload layout
        self.cache_version = "v1"

    def generate_cache_key(self, prefix: str, params: Dict[str, Any]) -> str:
        """
        Generate consistent cache key with version and parameter hash
        """
        param_str = json.dumps(params, sort_keys=True, default=str)
        param_hash = hashlib.md5(param_str.encode()).hexdigest()[:12]
        return f"{self.cache_version}:{prefix}:{param_hash}"

    async def get_json(self, cache_key: str) -> Optional[Any]:
        """
        Return the decoded payload, or None on miss, corruption or outage
        """
        try:
            redis_client = await self.redis_provider()
            cached_data = await redis_client.get(cache_key)

            if not cached_data:
                return None

            try:
                return json.loads(cached_data)
            except json.JSONDecodeError as e:
                self.logger.warning(f"Invalid JSON in cache key {cache_key}: {e}")
                await redis_client.delete(cache_key)
                return None

        except Exception as e:
            self.logger.error(f"Error retrieving cache for key {cache_key}: {e}")
            return None

    async def set_json(self, cache_key: str, data: Any, ttl: int = 60) -> bool:
        """
        Store a JSON-serializable payload with a TTL
        """
        try:
            redis_client = await self.redis_provider()
            await redis_client.setex(cache_key, ttl, json.dumps(data, default=str))
            return True
        except Exception as e:
            self.logger.error(f"Error setting cache for key {cache_key}: {e}")
            return False


# Global cache manager instance
cache_manager = CacheManager()
