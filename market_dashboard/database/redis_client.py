import json
import logging
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class RedisClient:
    def __init__(self, url: str):
        self.url = url
        self.redis = None

    async def connect(self):
        self.redis = redis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True
        )

    async def disconnect(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None

    async def ping(self) -> bool:
        if not self.redis:
            await self.connect()
        return await self.redis.ping()

    async def get_cached(self, key: str):
        if not self.redis:
            await self.connect()
        data = await self.redis.get(key)
        return json.loads(data) if data else None

    async def set_cached(self, key: str, value, expire: int = 300):
        if not self.redis:
            await self.connect()
        await self.redis.setex(
            key,
            expire,
            json.dumps(value, default=str)
        )

    async def delete_pattern(self, pattern: str) -> int:
        if not self.redis:
            await self.connect()
        deleted = 0
        async for key in self.redis.scan_iter(match=pattern):
            deleted += await self.redis.delete(key)
        return deleted


def create_redis_client(url: Optional[str]) -> Optional[RedisClient]:
    if not url:
        return None
    return RedisClient(url)
