"""Remote cache storage on Redis."""

import logging
from typing import Optional

import redis.asyncio as aioredis

from music_indexer.storage.base import Storage

logger = logging.getLogger(__name__)


class RedisStorage(Storage):
    def __init__(self, redis_url: str = "redis://localhost:6379/0", client: Optional[aioredis.Redis] = None):
        super().__init__()
        self._url = redis_url
        # A supplied client must decode responses to str
        self._client: aioredis.Redis = client or aioredis.from_url(redis_url, decode_responses=True)

    async def init(self) -> None:
        await self._client.ping()
        logger.info(f"Redis storage ready: {self._url.split('@')[-1]}")

    async def close(self) -> None:
        await self._client.aclose()

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str) -> None:
        await self._client.set(key, value)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._client.delete(*keys)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        if ttl_seconds <= 0:
            # Stored and expired at once: only the absence check remains
            return not await self._client.exists(key)
        result = await self._client.set(key, value, nx=True, ex=ttl_seconds)
        return bool(result)

    async def exists(self, key: str) -> bool:
        return await self._client.exists(key) == 1

    async def hset(self, key: str, field: str, value: str) -> None:
        await self._client.hset(key, field, value)

    async def hget(self, key: str, field: str) -> Optional[str]:
        return await self._client.hget(key, field)

    async def hkeys(self, key: str) -> list[str]:
        return list(await self._client.hkeys(key))

    async def hvals(self, key: str) -> list[str]:
        return list(await self._client.hvals(key))
