from typing import Callable, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, WatchError

from backends.base import KVBackend
from constants import KV_TIMEOUT_SECONDS, REDIS_URL
from errors import BackendError, KeyNotFound
from logging_config import get_logger

logger = get_logger(__name__)


class LocalRedisClient:
    """Owned handle around a redis.asyncio client.

    Created at startup, closed at shutdown. After a connection failure the
    backend calls ``reset`` so the next operation starts from a fresh pool.
    """

    def __init__(self, url: str = REDIS_URL, factory: Optional[Callable[[], aioredis.Redis]] = None):
        self.url = url
        self._factory = factory or self._from_url
        self._client: Optional[aioredis.Redis] = None

    def _from_url(self) -> aioredis.Redis:
        return aioredis.from_url(
            self.url,
            decode_responses=True,
            socket_timeout=KV_TIMEOUT_SECONDS,
            socket_connect_timeout=KV_TIMEOUT_SECONDS,
        )

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = self._factory()
        return self._client

    async def connect(self) -> None:
        try:
            await self.client.ping()
            logger.info(f"Local Redis client connected to {self.url.rsplit('@', 1)[-1]}")
        except RedisError as e:
            logger.error(f"Failed to connect to local Redis: {e}", exc_info=True)
            await self.reset()
            raise BackendError("Local Redis is unavailable") from e

    async def reset(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            await client.aclose()
        except RedisError as e:
            logger.debug(f"Error closing stale Redis client: {e}")

    async def close(self) -> None:
        await self.reset()
        logger.info("Local Redis client closed")


class RedisBackend(KVBackend):
    mode = "local"

    def __init__(self, handle: LocalRedisClient):
        self.handle = handle

    async def _fail(self, operation: str, key: str, error: RedisError):
        logger.error(f"Redis {operation} failed for key {key}: {error}", exc_info=True)
        if isinstance(error, RedisConnectionError):
            await self.handle.reset()
        raise BackendError(f"Local store {operation} failed") from error

    async def get(self, key: str) -> str:
        try:
            value = await self.handle.client.get(key)
        except RedisError as e:
            await self._fail("get", key, e)
        if value is None:
            raise KeyNotFound(key)
        return value

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: Optional[int], only_if_absent: bool = False) -> bool:
        try:
            result = await self.handle.client.set(key, value, ex=ttl_seconds or None, nx=only_if_absent)
        except RedisError as e:
            await self._fail("set", key, e)
        logger.debug(f"Set key {key} ttl={ttl_seconds} nx={only_if_absent}: {result}")
        return bool(result)

    async def _watched_write(self, operation: str, key: str, expected: Optional[str], write: Callable) -> bool:
        try:
            async with self.handle.client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != expected:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                write(pipe)
                await pipe.execute()
                return True
        except WatchError:
            logger.debug(f"Key {key} changed during {operation}")
            return False
        except RedisError as e:
            await self._fail(operation, key, e)

    async def compare_and_set(self, key: str, expected: Optional[str], value: str, ttl_seconds: Optional[int]) -> bool:
        return await self._watched_write(
            "compare_and_set", key, expected, lambda pipe: pipe.set(key, value, ex=ttl_seconds or None)
        )

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        return await self._watched_write("compare_and_delete", key, expected, lambda pipe: pipe.delete(key))

    async def delete(self, key: str) -> int:
        try:
            return await self.handle.client.delete(key)
        except RedisError as e:
            await self._fail("delete", key, e)

    async def keys_by_pattern(self, pattern: str) -> List[str]:
        try:
            return [key async for key in self.handle.client.scan_iter(match=pattern, count=500)]
        except RedisError as e:
            await self._fail("scan", pattern, e)

    async def close(self) -> None:
        await self.handle.close()
