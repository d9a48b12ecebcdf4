"""
Redis-backed adapters for :class:`relational_store.store.Store`.

``RedisBackingStore`` runs commands on a ``redis.asyncio`` client and maps
batches onto transactional pipelines (``MULTI``/``EXEC``). ``RedisLockAdapter``
serializes writers across processes with redis-py's lease-based ``Lock``.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from redis.asyncio import Redis
from redis.asyncio.client import Pipeline
from redis.exceptions import LockError

from .config import RedisStoreConfig
from .exceptions import StoreError, StoreOperationError
from .store_protocol import ReleaseCallback

_LOGGER = logging.getLogger(__name__)


def _decode(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, list):
        return [_decode(item) for item in value]
    if isinstance(value, dict):
        return {_decode(key): _decode(item) for key, item in value.items()}
    return value


class RedisBackingStore:
    """
    Backing store over a shared Redis server.

    Parameters
    ----------
    config:
        Connection settings used when ``redis_client`` is not supplied.
    redis_client:
        Optional preconfigured ``redis.asyncio.Redis`` client. Clients created
        without ``decode_responses`` are supported; replies are decoded here.
    """

    def __init__(
        self,
        *,
        config: RedisStoreConfig | None = None,
        redis_client: Redis | None = None,
    ) -> None:
        self.config = config or RedisStoreConfig()
        self._redis = redis_client or Redis.from_url(
            self.config.redis_url, decode_responses=True
        )

    @property
    def client(self) -> Redis:
        """Return the underlying redis client."""
        return self._redis

    def batch(self) -> Pipeline:
        return self._redis.pipeline(transaction=True)

    async def execute(self, batch: Pipeline) -> list[Any] | None:
        replies = await batch.execute()
        if replies is None:
            return None
        return _decode(list(replies))

    async def hget(self, name: str, key: str) -> str | None:
        return _decode(await self._redis.hget(name, key))

    async def hmget(self, name: str, keys: Sequence[str]) -> list[str | None]:
        return _decode(await self._redis.hmget(name, list(keys)))

    async def hgetall(self, name: str) -> dict[str, str]:
        return _decode(await self._redis.hgetall(name))

    async def hset(self, name: str, key: str, value: str) -> int:
        return int(await self._redis.hset(name, key, value))

    async def hdel(self, name: str, *keys: str) -> int:
        return int(await self._redis.hdel(name, *keys))

    async def hincrby(self, name: str, key: str, amount: int = 1) -> int:
        return int(await self._redis.hincrby(name, key, amount))

    async def hlen(self, name: str) -> int:
        return int(await self._redis.hlen(name))

    async def delete(self, *names: str) -> int:
        return int(await self._redis.delete(*names))

    async def rpush(self, name: str, *values: str) -> int:
        return int(await self._redis.rpush(name, *values))

    async def lpop(self, name: str) -> str | None:
        return _decode(await self._redis.lpop(name))

    async def lrem(self, name: str, count: int, value: str) -> int:
        return int(await self._redis.lrem(name, count, value))

    async def llen(self, name: str) -> int:
        return int(await self._redis.llen(name))

    async def flushall(self) -> Any:
        return await self._redis.flushall()

    async def aclose(self) -> None:
        await self._redis.aclose()


class RedisLockAdapter:
    """
    Distributed named locks stored in Redis.

    Each acquisition holds a lease of ``lock_timeout_seconds`` so a crashed
    holder cannot strand a resource forever.
    """

    def __init__(self, redis_client: Redis, config: RedisStoreConfig | None = None) -> None:
        self.config = config or RedisStoreConfig()
        self._redis = redis_client

    async def acquire(self, resource: str) -> ReleaseCallback:
        lock = self._redis.lock(
            resource,
            timeout=self.config.lock_timeout_seconds,
            sleep=self.config.lock_sleep_seconds,
            blocking=True,
            blocking_timeout=self.config.lock_blocking_timeout_seconds,
        )
        if not await lock.acquire():
            raise StoreOperationError(
                StoreError.GENERIC_REDIS_FAILURE,
                f"Timed out acquiring lock {resource!r}",
            )

        async def release() -> None:
            try:
                await lock.release()
            except LockError:
                # Lease expired while held; another writer may own it now.
                _LOGGER.warning("Lock lease lost before release resource=%s", resource)

        return release
