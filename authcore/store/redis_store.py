# authcore/store/redis_store.py
"""
Redis implementation of the key-value store (redis.asyncio).

All redis-py failures, connection errors included, are re-raised as
StoreUnavailableError.
"""

from __future__ import annotations

import functools
import logging
import re
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import redis.asyncio as aioredis

from authcore.exceptions import StoreUnavailableError
from authcore.store.base import KeyValueStore

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

_GLOB_SPECIALS_RE = re.compile(r"([*?\[\]\\])")


def _translate_errors(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await func(*args, **kwargs)
        except (aioredis.RedisError, OSError) as e:
            logger.error(f"Redis command {func.__name__} failed: {e}")
            raise StoreUnavailableError(f"Redis {func.__name__} failed: {e}") from e

    return wrapper


class RedisStore(KeyValueStore):
    def __init__(self, client: aioredis.Redis, namespace: str = ""):
        super().__init__(namespace)
        self._redis = client

    @classmethod
    def from_url(cls, url: str, namespace: str = "", **kwargs) -> "RedisStore":
        client = aioredis.from_url(url, decode_responses=True, **kwargs)
        return cls(client, namespace=namespace)

    @_translate_errors
    async def get(self, key: str) -> str | None:
        return await self._redis.get(self._k(key))

    @_translate_errors
    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        await self._redis.set(self._k(key), value, ex=ttl)

    @_translate_errors
    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._redis.delete(*(self._k(k) for k in keys))

    @_translate_errors
    async def incr(self, key: str) -> int:
        return await self._redis.incr(self._k(key))

    @_translate_errors
    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._redis.expire(self._k(key), ttl))

    @_translate_errors
    async def keys(self, prefix: str) -> list[str]:
        # SCAN instead of KEYS so a sweep never blocks the server
        pattern = _GLOB_SPECIALS_RE.sub(r"\\\1", self._k(prefix)) + "*"
        return [self._strip(k) async for k in self._redis.scan_iter(match=pattern, count=500)]

    @_translate_errors
    async def sadd(self, key: str, *members: str) -> int:
        return await self._redis.sadd(self._k(key), *members)

    @_translate_errors
    async def srem(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self._redis.srem(self._k(key), *members)

    @_translate_errors
    async def smembers(self, key: str) -> set[str]:
        return set(await self._redis.smembers(self._k(key)))

    @_translate_errors
    async def lpush(self, key: str, *values: str) -> int:
        return await self._redis.lpush(self._k(key), *values)

    @_translate_errors
    async def ltrim(self, key: str, start: int, stop: int) -> None:
        await self._redis.ltrim(self._k(key), start, stop)

    @_translate_errors
    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return list(await self._redis.lrange(self._k(key), start, stop))

    @_translate_errors
    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()
