# authcore/store/memory.py
"""
In-process implementation of the key-value store.

Used by the test suite and by single-process deployments that do not run
Redis. Expiry is evaluated lazily against the injected clock, so a test can
jump forward in time and observe keys disappear exactly as Redis TTLs would.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from authcore.core.clock import Clock, utc_now
from authcore.exceptions import StoreUnavailableError
from authcore.store.base import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: str | set[str] | list[str]
    expires_at: datetime | None = None


def _redis_slice(items: list[str], start: int, stop: int) -> tuple[int, int]:
    """Translate Redis inclusive (start, stop) indices into a Python slice."""
    n = len(items)
    if start < 0:
        start = max(n + start, 0)
    if stop < 0:
        stop = n + stop
    stop = min(stop, n - 1)
    if start > stop:
        return 0, 0
    return start, stop + 1


class MemoryStore(KeyValueStore):
    def __init__(self, namespace: str = "", clock: Clock = utc_now):
        super().__init__(namespace)
        self._clock = clock
        self._data: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def _typed(self, key: str, kind: type) -> _Entry | None:
        entry = self._live(key)
        if entry is not None and not isinstance(entry.value, kind):
            raise StoreUnavailableError(
                f"WRONGTYPE operation against key '{key}' holding {type(entry.value).__name__}"
            )
        return entry

    def _deadline(self, ttl: int | None) -> datetime | None:
        return None if ttl is None else self._clock() + timedelta(seconds=ttl)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._typed(self._k(key), str)
            return entry.value if entry else None

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        async with self._lock:
            self._data[self._k(key)] = _Entry(str(value), self._deadline(ttl))

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            removed = 0
            for key in keys:
                if self._live(self._k(key)) is not None:
                    del self._data[self._k(key)]
                    removed += 1
            return removed

    async def incr(self, key: str) -> int:
        async with self._lock:
            entry = self._typed(self._k(key), str)
            if entry is None:
                self._data[self._k(key)] = _Entry("1")
                return 1
            try:
                value = int(entry.value) + 1
            except ValueError as e:
                raise StoreUnavailableError(f"value at '{key}' is not an integer") from e
            entry.value = str(value)
            return value

    async def expire(self, key: str, ttl: int) -> bool:
        async with self._lock:
            entry = self._live(self._k(key))
            if entry is None:
                return False
            entry.expires_at = self._deadline(ttl)
            return True

    async def keys(self, prefix: str) -> list[str]:
        async with self._lock:
            full_prefix = self._k(prefix)
            return [
                self._strip(k)
                for k in list(self._data)
                if k.startswith(full_prefix) and self._live(k) is not None
            ]

    async def sadd(self, key: str, *members: str) -> int:
        async with self._lock:
            entry = self._typed(self._k(key), set)
            if entry is None:
                entry = self._data[self._k(key)] = _Entry(set())
            before = len(entry.value)
            entry.value.update(members)
            return len(entry.value) - before

    async def srem(self, key: str, *members: str) -> int:
        async with self._lock:
            entry = self._typed(self._k(key), set)
            if entry is None:
                return 0
            before = len(entry.value)
            entry.value.difference_update(members)
            if not entry.value:
                del self._data[self._k(key)]
            return before - len(entry.value)

    async def smembers(self, key: str) -> set[str]:
        async with self._lock:
            entry = self._typed(self._k(key), set)
            return set(entry.value) if entry else set()

    async def lpush(self, key: str, *values: str) -> int:
        async with self._lock:
            entry = self._typed(self._k(key), list)
            if entry is None:
                entry = self._data[self._k(key)] = _Entry([])
            for value in values:
                entry.value.insert(0, value)
            return len(entry.value)

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        async with self._lock:
            entry = self._typed(self._k(key), list)
            if entry is None:
                return
            lo, hi = _redis_slice(entry.value, start, stop)
            entry.value = entry.value[lo:hi]
            if not entry.value:
                del self._data[self._k(key)]

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        async with self._lock:
            entry = self._typed(self._k(key), list)
            if entry is None:
                return []
            lo, hi = _redis_slice(entry.value, start, stop)
            return list(entry.value[lo:hi])

    async def close(self) -> None:
        async with self._lock:
            self._data.clear()
        logger.debug("MemoryStore cleared.")
