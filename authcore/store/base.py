# authcore/store/base.py
"""
Key-value store contract used by the session manager, the brute-force guard
and the security event log.

The command set is the Redis subset these components need. Implementations
raise StoreUnavailableError for every connectivity or command failure so the
services can apply their fail-open / fail-closed policy without knowing the
backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Async key-value store with TTLs, sets and capped lists."""

    def __init__(self, namespace: str = ""):
        self.namespace = namespace

    def _k(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def _strip(self, key: str) -> str:
        return key[len(self.namespace) :] if key.startswith(self.namespace) else key

    # --- Strings ---

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Store ``value``; ``ttl`` in seconds, None keeps the key until deleted."""

    @abstractmethod
    async def delete(self, *keys: str) -> int: ...

    @abstractmethod
    async def incr(self, key: str) -> int:
        """Atomically increment an integer counter, creating it at 1."""

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> bool: ...

    @abstractmethod
    async def keys(self, prefix: str) -> list[str]:
        """Return every live key starting with ``prefix`` (namespace removed)."""

    # --- Sets ---

    @abstractmethod
    async def sadd(self, key: str, *members: str) -> int: ...

    @abstractmethod
    async def srem(self, key: str, *members: str) -> int: ...

    @abstractmethod
    async def smembers(self, key: str) -> set[str]: ...

    # --- Lists ---

    @abstractmethod
    async def lpush(self, key: str, *values: str) -> int: ...

    @abstractmethod
    async def ltrim(self, key: str, start: int, stop: int) -> None: ...

    @abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> list[str]: ...

    async def close(self) -> None:
        return None
