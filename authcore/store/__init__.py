from authcore.store.base import KeyValueStore
from authcore.store.memory import MemoryStore
from authcore.store.redis_store import RedisStore

__all__ = ["KeyValueStore", "MemoryStore", "RedisStore"]
