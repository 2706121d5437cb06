"""Storage backends behind one interface."""

from music_indexer.config import Settings
from music_indexer.storage.base import KeyedLocks, Storage
from music_indexer.storage.memory import MemoryStorage


def build_storage(config: Settings) -> Storage:
    """Pick the backend named by ``config.storage_backend``."""
    backend = config.storage_backend.lower()
    if backend == "sql":
        from music_indexer.storage.sql import SQLStorage

        return SQLStorage(config.database_url)
    if backend == "redis":
        from music_indexer.storage.redis import RedisStorage

        return RedisStorage(config.redis_url)
    if backend == "memory":
        return MemoryStorage()
    raise ValueError(f"Unknown storage backend: {config.storage_backend!r}")


__all__ = ["KeyedLocks", "Storage", "MemoryStorage", "build_storage"]
