"""Storage adapter interface shared by every backend."""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional


class KeyedLocks:
    """One asyncio.Lock per key, created on demand and dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class Storage(ABC):
    """Key/value store with JSON-text values, hash fields and a TTL lock primitive.

    Values are whole JSON documents; ``set`` and ``hset`` replace the stored
    value in one operation so readers never observe a partial record.

    ``locked(key)`` serialises read-modify-write sequences on one key inside
    this process. It does not coordinate across processes; cross-process
    exclusion only comes from ``set_if_absent`` and is best-effort.
    """

    def __init__(self):
        self._key_locks = KeyedLocks()

    def locked(self, key: str):
        return self._key_locks.hold(key)

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def delete(self, *keys: str) -> None:
        """Delete plain keys and hashes alike."""

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Store ``value`` with an expiry unless a live value exists. Returns True if stored."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def hset(self, key: str, field: str, value: str) -> None:
        ...

    @abstractmethod
    async def hget(self, key: str, field: str) -> Optional[str]:
        ...

    @abstractmethod
    async def hkeys(self, key: str) -> list[str]:
        ...

    @abstractmethod
    async def hvals(self, key: str) -> list[str]:
        ...

    async def init(self) -> None:
        """Prepare the backend (create tables, open connections)."""

    async def close(self) -> None:
        """Release backend resources."""
