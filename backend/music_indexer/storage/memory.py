"""In-process storage backend. Used for tests and one-shot CLI runs."""

import time
from typing import Optional

from music_indexer.storage.base import Storage


class MemoryStorage(Storage):
    def __init__(self):
        super().__init__()
        self._values: dict[str, str] = {}
        self._expiry: dict[str, float] = {}
        self._hashes: dict[str, dict[str, str]] = {}

    def _purge_if_expired(self, key: str) -> None:
        expires = self._expiry.get(key)
        if expires is not None and expires <= time.time():
            self._values.pop(key, None)
            self._expiry.pop(key, None)

    async def get(self, key: str) -> Optional[str]:
        self._purge_if_expired(key)
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self._expiry.pop(key, None)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._values.pop(key, None)
            self._expiry.pop(key, None)
            self._hashes.pop(key, None)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        self._purge_if_expired(key)
        if key in self._values:
            return False
        self._values[key] = value
        self._expiry[key] = time.time() + ttl_seconds
        return True

    async def exists(self, key: str) -> bool:
        self._purge_if_expired(key)
        return key in self._values or bool(self._hashes.get(key))

    async def hset(self, key: str, field: str, value: str) -> None:
        self._hashes.setdefault(key, {})[field] = value

    async def hget(self, key: str, field: str) -> Optional[str]:
        return self._hashes.get(key, {}).get(field)

    async def hkeys(self, key: str) -> list[str]:
        return list(self._hashes.get(key, {}).keys())

    async def hvals(self, key: str) -> list[str]:
        return list(self._hashes.get(key, {}).values())
