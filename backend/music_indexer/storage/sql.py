"""File-backed storage on async SQLAlchemy (SQLite by default, any async URL works)."""

import logging
import time
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError

from music_indexer.database import create_engine, create_sessionmaker, init_db
from music_indexer.models.kv_entry import KVEntry
from music_indexer.models.hash_field import HashField
from music_indexer.storage.base import Storage

logger = logging.getLogger(__name__)


class SQLStorage(Storage):
    def __init__(self, database_url: str):
        super().__init__()
        self._database_url = database_url
        self._engine = create_engine(database_url)
        self._session = create_sessionmaker(self._engine)

    async def init(self) -> None:
        await init_db(self._engine)
        logger.info(f"SQL storage ready: {self._database_url.split('@')[-1]}")

    async def close(self) -> None:
        await self._engine.dispose()

    async def get(self, key: str) -> Optional[str]:
        async with self._session() as db:
            entry = await db.get(KVEntry, key)
            if entry is None:
                return None
            if entry.is_expired(time.time()):
                await db.delete(entry)
                await db.commit()
                return None
            return entry.value

    async def set(self, key: str, value: str) -> None:
        async with self._session() as db:
            await db.merge(KVEntry(key=key, value=value, expires_at=None))
            await db.commit()

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        async with self._session() as db:
            await db.execute(delete(KVEntry).where(KVEntry.key.in_(keys)))
            await db.execute(delete(HashField).where(HashField.key.in_(keys)))
            await db.commit()

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        now = time.time()
        async with self._session() as db:
            existing = await db.get(KVEntry, key)
            if existing is not None:
                if not existing.is_expired(now):
                    return False
                await db.delete(existing)
                await db.flush()

            db.add(KVEntry(key=key, value=value, expires_at=now + ttl_seconds))
            try:
                await db.commit()
            except IntegrityError:
                # Another writer inserted between our read and commit
                await db.rollback()
                return False
            return True

    async def exists(self, key: str) -> bool:
        if await self.get(key) is not None:
            return True
        async with self._session() as db:
            result = await db.execute(select(HashField.field).where(HashField.key == key).limit(1))
            return result.first() is not None

    async def hset(self, key: str, field: str, value: str) -> None:
        async with self._session() as db:
            await db.merge(HashField(key=key, field=field, value=value))
            await db.commit()

    async def hget(self, key: str, field: str) -> Optional[str]:
        async with self._session() as db:
            row = await db.get(HashField, (key, field))
            return row.value if row else None

    async def hkeys(self, key: str) -> list[str]:
        async with self._session() as db:
            result = await db.execute(select(HashField.field).where(HashField.key == key))
            return list(result.scalars().all())

    async def hvals(self, key: str) -> list[str]:
        async with self._session() as db:
            result = await db.execute(select(HashField.value).where(HashField.key == key))
            return list(result.scalars().all())
