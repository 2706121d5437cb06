"""Per-user records on top of the storage adapter: scan state, lock, music cache, settings."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import ValidationError

from music_indexer.records import CacheRecord, ScanCheckpoint, ScanLock, UserSettings, utcnow
from music_indexer.storage.base import Storage

logger = logging.getLogger(__name__)


def scan_state_key(user_id: str) -> str:
    return f"user:{user_id}:scan-state"


def scan_lock_key(user_id: str) -> str:
    return f"user:{user_id}:scan:lock"


def music_cache_key(user_id: str) -> str:
    return f"user:{user_id}:music-cache"


def settings_key(user_id: str) -> str:
    return f"user:{user_id}:settings"


@dataclass
class CacheStats:
    total_paths: int = 0
    total_files: int = 0
    total_folders: int = 0
    last_updated: Optional[datetime] = None


@dataclass
class Track:
    """Flattened media entry for track lists."""
    id: str
    name: str
    size: int
    title: str
    artist: str
    folder: str
    extension: str
    last_modified: Optional[str]


class LibraryStore:
    """Typed access to one storage backend, namespaced by user id."""

    def __init__(self, storage: Storage):
        self._storage = storage

    @property
    def storage(self) -> Storage:
        return self._storage

    # -------- Scan state --------

    async def get_checkpoint(self, user_id: str) -> Optional[ScanCheckpoint]:
        raw = await self._storage.get(scan_state_key(user_id))
        if not raw:
            return None
        try:
            return ScanCheckpoint.from_json(raw)
        except ValidationError as e:
            logger.error(f"Unreadable scan state for {user_id}: {e}")
            return None

    async def save_checkpoint(self, user_id: str, checkpoint: ScanCheckpoint) -> ScanCheckpoint:
        """Replace the checkpoint wholesale (new epoch)."""
        key = scan_state_key(user_id)
        async with self._storage.locked(key):
            previous = await self.get_checkpoint(user_id)
            _touch(checkpoint, previous)
            await self._storage.set(key, checkpoint.to_json())
        return checkpoint

    async def update_checkpoint(
        self,
        user_id: str,
        mutate: Callable[[ScanCheckpoint], None],
    ) -> Optional[ScanCheckpoint]:
        """
        Read the latest persisted checkpoint, apply ``mutate`` and write it back.

        The whole sequence holds the per-key lock, so concurrent updaters never
        overwrite each other with stale copies. Returns None (and writes
        nothing) when no checkpoint exists.
        """
        key = scan_state_key(user_id)
        async with self._storage.locked(key):
            current = await self.get_checkpoint(user_id)
            if current is None:
                return None
            previous = current.model_copy(deep=True)
            mutate(current)
            _touch(current, previous)
            await self._storage.set(key, current.to_json())
            return current

    async def delete_checkpoint(self, user_id: str):
        key = scan_state_key(user_id)
        async with self._storage.locked(key):
            await self._storage.delete(key)

    # -------- Scan lock (best-effort, TTL-bounded) --------

    async def acquire_lock(self, user_id: str, holder: str, ttl_seconds: int) -> bool:
        lock = ScanLock(holder=holder)
        return await self._storage.set_if_absent(scan_lock_key(user_id), lock.to_json(), ttl_seconds)

    async def release_lock(self, user_id: str):
        await self._storage.delete(scan_lock_key(user_id))

    async def has_lock(self, user_id: str) -> bool:
        return await self._storage.exists(scan_lock_key(user_id))

    # -------- Music cache --------

    async def store_cache_record(
        self,
        user_id: str,
        path: str,
        record: CacheRecord,
        epoch_start: Optional[datetime] = None,
    ) -> bool:
        """
        Replace the cache record for ``path``. Returns False when nothing was written.

        With ``epoch_start`` the record is only written while that epoch is
        still the persisted, running one. The check and the write share the
        cache lock with clearing, so a cleared cache is never refilled by a
        listing that was already in flight.
        """
        key = music_cache_key(user_id)
        async with self._storage.locked(key):
            if epoch_start is not None:
                checkpoint = await self.get_checkpoint(user_id)
                if checkpoint is None or not checkpoint.is_scanning or checkpoint.start_time != epoch_start:
                    return False
            await self._storage.hset(key, path, record.to_json())
            return True

    async def get_cached(self, user_id: str, path: str) -> Optional[CacheRecord]:
        raw = await self._storage.hget(music_cache_key(user_id), path)
        if not raw:
            return None
        try:
            return CacheRecord.from_json(raw)
        except ValidationError as e:
            logger.error(f"Unreadable cache record for {user_id} at {path!r}: {e}")
            return None

    async def get_last_updated(self, user_id: str, path: str) -> Optional[datetime]:
        record = await self.get_cached(user_id, path)
        return record.last_updated if record else None

    async def all_cached_paths(self, user_id: str) -> list[str]:
        return await self._storage.hkeys(music_cache_key(user_id))

    async def all_cache_records(self, user_id: str) -> dict[str, CacheRecord]:
        records = {}
        for path in await self.all_cached_paths(user_id):
            record = await self.get_cached(user_id, path)
            if record is not None:
                records[path] = record
        return records

    async def cache_stats(self, user_id: str) -> CacheStats:
        stats = CacheStats()
        for raw in await self._storage.hvals(music_cache_key(user_id)):
            stats.total_paths += 1
            try:
                record = CacheRecord.from_json(raw)
            except ValidationError:
                continue
            stats.total_files += len(record.files)
            stats.total_folders += len(record.folders)
            if stats.last_updated is None or record.last_updated > stats.last_updated:
                stats.last_updated = record.last_updated
        return stats

    async def all_tracks(self, user_id: str) -> list[Track]:
        """Every cached media file once (first path wins), sorted by artist then title."""
        tracks: dict[str, Track] = {}
        for path, record in (await self.all_cache_records(user_id)).items():
            for entry in record.files:
                if not entry.id or entry.id in tracks:
                    continue
                tracks[entry.id] = Track(
                    id=entry.id,
                    name=entry.name,
                    size=entry.size,
                    title=entry.title or entry.name,
                    artist=entry.artist,
                    folder=entry.path or path,
                    extension=entry.extension,
                    last_modified=entry.last_modified,
                )

        return sorted(
            tracks.values(),
            key=lambda t: ((t.artist or "").lower(), (t.title or t.name or "").lower()),
        )

    async def clear_cache(self, user_id: str):
        key = music_cache_key(user_id)
        async with self._storage.locked(key):
            await self._storage.delete(key)

    # -------- User settings --------

    async def get_settings(self, user_id: str, default_root_path: str = "") -> UserSettings:
        raw = await self._storage.get(settings_key(user_id))
        if raw:
            try:
                return UserSettings.from_json(raw)
            except ValidationError as e:
                logger.error(f"Unreadable settings for {user_id}: {e}")
        return UserSettings(music_root_path=default_root_path)

    async def update_settings(self, user_id: str, default_root_path: str = "", **changes) -> UserSettings:
        key = settings_key(user_id)
        async with self._storage.locked(key):
            current = await self.get_settings(user_id, default_root_path)
            updated = current.model_copy(update={**changes, "last_updated": utcnow()})
            await self._storage.set(key, updated.to_json())
            return updated

    # -------- Bulk clearing --------

    async def clear_scan_state(self, user_id: str):
        await self.delete_checkpoint(user_id)
        await self.release_lock(user_id)

    async def clear_user_cache(self, user_id: str):
        """Drop scan state and cache together; in-flight crawl writes are refused from here on."""
        key = music_cache_key(user_id)
        async with self._storage.locked(key):
            await self.clear_scan_state(user_id)
            await self._storage.delete(key)


def _touch(checkpoint: ScanCheckpoint, previous: Optional[ScanCheckpoint]):
    """Refresh lastUpdate, strictly later than the previous write so watchers always see a change."""
    now = utcnow()
    if previous is not None and now <= previous.last_update:
        now = previous.last_update + timedelta(microseconds=1)
    checkpoint.last_update = now
