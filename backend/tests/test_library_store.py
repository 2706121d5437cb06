"""Per-user records: checkpoint merges, cache queries, settings."""

import asyncio

import pytest
import pytest_asyncio

from music_indexer.records import CacheRecord, FolderEntry, MediaFileEntry, ScanCheckpoint
from music_indexer.services.library_store import LibraryStore
from music_indexer.storage import MemoryStorage

USER = "u1"


@pytest_asyncio.fixture
async def library():
    storage = MemoryStorage()
    await storage.init()
    yield LibraryStore(storage)
    await storage.close()


def entry(file_id: str, title: str, artist: str, path: str = "/A") -> MediaFileEntry:
    return MediaFileEntry(id=file_id, name=f"{title}.mp3", title=title, artist=artist, path=path, extension="MP3")


@pytest.mark.asyncio
async def test_update_without_checkpoint_writes_nothing(library):
    assert await library.update_checkpoint(USER, lambda cp: setattr(cp, "is_scanning", True)) is None
    assert await library.get_checkpoint(USER) is None


@pytest.mark.asyncio
async def test_concurrent_updates_are_all_kept(library):
    await library.save_checkpoint(USER, ScanCheckpoint(is_scanning=True))

    def add_folder(n):
        def mutate(cp):
            cp.scanned_paths.append(f"/F{n}")
            cp.cumulative_folder_count += 1
        return mutate

    async def update(n):
        await asyncio.sleep(0)
        await library.update_checkpoint(USER, add_folder(n))

    await asyncio.gather(*(update(n) for n in range(25)))

    checkpoint = await library.get_checkpoint(USER)
    assert checkpoint.cumulative_folder_count == 25
    assert sorted(checkpoint.scanned_paths) == sorted(f"/F{n}" for n in range(25))


@pytest.mark.asyncio
async def test_every_write_moves_last_update_forward(library):
    first = await library.save_checkpoint(USER, ScanCheckpoint(is_scanning=True))
    first_version = first.last_update
    second = await library.update_checkpoint(USER, lambda cp: None)
    third = await library.update_checkpoint(USER, lambda cp: None)

    assert first_version < second.last_update < third.last_update


@pytest.mark.asyncio
async def test_stored_json_uses_camel_case(library):
    await library.save_checkpoint(USER, ScanCheckpoint(is_scanning=True, cumulative_file_count=3))

    raw = await library.storage.get("user:u1:scan-state")

    assert '"isScanning":true' in raw
    assert '"cumulativeFileCount":3' in raw


@pytest.mark.asyncio
async def test_lock_is_exclusive_until_released(library):
    assert await library.acquire_lock(USER, "a", ttl_seconds=60)
    assert not await library.acquire_lock(USER, "b", ttl_seconds=60)
    assert await library.has_lock(USER)

    await library.release_lock(USER)
    assert await library.acquire_lock(USER, "b", ttl_seconds=60)


@pytest.mark.asyncio
async def test_cache_stats(library):
    assert (await library.cache_stats(USER)).total_paths == 0

    await library.store_cache_record(USER, "", CacheRecord(folders=[FolderEntry(id="f", name="A")]))
    await library.store_cache_record(USER, "/A", CacheRecord(files=[entry("1", "x", "A"), entry("2", "y", "A")]))

    stats = await library.cache_stats(USER)
    assert stats.total_paths == 2
    assert stats.total_files == 2
    assert stats.total_folders == 1
    assert stats.last_updated == (await library.get_cached(USER, "/A")).last_updated


@pytest.mark.asyncio
async def test_all_tracks_dedupes_and_sorts(library):
    await library.store_cache_record(USER, "/b", CacheRecord(files=[entry("1", "Zebra", "beta", "/b")]))
    await library.store_cache_record(USER, "/a", CacheRecord(files=[
        entry("2", "song", "Alpha", "/a"),
        entry("3", "Another", "alpha", "/a"),
    ]))
    await library.store_cache_record(USER, "/copy", CacheRecord(files=[entry("1", "Zebra", "beta", "/copy")]))

    tracks = await library.all_tracks(USER)

    assert [t.id for t in tracks] == ["3", "2", "1"]
    assert tracks[2].folder == "/b"


@pytest.mark.asyncio
async def test_clear_user_cache_drops_everything(library):
    await library.store_cache_record(USER, "/a", CacheRecord())
    await library.save_checkpoint(USER, ScanCheckpoint())
    await library.acquire_lock(USER, "a", ttl_seconds=60)

    await library.clear_user_cache(USER)

    assert await library.all_cached_paths(USER) == []
    assert await library.get_checkpoint(USER) is None
    assert not await library.has_lock(USER)


@pytest.mark.asyncio
async def test_users_are_isolated(library):
    await library.store_cache_record("alice", "/a", CacheRecord())
    await library.save_checkpoint("alice", ScanCheckpoint(is_scanning=True))

    assert await library.all_cached_paths("bob") == []
    assert await library.get_checkpoint("bob") is None


class TestSettings:
    @pytest.mark.asyncio
    async def test_defaults(self, library):
        settings = await library.get_settings(USER, default_root_path="Music")
        assert settings.music_root_path == "Music"
        assert settings.drive_type == "personal"

    @pytest.mark.asyncio
    async def test_update_merges(self, library):
        await library.update_settings(USER, music_root_path="Music")
        updated = await library.update_settings(USER, drive_type="business")

        assert updated.music_root_path == "Music"
        assert updated.drive_type == "business"
        assert (await library.get_settings(USER)).drive_type == "business"

    @pytest.mark.asyncio
    async def test_update_keeps_default_root_for_new_user(self, library):
        updated = await library.update_settings(USER, default_root_path="Music", drive_type="business")

        assert updated.music_root_path == "Music"
        assert (await library.get_settings(USER)).music_root_path == "Music"


@pytest.mark.asyncio
async def test_record_for_stopped_epoch_is_not_stored(library):
    epoch = await library.save_checkpoint(USER, ScanCheckpoint(is_scanning=True))
    assert await library.store_cache_record(USER, "/a", CacheRecord(), epoch_start=epoch.start_time)

    await library.update_checkpoint(USER, lambda cp: setattr(cp, "is_scanning", False))
    assert not await library.store_cache_record(USER, "/b", CacheRecord(), epoch_start=epoch.start_time)

    await library.clear_scan_state(USER)
    assert not await library.store_cache_record(USER, "/c", CacheRecord(), epoch_start=epoch.start_time)

    assert await library.all_cached_paths(USER) == ["/a"]
