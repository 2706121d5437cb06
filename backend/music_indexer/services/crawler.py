"""Crawl engine — walks a user's music root folder by folder and checkpoints as it goes.

Shape of one epoch:

1. Priming: list the root, cache it, and fix the ordered list of top-level
   folders. The list is never recomputed inside the epoch because its index
   is the resume cursor.
2. For each top-level folder from the cursor on: breadth-first walk of the
   subtree, caching every folder and bumping the cumulative counters, then
   advance the cursor.
3. Completed: cursor at the end, ``isScanning`` cleared, counters kept.

Every checkpoint write goes through ``LibraryStore.update_checkpoint``, which
re-reads the persisted value under a per-key lock. Nothing here keeps a
checkpoint in memory across an await and writes it back later.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Optional

from music_indexer.context import IndexerContext
from music_indexer.errors import UnauthorizedError
from music_indexer.records import CacheRecord, ScanCheckpoint
from music_indexer.services.index_builder import build_cache_record, child_path

logger = logging.getLogger(__name__)


class CrawlPhase(str, Enum):
    IDLE = "idle"
    PRIMING = "priming"
    WALKING = "walking"
    COMPLETED = "completed"
    ERROR = "error"


class ScanCancelled(Exception):
    """The persisted checkpoint says this run should stop."""


class CrawlEngine:
    """Runs crawl epochs for any number of users; all state lives in storage."""

    def __init__(self, context: IndexerContext):
        self._ctx = context
        self._library = context.library
        self._client = context.client
        self._phases: dict[str, CrawlPhase] = {}

    def phase(self, user_id: str) -> CrawlPhase:
        return self._phases.get(user_id, CrawlPhase.IDLE)

    def _enter(self, user_id: str, phase: CrawlPhase):
        if self._phases.get(user_id) != phase:
            logger.debug(f"Crawl {user_id}: {self.phase(user_id).value} -> {phase.value}")
        self._phases[user_id] = phase

    # -------- Epoch entry points --------

    async def run_new_epoch(self, user_id: str, root_path: str):
        """Prime from ``root_path`` and crawl everything. Never raises."""
        try:
            checkpoint = await self.prime(user_id, root_path)
        except ScanCancelled:
            logger.info(f"Scan for {user_id} stopped while priming")
            self._enter(user_id, CrawlPhase.IDLE)
            return
        except Exception as e:
            logger.error(f"Priming failed for {user_id} at {root_path or '/'}: {e}")
            self._enter(user_id, CrawlPhase.ERROR)
            await self._library.save_checkpoint(
                user_id,
                ScanCheckpoint(is_scanning=False, current_path=root_path, error=str(e)),
            )
            return
        await self.run_epoch(user_id, epoch_start=checkpoint.start_time)

    async def prime(self, user_id: str, root_path: str) -> ScanCheckpoint:
        """
        Open a new epoch at ``root_path``: list and cache the root, then persist the top-level work list.

        The epoch's checkpoint is written before the root is listed, so a
        clear or stop during the listing cancels priming like any other step.
        """
        self._enter(user_id, CrawlPhase.PRIMING)
        logger.info(f"Starting new scan epoch for {user_id} at {root_path or '/'}")

        epoch = await self._library.save_checkpoint(
            user_id, ScanCheckpoint(is_scanning=True, current_path=root_path)
        )
        record = await self.index_folder(user_id, root_path, epoch_start=epoch.start_time)
        top_level_paths = [child_path(root_path, folder.name) for folder in record.folders]

        checkpoint = await self._library.update_checkpoint(
            user_id, lambda cp: _set_work_list(cp, top_level_paths)
        )
        self._ensure_active(checkpoint, epoch.start_time)
        return checkpoint

    async def run_epoch(self, user_id: str, epoch_start: Optional[datetime] = None):
        """
        Crawl the remaining top-level folders of the persisted epoch. Never raises.

        ``epoch_start`` pins the run to one epoch: if the checkpoint is replaced
        by a newer epoch, this run stops.
        """
        try:
            await self._walk_top_level_folders(user_id, epoch_start)
        except ScanCancelled:
            logger.info(f"Scan for {user_id} stopped")
            self._enter(user_id, CrawlPhase.IDLE)
        except Exception as e:
            logger.exception(f"Scan for {user_id} failed: {e}")
            self._enter(user_id, CrawlPhase.ERROR)
            await self._library.update_checkpoint(user_id, lambda cp: _fail(cp, str(e)))

    # -------- Per-folder walk --------

    async def _walk_top_level_folders(self, user_id: str, epoch_start: Optional[datetime]):
        checkpoint = await self._library.get_checkpoint(user_id)
        if checkpoint is None:
            logger.info(f"No scan state for {user_id}, nothing to crawl")
            return
        epoch_start = epoch_start or checkpoint.start_time
        self._ensure_active(checkpoint, epoch_start)

        self._enter(user_id, CrawlPhase.WALKING)
        paths = list(checkpoint.top_level_folder_paths)
        index = checkpoint.scanned_top_level_folders
        if index < len(paths):
            logger.info(f"Crawling {len(paths) - index} of {len(paths)} top-level folders for {user_id}")

        while index < len(paths):
            top_level_path = paths[index]
            logger.info(f"[SCAN] {user_id} | {top_level_path}")

            checkpoint = await self._library.update_checkpoint(
                user_id, lambda cp: _enter_top_level(cp, top_level_path)
            )
            self._ensure_active(checkpoint, epoch_start)

            await self._crawl_top_level_folder(user_id, top_level_path, epoch_start)

            cursor = index + 1
            checkpoint = await self._library.update_checkpoint(
                user_id, lambda cp: _advance_cursor(cp, cursor)
            )
            self._ensure_active(checkpoint, epoch_start)
            index = cursor

            await asyncio.sleep(self._ctx.config.subtree_throttle_seconds)

        await self._library.update_checkpoint(user_id, _complete)
        self._enter(user_id, CrawlPhase.COMPLETED)
        logger.info(f"Scan complete for {user_id}")

    async def _crawl_top_level_folder(self, user_id: str, path: str, epoch_start: datetime):
        """Walk one subtree. Failures are recorded and swallowed; cancellation propagates."""
        try:
            await self.crawl_subtree(user_id, path, epoch_start)
            return
        except ScanCancelled:
            raise
        except UnauthorizedError as e:
            logger.warning(f"Unauthorized while scanning {path}, refreshing token and retrying: {e}")
            try:
                await self._ctx.tokens.get_access_token(force_refresh=True)
                await self.crawl_subtree(user_id, path, epoch_start)
                return
            except ScanCancelled:
                raise
            except Exception as retry_error:
                error = retry_error
        except Exception as e:
            error = e

        logger.error(f"Error scanning top-level folder {path}: {error}")
        await self._library.update_checkpoint(user_id, lambda cp: _record_error(cp, str(error)))

    async def crawl_subtree(self, user_id: str, top_level_path: str, epoch_start: Optional[datetime] = None) -> set[str]:
        """Breadth-first walk below ``top_level_path``. Returns the visited folder paths."""
        queue: deque[str] = deque([top_level_path])
        visited: set[str] = set()

        while queue:
            path = queue.popleft()
            if path in visited:
                continue
            visited.add(path)

            checkpoint = await self._library.update_checkpoint(user_id, lambda cp: _set_current_path(cp, path))
            self._ensure_active(checkpoint, epoch_start)

            record = await self.index_folder(user_id, path, epoch_start)
            for folder in record.folders:
                sub_path = child_path(path, folder.name)
                if sub_path not in visited:
                    queue.append(sub_path)

            file_count = len(record.files)
            checkpoint = await self._library.update_checkpoint(
                user_id, lambda cp: _record_folder(cp, path, file_count)
            )
            self._ensure_active(checkpoint, epoch_start)

            await asyncio.sleep(self._ctx.config.folder_throttle_seconds)

        return visited

    async def index_folder(self, user_id: str, path: str, epoch_start: Optional[datetime] = None) -> CacheRecord:
        """
        List one folder and replace its cache record.

        With ``epoch_start`` the record is dropped, and the run cancelled, if
        that epoch stopped or was cleared while the listing was in flight.
        """
        items = await self._client.list_all_children(path)
        record = build_cache_record(items, path)
        if not await self._library.store_cache_record(user_id, path, record, epoch_start=epoch_start):
            raise ScanCancelled(f"scan state changed while listing {path or '/'}")
        return record

    @staticmethod
    def _ensure_active(checkpoint: Optional[ScanCheckpoint], epoch_start: Optional[datetime]):
        if checkpoint is None:
            raise ScanCancelled("scan state was cleared")
        if not checkpoint.is_scanning:
            raise ScanCancelled("scan was stopped")
        if epoch_start is not None and checkpoint.start_time != epoch_start:
            raise ScanCancelled("a newer scan epoch replaced this one")


# Checkpoint mutators, applied to the freshly read persisted value


def _set_work_list(cp: ScanCheckpoint, paths: list[str]):
    cp.total_top_level_folders = len(paths)
    cp.scanned_top_level_folders = 0
    cp.top_level_folder_paths = list(paths)
    cp.current_top_level_folder = paths[0] if paths else None


def _enter_top_level(cp: ScanCheckpoint, path: str):
    cp.current_top_level_folder = path
    cp.current_path = path


def _set_current_path(cp: ScanCheckpoint, path: str):
    cp.current_path = path


def _record_folder(cp: ScanCheckpoint, path: str, file_count: int):
    cp.current_path = path
    # A folder re-walked after a retry or resume is not counted twice
    if path not in cp.scanned_paths:
        cp.scanned_paths.append(path)
        cp.cumulative_file_count += file_count
        cp.cumulative_folder_count += 1


def _advance_cursor(cp: ScanCheckpoint, cursor: int):
    cp.scanned_top_level_folders = max(cp.scanned_top_level_folders, min(cursor, len(cp.top_level_folder_paths)))


def _record_error(cp: ScanCheckpoint, message: str):
    cp.error = message


def _complete(cp: ScanCheckpoint):
    cp.is_scanning = False
    cp.current_top_level_folder = None


def _fail(cp: ScanCheckpoint, message: str):
    cp.error = message
    cp.is_scanning = False
