"""Scan coordinator — decides whether a scan starts fresh, resumes, or is refused.

The scan lock is advisory: a TTL-bounded ``set_if_absent`` marker. It keeps
two triggers from starting parallel crawls in the normal case, and a crashed
worker's lock simply expires. It is not a consensus protocol; a double start
under a heavy race is tolerated.
"""

import asyncio
import logging
import os
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from music_indexer.context import IndexerContext
from music_indexer.records import CacheRecord, ScanCheckpoint, UserSettings
from music_indexer.services.crawler import CrawlEngine, CrawlPhase

logger = logging.getLogger(__name__)


class StartStatus(str, Enum):
    STARTED = "started"
    RESUMED = "resumed"
    ALREADY_RUNNING = "already_running"
    LOCKED = "locked"
    NOTHING_TO_RESUME = "nothing_to_resume"


class ScanPhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    STALLED = "stalled"
    PARTIAL = "partial"
    COMPLETED = "completed"


@dataclass
class ScanStartResult:
    status: StartStatus
    message: str
    checkpoint: Optional[ScanCheckpoint] = None

    @property
    def started(self) -> bool:
        return self.status in (StartStatus.STARTED, StartStatus.RESUMED)


@dataclass
class BrowseResult:
    record: CacheRecord
    cached: bool
    scan: Optional[ScanStartResult] = None


@dataclass
class ScanStatus:
    phase: ScanPhase
    checkpoint: Optional[ScanCheckpoint]
    can_resume: bool
    locked: bool
    engine_phase: CrawlPhase


def default_lock_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class ScanCoordinator:
    """Foreground scan operations. Crawls run as detached tasks, one per user."""

    def __init__(self, context: IndexerContext, engine: Optional[CrawlEngine] = None, holder: Optional[str] = None):
        self._ctx = context
        self._library = context.library
        self._engine = engine or CrawlEngine(context)
        self._holder = holder or default_lock_holder()
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def engine(self) -> CrawlEngine:
        return self._engine

    def is_running_here(self, user_id: str) -> bool:
        task = self._tasks.get(user_id)
        return task is not None and not task.done()

    async def start_background(self, user_id: str, force_restart: bool = False) -> ScanStartResult:
        """Start or resume a scan without waiting for it."""
        existing = await self._library.get_checkpoint(user_id)
        if self.is_running_here(user_id) or (existing is not None and existing.is_scanning):
            return ScanStartResult(StartStatus.ALREADY_RUNNING, "Scan already in progress", existing)

        if not await self._acquire_lock(user_id):
            return ScanStartResult(
                StartStatus.LOCKED, "Scan lock present; another scan is starting/running"
            )

        # Until a task owns the lock, any failure must hand it back
        try:
            if existing is not None and not force_restart and existing.has_partial_progress:
                checkpoint = await self._library.update_checkpoint(user_id, _mark_scanning)
                if checkpoint is not None:
                    logger.info(
                        f"Resuming scan for {user_id} at {checkpoint.scanned_top_level_folders}"
                        f"/{checkpoint.total_top_level_folders}"
                    )
                    self._spawn(user_id, self._engine.run_epoch(user_id, epoch_start=checkpoint.start_time))
                    return ScanStartResult(StartStatus.RESUMED, "Resuming previous scan", checkpoint)

            user_settings = await self._library.get_settings(user_id, self._ctx.config.default_root_path)
            self._spawn(user_id, self._engine.run_new_epoch(user_id, user_settings.music_root_path))
        except BaseException:
            await self._library.release_lock(user_id)
            raise
        return ScanStartResult(StartStatus.STARTED, "Background scan started")

    async def resume(self, user_id: str) -> ScanStartResult:
        """Continue an epoch still marked as scanning, e.g. after a restart left it stalled."""
        checkpoint = await self._library.get_checkpoint(user_id)
        if checkpoint is None or not checkpoint.is_scanning:
            return ScanStartResult(StartStatus.NOTHING_TO_RESUME, "No active scan to resume", checkpoint)

        if self.is_running_here(user_id):
            return ScanStartResult(StartStatus.ALREADY_RUNNING, "Scan already running in this process", checkpoint)

        if not await self._acquire_lock(user_id):
            return ScanStartResult(
                StartStatus.LOCKED, "Scan lock present; another scan is starting/running", checkpoint
            )

        try:
            self._spawn(user_id, self._engine.run_epoch(user_id, epoch_start=checkpoint.start_time))
        except BaseException:
            await self._library.release_lock(user_id)
            raise
        return ScanStartResult(StartStatus.RESUMED, "Scan resumed", checkpoint)

    async def browse(self, user_id: str, path: str, start_scan: bool = True) -> BrowseResult:
        """
        One folder's listing, from the cache when the crawl already stored it.

        A folder the crawl has not reached yet is listed live and cached, and
        (with ``start_scan``) a background scan is kicked so the rest follows.
        """
        cached = await self._library.get_cached(user_id, path)
        if cached is not None:
            return BrowseResult(record=cached, cached=True)

        scan = await self.start_background(user_id) if start_scan else None
        logger.info(f"Listing {path or '/'} live for {user_id}")
        record = await self._engine.index_folder(user_id, path)
        return BrowseResult(record=record, cached=False, scan=scan)

    async def stop(self, user_id: str) -> Optional[ScanCheckpoint]:
        """Ask a running scan to stop. The crawl notices before its next folder."""
        return await self._library.update_checkpoint(user_id, _mark_stopped)

    async def clear(self, user_id: str):
        """Forget scan progress and the lock (the music cache is kept)."""
        await self._library.clear_scan_state(user_id)
        logger.info(f"Cleared scan state for {user_id}")

    async def set_root_path(self, user_id: str, root_path: str) -> tuple[UserSettings, bool]:
        """Save a new music root. A changed root wipes cache and scan state. Returns (settings, cleared)."""
        root_path = root_path.strip()
        if ".." in root_path:
            raise ValueError("Invalid path format")

        current = await self._library.get_settings(user_id, self._ctx.config.default_root_path)
        changed = current.music_root_path != root_path
        updated = await self._library.update_settings(
            user_id, self._ctx.config.default_root_path, music_root_path=root_path
        )
        if changed:
            await self._library.clear_user_cache(user_id)
            logger.info(f"Music root for {user_id} changed to {root_path or '/'}; cache cleared")
        return updated, changed

    async def status(self, user_id: str) -> ScanStatus:
        checkpoint = await self._library.get_checkpoint(user_id)
        locked = await self._library.has_lock(user_id)
        threshold = self._ctx.config.stall_threshold_seconds

        if checkpoint is None:
            phase = ScanPhase.IDLE
        elif checkpoint.is_stalled(threshold):
            phase = ScanPhase.STALLED
        elif checkpoint.is_scanning:
            phase = ScanPhase.SCANNING
        elif checkpoint.has_partial_progress:
            phase = ScanPhase.PARTIAL
        else:
            phase = ScanPhase.COMPLETED

        can_resume = checkpoint is not None and checkpoint.has_partial_progress and (
            not checkpoint.is_scanning or phase == ScanPhase.STALLED
        )
        return ScanStatus(
            phase=phase,
            checkpoint=checkpoint,
            can_resume=can_resume,
            locked=locked,
            engine_phase=self._engine.phase(user_id),
        )

    async def wait(self, user_id: str):
        """Wait for this process's crawl task for ``user_id``, if any."""
        task = self._tasks.get(user_id)
        if task is not None:
            await asyncio.shield(task)

    async def shutdown(self):
        """Cancel crawl tasks owned by this process."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

    async def _acquire_lock(self, user_id: str) -> bool:
        return await self._library.acquire_lock(user_id, self._holder, self._ctx.config.scan_lock_ttl_seconds)

    def _spawn(self, user_id: str, crawl):
        async def run():
            try:
                await crawl
            finally:
                await self._library.release_lock(user_id)

        task = asyncio.create_task(run(), name=f"scan:{user_id}")
        self._tasks[user_id] = task
        task.add_done_callback(lambda t: self._forget(user_id, t))

    def _forget(self, user_id: str, task: asyncio.Task):
        if self._tasks.get(user_id) is task:
            del self._tasks[user_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Scan task for {user_id} crashed: {task.exception()}")


def _mark_scanning(cp: ScanCheckpoint):
    cp.is_scanning = True


def _mark_stopped(cp: ScanCheckpoint):
    cp.is_scanning = False
