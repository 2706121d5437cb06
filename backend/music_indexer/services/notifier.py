"""Progress notifier — pushes scan state to a subscriber as server-sent-event frames.

Only persisted state is read; the remote drive is never touched. A data frame
goes out when the checkpoint's ``lastUpdate`` changes, and a comment frame
keeps idle connections alive through proxies.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Protocol

from music_indexer.services.library_store import LibraryStore

logger = logging.getLogger(__name__)

STREAM_STARTED = ": stream-started\n\n"
KEEP_ALIVE = ": keep-alive\n\n"


def data_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def comment_frame(text: str) -> str:
    return f": {text}\n\n"


class Subscriber(Protocol):
    async def send(self, frame: str) -> None:
        """Deliver one frame. Raises once the peer has gone away."""


class _QueueSubscriber:
    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    async def send(self, frame: str) -> None:
        await self._queue.put(frame)


class ProgressNotifier:
    def __init__(
        self,
        library: LibraryStore,
        poll_interval: float = 1.0,
        keepalive_interval: float = 25.0,
    ):
        self._library = library
        self._poll_interval = poll_interval
        self._keepalive_interval = keepalive_interval
        self._active = 0

    @property
    def active_subscriptions(self) -> int:
        return self._active

    async def serve(self, user_id: str, subscriber: Subscriber, until_idle: bool = False):
        """
        Push frames to ``subscriber`` until it fails to accept one or this call is cancelled.

        With ``until_idle`` the stream also ends after delivering a state that
        is no longer scanning. The poll and keep-alive timers are torn down on
        every exit path.
        """
        closed = asyncio.Event()
        last_version: Optional[datetime] = None

        async def push(frame: str) -> bool:
            if closed.is_set():
                return False
            try:
                await subscriber.send(frame)
                return True
            except Exception as e:
                logger.debug(f"[SSE] {user_id}: subscriber gone ({e})")
                closed.set()
                return False

        async def poll_once():
            nonlocal last_version
            try:
                checkpoint = await self._library.get_checkpoint(user_id)
            except Exception as e:
                logger.error(f"[SSE] {user_id}: error reading scan state: {e}")
                await push(data_frame({"error": "failed_to_read_scan_state"}))
                return

            if checkpoint is None or checkpoint.last_update == last_version:
                return
            last_version = checkpoint.last_update
            if await push(data_frame({"scanState": checkpoint.model_dump(mode="json", by_alias=True)})):
                if until_idle and not checkpoint.is_scanning:
                    closed.set()

        async def poll_loop():
            while not closed.is_set():
                await asyncio.sleep(self._poll_interval)
                await poll_once()

        async def keepalive_loop():
            while not closed.is_set():
                await asyncio.sleep(self._keepalive_interval)
                await push(KEEP_ALIVE)

        self._active += 1
        logger.debug(f"[SSE] {user_id}: stream opened")
        timers: list[asyncio.Task] = []
        try:
            if not await push(STREAM_STARTED):
                return
            await poll_once()
            timers = [
                asyncio.create_task(poll_loop()),
                asyncio.create_task(keepalive_loop()),
            ]
            await closed.wait()
        finally:
            closed.set()
            for timer in timers:
                timer.cancel()
            for timer in timers:
                try:
                    await timer
                except asyncio.CancelledError:
                    pass
            self._active -= 1
            logger.debug(f"[SSE] {user_id}: stream closed")

    async def stream(self, user_id: str, until_idle: bool = False) -> AsyncIterator[str]:
        """Async iterator of frames, for callers that pull rather than push."""
        queue: asyncio.Queue = asyncio.Queue()
        server = asyncio.create_task(self.serve(user_id, _QueueSubscriber(queue), until_idle=until_idle))
        server.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                frame = await queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            server.cancel()
            try:
                await server
            except asyncio.CancelledError:
                pass
