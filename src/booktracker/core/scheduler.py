"""Background triggers for pushes and pulls."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine

import structlog

from .engine import ReconciliationEngine
from .errors import SyncError

log = structlog.get_logger()


class SyncScheduler:
    """Dispatches engine work without making the caller wait for it.

    Tasks are kept referenced until they finish so the event loop does not
    drop them; ``drain`` waits for whatever is still outstanding.
    """

    def __init__(self, engine: ReconciliationEngine) -> None:
        self.engine = engine
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("schedule_skipped", task=name, reason="no_event_loop")
            coro.close()
            return None
        task = loop.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def request_push(self) -> asyncio.Task | None:
        if not self.engine.store.pending.dirty:
            return None
        return self._spawn(self.engine.push(), "booktracker-push")

    async def _background_sync(self, manual: bool) -> None:
        try:
            await self.engine.sync(manual=manual)
        except SyncError as e:
            log.warning("background_sync_failed", error=str(e), kind=type(e).__name__)

    def request_pull(self, manual: bool = False) -> asyncio.Task | None:
        return self._spawn(self._background_sync(manual), "booktracker-sync")

    def on_focus(self) -> bool:
        """Pull again if the last successful pull is older than the staleness threshold."""
        if not self.engine.is_stale():
            return False
        return self.request_pull() is not None

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
