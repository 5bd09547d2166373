from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Set


logger = logging.getLogger(__name__)

RebuildCallback = Callable[[str], Awaitable[object]]


class RebuildScheduler:
    """Debounces change events into one rebuild per folder.

    Each folder has at most one pending timer. A new event replaces a timer that
    has not fired yet; a rebuild that already started always runs to completion.
    """

    def __init__(self, rebuild: RebuildCallback, delay_s: float = 0.5):
        self._rebuild = rebuild
        self.delay_s = delay_s
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._running: Set[asyncio.Task] = set()

    def notify_change(self, folder_id: str) -> None:
        loop = asyncio.get_running_loop()
        pending = self._timers.pop(folder_id, None)
        if pending is not None:
            pending.cancel()
        self._timers[folder_id] = loop.call_later(self.delay_s, self._fire, folder_id)

    def is_pending(self, folder_id: str) -> bool:
        return folder_id in self._timers

    def cancel(self, folder_id: str) -> None:
        pending = self._timers.pop(folder_id, None)
        if pending is not None:
            pending.cancel()

    def _fire(self, folder_id: str) -> None:
        self._timers.pop(folder_id, None)
        task = asyncio.create_task(self._rebuild(folder_id))
        self._running.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled rebuild failed: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for rebuilds that have already started."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    def close(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
