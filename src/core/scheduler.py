"""Periodic driver for the feed processor."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from core.processor import FeedProcessor

LOGGER = logging.getLogger(__name__)


class CycleScheduler:
    """Runs one processor cycle per interval, never two at once.

    A tick that fires while the previous cycle is still in flight is skipped.
    Errors escaping a cycle are logged so the timer keeps ticking.
    """

    def __init__(self, processor: FeedProcessor, interval_seconds: float) -> None:
        self._processor = processor
        self._interval = interval_seconds
        self._stopped = asyncio.Event()
        self._current: Optional[asyncio.Task] = None
        self.ticks_skipped = 0

    @property
    def busy(self) -> bool:
        return self._processor.is_running or (self._current is not None and not self._current.done())

    async def _safe_cycle(self) -> None:
        try:
            await self._processor.run_guarded()
        except asyncio.CancelledError:
            LOGGER.info("Cycle cancelled")
            raise
        except Exception:
            LOGGER.exception("Cycle failed")

    def tick(self) -> Optional[asyncio.Task]:
        """Start a cycle in the background; returns None when the tick is skipped."""

        if self.busy:
            self.ticks_skipped += 1
            LOGGER.info("Previous cycle still running, skipping this tick")
            return None
        self._current = asyncio.ensure_future(self._safe_cycle())
        return self._current

    async def run_forever(self) -> None:
        LOGGER.info("Scheduler started, interval %.0fs", self._interval)
        while not self._stopped.is_set():
            self.tick()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue
        LOGGER.info("Scheduler stopped")

    async def stop(self) -> None:
        """Stop ticking and abandon any cycle still in flight."""

        self._stopped.set()
        task = self._current
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
