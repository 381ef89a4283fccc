"""
symbolica.sync.tasks — Cancellable Heartbeats
==============================================

Periodic liveness signals (e.g. quest presence) tied to a scope's
lifetime: started on mount, cancelled on teardown so nothing writes after
its owner is gone.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class Heartbeat:
    """Run ``await beat()`` every *interval* seconds until stopped.

    A failing beat is logged and the schedule continues.
    """

    def __init__(
        self,
        beat: Callable[[], Awaitable[object]],
        interval: float,
        *,
        name: str = "heartbeat",
        immediate: bool = True,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Heartbeat interval must be > 0 (got {interval})")
        self._beat = beat
        self.interval = interval
        self.name = name
        self._immediate = immediate
        self._task: asyncio.Task | None = None
        self.beats = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Start the background task (no-op if already running)."""
        if self._task is not None:
            return

        async def _loop() -> None:
            if self._immediate:
                await self._beat_once()
            while True:
                await asyncio.sleep(self.interval)
                await self._beat_once()

        loop = loop or asyncio.get_running_loop()
        self._task = loop.create_task(_loop(), name=self.name)

    async def stop(self) -> None:
        """Cancel the task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _beat_once(self) -> None:
        try:
            await self._beat()
            self.beats += 1
        except Exception:
            self.failures += 1
            logger.exception("Heartbeat %s failed", self.name)
