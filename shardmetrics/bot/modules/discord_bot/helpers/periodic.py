from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from discord.ext import tasks

log = logging.getLogger(__name__)


class PeriodicReporter:
    """Runs one sink's report cycle on a fixed interval, at most one at a time.

    Each tick spawns the cycle as its own task and returns, so the timer keeps
    its rhythm. A tick that finds the previous cycle still in flight is dropped,
    not queued. A failing cycle is logged and the schedule carries on.
    ``interval_ms == 0`` means the loop is never started.
    """

    def __init__(
        self,
        name: str,
        cycle: Callable[[], Awaitable[object]],
        interval_ms: int,
        wait_ready: Optional[Callable[[], Awaitable[object]]] = None,
    ):
        self.name = name
        self.interval_ms = int(interval_ms or 0)
        self._cycle = cycle
        self._wait_ready = wait_ready
        self._inflight: Optional[asyncio.Task] = None
        self.completed = 0
        self.failed = 0
        self.dropped = 0

        self._loop: Optional[tasks.Loop] = None
        if self.interval_ms > 0:
            self._loop = tasks.loop(seconds=self.interval_ms / 1000.0)(self.tick)
            self._loop.before_loop(self._before)

    @property
    def enabled(self) -> bool:
        return self._loop is not None

    @property
    def running(self) -> bool:
        """True while a scheduled cycle is in flight (the ``Running`` state)."""
        return self._inflight is not None and not self._inflight.done()

    def is_scheduled(self) -> bool:
        return self._loop is not None and self._loop.is_running()

    def start(self) -> bool:
        if self._loop is None:
            log.debug("[metrics] %s: interval is 0, automatic reporting off", self.name)
            return False
        if not self._loop.is_running():
            self._loop.start()
            log.debug("[metrics] %s: reporting every %d ms", self.name, self.interval_ms)
        return True

    def stop(self) -> None:
        # the in-flight cycle, if any, is left to finish
        if self._loop is not None:
            self._loop.cancel()

    async def wait_idle(self) -> None:
        if self._inflight is not None:
            await asyncio.gather(self._inflight, return_exceptions=True)

    async def _before(self) -> None:
        if self._wait_ready is not None:
            await self._wait_ready()
        # first report one interval after start, not immediately
        await asyncio.sleep(self.interval_ms / 1000.0)

    async def tick(self) -> None:
        if self.running:
            self.dropped += 1
            log.debug("[metrics] %s: previous cycle still running, tick dropped", self.name)
            return
        self._inflight = asyncio.create_task(self._guarded(), name=f"metrics-{self.name}")

    async def _guarded(self) -> None:
        try:
            await self._cycle()
        except Exception as e:
            self.failed += 1
            log.error("[metrics] %s report failed: %s", self.name, e, exc_info=True)
        else:
            self.completed += 1
