"""
Periodic asyncio work with an explicit lifecycle.

A Ticker runs a callback every `interval` seconds until stopped. Owners start
their tickers when they start and must stop them on teardown so no work keeps
running against a discarded cache.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Optional, Union

logger = logging.getLogger("branch-sync.scheduler")

TickCallback = Callable[[], Union[None, Awaitable[None]]]


class Ticker:
    """Run `callback` every `interval` seconds on the running event loop."""

    def __init__(self, name: str, interval: float, callback: TickCallback, run_immediately: bool = False):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.callback = callback
        self.run_immediately = run_immediately
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning("Ticker %s already running", self.name)
            return
        self._task = asyncio.create_task(self._loop(), name=f"ticker:{self.name}")
        logger.debug("Ticker %s started (every %ss)", self.name, self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Ticker %s stopped after %d ticks", self.name, self.ticks)

    async def tick(self) -> None:
        """Run the callback once. Errors are logged, never raised."""
        self.ticks += 1
        try:
            result = self.callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Ticker %s failed: %s", self.name, exc)

    async def _loop(self) -> None:
        if self.run_immediately:
            await self.tick()
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()
