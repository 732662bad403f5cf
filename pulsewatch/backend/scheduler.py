"""
backend/scheduler.py

PeriodicTask — runs a callable every ``interval`` seconds on the event loop.

The callable may be a plain function or a coroutine function. An exception
raised by one tick is logged and counted; the next tick still runs. stop()
cancels the loop and waits for it, so shutdown never leaves a tick behind.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from .metrics import Counter

logger = logging.getLogger(__name__)

TickFunc = Callable[[], Any] | Callable[[], Awaitable[Any]]


class PeriodicTask:

    def __init__(
        self,
        name: str,
        interval: float,
        func: TickFunc,
        run_immediately: bool = False,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be > 0 — got {interval}")
        self.name = name
        self.interval = interval
        self._func = func
        self._run_immediately = run_immediately
        self._task: asyncio.Task | None = None
        self.ticks = Counter()
        self.failures = Counter()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"periodic-{self.name}")
        logger.info("Periodic task %r started (every %.1fs)", self.name, self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(
            "Periodic task %r stopped — ticks=%d failures=%d",
            self.name, self.ticks.value, self.failures.value,
        )

    async def run_once(self) -> bool:
        """Run one tick now. Returns False when the tick raised."""
        try:
            result = self._func()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failures.inc()
            logger.exception("Periodic task %r tick failed: %s", self.name, exc)
            return False
        finally:
            self.ticks.inc()
        return True

    async def _run(self) -> None:
        if self._run_immediately:
            await self.run_once()
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()
