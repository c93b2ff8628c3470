"""
CASINOCORE — Tick Schedulers

The engine never creates threads or timers of its own; it hands a callback
to whatever scheduler the host provides.

    ManualScheduler   ticks only when `advance(n)` is called (tests, batch)
    AsyncioScheduler  fixed-rate repeating callback on an asyncio loop
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol

logger = logging.getLogger("casinocore.scheduler")

TickCallback = Callable[[], None]


class ScheduleHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def schedule_repeating(self, interval: float, callback: TickCallback) -> ScheduleHandle:
        ...


class _ManualHandle:
    def __init__(self, owner: "ManualScheduler", callback: TickCallback):
        self._owner = owner
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self._owner._remove(self)


class ManualScheduler:
    """Deterministic scheduler: every `advance()` fires each callback once."""

    def __init__(self):
        self._handles: list[_ManualHandle] = []
        self.elapsed = 0.0
        self.ticks = 0
        self.interval: Optional[float] = None

    def schedule_repeating(self, interval: float, callback: TickCallback) -> _ManualHandle:
        handle = _ManualHandle(self, callback)
        self._handles.append(handle)
        self.interval = interval
        return handle

    def _remove(self, handle: _ManualHandle) -> None:
        if handle in self._handles:
            self._handles.remove(handle)

    @property
    def active(self) -> bool:
        return bool(self._handles)

    def advance(self, ticks: int = 1) -> int:
        for _ in range(ticks):
            for handle in list(self._handles):
                if not handle.cancelled:
                    handle.callback()
            self.ticks += 1
            self.elapsed += self.interval or 0.0
        return self.ticks


class _AsyncioHandle:
    def __init__(self, task: "asyncio.Task"):
        self._task = task

    def cancel(self) -> None:
        self._task.cancel()


class AsyncioScheduler:
    """Repeating callback on a running asyncio loop, drift-corrected."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def schedule_repeating(self, interval: float, callback: TickCallback) -> _AsyncioHandle:
        loop = self._loop or asyncio.get_running_loop()
        return _AsyncioHandle(loop.create_task(self._run(loop, interval, callback)))

    @staticmethod
    async def _run(loop: asyncio.AbstractEventLoop, interval: float, callback: TickCallback):
        next_at = loop.time()
        while True:
            try:
                callback()
            except Exception as e:
                logger.error(f"Tick callback failed: {e}", exc_info=True)
                raise
            next_at += interval
            await asyncio.sleep(max(0.0, next_at - loop.time()))
