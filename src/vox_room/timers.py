"""Cancellable scheduled callbacks on the running asyncio loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Handle for a one-shot or repeating callback.

    ``cancel()`` may be called any number of times, including after the
    callback already fired.
    """

    def __init__(self, name: str, repeating: bool = False):
        self.name = name
        self.repeating = repeating
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False
        self._fired = False

    @property
    def active(self) -> bool:
        return not self._cancelled and not (self._fired and not self.repeating)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def __repr__(self) -> str:
        return f"ScheduledTask(name={self.name!r}, active={self.active})"


class Scheduler:
    """Creates timers and background tasks bound to one event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any, name: str = "timer") -> ScheduledTask:
        task = ScheduledTask(name)

        def _fire() -> None:
            if task._cancelled:
                return
            task._fired = True
            task._handle = None
            callback(*args)

        task._handle = self.loop.call_later(delay, _fire)
        return task

    def call_every(self, interval: float, callback: Callable[[], Any], *, name: str = "interval") -> ScheduledTask:
        task = ScheduledTask(name, repeating=True)
        loop = self.loop

        def _fire() -> None:
            if task._cancelled:
                return
            task._fired = True
            # Re-arm before running so the callback may cancel its own task.
            task._handle = loop.call_later(interval, _fire)
            callback()

        task._handle = loop.call_later(interval, _fire)
        return task

    def spawn(self, coro: Awaitable[Any], *, name: Optional[str] = None) -> asyncio.Task:
        """Run a coroutine in the background and keep a reference until it finishes."""

        task = asyncio.ensure_future(coro, loop=self.loop)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> Set[asyncio.Task]:
        return {task for task in self._tasks if not task.done()}

    async def drain(self) -> None:
        """Wait until every spawned task (including ones spawned meanwhile) finished."""

        while self.pending:
            await asyncio.gather(*self.pending, return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.debug("Scheduler shut down")
