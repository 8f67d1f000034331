"""
Timer Scheduler
===============
One-shot delayed callbacks on the running asyncio loop. The returned handle is
stored on the session record and cancelled explicitly.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle:
    """Handle to a scheduled callback."""

    def __init__(self, name: str, task: Optional[asyncio.Task] = None):
        self.name = name
        self._task = task
        self._cancelled = False
        self._fired = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    def cancel(self):
        """Cancel the callback if it hasn't started yet. Safe to call twice."""
        if self._cancelled or self._fired:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _mark_fired(self):
        self._fired = True


class AsyncioScheduler:
    """Schedules coroutine callbacks with asyncio tasks."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: TimerCallback, name: str = 'timer') -> TimerHandle:
        handle = TimerHandle(name)
        task = asyncio.get_running_loop().create_task(self._run_later(delay, callback, handle), name=name)
        handle._task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return handle

    async def _run_later(self, delay: float, callback: TimerCallback, handle: TimerHandle):
        await asyncio.sleep(delay)
        if handle.cancelled:
            return

        # From here on the callback owns the task; cancel() no longer interrupts it
        handle._mark_fired()
        try:
            await callback()
        except Exception:
            logger.exception(f"❌ Timer {handle.name} failed")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def shutdown(self):
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
