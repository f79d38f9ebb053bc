"""Coalescing scheduler for deferred work.

Each `schedule()` call replaces the pending timer, so a burst of calls results
in one run of the action, `delay` seconds after the last call.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any] | Any]


class Debouncer:
    """Runs an action once after a quiet period."""

    def __init__(self, delay: float, action: Action):
        self._delay = delay
        self._action = action
        self._task: asyncio.Task | None = None
        self._running: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def running(self) -> bool:
        """Whether a timer has fired and its action has not finished yet."""
        return self._running is not None and not self._running.done()

    def schedule(self) -> None:
        """Restart the timer. Only the most recent timer runs the action."""
        self._drop_timer()
        self._task = asyncio.get_running_loop().create_task(self._run_later())

    async def _run_later(self) -> None:
        await asyncio.sleep(self._delay)
        self._task = None
        self._running = asyncio.current_task()
        try:
            await self._run()
        finally:
            self._running = None

    async def _run(self) -> None:
        try:
            result = self._action()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Debounced action failed")

    async def _wait_running(self) -> None:
        running = self._running
        if running is not None and running is not asyncio.current_task():
            await asyncio.wait([running])

    def _drop_timer(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        """Run a pending action now, after any run already in progress."""
        await self._wait_running()
        if not self.pending:
            return
        self._drop_timer()
        await self._run()

    async def cancel(self) -> None:
        """Drop the pending action and wait for a run already in progress."""
        self._drop_timer()
        await self._wait_running()
