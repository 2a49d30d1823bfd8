"""
CORE App - Supervised periodic tasks

Replaces ad hoc interval timers with an explicit resource:
start() schedules the loop on the running event loop, stop() cancels it
and waits until it has really finished. A failing iteration is logged and
the loop carries on at the next tick.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Run an async callback every `interval` seconds until stopped.

    Usage:
        task = PeriodicTask('matching-poll', 5.0, engine.poll_once)
        task.start()
        ...
        await task.stop()

    or as an async context manager for a scoped lifetime:
        async with PeriodicTask('countdown', 1.0, controller.tick):
            ...
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[object]],
        run_immediately: bool = False,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.callback = callback
        self.run_immediately = run_immediately
        self.iterations = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop. Starting a running task is a no-op."""
        if self.running:
            return
        self._task = asyncio.ensure_future(self._run())
        logger.debug(f"[PERIODIC] {self.name} started (every {self.interval}s)")

    def cancel(self) -> None:
        """
        Request cancellation without waiting.

        Safe to call from inside the callback itself: the loop ends at its
        next suspension point.
        """
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def stop(self) -> None:
        """Cancel the loop and wait until it has exited."""
        task = self._task
        if task is None:
            return
        if task is asyncio.current_task():
            # Stopping from inside the callback: cannot await ourselves
            task.cancel()
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug(f"[PERIODIC] {self.name} stopped after {self.iterations} iterations")

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
        return False

    async def _run(self) -> None:
        if not self.run_immediately:
            await asyncio.sleep(self.interval)
        while True:
            self.iterations += 1
            try:
                await self.callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"[PERIODIC] {self.name} iteration {self.iterations} failed")
            await asyncio.sleep(self.interval)
