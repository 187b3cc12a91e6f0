"""
Repeating Background Task
=========================

Runs a coroutine job forever: run, sleep, run again. The next run is
armed only after the previous one finishes, so one job never overlaps
itself; a slow run simply pushes the next one back.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTask:
    """
    A named background loop.

    stop() cancels the task only while it is sleeping; a run already in
    progress finishes first.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[object]],
        interval_seconds: float,
        run_immediately: bool = True,
    ):
        self.name = name
        self.job = job
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._in_flight = False
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> bool:
        """Start the loop. Returns False if it was already running."""
        if self._running:
            logger.debug(f"{self.name} already running")
            return False
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(f"{self.name} started (every {self.interval_seconds}s)")
        return True

    async def stop(self) -> None:
        """Stop the loop. Safe to call when not running."""
        if not self._running:
            return
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        if not self._in_flight:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"{self.name} stopped")

    async def _loop(self) -> None:
        if not self.run_immediately:
            await asyncio.sleep(self.interval_seconds)

        while self._running:
            self._in_flight = True
            try:
                await self.job()
            except Exception as e:
                logger.error(f"{self.name} run failed: {e}", exc_info=True)
            finally:
                self._in_flight = False
                self.runs += 1

            if not self._running:
                break
            await asyncio.sleep(self.interval_seconds)
