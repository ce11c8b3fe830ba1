"""
Self-rescheduling loop that drives one maintenance sweep.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from janitor.config.logging import bind_sweep_context, get_logger

logger = get_logger(__name__)


class TickLoop:
    """
    Run a unit of work, wait for it to finish, then wait ``interval`` seconds.

    The next run is only scheduled once the previous one has returned, so two
    runs of the same loop never overlap. The actual period is the duration of
    the work plus the interval.
    """

    def __init__(
        self,
        name: str,
        work: Callable[[], Awaitable[Any]],
        interval: float,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.name = name
        self.work = work
        self.interval = interval
        self.runs = 0
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the loop as a task owned by this object."""
        if self.running:
            raise RuntimeError(f"Tick loop {self.name} is already running")

        self._stop.clear()
        self._task = asyncio.create_task(self.run(), name=f"tick-loop-{self.name}")
        return self._task

    def stop(self) -> None:
        """Stop scheduling further runs; an in-flight run is allowed to finish."""
        self._stop.set()

    async def join(self) -> None:
        if self._task is not None:
            await self._task

    async def run(self) -> None:
        """Loop body. Returns once ``stop()`` has been called."""
        with bind_sweep_context(self.name):
            logger.info("tick_loop.started", loop=self.name, interval_s=self.interval)

            try:
                while not self._stop.is_set():
                    await self._run_once()

                    try:
                        await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                    except TimeoutError:
                        pass
            finally:
                logger.info("tick_loop.stopped", loop=self.name, runs=self.runs)

    async def _run_once(self) -> None:
        started = time.perf_counter()
        try:
            await self.work()
        except Exception:
            logger.exception("tick_loop.run_failed", loop=self.name, run=self.runs + 1)
        finally:
            self.runs += 1
            logger.debug(
                "tick_loop.run_finished",
                loop=self.name,
                run=self.runs,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
