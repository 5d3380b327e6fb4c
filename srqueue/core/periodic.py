"""
PeriodicTask — one self-rescheduling background task per timer.

A tick runs, then the task waits `interval` before the next one. The wait
starts only after the tick has returned, so a slow tick delays the
schedule instead of overlapping with the next one.

stop() never interrupts a tick that is already running: it sets the stop
event, which ends the wait early, and then awaits the task. Once stop()
returns no further tick will start.

Error policy: an exception escaping a tick is logged and the schedule
continues.
"""
from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Awaitable, Callable
from datetime import timedelta

import structlog

logger = structlog.get_logger(__name__)


@dataclasses.dataclass
class PeriodicTask:
    """
    Parameters
    ----------
    name     : task name, used for the asyncio task and in log events
    interval : pause between the end of one tick and the start of the next
    tick     : coroutine function doing one unit of periodic work
    """

    name: str
    interval: timedelta
    tick: Callable[[], Awaitable[object]]

    _task: asyncio.Task[None] | None = dataclasses.field(
        default=None, init=False, repr=False
    )
    _stop: asyncio.Event = dataclasses.field(
        default_factory=asyncio.Event, init=False, repr=False
    )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the first tick one interval from now."""
        if self._task is not None:
            raise RuntimeError(f"PeriodicTask {self.name!r} is already running")
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name=f"srqueue-{self.name}")

    async def stop(self) -> None:
        """Stop rescheduling and wait for an in-flight tick to finish."""
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(
                    self._stop.wait(), timeout=self.interval.total_seconds()
                )
                return
            except TimeoutError:
                pass
            try:
                await self.tick()
            except Exception:
                logger.exception("periodic_tick_failed", task=self.name)
