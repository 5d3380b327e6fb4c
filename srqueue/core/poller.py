"""
Poller — discovers ready entries and hands them to the dispatch function.

One discovery pass is a single query: state READY and start date reached.
Every hit is passed to `dispatch(entry, queue)` as its own asyncio task and
never awaited here; execution time therefore cannot delay the next pass.
Whether an entry is actually taken (responsibility, claim) is decided by
the dispatch function, not by the Poller.

Dispatch tasks are kept in `_in_flight` until they finish; their failures
are logged. drain() waits for all of them, which stop() does before it
counts RUNNING entries: a claim write that is still in flight must land
before the store is closed.
"""
from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from srqueue.domain.models import EntryConditions, EntryState, QueueEntry

if TYPE_CHECKING:
    from srqueue.core.queue import ServiceRequestQueue

logger = structlog.get_logger(__name__)

DispatchFn = Callable[[QueueEntry, "ServiceRequestQueue"], Awaitable[None]]

READY_CONDITIONS = EntryConditions(states=(EntryState.READY,), start_date_reached=True)


@dataclasses.dataclass(eq=False)
class Poller:
    queue: ServiceRequestQueue

    _in_flight: set[asyncio.Task[None]] = dataclasses.field(
        default_factory=set, init=False, repr=False
    )

    @property
    def in_flight(self) -> int:
        """Dispatch tasks started by this poller that have not finished yet."""
        return len(self._in_flight)

    async def poll(self) -> int:
        """Run one discovery pass. Returns the number of entries dispatched."""
        if self.queue.is_shutdown_initiated:
            return 0
        ready = await self.queue.get_entries(READY_CONDITIONS)
        dispatch = self.queue.dispatch
        if dispatch is None:
            if ready:
                logger.warning("poll_without_dispatch", ready=len(ready))
            return 0
        for entry in ready:
            task = asyncio.create_task(
                dispatch(entry, self.queue), name=f"srqueue-dispatch-{entry.id}"
            )
            self._in_flight.add(task)
            task.add_done_callback(self._dispatch_done)
        if ready:
            logger.debug("poll_dispatched", count=len(ready))
        return len(ready)

    async def drain(self) -> None:
        """Wait until every dispatch task started by this poller has finished."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def _dispatch_done(self, task: asyncio.Task[None]) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "dispatch_failed",
                task=task.get_name(),
                error=repr(exc),
                exc_info=exc,
            )
