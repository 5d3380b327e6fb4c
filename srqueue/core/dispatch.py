"""
ServiceDispatcher — runs claimed entries and reports their outcome.

The queue only discovers and claims work; executing a request belongs to
the host. ServiceDispatcher is a ready-made host side:

  - it keeps a registry of async handlers, one per service name
  - it arbitrates between the queues registered with it: an instance that
    answers FALLBACK only takes an entry no other registered queue answers
    YES for
  - it claims (try_take), applies on_before_start, builds the execution
    context, runs the handler and writes the terminal state back through
    update_entry, which also schedules recurring entries

Usage
-----
    async def build_report(request, context):
        return {"rows": 42}

    dispatcher = ServiceDispatcher()
    dispatcher.register("reports/build", build_report)
    await dispatcher.add_queue(ServiceRequestQueue(settings))
    ...
    await dispatcher.shutdown()
"""
from __future__ import annotations

import dataclasses
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from srqueue.core.queue import ServiceRequestQueue
from srqueue.domain.models import (
    EntryState,
    ExecutionContext,
    QueueEntry,
    Responsibility,
)

logger = structlog.get_logger(__name__)

Handler = Callable[[Any, ExecutionContext], Awaitable[Any]]


class UnknownServiceError(LookupError):
    def __init__(self, service_name: str) -> None:
        self.service_name = service_name
        super().__init__(f"No handler registered for service {service_name!r}")


@dataclasses.dataclass(eq=False)
class ServiceDispatcher:
    handlers: dict[str, Handler] = dataclasses.field(default_factory=dict)
    queues: list[ServiceRequestQueue] = dataclasses.field(default_factory=list)

    def register(self, service_name: str, handler: Handler) -> None:
        self.handlers[service_name] = handler

    # ------------------------------------------------------------------ #
    # Queue registry                                                       #
    # ------------------------------------------------------------------ #

    async def add_queue(self, queue: ServiceRequestQueue) -> ServiceRequestQueue:
        """Route the queue's ready entries through this dispatcher and start it."""
        if queue.dispatch is None:
            queue.dispatch = self.on_ready_entry
        self.queues.append(queue)
        await queue.init()
        return queue

    async def remove_queue(
        self, predicate: Callable[[ServiceRequestQueue], bool]
    ) -> list[ServiceRequestQueue]:
        """Stop and unregister every queue matching predicate."""
        removed = [q for q in self.queues if predicate(q)]
        self.queues = [q for q in self.queues if not any(q is r for r in removed)]
        for queue in removed:
            await queue.stop()
        return removed

    async def shutdown(self) -> None:
        """Stop all registered queues; returns once none of them has running work."""
        await self.remove_queue(lambda queue: True)

    # ------------------------------------------------------------------ #
    # Dispatch                                                             #
    # ------------------------------------------------------------------ #

    async def on_ready_entry(self, entry: QueueEntry, queue: ServiceRequestQueue) -> None:
        """Dispatch function for ServiceRequestQueue(dispatch=...)."""
        if not await self._should_take(entry, queue):
            return
        claimed = await queue.try_take(entry)
        if claimed is None:
            return

        with structlog.contextvars.bound_contextvars(
            entry_id=claimed.id, service_name=claimed.service_name
        ):
            finished = await self._execute(claimed, queue)
            await queue.update_entry(finished)

    async def _should_take(self, entry: QueueEntry, queue: ServiceRequestQueue) -> bool:
        answer = await queue.is_responsible(entry)
        if answer == Responsibility.YES:
            return True
        if answer == Responsibility.FALLBACK:
            for other in self.queues:
                if other is queue or other.is_shutdown_initiated:
                    continue
                if await other.is_responsible(entry) == Responsibility.YES:
                    return False
            return True
        return False

    async def _execute(self, claimed: QueueEntry, queue: ServiceRequestQueue) -> QueueEntry:
        """Prepare and run a claimed entry; any failure after the claim ends as FAILED."""
        entry = claimed
        try:
            prepared = await queue.on_before_start(claimed)
            if prepared is not claimed:
                await queue.update_entry(prepared)
                entry = prepared
            handler = self.handlers.get(entry.service_name)
            if handler is None:
                raise UnknownServiceError(entry.service_name)
            context = await queue.get_execution_context(entry)
            response = await handler(entry.request, context)
        except Exception as exc:
            logger.warning("entry_execution_failed", error=str(exc), exc_info=True)
            return entry.finished(EntryState.FAILED, f"Error: {exc}")
        return entry.finished(EntryState.DONE, response)
