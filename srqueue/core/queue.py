"""
ServiceRequestQueue — a durable, polling queue instance.

ServiceRequestQueue is an async context manager: __aenter__ runs init()
(connect, one discovery pass, one cleanup pass, start both timers) and
__aexit__ runs stop() (stop timers, let started dispatches finish, wait
until no entry is RUNNING, close the store).

Usage
-----
    from srqueue import QueueEntry, ServiceDispatcher, ServiceRequestQueue

    dispatcher = ServiceDispatcher()
    dispatcher.register("reports/build", build_report)

    async with ServiceRequestQueue(dispatch=dispatcher.on_ready_entry) as q:
        await q.enqueue(QueueEntry.new("reports/build", {"month": "2024-01"}))
        ...

Any number of instances, in one process or many, may share one backing
store. They compete for ready entries through try_take(), which is the
store's atomic ready → running update; at most one caller wins per entry.
Losing is reported as None, never as an exception.

The instance holds no entry state of its own. Every read goes to the store.
"""
from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime, timedelta
from types import TracebackType
from typing import Any

import structlog

from srqueue.adapters.storage.resolve import collection_key, storage_from_url
from srqueue.config import QueueSettings, get_settings
from srqueue.core.cleanup import Cleanup
from srqueue.core.periodic import PeriodicTask
from srqueue.core.poller import DispatchFn, Poller
from srqueue.core.recurrence import schedule_successor
from srqueue.core.store import ObjectEntryStore
from srqueue.domain.errors import EntryNotFoundError
from srqueue.domain.models import (
    EntryConditions,
    EntryState,
    ExecutionContext,
    ExecutionScope,
    QueueEntry,
    Responsibility,
    claim_update,
)
from srqueue.ports.entries import EntryStorePort

logger = structlog.get_logger(__name__)

ResponsibilityFn = Callable[[QueueEntry], Awaitable[Responsibility]]
BeforeStartFn = Callable[[QueueEntry], Awaitable[QueueEntry]]
ExecutionContextFn = Callable[[QueueEntry], Awaitable[ExecutionContext]]
Conditions = EntryConditions | Mapping[str, Any] | None

RUNNING_CONDITIONS = EntryConditions(states=(EntryState.RUNNING,))


async def always_responsible(entry: QueueEntry) -> Responsibility:
    return Responsibility.YES


async def unchanged(entry: QueueEntry) -> QueueEntry:
    return entry


async def private_context(entry: QueueEntry) -> ExecutionContext:
    return ExecutionContext(scope=ExecutionScope.PRIVATE)


def _as_conditions(conditions: Conditions) -> EntryConditions | None:
    if conditions is None or isinstance(conditions, EntryConditions):
        return conditions
    return EntryConditions.model_validate(conditions)


def _with_consistent_end_date(entry: QueueEntry) -> QueueEntry:
    """end_date is set iff the state is terminal."""
    if entry.state.is_terminal and entry.end_date is None:
        return entry.model_copy(update={"end_date": datetime.now(UTC)})
    if not entry.state.is_terminal and entry.end_date is not None:
        return entry.model_copy(update={"end_date": None})
    return entry


@dataclasses.dataclass(eq=False)
class ServiceRequestQueue:
    """
    One queue instance.

    Parameters
    ----------
    settings          : intervals, retention and storage target
    store             : entry store; built from settings.storage_url if omitted
    dispatch          : called as dispatch(entry, queue) for every ready entry
                        the poller finds; see ServiceDispatcher
    responsibility    : async predicate deciding yes / fallback / no per entry
    before_start      : async hook applied to a claimed entry before it runs
    execution_context : async factory for the context an entry runs in
    """

    settings: QueueSettings = dataclasses.field(default_factory=get_settings)
    store: EntryStorePort | None = None
    dispatch: DispatchFn | None = None
    responsibility: ResponsibilityFn = always_responsible
    before_start: BeforeStartFn = unchanged
    execution_context: ExecutionContextFn = private_context

    is_shutdown_initiated: bool = dataclasses.field(default=False, init=False)

    _store_open: bool = dataclasses.field(default=False, init=False, repr=False)

    _poller: Poller = dataclasses.field(init=False, repr=False)
    _cleanup: Cleanup = dataclasses.field(init=False, repr=False)
    _poll_timer: PeriodicTask | None = dataclasses.field(
        default=None, init=False, repr=False
    )
    _cleanup_timer: PeriodicTask | None = dataclasses.field(
        default=None, init=False, repr=False
    )

    def __post_init__(self) -> None:
        if self.store is None:
            key = collection_key(self.settings.database_name, self.settings.collection_name)
            self.store = ObjectEntryStore(
                storage_from_url(self.settings.storage_url, key),
                max_retries=self.settings.max_retries,
            )
        self._poller = Poller(self)
        self._cleanup = Cleanup(self, timedelta(seconds=self.settings.cleanup_age))

    async def __aenter__(self) -> "ServiceRequestQueue":
        await self.init()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    @property
    def started(self) -> bool:
        return self._poll_timer is not None

    async def init(self) -> None:
        """
        Connect, catch up, then start the poll and cleanup timers.

        Entries that became ready while no instance was running are
        dispatched by the inline discovery pass, not one interval later.
        Connection and catch-up failures propagate; there is no retry.
        """
        if self.started:
            raise RuntimeError("ServiceRequestQueue is already initialised")
        if self.is_shutdown_initiated:
            raise RuntimeError("ServiceRequestQueue has been stopped")
        await self.store.connect()
        self._store_open = True
        await self._poller.poll()
        await self._cleanup.purge()

        self._poll_timer = PeriodicTask(
            name="poll",
            interval=timedelta(seconds=self.settings.check_interval),
            tick=self._poller.poll,
        )
        self._cleanup_timer = PeriodicTask(
            name="cleanup",
            interval=timedelta(seconds=self.settings.cleanup_interval),
            tick=self._cleanup.purge,
        )
        self._poll_timer.start()
        self._cleanup_timer.start()
        logger.info(
            "queue_started",
            check_interval=self.settings.check_interval,
            cleanup_interval=self.settings.cleanup_interval,
            cleanup_age=self.settings.cleanup_age,
        )

    async def stop(self) -> None:
        """
        Stop timers, let dispatches already started by the poller finish,
        wait until no entry in the store is RUNNING, close the store.

        There is no deadline: an entry that never finishes
        keeps stop() waiting.
        """
        self.is_shutdown_initiated = True
        if not self.started:
            if self._store_open:
                await self._poller.drain()
                await self._close_store()
            return
        for timer in (self._poll_timer, self._cleanup_timer):
            if timer is not None:
                await timer.stop()
        self._poll_timer = self._cleanup_timer = None

        logger.info("queue_draining", dispatching=self._poller.in_flight)
        await self._poller.drain()
        while (running := await self.store.count(RUNNING_CONDITIONS)) > 0:
            logger.debug("queue_drain_wait", running=running)
            await asyncio.sleep(self.settings.drain_interval)
        await self._close_store()
        logger.info("queue_stopped")

    async def _close_store(self) -> None:
        self._store_open = False
        await self.store.close()

    # ------------------------------------------------------------------ #
    # Host strategies                                                      #
    # ------------------------------------------------------------------ #

    async def is_responsible(self, entry: QueueEntry) -> Responsibility:
        return await self.responsibility(entry)

    async def on_before_start(self, entry: QueueEntry) -> QueueEntry:
        return await self.before_start(entry)

    async def get_execution_context(self, entry: QueueEntry) -> ExecutionContext:
        return await self.execution_context(entry)

    # ------------------------------------------------------------------ #
    # Entry operations                                                     #
    # ------------------------------------------------------------------ #

    async def enqueue(self, entry: QueueEntry) -> QueueEntry:
        """Persist a new entry and return it with its store-assigned id."""
        stored = entry.with_id(await self.store.insert(entry))
        logger.debug(
            "entry_enqueued",
            entry_id=stored.id,
            service_name=stored.service_name,
            state=stored.state.value,
        )
        return stored

    async def try_take(self, entry: QueueEntry) -> QueueEntry | None:
        """
        Claim the entry: atomically move it from READY to RUNNING.

        Returns the RUNNING entry, or None if it was not READY (already
        claimed by someone else, canceled, unknown) or this instance is
        shutting down.
        """
        if self.is_shutdown_initiated or entry.id is None:
            return None
        claimed = await self.store.find_one_and_update(
            entry.id,
            expected_state=EntryState.READY,
            update=claim_update(datetime.now(UTC)),
        )
        if claimed is not None:
            logger.info(
                "entry_claimed", entry_id=claimed.id, service_name=claimed.service_name
            )
        return claimed

    async def update_entry(self, entry: QueueEntry) -> None:
        """
        Store the entry as reported by its executor.

        The write is unconditional. When it moves a recurring entry into a
        terminal state, the next occurrence is enqueued.
        """
        entry = _with_consistent_end_date(entry)
        if entry.id is None:
            entry = entry.with_id(await self.store.insert(entry))
            previous = None
        else:
            previous = await self.store.replace(entry, upsert=True)
        if entry.state.is_terminal:
            logger.info(
                "entry_finished",
                entry_id=entry.id,
                service_name=entry.service_name,
                state=entry.state.value,
            )
        await schedule_successor(self.store, entry, previous)

    async def refresh_entry(self, entry: QueueEntry) -> QueueEntry:
        """Re-read the entry from the store."""
        current = await self.store.find_one(entry.id) if entry.id else None
        if current is None:
            raise EntryNotFoundError(entry.id)
        return current

    async def copy_entry(self, entry: QueueEntry) -> QueueEntry:
        return entry.model_copy(deep=True)

    async def get_entries(self, conditions: Conditions = None) -> list[QueueEntry]:
        return await self.store.find(_as_conditions(conditions))

    async def remove_entries(self, conditions: Conditions = None) -> int:
        """Delete matching entries (all entries without conditions). Returns the count."""
        return await self.store.delete(_as_conditions(conditions))
