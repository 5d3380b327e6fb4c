"""
srqueue — durable, polling service-request queue.

Entries wait in a shared store until a queue instance claims them. Any
number of instances, in one process or many, poll the same store and
compete for ready entries; the claim is a single atomic ready → running
update in the store, so every entry runs at most once concurrently.

The store is one JSON document on object storage. Every mutation is a
compare-and-set (CAS) write: read the document, mutate it in memory, write
it back with an If-Match guard, retry when another writer got there first.

Quick start
-----------
    import asyncio
    from srqueue import QueueEntry, QueueSettings, ServiceDispatcher, ServiceRequestQueue

    async def send_mail(request, context):
        return {"sent": request["to"]}

    async def main():
        dispatcher = ServiceDispatcher()
        dispatcher.register("mail/send", send_mail)
        queue = await dispatcher.add_queue(
            ServiceRequestQueue(QueueSettings(check_interval=1))
        )
        await queue.enqueue(QueueEntry.new("mail/send", {"to": "user@example.com"}))
        await asyncio.sleep(2)
        print(await queue.get_entries())
        await dispatcher.shutdown()

    asyncio.run(main())

Storage adapters
----------------
Built-in adapters (no extra deps):
  - InMemoryStorage           — for tests and single-process use
  - LocalFileSystemStorage    — POSIX single-machine (fcntl.flock)

Optional adapters (install extras):
  - S3Storage        (pip install "srqueue[s3]")
  - GCSStorage       (pip install "srqueue[gcs]")

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — pure value types (QueueEntry, EntryState, EntryConditions)
  ports/    — Protocol interfaces (EntryStorePort, ObjectStoragePort)
  core/     — queue lifecycle, claim, poller, cleanup, recurrence, dispatch
  adapters/ — concrete storage implementations
"""
from __future__ import annotations

from srqueue.adapters.storage.filesystem import LocalFileSystemStorage
from srqueue.adapters.storage.memory import InMemoryStorage
from srqueue.adapters.storage.resolve import storage_from_url
from srqueue.config import QueueSettings
from srqueue.core.dispatch import ServiceDispatcher, UnknownServiceError
from srqueue.core.queue import ServiceRequestQueue
from srqueue.core.store import ObjectEntryStore
from srqueue.domain.errors import (
    CASConflictError,
    EntryNotFoundError,
    SRQueueError,
    StorageError,
    StoreNotConnectedError,
)
from srqueue.domain.models import (
    EntryConditions,
    EntryState,
    ExecutionContext,
    ExecutionScope,
    QueueEntry,
    Responsibility,
)
from srqueue.log import configure_logging
from srqueue.ports.entries import EntryStorePort
from srqueue.ports.storage import ObjectStoragePort

__all__ = [
    # Domain models
    "QueueEntry",
    "EntryState",
    "EntryConditions",
    "Responsibility",
    "ExecutionContext",
    "ExecutionScope",
    # Errors
    "SRQueueError",
    "CASConflictError",
    "EntryNotFoundError",
    "StorageError",
    "StoreNotConnectedError",
    "UnknownServiceError",
    # Ports (for typing custom stores and adapters)
    "EntryStorePort",
    "ObjectStoragePort",
    # Queue
    "QueueSettings",
    "ServiceRequestQueue",
    "ServiceDispatcher",
    "ObjectEntryStore",
    "configure_logging",
    # Built-in storage adapters
    "InMemoryStorage",
    "LocalFileSystemStorage",
    "storage_from_url",
]
