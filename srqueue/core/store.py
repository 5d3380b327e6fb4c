"""
ObjectEntryStore — EntryStorePort on top of a single object in object storage.

The whole entry collection is one JSON document. Every mutation does:
  1. read current document + etag from storage
  2. mutate the document in memory
  3. CAS write back with if_match=etag (retries on CASConflictError)

Because step 3 only succeeds if nobody else wrote in between, a
find_one_and_update() whose precondition was evaluated in step 2 is atomic
against every other client of the same object — coroutines in this process,
other processes on the host (LocalFileSystemStorage) or other machines
(S3Storage, GCSStorage).

Mutations that change nothing (a lost claim race, a delete that matched no
entries) skip the write entirely.

Retry policy
------------
Mutations retry up to `max_retries` times (default 10) on CASConflictError
with linear back-off (10ms × attempt). Raises CASConflictError if all retries
are exhausted.
"""
from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog

from srqueue.core import codec
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
    QueueDocument,
    QueueEntry,
    new_entry_id,
)
from srqueue.ports.storage import ObjectStoragePort

logger = structlog.get_logger(__name__)

T = TypeVar("T")
MutationFn = Callable[[QueueDocument], tuple[QueueDocument, T]]


@dataclasses.dataclass
class ObjectEntryStore:
    """
    Entry store over any ObjectStoragePort.

    Parameters
    ----------
    storage     : byte-level CAS storage holding the collection document
    max_retries : CAS attempts per mutation before giving up
    """

    storage: ObjectStoragePort
    max_retries: int = 10

    _connected: bool = dataclasses.field(default=False, init=False, repr=False)

    # ------------------------------------------------------------------ #
    # Connection lifecycle                                                 #
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        """Open the underlying storage and prove it is readable."""
        opener = getattr(self.storage, "open", None)
        try:
            if opener is not None:
                await opener()
            await self.storage.read()
        except SRQueueError:
            raise
        except Exception as exc:
            raise StorageError("Entry store connect failed", exc) from exc
        self._connected = True
        logger.debug("entry_store_connected", storage=type(self.storage).__name__)

    async def close(self) -> None:
        self._connected = False
        closer = getattr(self.storage, "close", None)
        if closer is not None:
            await closer()
        logger.debug("entry_store_closed", storage=type(self.storage).__name__)

    @property
    def connected(self) -> bool:
        return self._connected

    # ------------------------------------------------------------------ #
    # Write operations                                                     #
    # ------------------------------------------------------------------ #

    async def insert(self, entry: QueueEntry) -> str:
        """Append the entry under a fresh id. Any id already on the entry is ignored."""
        stored = entry.with_id(new_entry_id())

        def _fn(doc: QueueDocument) -> tuple[QueueDocument, str]:
            return doc.with_entry_added(stored), stored.id  # type: ignore[return-value]

        return await self._mutate(_fn)

    async def find_one_and_update(
        self,
        entry_id: str,
        *,
        expected_state: EntryState,
        update: dict[str, Any],
    ) -> QueueEntry | None:
        """Apply update iff the entry exists in expected_state; else return None."""

        def _fn(doc: QueueDocument) -> tuple[QueueDocument, QueueEntry | None]:
            current = doc.find(entry_id)
            if current is None or current.state != expected_state:
                return doc, None
            updated = current.model_copy(update=update)
            return doc.with_entry_replaced(updated), updated

        return await self._mutate(_fn)

    async def replace(
        self, entry: QueueEntry, *, upsert: bool = True
    ) -> QueueEntry | None:
        """Overwrite by id and return the previous version (None if upserted)."""
        if entry.id is None:
            raise EntryNotFoundError(None)

        def _fn(doc: QueueDocument) -> tuple[QueueDocument, QueueEntry | None]:
            previous = doc.find(entry.id)
            if previous is None:
                if not upsert:
                    raise EntryNotFoundError(entry.id)
                return doc.with_entry_added(entry), None
            return doc.with_entry_replaced(entry), previous

        return await self._mutate(_fn)

    async def delete(self, conditions: EntryConditions | None = None) -> int:
        def _fn(doc: QueueDocument) -> tuple[QueueDocument, int]:
            doomed = [e.id for e in doc.select(conditions)]
            return doc.with_entries_removed(doomed), len(doomed)

        return await self._mutate(_fn)

    # ------------------------------------------------------------------ #
    # Read operations (no CAS needed)                                     #
    # ------------------------------------------------------------------ #

    async def find(self, conditions: EntryConditions | None = None) -> list[QueueEntry]:
        doc = await self.read_document()
        return list(doc.select(conditions, datetime.now(UTC)))

    async def find_one(self, entry_id: str) -> QueueEntry | None:
        doc = await self.read_document()
        return doc.find(entry_id)

    async def count(self, conditions: EntryConditions | None = None) -> int:
        doc = await self.read_document()
        return len(doc.select(conditions))

    async def read_document(self) -> QueueDocument:
        """Read-only snapshot of the whole collection."""
        self._ensure_connected()
        content, _ = await self.storage.read()
        return codec.decode(content)

    # ------------------------------------------------------------------ #
    # Internal CAS loop                                                   #
    # ------------------------------------------------------------------ #

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise StoreNotConnectedError("Entry store is not connected")

    async def _mutate(self, fn: MutationFn[T]) -> T:
        """
        Read-modify-write with CAS retry loop.

        fn(doc) -> (new_doc, result)  (synchronous)
        Returning the same document object means "nothing to write".
        """
        self._ensure_connected()
        for attempt in range(self.max_retries):
            content, etag = await self.storage.read()
            doc = codec.decode(content)
            new_doc, result = fn(doc)
            if new_doc is doc:
                return result
            try:
                await self.storage.write(codec.encode(new_doc), if_match=etag)
                return result
            except CASConflictError:
                if attempt == self.max_retries - 1:
                    raise
                logger.debug("entry_store_cas_conflict", attempt=attempt + 1)
                await asyncio.sleep(0.01 * (attempt + 1))
        raise CASConflictError("Max CAS retries exceeded")
