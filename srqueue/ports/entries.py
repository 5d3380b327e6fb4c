"""
EntryStorePort — what the queue needs from its persistent store.

The queue never caches entries; every operation goes through this port and
every read re-fetches. The only concurrency guarantee the queue relies on is
find_one_and_update(): the precondition check and the mutation must be one
atomic operation as seen by every other client of the same backend, whether
that client lives in this process or another one.

ObjectEntryStore (srqueue.core.store) implements this port on top of any
ObjectStoragePort. A document database with native conditional updates can
implement it directly.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from srqueue.domain.models import EntryConditions, EntryState, QueueEntry


@runtime_checkable
class EntryStorePort(Protocol):
    async def connect(self) -> None:
        """Establish connectivity. Failures propagate; no retry."""
        ...

    async def close(self) -> None:
        """Release the connection. The store is unusable afterwards."""
        ...

    async def insert(self, entry: QueueEntry) -> str:
        """Persist a new entry under a freshly generated id and return that id."""
        ...

    async def find(self, conditions: EntryConditions | None = None) -> list[QueueEntry]:
        """All entries matching conditions, in insertion order."""
        ...

    async def find_one(self, entry_id: str) -> QueueEntry | None: ...

    async def find_one_and_update(
        self,
        entry_id: str,
        *,
        expected_state: EntryState,
        update: dict[str, Any],
    ) -> QueueEntry | None:
        """
        Atomically apply update to the entry iff it exists in expected_state.

        Returns the post-update entry, or None when nothing matched.
        """
        ...

    async def replace(
        self, entry: QueueEntry, *, upsert: bool = True
    ) -> QueueEntry | None:
        """
        Overwrite the stored entry with the same id and return the previous version.

        With upsert, an unknown id is inserted as-is and None is returned.
        """
        ...

    async def delete(self, conditions: EntryConditions | None = None) -> int:
        """Delete matching entries and return how many were removed."""
        ...

    async def count(self, conditions: EntryConditions | None = None) -> int: ...
