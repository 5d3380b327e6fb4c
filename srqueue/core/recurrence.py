"""
Recurrence — schedule the next run of an entry that carries an interval.

A successor is created only for the report that moves an entry into a
terminal state. Reporting the same terminal entry again finds a terminal
previous version and creates nothing, so each completion yields at most
one successor.
"""
from __future__ import annotations

import structlog

from srqueue.domain.models import QueueEntry
from srqueue.ports.entries import EntryStorePort

logger = structlog.get_logger(__name__)


async def schedule_successor(
    store: EntryStorePort,
    finished: QueueEntry,
    previous: QueueEntry | None,
) -> QueueEntry | None:
    """Insert the successor of `finished` if this update completed it."""
    if previous is not None and previous.state.is_terminal:
        return None
    successor = finished.successor()
    if successor is None:
        return None
    successor = successor.with_id(await store.insert(successor))
    logger.info(
        "entry_rescheduled",
        entry_id=finished.id,
        successor_id=successor.id,
        service_name=successor.service_name,
        start_date=successor.start_date.isoformat() if successor.start_date else None,
    )
    return successor
