"""Cleanup — purge finished entries older than the retention age."""
from __future__ import annotations

import dataclasses
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from srqueue.domain.models import TERMINAL_STATES, EntryConditions, EntryState

if TYPE_CHECKING:
    from srqueue.core.queue import ServiceRequestQueue

logger = structlog.get_logger(__name__)

# Fixed order keeps the condition stable in logs and tests.
_TERMINAL = tuple(s for s in EntryState if s in TERMINAL_STATES)


def expired_conditions(retention: timedelta, now: datetime | None = None) -> EntryConditions:
    """Terminal entries whose end date lies more than `retention` in the past."""
    cutoff = (now or datetime.now(UTC)) - retention
    return EntryConditions(states=_TERMINAL, finished_before=cutoff)


@dataclasses.dataclass(eq=False)
class Cleanup:
    queue: ServiceRequestQueue
    retention: timedelta

    async def purge(self) -> int:
        """Run one cleanup pass. Returns the number of removed entries."""
        if self.queue.is_shutdown_initiated:
            return 0
        removed = await self.queue.remove_entries(expired_conditions(self.retention))
        if removed:
            logger.info("cleanup_removed", removed=removed)
        return removed
