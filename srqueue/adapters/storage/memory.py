"""
InMemoryStorage — a process-local collection object.

The document lives in a bytes attribute and its version is a generation
number: 0 while nothing has been written, +1 per accepted write. Reads and
writes take one asyncio.Lock, so checking `if_match` against the current
generation and storing the new bytes cannot interleave with another
coroutine.

Several ObjectEntryStore instances may share one InMemoryStorage; that is
how tests model several queue instances working against one backend. The
object is bound to its event loop and invisible to other processes.
"""
from __future__ import annotations

import asyncio
import dataclasses

from srqueue.domain.errors import CASConflictError


@dataclasses.dataclass
class InMemoryStorage:
    """
    Parameters
    ----------
    initial_content : document bytes to start from, counted as generation 1
    """

    initial_content: bytes = b""

    def __post_init__(self) -> None:
        self._content: bytes = self.initial_content
        self._generation: int = 1 if self.initial_content else 0
        self._lock: asyncio.Lock = asyncio.Lock()
        self.write_count: int = 0

    @property
    def etag(self) -> str | None:
        return str(self._generation) if self._generation else None

    async def read(self) -> tuple[bytes, str | None]:
        async with self._lock:
            return self._content, self.etag

    async def write(
        self,
        content: bytes,
        if_match: str | None = None,
    ) -> str:
        async with self._lock:
            current = self.etag
            if if_match != current:
                raise CASConflictError(
                    f"generation moved on: wrote against {if_match!r}, now {current!r}"
                )
            self._generation += 1
            self._content = content
            self.write_count += 1
            return str(self._generation)
