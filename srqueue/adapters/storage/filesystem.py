"""
LocalFileSystemStorage — one JSON file shared by the processes of one host.

Every queue process on the machine opens the same path. An exclusive
fcntl.flock on the file spans "compare the version, then rewrite", so two
processes cannot both commit against the same version. Readers take a
shared lock and therefore never see a half-written document.

Versions are content digests (SHA-256 of the bytes). A missing or empty
file has version None, which is also what a first write must present.

flock is advisory and local: the file must not live on NFS or another
network filesystem, and processes on other machines need S3Storage or
GCSStorage instead.
"""

from __future__ import annotations

import asyncio
import dataclasses
import fcntl
import hashlib
import os
from pathlib import Path

from srqueue.domain.errors import CASConflictError, StorageError


def _digest(data: bytes) -> str | None:
    return hashlib.sha256(data).hexdigest() if data else None


@dataclasses.dataclass
class LocalFileSystemStorage:
    """
    Parameters
    ----------
    path : location of the collection document; open() creates its directory
    """

    path: Path

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def open(self) -> None:
        try:
            await asyncio.to_thread(self.path.parent.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create {self.path.parent}", exc) from exc

    async def read(self) -> tuple[bytes, str | None]:
        try:
            return await asyncio.to_thread(self._read_shared)
        except OSError as exc:
            raise StorageError(f"Cannot read {self.path}", exc) from exc

    async def write(
        self,
        content: bytes,
        if_match: str | None = None,
    ) -> str:
        try:
            return await asyncio.to_thread(self._write_exclusive, content, if_match)
        except OSError as exc:
            raise StorageError(f"Cannot write {self.path}", exc) from exc

    # ------------------------------------------------------------------ #
    # Run in a worker thread                                               #
    # ------------------------------------------------------------------ #

    def _read_shared(self) -> tuple[bytes, str | None]:
        try:
            fh = open(self.path, "rb")
        except FileNotFoundError:
            return b"", None
        with fh:
            fcntl.flock(fh, fcntl.LOCK_SH)
            try:
                content = fh.read()
            finally:
                fcntl.flock(fh, fcntl.LOCK_UN)
        return content, _digest(content)

    def _write_exclusive(self, content: bytes, if_match: str | None) -> str:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            on_disk = _digest(os.read(fd, os.fstat(fd).st_size))
            if on_disk != if_match:
                raise CASConflictError(
                    f"{self.path} changed: wrote against {if_match!r}, now {on_disk!r}"
                )
            os.lseek(fd, 0, os.SEEK_SET)
            os.truncate(fd, 0)
            os.write(fd, content)
            os.fsync(fd)
        finally:
            os.close(fd)

        return _digest(content)  # type: ignore[return-value]
