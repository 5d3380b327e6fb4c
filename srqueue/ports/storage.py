"""
ObjectStoragePort — one versioned object holding a whole entry collection.

ObjectEntryStore never talks to S3, GCS or the file system directly. It
reads the collection as bytes plus a version token and writes it back only
if that token is still current. Anything with these two coroutines works
as a backend; the Protocol is structural, so adapters do not inherit from it.

Version tokens
--------------
The token ("etag") is opaque to the store. It is compared for equality by
the backend and nowhere else. A missing object has no token: read() gives
(b"", None), and write(..., if_match=None) creates the object only if it
still does not exist. Two instances racing to create the same collection
therefore cannot both win.

Optional open() / close()
-------------------------
Backends that keep a network client may define async open() and close().
ObjectEntryStore.connect() and close() call them when present.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ObjectStoragePort(Protocol):
    """
    Byte-level CAS storage for one collection document.

    Built-in adapters: InMemoryStorage, LocalFileSystemStorage, S3Storage,
    GCSStorage (see srqueue.adapters.storage).
    """

    async def read(self) -> tuple[bytes, str | None]:
        """
        Returns
        -------
        content : bytes
            Document bytes, b"" when the object has never been written.
        etag : str | None
            Version token of `content`, None when the object is absent.
        """
        ...

    async def write(
        self,
        content: bytes,
        if_match: str | None = None,
    ) -> str:
        """
        Replace the document if it is still at version `if_match`.

        Returns the token of the new version.

        Raises
        ------
        CASConflictError   another writer got there first
        StorageError       the backend failed for any other reason
        """
        ...
