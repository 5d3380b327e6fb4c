"""
GCSStorage — Google Cloud Storage adapter using google-cloud-storage.

Install extras: pip install "srqueue[gcs]"

CAS semantics
-------------
GCS versions every object with a generation number.

  read()  → returns (content, generation) with the generation stringified
  write() → if_generation_match=int(etag), or 0 ("must not exist yet") when
            there is no etag; GCS raises PreconditionFailed on a lost race
            → CASConflictError

google-cloud-storage is synchronous, so every call runs in
asyncio.to_thread. open() builds the client once; close() releases its
HTTP session.
"""
from __future__ import annotations

import asyncio
import dataclasses
from typing import TYPE_CHECKING, Any

from srqueue.domain.errors import CASConflictError, StorageError

if TYPE_CHECKING:
    from google.cloud.storage import Client as GCSClient


def _gapi_exceptions() -> Any:
    try:
        from google.api_core import exceptions  # type: ignore[import-untyped]
    except ImportError as exc:
        raise ImportError(
            "GCSStorage requires google-cloud-storage. "
            "Install with: pip install 'srqueue[gcs]'"
        ) from exc
    return exceptions


@dataclasses.dataclass
class GCSStorage:
    """
    Google Cloud Storage adapter.

    Parameters
    ----------
    bucket_name : GCS bucket name
    blob_name   : blob path (e.g. "srqueue/requestQueue.json")
    client      : google.cloud.storage.Client — created on open() if omitted
    """

    bucket_name: str
    blob_name: str
    client: GCSClient | None = None

    _owns_client: bool = dataclasses.field(default=False, init=False, repr=False)

    def _get_client(self) -> GCSClient:
        if self.client is None:
            try:
                from google.cloud import storage  # type: ignore[import-untyped]
            except ImportError as exc:
                raise ImportError(
                    "GCSStorage requires google-cloud-storage. "
                    "Install with: pip install 'srqueue[gcs]'"
                ) from exc
            self.client = storage.Client()
            self._owns_client = True
        return self.client  # type: ignore[return-value]

    def _blob(self) -> Any:
        return self._get_client().bucket(self.bucket_name).blob(self.blob_name)  # type: ignore[attr-defined]

    async def open(self) -> None:
        try:
            await asyncio.to_thread(self._get_client)
        except ImportError:
            raise
        except Exception as exc:
            raise StorageError("GCS client setup failed", exc) from exc

    async def close(self) -> None:
        if self._owns_client and self.client is not None:
            client, self.client, self._owns_client = self.client, None, False
            await asyncio.to_thread(client.close)  # type: ignore[attr-defined]

    async def read(self) -> tuple[bytes, str | None]:
        """Read the collection blob. Returns (b"", None) if the blob does not exist."""
        try:
            return await asyncio.to_thread(self._blocking_read)
        except (CASConflictError, StorageError, ImportError):
            raise
        except Exception as exc:
            raise StorageError("GCS read failed", exc) from exc

    async def write(
        self,
        content: bytes,
        if_match: str | None = None,
    ) -> str:
        """CAS write. Raises CASConflictError on generation mismatch."""
        try:
            return await asyncio.to_thread(self._blocking_write, content, if_match)
        except (CASConflictError, StorageError, ImportError):
            raise
        except Exception as exc:
            raise StorageError("GCS write failed", exc) from exc

    # ------------------------------------------------------------------ #
    # Blocking implementations (executed in a thread-pool worker)         #
    # ------------------------------------------------------------------ #

    def _blocking_read(self) -> tuple[bytes, str | None]:
        gapi_exc = _gapi_exceptions()
        blob = self._blob()
        try:
            content: bytes = blob.download_as_bytes()
        except gapi_exc.NotFound:
            return b"", None
        return content, str(blob.generation)

    def _blocking_write(self, content: bytes, if_match: str | None) -> str:
        gapi_exc = _gapi_exceptions()
        blob = self._blob()
        try:
            blob.upload_from_string(
                content,
                content_type="application/json",
                if_generation_match=0 if if_match is None else int(if_match),
            )
        except gapi_exc.PreconditionFailed as exc:
            raise CASConflictError(
                f"GCS generation mismatch for {self.blob_name!r}"
            ) from exc
        return str(blob.generation)
