"""
S3Storage — AWS S3 adapter using aioboto3 and conditional writes.

Install extras: pip install "srqueue[s3]"

CAS semantics
-------------
  read()  → returns (content, ETag) where ETag is the S3 object's entity tag
  write() → with an etag: IfMatch=etag
            without one: IfNoneMatch="*" (object must not exist yet)
            S3 answers PreconditionFailed / ConditionalRequestConflict on a
            lost race → CASConflictError

Client lifecycle
----------------
open() enters one S3 client and keeps it until close(); this is the
connection the queue establishes in init() and releases in stop(). Calls
made while not opened use a short-lived client per request.

Compatible with S3-compatible storage that supports conditional writes:
  MinIO, Cloudflare R2, Tigris, etc.
"""
from __future__ import annotations

import contextlib
import dataclasses
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from srqueue.domain.errors import CASConflictError, StorageError

if TYPE_CHECKING:
    from aioboto3 import Session as AioBoto3Session

_CONFLICT_CODES = ("PreconditionFailed", "ConditionalRequestConflict", "412")
_MISSING_CODES = ("NoSuchKey", "404")


@dataclasses.dataclass
class S3Storage:
    """
    AWS S3 storage adapter.

    Parameters
    ----------
    bucket       : S3 bucket name
    key          : object key (e.g. "srqueue/requestQueue.json")
    session      : aioboto3.Session — created lazily from env vars if omitted
    region_name  : AWS region passed to the S3 client
    endpoint_url : custom endpoint for S3-compatible backends (e.g. MinIO)
    """

    bucket: str
    key: str
    session: AioBoto3Session | None = None
    region_name: str | None = None
    endpoint_url: str | None = None

    _stack: contextlib.AsyncExitStack | None = dataclasses.field(
        default=None, init=False, repr=False
    )
    _client: Any = dataclasses.field(default=None, init=False, repr=False)

    def _get_session(self) -> AioBoto3Session:
        if self.session is not None:
            return self.session
        try:
            import aioboto3  # type: ignore[import-untyped]
        except ImportError as exc:
            raise ImportError(
                "S3Storage requires aioboto3. Install with: pip install 'srqueue[s3]'"
            ) from exc
        self.session = aioboto3.Session()
        return self.session  # type: ignore[return-value]

    def _client_kwargs(self) -> dict[str, str]:
        kwargs: dict[str, str] = {}
        if self.region_name:
            kwargs["region_name"] = self.region_name
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        return kwargs

    async def open(self) -> None:
        if self._client is not None:
            return
        stack = contextlib.AsyncExitStack()
        try:
            self._client = await stack.enter_async_context(
                self._get_session().client("s3", **self._client_kwargs())  # type: ignore[attr-defined]
            )
        except Exception as exc:
            await stack.aclose()
            raise StorageError("S3 client setup failed", exc) from exc
        self._stack = stack

    async def close(self) -> None:
        stack, self._stack, self._client = self._stack, None, None
        if stack is not None:
            await stack.aclose()

    @contextlib.asynccontextmanager
    async def _s3(self) -> AsyncIterator[Any]:
        if self._client is not None:
            yield self._client
            return
        async with self._get_session().client("s3", **self._client_kwargs()) as s3:  # type: ignore[attr-defined]
            yield s3

    async def read(self) -> tuple[bytes, str | None]:
        """Read the collection object. Returns (b"", None) if the key does not exist."""
        try:
            async with self._s3() as s3:
                try:
                    response = await s3.get_object(Bucket=self.bucket, Key=self.key)
                except Exception as exc:
                    if _s3_error_code(exc) in _MISSING_CODES:
                        return b"", None
                    raise
                content: bytes = await response["Body"].read()
                return content, str(response["ETag"])
        except (CASConflictError, StorageError):
            raise
        except Exception as exc:
            raise StorageError("S3 read failed", exc) from exc

    async def write(
        self,
        content: bytes,
        if_match: str | None = None,
    ) -> str:
        """CAS write. Raises CASConflictError when the precondition fails."""
        put_kwargs: dict[str, str | bytes] = {
            "Bucket": self.bucket,
            "Key": self.key,
            "Body": content,
            "ContentType": "application/json",
        }
        if if_match is None:
            put_kwargs["IfNoneMatch"] = "*"
        else:
            put_kwargs["IfMatch"] = if_match

        try:
            async with self._s3() as s3:
                try:
                    response = await s3.put_object(**put_kwargs)
                except Exception as exc:
                    if _s3_error_code(exc) in _CONFLICT_CODES:
                        raise CASConflictError(
                            f"S3 precondition failed for {self.key!r}"
                        ) from exc
                    raise
                return str(response["ETag"])
        except (CASConflictError, StorageError):
            raise
        except Exception as exc:
            raise StorageError("S3 write failed", exc) from exc


def _s3_error_code(exc: Exception) -> str:
    """Extract the error code from a botocore ClientError, or return ''."""
    response = getattr(exc, "response", None)
    if not isinstance(response, dict):
        return ""
    error = response.get("Error", {})
    if not isinstance(error, dict):
        return ""
    return str(error.get("Code") or "")
