"""
storage_from_url — pick an ObjectStoragePort from a connection URL.

  memory://                 → InMemoryStorage (private to this process)
  file:///var/lib/srqueue   → LocalFileSystemStorage(<dir>/<key>)
  s3://bucket[/prefix]      → S3Storage(bucket, <prefix>/<key>)
  gs://bucket[/prefix]      → GCSStorage(bucket, <prefix>/<key>)

`key` names the collection object inside the target, e.g.
"srqueue/requestQueue.json" for database "srqueue" and collection
"requestQueue".
"""
from __future__ import annotations

from pathlib import Path
from urllib.parse import urlsplit

from srqueue.adapters.storage.filesystem import LocalFileSystemStorage
from srqueue.adapters.storage.gcs import GCSStorage
from srqueue.adapters.storage.memory import InMemoryStorage
from srqueue.adapters.storage.s3 import S3Storage
from srqueue.ports.storage import ObjectStoragePort


def collection_key(database_name: str, collection_name: str) -> str:
    return f"{database_name}/{collection_name}.json"


def storage_from_url(url: str, key: str) -> ObjectStoragePort:
    parts = urlsplit(url)
    prefix = parts.path.strip("/")
    object_key = f"{prefix}/{key}" if prefix else key

    match parts.scheme:
        case "memory":
            return InMemoryStorage()
        case "file" | "":
            base = Path(parts.netloc + parts.path) if parts.netloc else Path(parts.path)
            return LocalFileSystemStorage(base / key)
        case "s3":
            return S3Storage(bucket=parts.netloc, key=object_key)
        case "gs":
            return GCSStorage(bucket_name=parts.netloc, blob_name=object_key)
        case _:
            raise ValueError(f"Unsupported storage URL scheme: {parts.scheme!r}")
