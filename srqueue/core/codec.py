"""
Codec — serialize and deserialize QueueDocument to/from bytes using Pydantic v2.

Entries are written with their wire (camelCase) names, so a document can be
read or seeded by hand without knowing the Python attribute names:

{
  "version": 3,
  "entries": [
    {
      "id": "9f1c0e4c5b7a4d0e8e1f2a3b4c5d6e7f",
      "serviceName": "reports/build",
      "request": {"month": "2024-01"},
      "response": null,
      "state": "ready",
      "startDate": null,
      "endDate": null,
      "interval": null,
      "mandatorId": "0815"          <-- extension field, kept verbatim
    }
  ]
}
"""
from __future__ import annotations

from srqueue.domain.models import QueueDocument


def encode(document: QueueDocument) -> bytes:
    """Serialize QueueDocument to UTF-8 JSON bytes."""
    return document.model_dump_json(indent=2, by_alias=True).encode("utf-8")


def decode(data: bytes) -> QueueDocument:
    """Deserialize UTF-8 JSON bytes to QueueDocument. Empty bytes → empty document."""
    if not data:
        return QueueDocument()
    return QueueDocument.model_validate_json(data)
