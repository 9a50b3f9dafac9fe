"""Build the synthetic "document record" chunk used for record-level indexing."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from .models import RECORD_STRUCTURES, Chunk, MetadataField

RECORD_TAG = "document-record"
RECORD_TITLE = "Document Record Metadata"

STANDARD_METADATA_FIELDS = frozenset({"author", "creationDate", "lastModified", "title"})
FILE_METADATA_FIELDS = frozenset({"fileSize", "fileType", "sourceLocation"})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_record_data(
    fields: Iterable[MetadataField],
    structure: str,
    *,
    now: str | None = None,
) -> dict[str, Any]:
    """Arrange the included metadata fields according to ``structure``."""

    if structure not in RECORD_STRUCTURES:
        raise ValueError(f"Unknown record structure '{structure}'")
    included = [item for item in fields if item.included]

    if structure == "flat":
        return {item.name: item.value for item in included}

    if structure == "nested":
        standard: dict[str, Any] = {}
        document: dict[str, Any] = {}
        custom: dict[str, Any] = {}
        for item in included:
            if item.name in STANDARD_METADATA_FIELDS:
                standard[item.name] = item.value
            elif item.name in FILE_METADATA_FIELDS:
                document[item.name] = item.value
            else:
                custom[item.name] = item.value
        return {
            "standardMetadata": standard,
            "documentMetadata": document,
            "customMetadata": custom,
        }

    metadata: dict[str, Any] = {}
    content: dict[str, Any] = {}
    for item in included:
        target = metadata if item.name in FILE_METADATA_FIELDS else content
        target[item.name] = item.value
    return {
        "metadata": metadata,
        "content": content,
        "indexTimestamp": now or _now(),
    }


def strip_record_chunk(chunks: Sequence[Chunk]) -> list[Chunk]:
    return [chunk for chunk in chunks if RECORD_TAG not in chunk.tags]


def build_record_chunk(
    chunks: Sequence[Chunk],
    fields: Sequence[MetadataField],
    structure: str,
    *,
    document_id: str,
    now: str | None = None,
) -> list[Chunk] | None:
    """Return ``chunks`` with a fresh record chunk appended.

    Returns ``None`` when no metadata field is included, in which case the
    caller keeps its chunk list as-is.
    """

    if not any(item.included for item in fields):
        return None
    data = build_record_data(fields, structure, now=now)
    content = json.dumps(data, indent=2)
    remaining = strip_record_chunk(chunks)
    next_id = max((chunk.id for chunk in chunks), default=0) + 1
    record = Chunk(
        id=next_id,
        document_id=document_id,
        title=RECORD_TITLE,
        content=content,
        token_count=len(content) / 4,
        chunk_index=len(remaining) + 1,
        tags=[RECORD_TAG, "metadata", structure],
    )
    return [*remaining, record]


__all__ = [
    "FILE_METADATA_FIELDS",
    "RECORD_TAG",
    "RECORD_TITLE",
    "STANDARD_METADATA_FIELDS",
    "build_record_chunk",
    "build_record_data",
    "strip_record_chunk",
]
