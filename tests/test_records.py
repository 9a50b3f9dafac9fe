from __future__ import annotations

import json

import pytest

from docintel.models import Chunk, MetadataField
from docintel.records import RECORD_TAG, build_record_chunk, build_record_data


def _fields() -> list[MetadataField]:
    return [
        MetadataField(id=1, name="title", value="Annual Report"),
        MetadataField(id=2, name="author", value="Jane Doe"),
        MetadataField(id=3, name="fileSize", value="2048"),
        MetadataField(id=4, name="department", value="Finance"),
        MetadataField(id=5, name="draft", value="yes", included=False),
    ]


def _chunks() -> list[Chunk]:
    return [
        Chunk(id=1, document_id="doc-1", title="Part 1", content="alpha", token_count=1, chunk_index=1),
        Chunk(id=2, document_id="doc-1", title="Part 2", content="beta", token_count=1, chunk_index=2),
    ]


def test_flat_structure_lists_included_fields() -> None:
    data = build_record_data(_fields(), "flat")
    assert data == {
        "title": "Annual Report",
        "author": "Jane Doe",
        "fileSize": "2048",
        "department": "Finance",
    }


def test_nested_structure_groups_standard_file_and_custom_fields() -> None:
    data = build_record_data(_fields(), "nested")
    assert data["standardMetadata"] == {"title": "Annual Report", "author": "Jane Doe"}
    assert data["documentMetadata"] == {"fileSize": "2048"}
    assert data["customMetadata"] == {"department": "Finance"}


def test_custom_structure_splits_metadata_and_content() -> None:
    data = build_record_data(_fields(), "custom", now="2024-05-01T00:00:00+00:00")
    assert data["metadata"] == {"fileSize": "2048"}
    assert data["content"]["title"] == "Annual Report"
    assert data["indexTimestamp"] == "2024-05-01T00:00:00+00:00"


def test_unknown_structure_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_record_data(_fields(), "tree")


def test_record_chunk_is_appended_once_and_replaced() -> None:
    chunks = build_record_chunk(_chunks(), _fields(), "flat", document_id="doc-1")
    assert chunks is not None
    record = chunks[-1]
    assert record.id == 3
    assert record.chunk_index == 3
    assert record.tags == [RECORD_TAG, "metadata", "flat"]
    assert json.loads(record.content)["department"] == "Finance"
    assert record.token_count == len(record.content) / 4

    rebuilt = build_record_chunk(chunks, _fields(), "nested", document_id="doc-1")
    assert rebuilt is not None
    assert sum(1 for chunk in rebuilt if RECORD_TAG in chunk.tags) == 1
    assert rebuilt[-1].tags[-1] == "nested"
    assert len(rebuilt) == 3


def test_record_chunk_skipped_when_nothing_included() -> None:
    fields = [MetadataField(id=1, name="title", value="x", included=False)]
    assert build_record_chunk(_chunks(), fields, "flat", document_id="doc-1") is None
