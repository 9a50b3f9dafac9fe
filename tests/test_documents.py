from __future__ import annotations

import pytest

from docintel.documents import DocumentEntry, DocumentNotFoundError, DocumentRegistry, snake_case
from docintel.models import ProcessingConfiguration
from docintel.records import RECORD_TAG


def test_registry_lists_and_deletes_documents(registry: DocumentRegistry, report_entry: DocumentEntry) -> None:
    assert [entry.id for entry in registry.list_documents()] == [report_entry.id]
    summary = report_entry.summary()
    assert summary["name"] == "quarterly-report.md"
    assert summary["documentType"] == "report"
    assert summary["pipelineStatus"] == "idle"

    registry.delete(report_entry.id)
    with pytest.raises(DocumentNotFoundError):
        registry.get(report_entry.id)
    with pytest.raises(LookupError):
        registry.delete(report_entry.id)


def test_update_configuration_rechunks_document(registry: DocumentRegistry, report_entry: DocumentEntry) -> None:
    configuration = ProcessingConfiguration.from_dict(
        {"ragSettings": {"chunkingMethod": "header", "chunkSize": 100, "chunkOverlap": 10}},
        base=report_entry.configuration,
    )

    entry = registry.update_configuration(
        report_entry.id,
        configuration,
        embedding_model="e5-small",
    )

    assert entry.configuration.rag.chunking_method == "header"
    assert entry.embedding_model == "e5-small"
    assert [chunk.title for chunk in entry.chunks] == [
        "Quarterly Report / Revenue",
        "Quarterly Report / Outlook",
    ]
    assert [chunk.id for chunk in entry.chunks] == [1, 2]


def test_update_configuration_rejects_unknown_embedding_model(
    registry: DocumentRegistry, report_entry: DocumentEntry
) -> None:
    with pytest.raises(LookupError):
        registry.update_configuration(report_entry.id, ProcessingConfiguration(), embedding_model="word2vec")


def test_preview_chunks_leaves_entry_untouched(registry: DocumentRegistry, report_entry: DocumentEntry) -> None:
    before = [chunk.content for chunk in report_entry.chunks]

    preview = registry.preview_chunks(report_entry.id, "fixed", 10, 2)

    assert len(preview) > len(before)
    assert all("fixed" in chunk.tags for chunk in preview)
    assert [chunk.content for chunk in registry.get(report_entry.id).chunks] == before


def test_field_and_metadata_updates(registry: DocumentRegistry, report_entry: DocumentEntry) -> None:
    updated = registry.update_field(report_entry.id, 3, "typehead", True)
    assert updated.name == "Document Type"
    assert updated.typehead is True

    with pytest.raises(ValueError):
        registry.update_field(report_entry.id, 3, "searchable", True)
    with pytest.raises(LookupError):
        registry.update_field(report_entry.id, 99, "retrievable", False)

    created = registry.add_metadata_field(report_entry.id, "department", "Finance")
    assert created.id == 8
    assert created.confidence == 1.0
    with pytest.raises(ValueError):
        registry.add_metadata_field(report_entry.id, "department", "Sales")

    changed = registry.update_metadata_field(report_entry.id, created.id, "value", "Treasury")
    assert changed.value == "Treasury"
    hidden = registry.update_metadata_field(report_entry.id, 2, "included", False)
    assert hidden.included is False


def test_record_level_indexing_tracks_metadata_changes(
    registry: DocumentRegistry, report_entry: DocumentEntry
) -> None:
    entry = registry.set_record_level_indexing(report_entry.id, True, "nested")
    record_chunks = [chunk for chunk in entry.chunks if RECORD_TAG in chunk.tags]
    assert len(record_chunks) == 1
    assert '"standardMetadata"' in record_chunks[0].content

    registry.add_metadata_field(report_entry.id, "region", "EMEA")
    record = [chunk for chunk in registry.get(report_entry.id).chunks if RECORD_TAG in chunk.tags]
    assert len(record) == 1
    assert "EMEA" in record[0].content

    registry.set_record_structure(report_entry.id, "flat")
    assert registry.get(report_entry.id).chunks[-1].tags[-1] == "flat"

    entry = registry.set_record_level_indexing(report_entry.id, False)
    assert all(RECORD_TAG not in chunk.tags for chunk in entry.chunks)

    with pytest.raises(ValueError):
        registry.set_record_level_indexing(report_entry.id, True, "tree")


def test_index_configuration_reports_statistics(registry: DocumentRegistry, report_entry: DocumentEntry) -> None:
    index = registry.index_configuration(report_entry.id)
    payload = index.to_dict()

    assert payload["name"] == "quarterly_report-index"
    assert payload["createVectorEmbedding"] is True
    assert payload["fieldLevelIndexing"] is True
    content_field = next(item for item in payload["fields"] if item["name"] == "Content")
    assert content_field["apiName"] == "content"
    assert content_field["chunkingStrategy"] == "semantic"
    assert content_field["vectorEmbedding"] is True
    stats = payload["statistics"]
    assert stats["retrievableFields"] == 3
    assert stats["filterableFields"] == 1
    assert stats["totalVectorDimensions"] == 3072 * len(report_entry.chunks)


def test_build_search_corpus_prefixes_entity_ids(registry: DocumentRegistry, report_entry: DocumentEntry) -> None:
    registry.store_results(
        report_entry.id,
        {
            "rag": {},
            "kg": {
                "kg-entity-extraction": {
                    "entities": [
                        {"id": "1", "type": "COMPANY", "name": "ACME Corp", "properties": {}, "confidence": 0.9},
                        {"id": "2", "type": "PERSON", "name": "John Smith", "properties": {}, "confidence": 0.9},
                    ]
                },
                "kg-relation-mapping": {"relations": [{"source": "2", "target": "1", "type": "WORKS_AT"}]},
            },
            "idp": {
                "idp-classification": {"documentType": "report", "classification": ["Report Document"]},
                "idp-metadata-extraction": {"metadata": {"author": "Unknown"}},
            },
        },
    )

    corpus = registry.build_search_corpus()

    assert [entity.id for entity in corpus.entities] == [f"{report_entry.id}-1", f"{report_entry.id}-2"]
    assert corpus.relations[0].source == f"{report_entry.id}-2"
    assert corpus.documents[0].entity_count == 2
    assert corpus.documents[0].metadata == {"author": "Unknown"}
    assert corpus.chunk_sources[report_entry.id].file_name == "quarterly-report.md"
    with pytest.raises(LookupError):
        registry.build_search_corpus(["missing"])


def test_snake_case_handles_spaces_and_camel_case() -> None:
    assert snake_case("Document Type") == "document_type"
    assert snake_case("fileSize") == "file_size"
