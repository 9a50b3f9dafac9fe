"""In-memory registry of uploaded documents, their chunks, fields and processing state."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from .analyzer import DocumentCharacteristics
from .chunker import chunk_document
from .embeddings import AdvancedEmbeddingOptions, get_embedding_model
from .models import (
    RECORD_STRUCTURES,
    Chunk,
    Document,
    Field,
    IndexConfiguration,
    IndexField,
    IndexStatistics,
    MetadataField,
    ProcessingConfiguration,
    UploadedDocument,
)
from .records import build_record_chunk, strip_record_chunk
from .search import ChunkSource, IDPDocument, KGEntity, KGRelation, SearchCorpus

logger = logging.getLogger(__name__)

FIELD_PROPERTIES: tuple[str, ...] = ("retrievable", "filterable", "typehead")
METADATA_PROPERTIES: tuple[str, ...] = ("included", "value")

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_WORD_RE = re.compile(r"[^0-9a-zA-Z]+")


class DocumentNotFoundError(LookupError):
    """Raised when a document id is not registered."""


def snake_case(name: str) -> str:
    spaced = _CAMEL_BOUNDARY_RE.sub("_", name.strip())
    return _NON_WORD_RE.sub("_", spaced).strip("_").lower()


def build_chunks(
    document_id: str,
    title: str,
    text: str,
    *,
    method: str,
    chunk_size: int,
    chunk_overlap: int,
) -> list[Chunk]:
    """Chunk ``text`` and wrap the pieces as registry chunks numbered from 1."""

    pieces = chunk_document(text, method=method, chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    return [
        Chunk(
            id=index,
            document_id=document_id,
            title=piece.title or f"{title} (part {index})",
            content=piece.text,
            token_count=float(piece.token_count),
            chunk_index=index,
            tags=list(piece.tags),
        )
        for index, piece in enumerate(pieces, start=1)
    ]


@dataclass(slots=True)
class DocumentEntry:
    uploaded: UploadedDocument
    document: Document
    chunks: list[Chunk]
    fields: list[Field]
    metadata_fields: list[MetadataField]
    configuration: ProcessingConfiguration
    embedding_model: str
    analysis: DocumentCharacteristics | None = None
    embedding_options: AdvancedEmbeddingOptions = field(default_factory=AdvancedEmbeddingOptions)
    record_level_indexing: bool = False
    record_structure: str = "flat"
    results: dict[str, Any] = field(default_factory=dict)
    pipeline_status: dict[str, Any] | None = None
    pipeline_steps: list[dict[str, Any]] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.document.id

    @property
    def document_type(self) -> str:
        return self.analysis.document_type if self.analysis is not None else "unknown"

    def summary(self) -> dict[str, Any]:
        payload = self.uploaded.to_dict()
        payload.update(
            {
                "title": self.document.title,
                "pageCount": self.document.page_count,
                "documentType": self.document_type,
                "chunkCount": len(self.chunks),
                "recordLevelIndexing": self.record_level_indexing,
                "recordStructure": self.record_structure,
                "embeddingModel": self.embedding_model,
                "pipelineStatus": (self.pipeline_status or {}).get("status", "idle"),
            }
        )
        return payload


class DocumentRegistry:
    """Thread-safe, process-local store for everything known about each document."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, DocumentEntry] = {}

    # Registration --------------------------------------------------------

    def register(self, entry: DocumentEntry) -> DocumentEntry:
        with self._lock:
            self._entries[entry.id] = entry
            if entry.record_level_indexing:
                self._apply_record_chunk(entry)
        logger.info(
            "documents.registered document_id=%s name=%s chunks=%s",
            entry.id,
            entry.uploaded.name,
            len(entry.chunks),
        )
        return entry

    def get(self, document_id: str) -> DocumentEntry:
        with self._lock:
            return self._require(document_id)

    def list_documents(self) -> list[DocumentEntry]:
        with self._lock:
            entries = list(self._entries.values())
        return sorted(entries, key=lambda entry: entry.uploaded.upload_date, reverse=True)

    def delete(self, document_id: str) -> None:
        with self._lock:
            self._require(document_id)
            del self._entries[document_id]
        logger.info("documents.deleted document_id=%s", document_id)

    def _require(self, document_id: str) -> DocumentEntry:
        entry = self._entries.get(document_id)
        if entry is None:
            raise DocumentNotFoundError(f"Document '{document_id}' not found")
        return entry

    # Configuration and chunks --------------------------------------------

    def update_configuration(
        self,
        document_id: str,
        configuration: ProcessingConfiguration,
        *,
        embedding_model: str | None = None,
        embedding_options: AdvancedEmbeddingOptions | None = None,
    ) -> DocumentEntry:
        configuration.validate()
        if embedding_model is not None:
            get_embedding_model(embedding_model)
        with self._lock:
            entry = self._require(document_id)
            rag = configuration.rag
            entry.chunks = build_chunks(
                entry.id,
                entry.document.title,
                entry.document.content,
                method=rag.chunking_method,
                chunk_size=rag.chunk_size,
                chunk_overlap=rag.chunk_overlap,
            )
            entry.configuration = configuration
            if embedding_model is not None:
                entry.embedding_model = embedding_model
            if embedding_options is not None:
                entry.embedding_options = embedding_options
            if entry.record_level_indexing:
                self._apply_record_chunk(entry)
        logger.info(
            "documents.configured document_id=%s method=%s size=%s overlap=%s chunks=%s",
            document_id,
            configuration.rag.chunking_method,
            configuration.rag.chunk_size,
            configuration.rag.chunk_overlap,
            len(entry.chunks),
        )
        return entry

    def preview_chunks(self, document_id: str, method: str, chunk_size: int, chunk_overlap: int) -> list[Chunk]:
        with self._lock:
            entry = self._require(document_id)
            title, text = entry.document.title, entry.document.content
        return build_chunks(
            document_id,
            title,
            text,
            method=method,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
        )

    # Fields --------------------------------------------------------------

    def update_field(self, document_id: str, field_id: int, prop: str, value: bool) -> Field:
        if prop not in FIELD_PROPERTIES:
            raise ValueError(f"Field property must be one of {', '.join(FIELD_PROPERTIES)}")
        with self._lock:
            entry = self._require(document_id)
            target = _find_by_id(entry.fields, field_id, "Field")
            setattr(target, prop, bool(value))
            return target

    def add_metadata_field(self, document_id: str, name: str, value: str) -> MetadataField:
        name = name.strip()
        if not name:
            raise ValueError("Metadata field name is required")
        with self._lock:
            entry = self._require(document_id)
            if any(item.name == name for item in entry.metadata_fields):
                raise ValueError(f"Metadata field '{name}' already exists")
            item = MetadataField(
                id=max((existing.id for existing in entry.metadata_fields), default=0) + 1,
                name=name,
                value=str(value),
                included=True,
                confidence=1.0,
            )
            entry.metadata_fields.append(item)
            if entry.record_level_indexing:
                self._apply_record_chunk(entry)
            return item

    def update_metadata_field(self, document_id: str, field_id: int, prop: str, value: Any) -> MetadataField:
        if prop not in METADATA_PROPERTIES:
            raise ValueError(f"Metadata property must be one of {', '.join(METADATA_PROPERTIES)}")
        with self._lock:
            entry = self._require(document_id)
            target = _find_by_id(entry.metadata_fields, field_id, "Metadata field")
            if prop == "included":
                target.included = bool(value)
            else:
                target.value = str(value)
            if entry.record_level_indexing:
                self._apply_record_chunk(entry)
            return target

    # Record-level indexing ------------------------------------------------

    def set_record_level_indexing(
        self,
        document_id: str,
        enabled: bool,
        structure: str | None = None,
    ) -> DocumentEntry:
        if structure is not None and structure not in RECORD_STRUCTURES:
            raise ValueError(f"Record structure must be one of {', '.join(RECORD_STRUCTURES)}")
        with self._lock:
            entry = self._require(document_id)
            entry.record_level_indexing = bool(enabled)
            if structure is not None:
                entry.record_structure = structure
            if entry.record_level_indexing:
                self._apply_record_chunk(entry)
            else:
                entry.chunks = strip_record_chunk(entry.chunks)
            return entry

    def set_record_structure(self, document_id: str, structure: str) -> DocumentEntry:
        if structure not in RECORD_STRUCTURES:
            raise ValueError(f"Record structure must be one of {', '.join(RECORD_STRUCTURES)}")
        with self._lock:
            entry = self._require(document_id)
            entry.record_structure = structure
            if entry.record_level_indexing:
                self._apply_record_chunk(entry)
            return entry

    @staticmethod
    def _apply_record_chunk(entry: DocumentEntry) -> None:
        updated = build_record_chunk(
            entry.chunks,
            entry.metadata_fields,
            entry.record_structure,
            document_id=entry.id,
        )
        entry.chunks = updated if updated is not None else strip_record_chunk(entry.chunks)

    # Index configuration --------------------------------------------------

    def index_configuration(self, document_id: str) -> IndexConfiguration:
        with self._lock:
            entry = self._require(document_id)
            fields = list(entry.fields)
            chunks = list(entry.chunks)
            rag = entry.configuration.rag
            model_id = entry.embedding_model
            title = entry.document.title
            record_level = entry.record_level_indexing

        vectorize = rag.enabled and rag.vectorization
        index_fields = [
            IndexField(
                id=item.id,
                name=item.name,
                api_name=snake_case(item.name),
                data_type="Edm.String",
                is_retrievable=item.retrievable,
                is_filterable=item.filterable,
                is_typehead=item.typehead,
                chunking_strategy=rag.chunking_method if item.name == "Content" else None,
                vector_embedding=vectorize if item.name == "Content" else None,
            )
            for item in fields
        ]
        content_chunks = strip_record_chunk(chunks)
        average = (
            round(sum(chunk.token_count for chunk in content_chunks) / len(content_chunks), 1)
            if content_chunks
            else 0.0
        )
        dimensions = get_embedding_model(model_id).dimensions * len(chunks) if vectorize else 0
        statistics = IndexStatistics(
            total_fields_indexed=sum(
                1 for item in fields if item.retrievable or item.filterable or item.typehead
            ),
            retrievable_fields=sum(1 for item in fields if item.retrievable),
            filterable_fields=sum(1 for item in fields if item.filterable),
            average_chunk_size=average,
            total_vector_dimensions=dimensions,
        )
        return IndexConfiguration(
            name=f"{snake_case(title) or 'document'}-index",
            field_level_indexing=any(item.retrievable or item.filterable for item in fields),
            record_level_indexing=record_level,
            create_vector_embedding=vectorize,
            fields=index_fields,
            statistics=statistics,
        )

    # Pipeline state and results -------------------------------------------

    def update_pipeline(
        self,
        document_id: str,
        status: dict[str, Any],
        steps: Sequence[dict[str, Any]] | None = None,
    ) -> None:
        with self._lock:
            entry = self._require(document_id)
            entry.pipeline_status = dict(status)
            if steps is not None:
                entry.pipeline_steps = [dict(step) for step in steps]

    def store_results(self, document_id: str, results: dict[str, Any]) -> None:
        with self._lock:
            entry = self._require(document_id)
            entry.results = results
        logger.info(
            "documents.results.stored document_id=%s types=%s",
            document_id,
            ",".join(sorted(name for name, value in results.items() if value)) or "-",
        )

    def get_results(self, document_id: str) -> dict[str, Any]:
        with self._lock:
            return self._require(document_id).results

    # Search ---------------------------------------------------------------

    def build_search_corpus(self, document_ids: Iterable[str] | None = None) -> SearchCorpus:
        """Flatten chunks and stored pipeline results into a :class:`SearchCorpus`.

        Entity ids are prefixed with their document id so that results from
        several documents never collide; relations are rewritten to match.
        """

        with self._lock:
            if document_ids is None:
                entries = list(self._entries.values())
            else:
                entries = [self._require(document_id) for document_id in document_ids]

        corpus = SearchCorpus()
        for entry in entries:
            corpus.chunks.extend(entry.chunks)
            corpus.chunk_sources[entry.id] = ChunkSource(
                file_name=entry.uploaded.name,
                page=None,
                timestamp=entry.document.created_at,
            )
            kg = entry.results.get("kg") or {}
            raw_entities = (kg.get("kg-entity-extraction") or {}).get("entities", [])
            for item in raw_entities:
                corpus.entities.append(
                    KGEntity(
                        id=f"{entry.id}-{item['id']}",
                        name=str(item.get("name", "")),
                        type=str(item.get("type", "")),
                        properties=dict(item.get("properties") or {}),
                        confidence=item.get("confidence"),
                    )
                )
            for item in (kg.get("kg-relation-mapping") or {}).get("relations", []):
                corpus.relations.append(
                    KGRelation(
                        source=f"{entry.id}-{item['source']}",
                        target=f"{entry.id}-{item['target']}",
                        type=str(item.get("type", "")),
                        confidence=item.get("confidence"),
                    )
                )
            idp = entry.results.get("idp") or {}
            if idp:
                classification = idp.get("idp-classification") or {}
                corpus.documents.append(
                    IDPDocument(
                        document_id=entry.id,
                        file_name=entry.uploaded.name,
                        document_type=classification.get("documentType") or entry.document_type,
                        entity_count=len(raw_entities),
                        metadata=dict((idp.get("idp-metadata-extraction") or {}).get("metadata") or {}),
                        classification=list(classification.get("classification") or []),
                        timestamp=entry.document.created_at,
                    )
                )
        return corpus


def _find_by_id(items: Sequence[Any], item_id: int, label: str) -> Any:
    for item in items:
        if item.id == item_id:
            return item
    raise LookupError(f"{label} {item_id} not found")


__all__ = [
    "DocumentEntry",
    "DocumentNotFoundError",
    "DocumentRegistry",
    "FIELD_PROPERTIES",
    "METADATA_PROPERTIES",
    "build_chunks",
    "snake_case",
]
