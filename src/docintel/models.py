"""Shared data model for documents, chunks, fields and processing configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, get_args

ChunkingMethod = Literal["semantic", "fixed", "header"]
ProcessingMode = Literal["standard", "idp", "kg"]
RecordStructure = Literal["flat", "nested", "custom"]
ProcessingType = Literal["rag", "kg", "idp"]

CHUNKING_METHODS: tuple[str, ...] = get_args(ChunkingMethod)
PROCESSING_MODES: tuple[str, ...] = get_args(ProcessingMode)
RECORD_STRUCTURES: tuple[str, ...] = get_args(RecordStructure)
PROCESSING_TYPES: tuple[str, ...] = get_args(ProcessingType)

MIN_CHUNK_SIZE = 50
MAX_CHUNK_SIZE = 2000


@dataclass(slots=True)
class Document:
    id: str
    title: str
    content: str
    page_count: int
    user_id: str | None
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "pageCount": self.page_count,
            "userId": self.user_id,
            "createdAt": self.created_at,
        }


@dataclass(slots=True)
class Chunk:
    id: int
    document_id: str
    title: str
    content: str
    token_count: float
    chunk_index: int
    tags: list[str] = field(default_factory=list)

    @property
    def is_record(self) -> bool:
        return "document-record" in self.tags

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "documentId": self.document_id,
            "title": self.title,
            "content": self.content,
            "tokenCount": self.token_count,
            "chunkIndex": self.chunk_index,
            "tags": list(self.tags),
        }


@dataclass(slots=True)
class Field:
    """A document field that can be exposed in the search index."""

    id: int
    name: str
    document_id: str
    retrievable: bool = True
    filterable: bool = False
    typehead: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "documentId": self.document_id,
            "retrievable": self.retrievable,
            "filterable": self.filterable,
            "typehead": self.typehead,
        }


@dataclass(slots=True)
class MetadataField:
    id: int
    name: str
    value: str
    included: bool = True
    confidence: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "value": self.value,
            "included": self.included,
            "confidence": self.confidence,
        }


@dataclass(slots=True)
class UploadedDocument:
    id: str
    name: str
    type: str
    size: int
    upload_date: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "size": self.size,
            "uploadDate": self.upload_date,
        }


@dataclass(slots=True)
class IndexStatistics:
    total_fields_indexed: int
    retrievable_fields: int
    filterable_fields: int
    average_chunk_size: float
    total_vector_dimensions: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalFieldsIndexed": self.total_fields_indexed,
            "retrievableFields": self.retrievable_fields,
            "filterableFields": self.filterable_fields,
            "averageChunkSize": self.average_chunk_size,
            "totalVectorDimensions": self.total_vector_dimensions,
        }


@dataclass(slots=True)
class IndexField:
    id: int
    name: str
    api_name: str
    data_type: str
    is_retrievable: bool
    is_filterable: bool
    is_typehead: bool
    chunking_strategy: str | None = None
    vector_embedding: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "apiName": self.api_name,
            "dataType": self.data_type,
            "isRetrievable": self.is_retrievable,
            "isFilterable": self.is_filterable,
            "isTypehead": self.is_typehead,
            "chunkingStrategy": self.chunking_strategy,
            "vectorEmbedding": self.vector_embedding,
        }


@dataclass(slots=True)
class IndexConfiguration:
    name: str
    field_level_indexing: bool
    record_level_indexing: bool
    create_vector_embedding: bool
    fields: list[IndexField]
    statistics: IndexStatistics

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "fieldLevelIndexing": self.field_level_indexing,
            "recordLevelIndexing": self.record_level_indexing,
            "createVectorEmbedding": self.create_vector_embedding,
            "fields": [item.to_dict() for item in self.fields],
            "statistics": self.statistics.to_dict(),
        }


@dataclass(slots=True)
class RagSettings:
    enabled: bool = True
    chunking: bool = True
    vectorization: bool = True
    indexing: bool = True
    chunk_size: int = 150
    chunk_overlap: int = 20
    chunking_method: str = "semantic"


@dataclass(slots=True)
class KgSettings:
    enabled: bool = False
    entity_extraction: bool = True
    relation_mapping: bool = True
    graph_building: bool = True
    entity_types: list[str] = field(default_factory=list)
    relation_types: list[str] = field(default_factory=list)


@dataclass(slots=True)
class IdpSettings:
    enabled: bool = False
    text_extraction: bool = True
    classification: bool = True
    metadata: bool = True
    extract_tables: bool = False
    extract_forms: bool = False
    extraction_rules: list[dict[str, str]] = field(default_factory=list)


@dataclass(slots=True)
class ProcessingConfiguration:
    """Which processing types run for a document, and with which settings."""

    rag: RagSettings = field(default_factory=RagSettings)
    kg: KgSettings = field(default_factory=KgSettings)
    idp: IdpSettings = field(default_factory=IdpSettings)

    def validate(self) -> "ProcessingConfiguration":
        rag = self.rag
        if rag.chunking_method not in CHUNKING_METHODS:
            raise ValueError(f"Unknown chunking method '{rag.chunking_method}'")
        if not MIN_CHUNK_SIZE <= rag.chunk_size <= MAX_CHUNK_SIZE:
            raise ValueError(f"chunkSize must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE}")
        if rag.chunk_overlap < 0 or rag.chunk_overlap >= rag.chunk_size:
            raise ValueError("chunkOverlap must be non-negative and smaller than chunkSize")
        return self

    @property
    def enabled_types(self) -> list[str]:
        return [name for name in PROCESSING_TYPES if getattr(self, name).enabled]

    def to_dict(self) -> dict[str, Any]:
        return {
            "processingTypes": {name: getattr(self, name).enabled for name in PROCESSING_TYPES},
            "ragSettings": {
                "chunking": self.rag.chunking,
                "vectorization": self.rag.vectorization,
                "indexing": self.rag.indexing,
                "chunkSize": self.rag.chunk_size,
                "chunkOverlap": self.rag.chunk_overlap,
                "chunkingMethod": self.rag.chunking_method,
            },
            "kgSettings": {
                "entityExtraction": self.kg.entity_extraction,
                "relationMapping": self.kg.relation_mapping,
                "graphBuilding": self.kg.graph_building,
                "entityTypes": list(self.kg.entity_types),
                "relationTypes": list(self.kg.relation_types),
            },
            "idpSettings": {
                "textExtraction": self.idp.text_extraction,
                "classification": self.idp.classification,
                "metadata": self.idp.metadata,
                "extractTables": self.idp.extract_tables,
                "extractForms": self.idp.extract_forms,
                "extractionRules": [dict(rule) for rule in self.idp.extraction_rules],
            },
        }

    @classmethod
    def from_dict(
        cls,
        payload: dict[str, Any] | None,
        *,
        base: "ProcessingConfiguration | None" = None,
    ) -> "ProcessingConfiguration":
        """Build a configuration from the camelCase payload used by the API and templates.

        Missing sections keep the values of ``base`` (or the defaults), so a
        template that only describes RAG settings leaves KG/IDP switched off.
        """

        if payload is not None and not isinstance(payload, dict):
            raise ValueError("Processing configuration must be an object")
        payload = payload or {}
        config = base.copy() if base is not None else cls()
        types = payload.get("processingTypes") or {}
        if not isinstance(types, dict):
            raise ValueError("processingTypes must be an object")
        for name in PROCESSING_TYPES:
            if name in types:
                getattr(config, name).enabled = bool(types[name])

        rag = _section(payload, "ragSettings")
        config.rag.chunking = bool(rag.get("chunking", config.rag.chunking))
        config.rag.vectorization = bool(rag.get("vectorization", config.rag.vectorization))
        config.rag.indexing = bool(rag.get("indexing", config.rag.indexing))
        config.rag.chunk_size = _as_int(rag.get("chunkSize", config.rag.chunk_size), "chunkSize")
        config.rag.chunk_overlap = _as_int(rag.get("chunkOverlap", config.rag.chunk_overlap), "chunkOverlap")
        config.rag.chunking_method = str(rag.get("chunkingMethod", config.rag.chunking_method))

        kg = _section(payload, "kgSettings")
        config.kg.entity_extraction = bool(kg.get("entityExtraction", config.kg.entity_extraction))
        config.kg.relation_mapping = bool(kg.get("relationMapping", config.kg.relation_mapping))
        config.kg.graph_building = bool(kg.get("graphBuilding", config.kg.graph_building))
        config.kg.entity_types = [str(item) for item in kg.get("entityTypes", config.kg.entity_types)]
        config.kg.relation_types = [str(item) for item in kg.get("relationTypes", config.kg.relation_types)]

        idp = _section(payload, "idpSettings")
        config.idp.text_extraction = bool(idp.get("textExtraction", config.idp.text_extraction))
        config.idp.classification = bool(idp.get("classification", config.idp.classification))
        config.idp.metadata = bool(idp.get("metadata", config.idp.metadata))
        config.idp.extract_tables = bool(idp.get("extractTables", config.idp.extract_tables))
        config.idp.extract_forms = bool(idp.get("extractForms", config.idp.extract_forms))
        rules = idp.get("extractionRules", config.idp.extraction_rules)
        config.idp.extraction_rules = [
            {"field": str(rule.get("field", "")), "pattern": str(rule.get("pattern", ""))}
            for rule in rules
            if isinstance(rule, dict) and rule.get("field") and rule.get("pattern")
        ]
        return config.validate()

    def copy(self) -> "ProcessingConfiguration":
        return ProcessingConfiguration(
            rag=RagSettings(
                enabled=self.rag.enabled,
                chunking=self.rag.chunking,
                vectorization=self.rag.vectorization,
                indexing=self.rag.indexing,
                chunk_size=self.rag.chunk_size,
                chunk_overlap=self.rag.chunk_overlap,
                chunking_method=self.rag.chunking_method,
            ),
            kg=KgSettings(
                enabled=self.kg.enabled,
                entity_extraction=self.kg.entity_extraction,
                relation_mapping=self.kg.relation_mapping,
                graph_building=self.kg.graph_building,
                entity_types=list(self.kg.entity_types),
                relation_types=list(self.kg.relation_types),
            ),
            idp=IdpSettings(
                enabled=self.idp.enabled,
                text_extraction=self.idp.text_extraction,
                classification=self.idp.classification,
                metadata=self.idp.metadata,
                extract_tables=self.idp.extract_tables,
                extract_forms=self.idp.extract_forms,
                extraction_rules=[dict(rule) for rule in self.idp.extraction_rules],
            ),
        )


def _section(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be an object")
    return value


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer") from exc


__all__ = [
    "CHUNKING_METHODS",
    "Chunk",
    "ChunkingMethod",
    "Document",
    "Field",
    "IdpSettings",
    "IndexConfiguration",
    "IndexField",
    "IndexStatistics",
    "KgSettings",
    "MAX_CHUNK_SIZE",
    "MIN_CHUNK_SIZE",
    "MetadataField",
    "PROCESSING_MODES",
    "PROCESSING_TYPES",
    "ProcessingConfiguration",
    "ProcessingMode",
    "ProcessingType",
    "RECORD_STRUCTURES",
    "RagSettings",
    "RecordStructure",
    "UploadedDocument",
]
