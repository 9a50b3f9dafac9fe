"""Heuristic document analysis: type inference, profiles and processing recommendations."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field, replace
from pathlib import PurePath
from typing import Any

_MIB = 1024 * 1024

# Checked in order; first match wins.
_NAME_PATTERNS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("proposal", ("proposal",)),
    ("quote", ("quote", "quotation")),
    ("ticket", ("ticket", "case", "support")),
    ("sla", ("sla", "service-level", "service_level")),
    ("feedback", ("feedback", "survey", "review")),
    ("campaign", ("campaign",)),
    ("analytics", ("analytics", "metrics", "kpi")),
    ("content", ("content", "asset", "media")),
    ("invoice", ("invoice", "bill")),
    ("contract", ("contract", "agreement")),
    ("report", ("report", "analysis")),
    ("form", ("form", "application")),
    ("email", ("email", "message")),
    ("article", ("article", "blog")),
)

_EXTENSION_TYPES = {
    "ppt": "presentation",
    "pptx": "presentation",
    "xls": "spreadsheet",
    "xlsx": "spreadsheet",
    "csv": "spreadsheet",
}

DOCUMENT_TYPES: tuple[str, ...] = tuple(name for name, _ in _NAME_PATTERNS) + (
    "presentation",
    "spreadsheet",
    "unknown",
)

_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


@dataclass(slots=True)
class DocumentStructure:
    has_tables: bool = False
    has_lists: bool = False
    has_headers: bool = False
    has_footers: bool = False
    page_count: int = 1
    has_images: bool = False
    has_charts: bool = False
    form_fields: int = 0
    structure_complexity: str = "simple"

    def to_dict(self) -> dict[str, Any]:
        return {
            "hasTables": self.has_tables,
            "hasLists": self.has_lists,
            "hasHeaders": self.has_headers,
            "hasFooters": self.has_footers,
            "pageCount": self.page_count,
            "hasImages": self.has_images,
            "hasCharts": self.has_charts,
            "formFields": self.form_fields,
            "structureComplexity": self.structure_complexity,
        }


@dataclass(slots=True)
class ContentFeatures:
    language: str = "en"
    word_count: int = 1000
    avg_sentence_length: int = 15
    technical_content: bool = False
    financial_data: bool = False
    legal_content: bool = False
    has_named_entities: bool = False
    has_dates: bool = False
    has_amounts: bool = False
    top_keywords: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "language": self.language,
            "wordCount": self.word_count,
            "avgSentenceLength": self.avg_sentence_length,
            "technicalContent": self.technical_content,
            "financialData": self.financial_data,
            "legalContent": self.legal_content,
            "hasNamedEntities": self.has_named_entities,
            "hasDates": self.has_dates,
            "hasAmounts": self.has_amounts,
            "topKeywords": list(self.top_keywords),
        }


@dataclass(slots=True)
class RelationshipFeatures:
    entity_count: int
    potential_relations: int
    hierarchical_structure: bool
    temporal_references: bool
    cross_references: bool
    entity_types: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "entityCount": self.entity_count,
            "potentialRelations": self.potential_relations,
            "hierarchicalStructure": self.hierarchical_structure,
            "temporalReferences": self.temporal_references,
            "crossReferences": self.cross_references,
            "entityTypes": list(self.entity_types),
        }


@dataclass(slots=True)
class ProcessingRecommendation:
    processing_type: str
    priority: str
    reason: str
    suggested_config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processingType": self.processing_type,
            "priority": self.priority,
            "reason": self.reason,
            "suggestedConfig": dict(self.suggested_config),
        }


@dataclass(slots=True)
class DocumentCharacteristics:
    document_type: str
    structure: DocumentStructure
    content_features: ContentFeatures
    relationships: RelationshipFeatures
    processing_recommendations: list[ProcessingRecommendation]
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "documentType": self.document_type,
            "structure": self.structure.to_dict(),
            "contentFeatures": self.content_features.to_dict(),
            "relationships": self.relationships.to_dict(),
            "processingRecommendations": [item.to_dict() for item in self.processing_recommendations],
            "confidence": self.confidence,
        }


_STRUCTURES: dict[str, DocumentStructure] = {
    "form": DocumentStructure(
        has_tables=True, has_headers=True, page_count=2, form_fields=15, structure_complexity="moderate"
    ),
    "report": DocumentStructure(
        has_tables=True,
        has_lists=True,
        has_headers=True,
        has_footers=True,
        page_count=10,
        has_images=True,
        has_charts=True,
        structure_complexity="complex",
    ),
    "contract": DocumentStructure(
        has_lists=True, has_headers=True, has_footers=True, page_count=20, structure_complexity="complex"
    ),
    "invoice": DocumentStructure(
        has_tables=True, has_headers=True, has_footers=True, page_count=1, has_images=True, form_fields=10
    ),
    "email": DocumentStructure(has_headers=True, page_count=1),
    "article": DocumentStructure(has_lists=True, has_headers=True, page_count=5, has_images=True),
    "presentation": DocumentStructure(
        has_tables=True,
        has_lists=True,
        has_headers=True,
        page_count=25,
        has_images=True,
        has_charts=True,
        structure_complexity="moderate",
    ),
    "spreadsheet": DocumentStructure(
        has_tables=True, has_headers=True, page_count=5, has_charts=True, structure_complexity="moderate"
    ),
    "unknown": DocumentStructure(),
}

_CONTENT: dict[str, ContentFeatures] = {
    "form": ContentFeatures(
        word_count=500,
        avg_sentence_length=10,
        financial_data=True,
        has_named_entities=True,
        has_dates=True,
        has_amounts=True,
        top_keywords=["name", "address", "date", "amount", "signature"],
    ),
    "report": ContentFeatures(
        word_count=5000,
        avg_sentence_length=20,
        technical_content=True,
        financial_data=True,
        has_named_entities=True,
        has_dates=True,
        has_amounts=True,
        top_keywords=["analysis", "results", "conclusions", "recommendations", "data"],
    ),
    "contract": ContentFeatures(
        word_count=10000,
        avg_sentence_length=30,
        financial_data=True,
        legal_content=True,
        has_named_entities=True,
        has_dates=True,
        has_amounts=True,
        top_keywords=["party", "agreement", "terms", "conditions", "liability"],
    ),
    "invoice": ContentFeatures(
        word_count=200,
        avg_sentence_length=8,
        financial_data=True,
        has_named_entities=True,
        has_dates=True,
        has_amounts=True,
        top_keywords=["invoice", "total", "due", "payment", "item"],
    ),
    "email": ContentFeatures(
        word_count=300,
        avg_sentence_length=15,
        has_named_entities=True,
        has_dates=True,
        top_keywords=["meeting", "follow-up", "request", "update", "action"],
    ),
    "article": ContentFeatures(
        word_count=2000,
        avg_sentence_length=18,
        technical_content=True,
        has_named_entities=True,
        has_dates=True,
        top_keywords=["technology", "innovation", "development", "future", "impact"],
    ),
    "presentation": ContentFeatures(
        word_count=1500,
        avg_sentence_length=12,
        technical_content=True,
        financial_data=True,
        has_named_entities=True,
        has_dates=True,
        has_amounts=True,
        top_keywords=["overview", "objectives", "results", "strategy", "timeline"],
    ),
    "spreadsheet": ContentFeatures(
        word_count=1000,
        avg_sentence_length=5,
        financial_data=True,
        has_dates=True,
        has_amounts=True,
        top_keywords=["data", "column", "row", "total", "average"],
    ),
    "unknown": ContentFeatures(),
}


def file_extension(file_name: str) -> str:
    suffix = PurePath(file_name).suffix
    return suffix[1:].lower() if suffix else ""


def infer_document_type(file_name: str, file_type: str | None = None) -> str:
    lower_name = file_name.lower()
    for document_type, needles in _NAME_PATTERNS:
        if any(needle in lower_name for needle in needles):
            return document_type
    extension = (file_type or file_extension(file_name)).lower()
    return _EXTENSION_TYPES.get(extension, "unknown")


def structure_profile(document_type: str) -> DocumentStructure:
    profile = _STRUCTURES.get(document_type, _STRUCTURES["unknown"])
    return replace(profile)


def content_profile(document_type: str) -> ContentFeatures:
    profile = _CONTENT.get(document_type, _CONTENT["unknown"])
    return replace(profile, top_keywords=list(profile.top_keywords))


def analyze_relationships(content: ContentFeatures) -> RelationshipFeatures:
    word_count = content.word_count
    entities = content.has_named_entities
    return RelationshipFeatures(
        entity_count=word_count // 100 if entities else 0,
        potential_relations=word_count // 200 if entities and word_count > 1000 else 0,
        hierarchical_structure=content.technical_content or content.legal_content,
        temporal_references=content.has_dates,
        cross_references=word_count > 2000,
        entity_types=["Person", "Organization", "Location", "Date"] if entities else [],
    )


def generate_recommendations(
    document_type: str,
    structure: DocumentStructure,
    content: ContentFeatures,
    relationships: RelationshipFeatures,
) -> list[ProcessingRecommendation]:
    recommendations: list[ProcessingRecommendation] = []

    if content.word_count > 1000 or document_type in {"article", "report"}:
        recommendations.append(
            ProcessingRecommendation(
                "rag",
                "high",
                "Document contains substantial text content suitable for semantic search and retrieval",
                {
                    "chunkSize": 1000 if content.avg_sentence_length > 20 else 500,
                    "chunkOverlap": 100,
                    "embeddingModel": "technical-bert" if content.technical_content else "general-bert",
                },
            )
        )

    if relationships.entity_count > 5 and relationships.potential_relations > 3:
        recommendations.append(
            ProcessingRecommendation(
                "kg",
                "high",
                "Document contains multiple entities and relationships suitable for knowledge graph construction",
                {
                    "entityExtraction": True,
                    "relationshipMapping": True,
                    "entityTypes": list(relationships.entity_types),
                    "minConfidence": 0.7,
                },
            )
        )

    if (
        structure.has_tables
        or structure.form_fields > 0
        or document_type in {"invoice", "form"}
    ):
        recommendations.append(
            ProcessingRecommendation(
                "idp",
                "high",
                "Document contains structured data, forms, or tables that require specialized extraction",
                {
                    "extractTables": structure.has_tables,
                    "extractForms": structure.form_fields > 0,
                    "extractMetadata": True,
                    "ocrRequired": structure.has_images,
                },
            )
        )

    if content.financial_data and all(item.processing_type != "idp" for item in recommendations):
        recommendations.append(
            ProcessingRecommendation(
                "idp",
                "medium",
                "Document contains financial data that could benefit from structured extraction",
                {"extractAmounts": True, "extractDates": True, "extractTables": True},
            )
        )

    if content.has_named_entities and all(item.processing_type != "kg" for item in recommendations):
        recommendations.append(
            ProcessingRecommendation(
                "kg",
                "medium",
                "Document contains named entities that could be mapped to a knowledge graph",
                {
                    "entityExtraction": True,
                    "relationshipMapping": False,
                    "entityTypes": ["Person", "Organization", "Location"],
                },
            )
        )

    return sorted(recommendations, key=lambda item: _PRIORITY_ORDER[item.priority])


def calculate_confidence(document_type: str, structure: DocumentStructure, content: ContentFeatures) -> float:
    confidence = 0.5
    if document_type != "unknown":
        confidence += 0.2
    if structure.structure_complexity != "complex":
        confidence += 0.1
    if len(content.top_keywords) > 3:
        confidence += 0.1
    if content.has_named_entities:
        confidence += 0.1
    return min(round(confidence, 4), 1.0)


class DocumentAnalyzer:
    """Profile-driven analysis keyed on the inferred document type."""

    def analyze(self, file_name: str, file_type: str | None = None) -> DocumentCharacteristics:
        document_type = infer_document_type(file_name, file_type)
        structure = structure_profile(document_type)
        content = content_profile(document_type)
        relationships = analyze_relationships(content)
        return DocumentCharacteristics(
            document_type=document_type,
            structure=structure,
            content_features=content,
            relationships=relationships,
            processing_recommendations=generate_recommendations(document_type, structure, content, relationships),
            confidence=calculate_confidence(document_type, structure, content),
        )

    def quick_analysis(self, file_name: str, file_type: str | None = None) -> dict[str, Any]:
        characteristics = self.analyze(file_name, file_type)
        return {
            "documentType": characteristics.document_type,
            "recommendedProcessing": [
                item.to_dict() for item in characteristics.processing_recommendations if item.priority == "high"
            ],
        }

    def summarize_upload(
        self,
        file_name: str,
        file_type: str | None,
        file_size: int,
        rng: random.Random,
    ) -> dict[str, Any]:
        """Produce the lightweight upload analysis returned before a document is ingested."""

        if not file_name:
            raise ValueError("fileName is required")
        if file_size < 0:
            raise ValueError("fileSize must be non-negative")
        file_type = (file_type or file_extension(file_name)).lower()
        lower_name = file_name.lower()

        analysis = {
            "documentType": _upload_document_type(lower_name),
            "structure": {
                "hasTables": file_type == "xlsx" or rng.random() > 0.5,
                "hasLists": rng.random() > 0.5,
                "hasImages": rng.random() > 0.7,
                "formFields": rng.randint(0, 19) if file_type == "pdf" else 0,
                "pageCount": math.ceil(file_size / _MIB),
                "structureComplexity": "complex" if file_size > 5 * _MIB else "simple",
            },
            "contentFeatures": {
                "language": "en",
                "wordCount": file_size // 5,
                "hasNamedEntities": True,
                "hasFinancialData": "invoice" in lower_name or "financial" in lower_name,
                "topKeywords": _upload_keywords(lower_name),
            },
            "relationships": {
                "entityCount": rng.randint(5, 24),
                "potentialRelations": rng.randint(2, 11),
            },
            "confidence": round(0.75 + rng.random() * 0.2, 4),
        }
        return {
            "success": True,
            "analysis": analysis,
            "recommendations": _upload_recommendations(analysis),
        }


def _upload_document_type(lower_name: str) -> str:
    for candidate in ("invoice", "contract", "report", "form"):
        if candidate in lower_name:
            return candidate
    return "unknown"


def _upload_keywords(lower_name: str) -> list[str]:
    keywords = ["document", "data", "information"]
    if "financial" in lower_name:
        return keywords + ["financial", "revenue", "costs", "profit"]
    if "contract" in lower_name:
        return keywords + ["agreement", "terms", "parties", "obligations"]
    return keywords


def _upload_recommendations(analysis: dict[str, Any]) -> list[dict[str, Any]]:
    recommendations: list[dict[str, Any]] = []
    if analysis["contentFeatures"]["wordCount"] > 1000:
        recommendations.append(
            {
                "processingType": "rag",
                "priority": "high",
                "reason": "Document contains substantial text content suitable for semantic search",
            }
        )
    if analysis["relationships"]["entityCount"] > 5:
        recommendations.append(
            {
                "processingType": "kg",
                "priority": "high",
                "reason": "Document contains multiple entities suitable for knowledge graph construction",
            }
        )
    structure = analysis["structure"]
    if structure["hasTables"] or structure["formFields"] > 0:
        recommendations.append(
            {
                "processingType": "idp",
                "priority": "high",
                "reason": "Document contains structured data requiring specialized extraction",
            }
        )
    return recommendations


__all__ = [
    "ContentFeatures",
    "DOCUMENT_TYPES",
    "DocumentAnalyzer",
    "DocumentCharacteristics",
    "DocumentStructure",
    "ProcessingRecommendation",
    "RelationshipFeatures",
    "analyze_relationships",
    "calculate_confidence",
    "content_profile",
    "file_extension",
    "generate_recommendations",
    "infer_document_type",
    "structure_profile",
]
