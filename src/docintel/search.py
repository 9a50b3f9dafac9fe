"""Unified keyword search across RAG chunks, KG entities/relations and IDP metadata."""

from __future__ import annotations

import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from .models import PROCESSING_TYPES, Chunk
from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

SORT_FIELDS: tuple[str, ...] = ("relevance", "date", "type", "confidence")
SORT_ORDERS: tuple[str, ...] = ("asc", "desc")
DEFAULT_LIMIT = 20
SNIPPET_RADIUS = 50
CONTENT_PREVIEW_CHARS = 200

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ENTITY_INTENT_RE = re.compile(r"\b(who|what|where|entity|person|company|organization)\b")
_RELATIONSHIP_INTENT_RE = re.compile(r"\b(how|why|relationship|between|connected)\b")
_METADATA_INTENT_RE = re.compile(r"\b(metadata|property|attribute|field)\b")
_DATE_FILTER_RE = re.compile(r"\b(after|before|since|until)\s+(\d{4}-\d{2}-\d{2})")
_TYPE_FILTER_RE = re.compile(r"\btype:(\w+)")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# Corpus ------------------------------------------------------------------


@dataclass(slots=True)
class ChunkSource:
    file_name: str | None = None
    page: int | None = None
    timestamp: str | None = None


@dataclass(slots=True)
class KGEntity:
    id: str
    name: str
    type: str
    properties: dict[str, Any] = field(default_factory=dict)
    confidence: float | None = None


@dataclass(slots=True)
class KGRelation:
    source: str
    target: str
    type: str
    confidence: float | None = None


@dataclass(slots=True)
class IDPDocument:
    document_id: str
    file_name: str | None = None
    document_type: str | None = None
    entity_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    classification: list[str] = field(default_factory=list)
    timestamp: str | None = None


@dataclass(slots=True)
class SearchCorpus:
    """Everything the unified search can see, already flattened per source."""

    chunks: list[Chunk] = field(default_factory=list)
    chunk_sources: dict[str, ChunkSource] = field(default_factory=dict)
    entities: list[KGEntity] = field(default_factory=list)
    relations: list[KGRelation] = field(default_factory=list)
    documents: list[IDPDocument] = field(default_factory=list)


# Query model -------------------------------------------------------------


@dataclass(slots=True)
class SearchFilters:
    types: list[str] = field(default_factory=lambda: list(PROCESSING_TYPES))
    date_range: tuple[datetime, datetime] | None = None
    min_score: float | None = None
    tags: list[str] = field(default_factory=list)
    entity_types: list[str] | None = None
    document_types: list[str] | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "SearchFilters":
        payload = payload or {}
        if not isinstance(payload, dict):
            raise ValueError("filters must be an object")
        types = payload.get("types")
        if types is None:
            types = list(PROCESSING_TYPES)
        elif not isinstance(types, list):
            raise ValueError("types must be a list")
        unknown = [item for item in types if item not in PROCESSING_TYPES]
        if unknown:
            raise ValueError(f"Unknown result types: {', '.join(map(str, unknown))}")

        date_range = None
        raw_range = payload.get("dateRange")
        if raw_range:
            if not isinstance(raw_range, dict):
                raise ValueError("dateRange must be an object")
            start = parse_timestamp(raw_range.get("start"))
            end = parse_timestamp(raw_range.get("end"))
            if start is None or end is None:
                raise ValueError("dateRange requires ISO start and end values")
            date_range = (start, end)

        tags = payload.get("tags") or []
        if not isinstance(tags, list):
            raise ValueError("tags must be a list")
        min_score = payload.get("minScore")
        try:
            min_score = float(min_score) if min_score is not None else None
        except (TypeError, ValueError) as exc:
            raise ValueError("minScore must be a number") from exc
        return cls(
            types=list(types),
            date_range=date_range,
            min_score=min_score,
            tags=[str(tag) for tag in tags],
            entity_types=_optional_list(payload.get("entityTypes")),
            document_types=_optional_list(payload.get("documentTypes")),
        )


def _optional_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValueError("entityTypes and documentTypes must be lists")
    return [str(item) for item in value]


@dataclass(slots=True)
class SearchOptions:
    limit: int = DEFAULT_LIMIT
    offset: int = 0
    sort_by: str = "relevance"
    sort_order: str = "desc"

    def __post_init__(self) -> None:
        if self.sort_by not in SORT_FIELDS:
            raise ValueError(f"sortBy must be one of {', '.join(SORT_FIELDS)}")
        if self.sort_order not in SORT_ORDERS:
            raise ValueError("sortOrder must be 'asc' or 'desc'")
        if self.limit < 0 or self.offset < 0:
            raise ValueError("limit and offset must be non-negative")

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "SearchOptions":
        payload = payload or {}
        try:
            return cls(
                limit=int(payload.get("limit", DEFAULT_LIMIT)),
                offset=int(payload.get("offset", 0)),
                sort_by=str(payload.get("sortBy", "relevance")),
                sort_order=str(payload.get("sortOrder", "desc")),
            )
        except (TypeError, ValueError) as exc:
            raise ValueError(str(exc)) from exc


@dataclass(slots=True)
class QueryIntent:
    primary: str
    search_types: list[str]
    keywords: list[str]
    date_range: tuple[datetime, datetime] | None = None
    entity_types: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        filters: dict[str, Any] = {}
        if self.date_range is not None:
            filters["dateRange"] = {
                "start": self.date_range[0].isoformat(),
                "end": self.date_range[1].isoformat(),
            }
        if self.entity_types is not None:
            filters["entityTypes"] = list(self.entity_types)
        return {
            "primary": self.primary,
            "searchTypes": list(self.search_types),
            "keywords": list(self.keywords),
            "filters": filters,
        }


@dataclass(slots=True)
class Highlight:
    field: str
    snippet: str
    positions: list[tuple[int, int]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "snippet": self.snippet,
            "positions": [list(position) for position in self.positions],
        }


@dataclass(slots=True)
class SearchResult:
    id: str
    type: str
    sub_type: str | None
    title: str
    content: str
    relevance_score: float
    metadata: dict[str, Any] = field(default_factory=dict)
    highlights: list[Highlight] = field(default_factory=list)
    source: dict[str, Any] | None = None
    highlighted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "subType": self.sub_type,
            "title": self.title,
            "content": self.content,
            "relevanceScore": self.relevance_score,
            "metadata": dict(self.metadata),
            "highlights": [item.to_dict() for item in self.highlights],
            "source": dict(self.source) if self.source is not None else None,
            "highlighted": self.highlighted,
        }


@dataclass(slots=True)
class SearchResponse:
    results: list[SearchResult]
    total: int
    facets: dict[str, dict[str, int]]
    intent: QueryIntent | None
    suggestions: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [item.to_dict() for item in self.results],
            "total": self.total,
            "facets": {key: dict(value) for key, value in self.facets.items()},
            "intent": self.intent.to_dict() if self.intent is not None else None,
            "suggestions": list(self.suggestions),
        }


# Intent ------------------------------------------------------------------


def analyze_query_intent(
    query: str,
    default_types: Sequence[str] = PROCESSING_TYPES,
    *,
    now: datetime | None = None,
) -> QueryIntent:
    lower = query.lower()
    keywords = query.split()
    if _ENTITY_INTENT_RE.search(lower):
        primary, types = "entity", ["kg"]
    elif _RELATIONSHIP_INTENT_RE.search(lower):
        primary, types = "relationship", ["kg", "rag"]
    elif _METADATA_INTENT_RE.search(lower):
        primary, types = "metadata", ["idp"]
    else:
        primary, types = "search", list(default_types)

    date_range = None
    date_match = _DATE_FILTER_RE.search(query)
    if date_match:
        operator, raw_date = date_match.groups()
        try:
            date = datetime.strptime(raw_date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        except ValueError:
            date = None
        if date is not None:
            if operator in ("after", "since"):
                date_range = (date, now or _now())
            else:
                date_range = (_EPOCH, date)

    entity_types = None
    type_match = _TYPE_FILTER_RE.search(query)
    if type_match:
        entity_types = [type_match.group(1).upper()]

    return QueryIntent(
        primary=primary,
        search_types=types,
        keywords=keywords,
        date_range=date_range,
        entity_types=entity_types,
    )


def generate_suggestions(query: str) -> list[str]:
    if len(query) <= 2:
        return []
    return [
        f"{query} in documents",
        f"entity: {query}",
        f"relationship: {query}",
        f"metadata: {query}",
        f'"{query}" (exact match)',
    ]


# Scoring -----------------------------------------------------------------


def _contains(haystack: Any, needle: str) -> bool:
    return needle in str(haystack).lower()


def _content_highlight(content: str, keyword: str) -> Highlight | None:
    index = content.lower().find(keyword)
    if index < 0:
        return None
    start = max(0, index - SNIPPET_RADIUS)
    end = min(len(content), index + len(keyword) + SNIPPET_RADIUS)
    return Highlight(
        field="content",
        snippet=content[start:end],
        positions=[(index - start, index - start + len(keyword))],
    )


def search_chunks(
    chunks: Iterable[Chunk],
    sources: dict[str, ChunkSource],
    keywords: Sequence[str],
) -> list[SearchResult]:
    results: list[SearchResult] = []
    lowered = [keyword.lower() for keyword in keywords]
    for chunk in chunks:
        score = 0
        highlights: list[Highlight] = []
        for keyword in lowered:
            if _contains(chunk.title, keyword):
                score += 3
            if _contains(chunk.content, keyword):
                score += 2
                highlight = _content_highlight(chunk.content, keyword)
                if highlight is not None:
                    highlights.append(highlight)
            if any(_contains(tag, keyword) for tag in chunk.tags):
                score += 1
        if score == 0:
            continue
        source = sources.get(chunk.document_id) or ChunkSource()
        results.append(
            SearchResult(
                id=f"rag-{chunk.document_id}-{chunk.id}",
                type="rag",
                sub_type="chunk",
                title=chunk.title,
                content=chunk.content[:CONTENT_PREVIEW_CHARS] + "...",
                relevance_score=score / (len(lowered) * 6),
                metadata={
                    "documentId": chunk.document_id,
                    "tags": list(chunk.tags),
                    "timestamp": source.timestamp,
                },
                highlights=highlights,
                source={"file": source.file_name, "page": source.page},
            )
        )
    return results


def search_entities(entities: Iterable[KGEntity], keywords: Sequence[str]) -> list[SearchResult]:
    results: list[SearchResult] = []
    lowered = [keyword.lower() for keyword in keywords]
    for entity in entities:
        score = 0
        highlights: list[Highlight] = []
        for keyword in lowered:
            index = entity.name.lower().find(keyword)
            if index >= 0:
                score += 3
                highlights.append(Highlight("name", entity.name, [(index, index + len(keyword))]))
            if _contains(entity.type, keyword):
                score += 2
            if any(_contains(value, keyword) for value in entity.properties.values()):
                score += 1
        if score == 0:
            continue
        results.append(
            SearchResult(
                id=f"kg-entity-{entity.id}",
                type="kg",
                sub_type="entity",
                title=entity.name,
                content=f"{entity.type} entity with {len(entity.properties)} properties",
                relevance_score=score / (len(lowered) * 6),
                metadata={
                    "entityType": entity.type,
                    "properties": dict(entity.properties),
                    "confidence": entity.confidence,
                },
                highlights=highlights,
            )
        )
    return results


def search_relations(
    relations: Sequence[KGRelation],
    entities: Iterable[KGEntity],
    keywords: Sequence[str],
) -> list[SearchResult]:
    names = {entity.id: entity.name for entity in entities}
    results: list[SearchResult] = []
    lowered = [keyword.lower() for keyword in keywords]
    for index, relation in enumerate(relations):
        source = names.get(relation.source, relation.source)
        target = names.get(relation.target, relation.target)
        score = 0
        for keyword in lowered:
            if _contains(relation.type, keyword):
                score += 2
            if _contains(source, keyword) or _contains(target, keyword):
                score += 1
        if score == 0:
            continue
        results.append(
            SearchResult(
                id=f"kg-relation-{index}",
                type="kg",
                sub_type="relationship",
                title=f"{source} → {target}",
                content=f"Relationship: {relation.type}",
                relevance_score=score / (len(lowered) * 4),
                metadata={"relationType": relation.type, "confidence": relation.confidence},
            )
        )
    return results


def search_idp_documents(documents: Iterable[IDPDocument], keywords: Sequence[str]) -> list[SearchResult]:
    results: list[SearchResult] = []
    lowered = [keyword.lower() for keyword in keywords]
    for document in documents:
        results.extend(_search_idp_document(document, lowered))
    return results


def _search_idp_document(document: IDPDocument, keywords: Sequence[str]) -> list[SearchResult]:
    results: list[SearchResult] = []
    score = 0
    for keyword in keywords:
        if document.file_name and _contains(document.file_name, keyword):
            score += 3
        if document.document_type and _contains(document.document_type, keyword):
            score += 2
        if any(_contains(key, keyword) or _contains(value, keyword) for key, value in document.metadata.items()):
            score += 1
    if score:
        metadata: dict[str, Any] = {
            "documentId": document.document_id,
            "documentType": document.document_type,
            "entityCount": document.entity_count,
            "timestamp": document.timestamp,
        }
        metadata.update(document.metadata)
        results.append(
            SearchResult(
                id=f"idp-doc-{document.document_id}",
                type="idp",
                sub_type=document.document_type or "document",
                title=document.file_name or "Unknown Document",
                content=f"Document type: {document.document_type or 'Unknown'}, Entities: {document.entity_count}",
                relevance_score=score / (len(keywords) * 6),
                metadata=metadata,
            )
        )

    for key, value in document.metadata.items():
        text = f"{key}: {value}"
        lowered_text = text.lower()
        matched = 0
        highlights: list[Highlight] = []
        for keyword in keywords:
            if _contains(key, keyword) or _contains(value, keyword):
                matched += 1
                position = lowered_text.find(keyword)
                highlights.append(Highlight("metadata", text, [(position, position + len(keyword))]))
        if matched:
            results.append(
                SearchResult(
                    id=f"idp-metadata-{document.document_id}-{key}",
                    type="idp",
                    sub_type="metadata",
                    title=str(key),
                    content=str(value),
                    relevance_score=matched / len(keywords),
                    metadata={
                        "documentId": document.document_id,
                        "documentType": document.document_type,
                        "source": "Document Metadata",
                        "timestamp": document.timestamp,
                    },
                    highlights=highlights,
                )
            )

    for index, label in enumerate(document.classification):
        matched = sum(1 for keyword in keywords if _contains(label, keyword))
        if matched:
            results.append(
                SearchResult(
                    id=f"idp-classification-{document.document_id}-{index}",
                    type="idp",
                    sub_type="classification",
                    title="Document Classification",
                    content=label,
                    relevance_score=matched / len(keywords),
                    metadata={
                        "documentId": document.document_id,
                        "documentType": document.document_type,
                        "source": "Document Processing",
                        "timestamp": document.timestamp,
                    },
                    highlights=[Highlight("classification", label, [(0, len(label))])],
                )
            )
    return results


# Filtering, sorting, facets -------------------------------------------------


def apply_filters(results: Iterable[SearchResult], filters: SearchFilters) -> list[SearchResult]:
    kept: list[SearchResult] = []
    for result in results:
        if result.type not in filters.types:
            continue
        if filters.min_score and result.relevance_score < filters.min_score:
            continue
        if filters.tags:
            result_tags = result.metadata.get("tags") or []
            if not any(tag in result_tags for tag in filters.tags):
                continue
        if filters.entity_types is not None and result.type == "kg" and result.sub_type == "entity":
            if result.metadata.get("entityType") not in filters.entity_types:
                continue
        document_type = result.metadata.get("documentType")
        if filters.document_types is not None and result.type == "idp" and document_type:
            if document_type not in filters.document_types:
                continue
        if filters.date_range is not None:
            timestamp = parse_timestamp(result.metadata.get("timestamp"))
            if timestamp is not None:
                start, end = filters.date_range
                if timestamp < start or timestamp > end:
                    continue
        kept.append(result)
    return kept


def _confidence_key(item: SearchResult) -> float:
    return -(item.metadata.get("confidence") or 0)


def _type_key(item: SearchResult) -> str:
    return item.type


def _date_key(item: SearchResult) -> float:
    return -(parse_timestamp(item.metadata.get("timestamp")) or _EPOCH).timestamp()


def _relevance_key(item: SearchResult) -> float:
    return -item.relevance_score


_SORT_KEYS = {
    "relevance": _relevance_key,
    "confidence": _confidence_key,
    "type": _type_key,
    "date": _date_key,
}


def sort_results(results: Iterable[SearchResult], options: SearchOptions) -> list[SearchResult]:
    ordered = sorted(results, key=_SORT_KEYS.get(options.sort_by, _relevance_key))
    if options.sort_order == "asc":
        ordered.reverse()
    return ordered


def compute_facets(results: Iterable[SearchResult]) -> dict[str, dict[str, int]]:
    types: dict[str, int] = {name: 0 for name in PROCESSING_TYPES}
    tags: Counter[str] = Counter()
    entity_types: Counter[str] = Counter()
    document_types: Counter[str] = Counter()
    for result in results:
        types[result.type] = types.get(result.type, 0) + 1
        tags.update(result.metadata.get("tags") or [])
        if result.type == "kg" and result.sub_type == "entity" and result.metadata.get("entityType"):
            entity_types[result.metadata["entityType"]] += 1
        if result.type == "idp" and result.metadata.get("documentType"):
            document_types[result.metadata["documentType"]] += 1
    return {
        "types": types,
        "tags": dict(tags),
        "entityTypes": dict(entity_types),
        "documentTypes": dict(document_types),
    }


def _empty_response() -> SearchResponse:
    return SearchResponse(results=[], total=0, facets=compute_facets([]), intent=None, suggestions=[])


class UnifiedSearch:
    """Keyword search over a :class:`SearchCorpus` with filters, facets and paging.

    Scores are normalised per source: every matched field adds its weight and
    the sum is divided by the best possible score for the number of keywords.
    """

    def __init__(self, *, metrics: MetricsRecorder | None = None) -> None:
        self._metrics = metrics
        self._highlighted: set[str] = set()

    @property
    def highlighted(self) -> frozenset[str]:
        return frozenset(self._highlighted)

    def highlight_result(self, result_id: str) -> None:
        self._highlighted.add(result_id)

    def clear_highlights(self) -> None:
        self._highlighted.clear()

    def search(
        self,
        corpus: SearchCorpus,
        query: str,
        filters: SearchFilters | None = None,
        options: SearchOptions | None = None,
    ) -> SearchResponse:
        if not query.strip():
            return _empty_response()
        filters = filters or SearchFilters()
        options = options or SearchOptions()
        started = time.perf_counter()

        intent = analyze_query_intent(query, filters.types)
        effective = SearchFilters(
            types=list(filters.types),
            date_range=intent.date_range or filters.date_range,
            min_score=filters.min_score,
            tags=list(filters.tags),
            entity_types=intent.entity_types if intent.entity_types is not None else filters.entity_types,
            document_types=filters.document_types,
        )

        results: list[SearchResult] = []
        keywords = intent.keywords
        if "rag" in intent.search_types:
            results.extend(search_chunks(corpus.chunks, corpus.chunk_sources, keywords))
        if "kg" in intent.search_types:
            results.extend(search_entities(corpus.entities, keywords))
            results.extend(search_relations(corpus.relations, corpus.entities, keywords))
        if "idp" in intent.search_types:
            results.extend(search_idp_documents(corpus.documents, keywords))

        filtered = apply_filters(results, effective)
        ordered = sort_results(filtered, options)
        page = ordered[options.offset : options.offset + options.limit]
        for result in page:
            result.highlighted = result.id in self._highlighted

        response = SearchResponse(
            results=page,
            total=len(filtered),
            facets=compute_facets(filtered),
            intent=intent,
            suggestions=generate_suggestions(query),
        )
        logger.info(
            "search.completed intent=%s keywords=%s total=%s returned=%s",
            intent.primary,
            len(keywords),
            response.total,
            len(page),
        )
        if self._metrics is not None:
            self._metrics.increment("search.queries", intent=intent.primary)
            self._metrics.record_timing("search.duration", time.perf_counter() - started, intent=intent.primary)
            self._metrics.set_gauge("search.results", float(response.total), intent=intent.primary)
        return response


__all__ = [
    "ChunkSource",
    "Highlight",
    "IDPDocument",
    "KGEntity",
    "KGRelation",
    "QueryIntent",
    "SearchCorpus",
    "SearchFilters",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "UnifiedSearch",
    "analyze_query_intent",
    "apply_filters",
    "compute_facets",
    "generate_suggestions",
    "parse_timestamp",
    "search_chunks",
    "search_entities",
    "search_idp_documents",
    "search_relations",
    "sort_results",
]
