from __future__ import annotations

from datetime import datetime, timezone

import pytest

from docintel.models import Chunk
from docintel.observability import MetricsRecorder
from docintel.search import (
    ChunkSource,
    IDPDocument,
    KGEntity,
    KGRelation,
    SearchCorpus,
    SearchFilters,
    SearchOptions,
    UnifiedSearch,
    analyze_query_intent,
    generate_suggestions,
)


def _corpus() -> SearchCorpus:
    return SearchCorpus(
        chunks=[
            Chunk(
                id=1,
                document_id="doc-1",
                title="Revenue overview",
                content="Revenue grew to $2.1M in the fourth quarter while costs stayed flat.",
                token_count=14,
                chunk_index=1,
                tags=["semantic", "revenue", "quarter"],
            ),
            Chunk(
                id=2,
                document_id="doc-1",
                title="Hiring plan",
                content="Engineering headcount will double next year.",
                token_count=7,
                chunk_index=2,
                tags=["semantic", "engineering"],
            ),
        ],
        chunk_sources={"doc-1": ChunkSource(file_name="report.md", timestamp="2024-03-01T00:00:00+00:00")},
        entities=[
            KGEntity(id="doc-1-1", name="ACME Corp", type="COMPANY", properties={"industry": "Manufacturing"}, confidence=0.95),
            KGEntity(id="doc-1-2", name="John Smith", type="PERSON", properties={"employer": "ACME Corp"}, confidence=0.91),
        ],
        relations=[KGRelation(source="doc-1-2", target="doc-1-1", type="WORKS_AT", confidence=0.93)],
        documents=[
            IDPDocument(
                document_id="doc-1",
                file_name="report.md",
                document_type="report",
                entity_count=2,
                metadata={"author": "Finance Team", "region": "EMEA"},
                classification=["Report Document", "Contains Financial Data"],
                timestamp="2024-03-01T00:00:00+00:00",
            )
        ],
    )


def test_keyword_search_scores_title_content_and_tags() -> None:
    response = UnifiedSearch().search(_corpus(), "revenue")

    assert response.intent is not None and response.intent.primary == "search"
    top = response.results[0]
    assert top.id == "rag-doc-1-1"
    assert top.relevance_score == 1.0
    assert top.metadata["documentId"] == "doc-1"
    assert top.source == {"file": "report.md", "page": None}
    assert top.highlights[0].snippet.lower().startswith("revenue")
    assert top.highlights[0].positions == [(0, 7)]
    assert top.content.endswith("...")
    assert response.facets["types"]["rag"] == 1


def test_entity_intent_restricts_to_knowledge_graph() -> None:
    response = UnifiedSearch().search(_corpus(), "who is John")

    assert response.intent is not None and response.intent.primary == "entity"
    assert {result.type for result in response.results} == {"kg"}
    assert response.results[0].id == "kg-entity-doc-1-2"
    assert response.facets["entityTypes"] == {"PERSON": 1}


def test_relationship_intent_includes_relations_with_entity_names() -> None:
    response = UnifiedSearch().search(_corpus(), "how works_at")

    relation = next(result for result in response.results if result.sub_type == "relationship")
    assert relation.title == "John Smith → ACME Corp"
    assert relation.content == "Relationship: WORKS_AT"


def test_metadata_intent_searches_idp_documents() -> None:
    response = UnifiedSearch().search(_corpus(), "metadata author")

    sub_types = {result.sub_type for result in response.results}
    assert "metadata" in sub_types
    author = next(result for result in response.results if result.sub_type == "metadata")
    assert author.id == "idp-metadata-doc-1-author"
    assert author.content == "Finance Team"
    assert response.facets["documentTypes"]["report"] >= 1


def test_filters_apply_before_pagination_and_facets() -> None:
    corpus = _corpus()
    search = UnifiedSearch()

    all_types = search.search(corpus, "ACME", SearchFilters(types=["rag", "kg", "idp"]))
    kg_only = search.search(corpus, "ACME", SearchFilters(types=["kg"]))
    tagged = search.search(corpus, "revenue engineering", SearchFilters(tags=["engineering"]))

    # both entities match (one by property) plus the relation pointing at ACME
    assert all_types.total == kg_only.total == 3
    assert {result.type for result in kg_only.results} == {"kg"}
    assert [result.id for result in tagged.results] == ["rag-doc-1-2"]

    paged = search.search(corpus, "ACME", options=SearchOptions(limit=1, offset=1))
    assert paged.total == all_types.total
    assert len(paged.results) == 1
    assert paged.facets == all_types.facets


def test_type_filter_in_query_narrows_entities() -> None:
    response = UnifiedSearch().search(_corpus(), "who ACME type:company")

    assert response.intent is not None and response.intent.entity_types == ["COMPANY"]
    entity_results = [result for result in response.results if result.sub_type == "entity"]
    assert [result.title for result in entity_results] == ["ACME Corp"]


def test_date_filter_from_query_excludes_older_results() -> None:
    response = UnifiedSearch().search(_corpus(), "revenue after 2024-06-01")

    assert response.intent is not None and response.intent.date_range is not None
    assert all(result.type != "rag" for result in response.results)


def test_sorting_by_confidence_and_order() -> None:
    search = UnifiedSearch()
    options = SearchOptions(sort_by="confidence")

    descending = search.search(_corpus(), "who ACME Smith", options=options)
    ascending = search.search(_corpus(), "who ACME Smith", options=SearchOptions(sort_by="confidence", sort_order="asc"))

    assert [result.id for result in ascending.results] == list(reversed([result.id for result in descending.results]))
    assert descending.results[0].metadata["confidence"] == 0.95


def test_highlighted_results_are_flagged() -> None:
    search = UnifiedSearch()
    search.highlight_result("rag-doc-1-1")

    response = search.search(_corpus(), "revenue")
    assert response.results[0].highlighted is True

    search.clear_highlights()
    assert search.search(_corpus(), "revenue").results[0].highlighted is False


def test_empty_query_returns_empty_response_and_records_metrics() -> None:
    metrics = MetricsRecorder()
    search = UnifiedSearch(metrics=metrics)

    empty = search.search(_corpus(), "   ")
    assert empty.total == 0 and empty.intent is None
    assert empty.to_dict()["facets"]["types"] == {"rag": 0, "kg": 0, "idp": 0}

    search.search(_corpus(), "revenue")
    assert metrics.counter_total("search.queries") == 1


def test_analyze_query_intent_parses_dates() -> None:
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    since = analyze_query_intent("contracts since 2024-01-31", now=now)
    before = analyze_query_intent("contracts before 2024-01-31")

    assert since.date_range == (datetime(2024, 1, 31, tzinfo=timezone.utc), now)
    assert before.date_range is not None and before.date_range[1] == datetime(2024, 1, 31, tzinfo=timezone.utc)
    assert analyze_query_intent("why did it happen").search_types == ["kg", "rag"]


def test_generate_suggestions_requires_three_characters() -> None:
    assert generate_suggestions("ab") == []
    suggestions = generate_suggestions("acme")
    assert suggestions[0] == "acme in documents"
    assert suggestions[-1] == '"acme" (exact match)'


def test_search_filters_and_options_validate_payloads() -> None:
    filters = SearchFilters.from_dict(
        {
            "types": ["kg"],
            "dateRange": {"start": "2024-01-01T00:00:00Z", "end": "2024-12-31T00:00:00Z"},
            "minScore": 0.5,
        }
    )
    assert filters.types == ["kg"]
    assert filters.date_range is not None
    assert filters.min_score == 0.5

    with pytest.raises(ValueError):
        SearchFilters.from_dict({"types": ["vector"]})
    with pytest.raises(ValueError):
        SearchFilters.from_dict({"dateRange": {"start": "yesterday", "end": "today"}})
    with pytest.raises(ValueError):
        SearchOptions.from_dict({"sortBy": "popularity"})
    with pytest.raises(ValueError):
        SearchOptions.from_dict({"limit": -1})


def _two_document_corpus() -> SearchCorpus:
    return SearchCorpus(
        chunks=[
            Chunk(id=1, document_id="doc-a", title="Revenue", content="Revenue for region A.", token_count=4, chunk_index=1),
            Chunk(id=1, document_id="doc-b", title="Revenue", content="Revenue for region B.", token_count=4, chunk_index=1),
        ],
        chunk_sources={
            "doc-a": ChunkSource(file_name="a.md", timestamp="2024-01-01T00:00:00+00:00"),
            "doc-b": ChunkSource(file_name="b.md", timestamp="2024-06-01T00:00:00+00:00"),
        },
        entities=[KGEntity(id="doc-a-1", name="Revenue Desk", type="ORGANIZATION", confidence=0.8)],
    )


def test_chunk_results_are_unique_across_documents() -> None:
    search = UnifiedSearch()
    search.highlight_result("rag-doc-a-1")

    response = search.search(_two_document_corpus(), "revenue")

    chunk_results = [result for result in response.results if result.type == "rag"]
    assert sorted(result.id for result in chunk_results) == ["rag-doc-a-1", "rag-doc-b-1"]
    flagged = [result.id for result in response.results if result.highlighted]
    assert flagged == ["rag-doc-a-1"]


def test_sorting_by_date_puts_undated_results_last() -> None:
    response = UnifiedSearch().search(_two_document_corpus(), "revenue", options=SearchOptions(sort_by="date"))

    assert [result.id for result in response.results] == ["rag-doc-b-1", "rag-doc-a-1", "kg-entity-doc-a-1"]


def test_sorting_by_type_is_lexical() -> None:
    search = UnifiedSearch()

    default = search.search(_corpus(), "revenue ACME finance", options=SearchOptions(sort_by="type"))
    reverse = search.search(
        _corpus(), "revenue ACME finance", options=SearchOptions(sort_by="type", sort_order="asc")
    )

    types = [result.type for result in default.results]
    assert set(types) == {"idp", "kg", "rag"}
    assert types == sorted(types)
    assert [result.type for result in reverse.results] == sorted(types, reverse=True)


def test_min_score_filter_drops_weak_matches() -> None:
    search = UnifiedSearch()

    unfiltered = search.search(_corpus(), "revenue engineering")
    filtered = search.search(_corpus(), "revenue engineering", SearchFilters(min_score=0.4))

    assert {result.id: result.relevance_score for result in unfiltered.results} == {
        "rag-doc-1-1": 0.5,
        "rag-doc-1-2": 0.25,
    }
    assert [result.id for result in filtered.results] == ["rag-doc-1-1"]
    assert filtered.total == 1


def test_document_type_filter_only_applies_to_typed_idp_results() -> None:
    corpus = _corpus()
    corpus.documents.append(IDPDocument(document_id="doc-2", file_name="notes.txt", metadata={"owner": "Finance"}))

    response = UnifiedSearch().search(corpus, "ACME finance", SearchFilters(document_types=["invoice"]))

    idp_documents = {result.metadata["documentId"] for result in response.results if result.type == "idp"}
    assert idp_documents == {"doc-2"}
    assert response.facets["types"]["kg"] == 3
    assert response.facets["documentTypes"] == {}


def test_relation_score_uses_relation_weights() -> None:
    response = UnifiedSearch().search(_corpus(), "how works_at")

    relation = next(result for result in response.results if result.sub_type == "relationship")
    assert relation.id == "kg-relation-0"
    assert relation.relevance_score == 2 / (2 * 4)
    assert relation.metadata == {"relationType": "WORKS_AT", "confidence": 0.93}


def test_classification_labels_are_searchable() -> None:
    response = UnifiedSearch().search(_corpus(), "metadata financial")

    classification = next(result for result in response.results if result.sub_type == "classification")
    assert classification.id == "idp-classification-doc-1-1"
    assert classification.title == "Document Classification"
    assert classification.content == "Contains Financial Data"
    assert classification.relevance_score == 0.5


@pytest.mark.parametrize(
    "payload",
    [
        {"dateRange": "2024"},
        {"dateRange": ["2024-01-01", "2024-12-31"]},
        {"types": "kg"},
        {"tags": "finance"},
        {"minScore": "high"},
        {"documentTypes": "report"},
    ],
)
def test_search_filters_reject_malformed_shapes(payload: dict) -> None:
    with pytest.raises(ValueError):
        SearchFilters.from_dict(payload)
