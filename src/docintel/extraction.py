"""Simulated step results for the processing pipeline and table extraction helpers."""

from __future__ import annotations

import asyncio
import csv
import io
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Sequence

from .analyzer import content_profile
from .chunker import chunk_document
from .embeddings import vector_dimensions
from .models import MetadataField, ProcessingConfiguration
from .pipeline import ProcessingStep

logger = logging.getLogger(__name__)

_PROGRESS_TICKS = 4
_PROGRESS_INCREMENT = {"rag": 20.0, "kg": 25.0, "idp": 15.0}
_WORD_RE = re.compile(r"\w+")
_PART_NUMBER_RE = re.compile(r"\d{5}-[a-z0-9]{3}-[a-z0-9]{3}")


@dataclass(slots=True)
class ExtractedTable:
    id: str
    title: str
    headers: list[str]
    rows: list[list[str]]
    category: str = "general"

    def text(self) -> str:
        header_text = " ".join(self.headers)
        row_text = " ".join(" ".join(row) for row in self.rows)
        return f"{self.title} {header_text} {row_text}".lower()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "headers": list(self.headers),
            "rows": [list(row) for row in self.rows],
            "rowCount": len(self.rows),
            "columnCount": len(self.headers),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ExtractedTable":
        try:
            return cls(
                id=str(payload["id"]),
                title=str(payload.get("title") or payload["id"]),
                headers=[str(item) for item in payload.get("headers", [])],
                rows=[[str(cell) for cell in row] for row in payload.get("rows", [])],
                category=str(payload.get("category") or "general"),
            )
        except KeyError as exc:
            raise ValueError(f"Table payload is missing '{exc.args[0]}'") from exc


SAMPLE_TABLES: tuple[ExtractedTable, ...] = (
    ExtractedTable(
        id="table-1",
        title="Quarterly Financial Summary",
        headers=["Quarter", "Revenue", "Expenses", "Profit", "Growth"],
        rows=[
            ["Q1", "$1.2M", "$0.8M", "$0.4M", "12%"],
            ["Q2", "$1.5M", "$0.9M", "$0.6M", "25%"],
            ["Q3", "$1.8M", "$1.0M", "$0.8M", "20%"],
            ["Q4", "$2.1M", "$1.2M", "$0.9M", "17%"],
        ],
        category="financial",
    ),
    ExtractedTable(
        id="table-2",
        title="Maintenance Schedule",
        headers=["Interval", "Task", "Part Number", "Torque"],
        rows=[
            ["5,000 miles", "Replace oil filter", "15400-PLM-A02", "25 lb-ft"],
            ["15,000 miles", "Inspect brake pads", "45022-TZ5-A01", "80 lb-ft"],
            ["30,000 miles", "Replace air filter", "17220-5YF-A00", "n/a"],
        ],
        category="schedule",
    ),
)


@dataclass(slots=True)
class TableExtractionOptions:
    extract_identifiers: bool = False
    extract_part_numbers: bool = False
    extract_measurements: bool = False
    extract_schedules: bool = False
    extract_all: bool = False

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "TableExtractionOptions":
        payload = payload or {}
        return cls(
            extract_identifiers=bool(payload.get("extractIdentifiers", False)),
            extract_part_numbers=bool(payload.get("extractPartNumbers", False)),
            extract_measurements=bool(payload.get("extractMeasurements", False)),
            extract_schedules=bool(payload.get("extractSchedules", False)),
            extract_all=bool(payload.get("extractAll", False)),
        )


@dataclass(slots=True)
class TableExtractionResult:
    tables: list[ExtractedTable]
    total_tables: int
    categories: list[str]
    has_identifiers: bool
    has_part_numbers: bool
    has_measurements: bool
    has_schedules: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "tables": [table.to_dict() for table in self.tables],
            "summary": {
                "totalTables": self.total_tables,
                "categories": list(self.categories),
                "hasIdentifiers": self.has_identifiers,
                "hasPartNumbers": self.has_part_numbers,
                "hasMeasurements": self.has_measurements,
                "hasSchedules": self.has_schedules,
            },
        }


def _contains_identifiers(content: str) -> bool:
    return any(term in content for term in ("id", "identifier", "serial", "vin"))


def _contains_part_numbers(content: str) -> bool:
    return "part" in content or "p/n" in content or bool(_PART_NUMBER_RE.search(content))


def _contains_measurements(content: str) -> bool:
    return any(term in content for term in ("torque", "lb-ft", "nm", "tightening", "measurement"))


def _contains_schedules(content: str) -> bool:
    return any(term in content for term in ("service", "maintenance", "interval", "schedule"))


class TableExtractor:
    """Filter, search and export tables by the kind of data they hold."""

    def extract(
        self,
        tables: Iterable[ExtractedTable],
        options: TableExtractionOptions,
    ) -> TableExtractionResult:
        selected = list(tables)
        if not options.extract_all:
            selected = [table for table in selected if self._matches(table.text(), options)]
        contents = [table.text() for table in selected]
        categories = list(dict.fromkeys(table.category for table in selected))
        return TableExtractionResult(
            tables=selected,
            total_tables=len(selected),
            categories=categories,
            has_identifiers=any(_contains_identifiers(text) for text in contents),
            has_part_numbers=any(_contains_part_numbers(text) for text in contents),
            has_measurements=any(_contains_measurements(text) for text in contents),
            has_schedules=any(_contains_schedules(text) for text in contents),
        )

    @staticmethod
    def _matches(content: str, options: TableExtractionOptions) -> bool:
        checks = (
            (options.extract_identifiers, _contains_identifiers),
            (options.extract_part_numbers, _contains_part_numbers),
            (options.extract_measurements, _contains_measurements),
            (options.extract_schedules, _contains_schedules),
        )
        return any(enabled and check(content) for enabled, check in checks)

    def search_in_tables(self, tables: Iterable[ExtractedTable], term: str) -> list[ExtractedTable]:
        needle = term.strip().lower()
        if not needle:
            return []
        return [table for table in tables if needle in table.text()]

    def export_to_csv(self, table: ExtractedTable) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(table.headers)
        writer.writerows(table.rows)
        return f"{table.title}\n{buffer.getvalue()}".rstrip("\n")


@dataclass(slots=True)
class ProcessingContext:
    """What the simulated executor knows about the document being processed."""

    document_id: str
    title: str
    text: str
    document_type: str = "unknown"
    page_count: int = 1
    chunk_count: int = 0
    embedding_model: str = "openai-text-embedding-3-large"
    configuration: ProcessingConfiguration = field(default_factory=ProcessingConfiguration)
    metadata_fields: list[MetadataField] = field(default_factory=list)


SleepFunc = Callable[[float], Awaitable[None]]
StepHandler = Callable[["SimulatedStepExecutor"], Dict[str, Any]]


class SimulatedStepExecutor:
    """Produce mock step results after a configurable simulated latency.

    ``step_delay`` is the total time a step takes; progress is reported in a
    few ticks and never exceeds 95% until the step finishes.
    """

    def __init__(
        self,
        context: ProcessingContext,
        *,
        step_delay: float = 0.5,
        rng: random.Random | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        self._context = context
        self._step_delay = max(0.0, step_delay)
        self._rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep

    @property
    def context(self) -> ProcessingContext:
        return self._context

    async def __call__(self, step: ProcessingStep, report_progress: Callable[[float], None]) -> dict[str, Any]:
        handler = _HANDLERS.get(step.id)
        if handler is None:
            raise ValueError(f"No simulated executor for step '{step.id}'")
        tick = self._step_delay / (_PROGRESS_TICKS + 1)
        increment = _PROGRESS_INCREMENT.get(step.type, 20.0)
        progress = 0.0
        for _ in range(_PROGRESS_TICKS):
            await self._sleep(tick)
            progress = min(progress + increment, 95.0)
            report_progress(progress)
        await self._sleep(tick)
        return handler(self)

    # RAG ---------------------------------------------------------------

    def _rag_chunking(self) -> dict[str, Any]:
        rag = self._context.configuration.rag
        chunks = chunk_document(
            self._context.text,
            method=rag.chunking_method,
            chunk_size=rag.chunk_size,
            chunk_overlap=rag.chunk_overlap,
        )
        return {
            "method": rag.chunking_method,
            "chunkSize": rag.chunk_size,
            "chunkOverlap": rag.chunk_overlap,
            "totalChunks": len(chunks),
            "chunks": [
                {
                    "index": index,
                    "title": chunk.title or self._context.title,
                    "content": chunk.text,
                    "tokenCount": chunk.token_count,
                    "tags": list(chunk.tags),
                }
                for index, chunk in enumerate(chunks, start=1)
            ],
        }

    def _rag_table_chunking(self) -> dict[str, Any]:
        chunks = []
        for index, table in enumerate(SAMPLE_TABLES, start=1):
            chunks.append(
                {
                    "id": index,
                    "content": f"{table.title}: {', '.join(table.headers)}",
                    "metadata": {"type": "table", "rows": len(table.rows), "columns": len(table.headers)},
                }
            )
        return {"chunks": chunks, "totalChunks": len(chunks)}

    def _vector_count(self) -> int:
        return max(self._context.chunk_count, 1)

    def _rag_vectorization(self) -> dict[str, Any]:
        model = self._context.embedding_model
        return {
            "vectorsCreated": self._vector_count(),
            "dimensions": vector_dimensions(model),
            "model": model,
        }

    def _rag_indexing(self) -> dict[str, Any]:
        return {"indexStatus": "completed", "vectorsCreated": self._vector_count(), "searchReady": True}

    # KG ----------------------------------------------------------------

    def _confidence(self, low: float, high: float) -> float:
        return round(self._rng.uniform(low, high), 2)

    def _kg_entities(self) -> dict[str, Any]:
        entities = [
            {
                "id": "1",
                "type": "COMPANY",
                "name": "ACME Corp",
                "properties": {"industry": "Manufacturing", "headquarters": "Springfield"},
                "confidence": self._confidence(0.9, 0.99),
            },
            {
                "id": "2",
                "type": "PERSON",
                "name": "John Smith",
                "properties": {"role": "Chief Executive Officer", "employer": "ACME Corp"},
                "confidence": self._confidence(0.9, 0.99),
            },
            {
                "id": "3",
                "type": "PRODUCT",
                "name": "Widget Pro",
                "properties": {"category": "Hardware", "manufacturer": "ACME Corp"},
                "confidence": self._confidence(0.9, 0.99),
            },
        ]
        return {"entities": entities, "totalEntities": len(entities)}

    def _kg_relations(self) -> dict[str, Any]:
        relations = [
            {"source": "2", "target": "1", "type": "WORKS_AT", "confidence": 0.93},
            {"source": "1", "target": "3", "type": "PRODUCES", "confidence": 0.96},
        ]
        return {"relations": relations, "totalRelations": len(relations)}

    def _kg_graph(self) -> dict[str, Any]:
        return {"nodes": 3, "edges": 2, "components": 1, "density": 0.67}

    # IDP ---------------------------------------------------------------

    def _idp_text(self) -> dict[str, Any]:
        text = self._context.text
        return {
            "characters": len(text),
            "words": len(_WORD_RE.findall(text)),
            "pages": self._context.page_count,
        }

    def _idp_classification(self) -> dict[str, Any]:
        document_type = self._context.document_type
        profile = content_profile(document_type)
        classification = [f"{document_type.title()} Document", "Language: English"]
        if profile.financial_data:
            classification.append("Contains Financial Data")
        if profile.legal_content:
            classification.append("Legal Content")
        if profile.technical_content:
            classification.append("Technical Content")
        return {
            "documentType": document_type,
            "classification": classification,
            "confidence": self._confidence(0.85, 0.99),
        }

    def _idp_metadata(self) -> dict[str, Any]:
        metadata = {item.name: item.value for item in self._context.metadata_fields if item.included}
        rule_matches: dict[str, str] = {}
        for rule in self._context.configuration.idp.extraction_rules:
            try:
                match = re.search(rule["pattern"], self._context.text, flags=re.IGNORECASE)
            except re.error as exc:
                raise ValueError(f"Invalid extraction rule for '{rule['field']}': {exc}") from exc
            if match:
                rule_matches[rule["field"]] = match.group(0)
        metadata.update(rule_matches)
        return {"metadata": metadata, "ruleMatches": rule_matches}

    def _idp_tables(self) -> dict[str, Any]:
        tables = [table.to_dict() for table in SAMPLE_TABLES]
        return {"tables": tables, "totalTables": len(tables)}

    def _idp_field_detection(self) -> dict[str, Any]:
        return {
            "fields": [
                {"name": "Customer Name", "type": "text", "required": True},
                {"name": "Order Date", "type": "date", "required": True},
                {"name": "Order Total", "type": "currency", "required": True},
                {"name": "Notes", "type": "text", "required": False},
            ]
        }

    def _idp_field_extraction(self) -> dict[str, Any]:
        return {
            "extractedData": {
                "Customer Name": "John Doe",
                "Order Date": "2024-01-15",
                "Order Total": "$1,234.56",
                "Notes": "Rush delivery requested",
            }
        }


_HANDLERS: dict[str, StepHandler] = {
    "rag-chunking": SimulatedStepExecutor._rag_chunking,
    "rag-table-chunking": SimulatedStepExecutor._rag_table_chunking,
    "rag-vectorization": SimulatedStepExecutor._rag_vectorization,
    "rag-indexing": SimulatedStepExecutor._rag_indexing,
    "kg-entity-extraction": SimulatedStepExecutor._kg_entities,
    "kg-relation-mapping": SimulatedStepExecutor._kg_relations,
    "kg-graph-building": SimulatedStepExecutor._kg_graph,
    "idp-text-extraction": SimulatedStepExecutor._idp_text,
    "idp-classification": SimulatedStepExecutor._idp_classification,
    "idp-metadata-extraction": SimulatedStepExecutor._idp_metadata,
    "idp-table-extraction": SimulatedStepExecutor._idp_tables,
    "idp-field-detection": SimulatedStepExecutor._idp_field_detection,
    "idp-field-extraction": SimulatedStepExecutor._idp_field_extraction,
}


def tables_from_results(results: dict[str, Any] | None) -> list[ExtractedTable]:
    """Read the tables produced by a completed table-extraction step."""

    payload = ((results or {}).get("idp") or {}).get("idp-table-extraction") or {}
    return [ExtractedTable.from_dict(item) for item in payload.get("tables", [])]


def find_table(tables: Sequence[ExtractedTable], table_id: str) -> ExtractedTable | None:
    for table in tables:
        if table.id == table_id:
            return table
    return None


__all__ = [
    "ExtractedTable",
    "ProcessingContext",
    "SAMPLE_TABLES",
    "SimulatedStepExecutor",
    "TableExtractionOptions",
    "TableExtractionResult",
    "TableExtractor",
    "find_table",
    "tables_from_results",
]
