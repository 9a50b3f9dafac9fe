"""Document ingestion: text extraction, default fields and registration."""

from __future__ import annotations

import io
import logging
import math
import mimetypes
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse
from uuid import uuid4

import httpx
from bs4 import BeautifulSoup
from docx import Document as DocxDocument
from pypdf import PdfReader

from .analyzer import DocumentAnalyzer, file_extension
from .config import Settings
from .documents import DocumentEntry, DocumentRegistry, build_chunks
from .models import Document, Field, MetadataField, ProcessingConfiguration, RagSettings, UploadedDocument
from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "default"
WORDS_PER_PAGE = 500

_MARKDOWN_SUFFIXES = frozenset({".md", ".markdown"})
_TEXT_SUFFIXES = frozenset({".txt", ".text", ".csv", ".log"})
_HTML_SUFFIXES = frozenset({".html", ".htm"})
_DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@dataclass(slots=True)
class ExtractedDocument:
    text: str
    title: str | None
    content_type: str
    page_count: int | None = None


@dataclass(slots=True)
class IngestionResult:
    entry: DocumentEntry
    chunks_ingested: int


@dataclass(slots=True)
class IngestionJob:
    id: str
    collection: str
    filename: str
    status: str
    created_at: str
    updated_at: str
    document_id: str | None = None
    error: str | None = None
    size_bytes: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "collection": self.collection,
            "filename": self.filename,
            "status": self.status,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "documentId": self.document_id,
            "error": self.error,
            "sizeBytes": self.size_bytes,
        }


class IngestionJobManager:
    """Track ingestion job status for asynchronous uploads."""

    def __init__(
        self,
        *,
        max_active_per_collection: int = 3,
        max_files_per_minute: int | None = 180,
        throttle_poll_interval: float = 0.25,
        rate_window_seconds: float = 60.0,
    ) -> None:
        self._jobs: dict[str, IngestionJob] = {}
        self._lock = threading.Lock()
        self._collection_active: dict[str, int] = defaultdict(int)
        self._max_active_per_collection = max(1, max_active_per_collection)
        self._throttle_poll_interval = max(0.05, throttle_poll_interval)
        self._max_files_per_minute = max_files_per_minute
        self._collection_file_times: dict[str, deque[float]] = defaultdict(deque)
        self._rate_window_seconds = max(1.0, rate_window_seconds)

    def create_job(self, filename: str, *, collection: str = DEFAULT_COLLECTION, size_bytes: int | None = None) -> IngestionJob:
        now = _now()
        job = IngestionJob(
            id=uuid4().hex,
            collection=collection,
            filename=filename,
            status="pending",
            created_at=now,
            updated_at=now,
            size_bytes=size_bytes,
        )
        with self._lock:
            self._jobs[job.id] = job
        return job

    def mark_processing(self, job_id: str) -> None:
        while True:
            with self._lock:
                job = self._jobs.get(job_id)
                if not job:
                    return
                active = self._collection_active[job.collection]
                if active < self._max_active_per_collection:
                    job.status = "processing"
                    job.updated_at = _now()
                    self._collection_active[job.collection] = active + 1
                    return
                job.status = "throttled"
                job.updated_at = _now()
            time.sleep(self._throttle_poll_interval)

    def mark_completed(self, job_id: str, document_id: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return
            job.status = "completed"
            job.document_id = document_id
            job.error = None
            job.updated_at = _now()
            self._release(job)

    def mark_failed(self, job_id: str, error: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return
            job.status = "failed"
            job.error = error
            job.updated_at = _now()
            self._release(job)

    def _release(self, job: IngestionJob) -> None:
        if self._collection_active[job.collection] > 0:
            self._collection_active[job.collection] -= 1

    def list_jobs(self, collection: str | None = None) -> list[IngestionJob]:
        with self._lock:
            return sorted(
                (job for job in self._jobs.values() if collection is None or job.collection == collection),
                key=lambda job: job.created_at,
            )

    def get(self, job_id: str) -> IngestionJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def wait_for_rate(self, collection: str = DEFAULT_COLLECTION) -> None:
        if not self._max_files_per_minute:
            return
        window = self._rate_window_seconds
        limit = max(1, self._max_files_per_minute)
        while True:
            with self._lock:
                history = self._collection_file_times[collection]
                now = time.monotonic()
                while history and now - history[0] > window:
                    history.popleft()
                if len(history) < limit:
                    history.append(now)
                    return
                wait_time = window - (now - history[0])
            time.sleep(max(wait_time, self._throttle_poll_interval))


def default_metadata_fields(
    *,
    title: str,
    filename: str,
    content_type: str,
    size_bytes: int,
    source_location: str,
    created_at: str,
) -> list[MetadataField]:
    values = [
        ("title", title, 0.95),
        ("author", "Unknown", 0.6),
        ("creationDate", created_at, 0.9),
        ("lastModified", created_at, 0.9),
        ("fileSize", str(size_bytes), 1.0),
        ("fileType", file_extension(filename) or content_type, 1.0),
        ("sourceLocation", source_location, 1.0),
    ]
    return [
        MetadataField(id=index, name=name, value=value, included=True, confidence=confidence)
        for index, (name, value, confidence) in enumerate(values, start=1)
    ]


def default_fields(document_id: str) -> list[Field]:
    return [
        Field(id=1, name="Title", document_id=document_id, retrievable=True, filterable=False),
        Field(id=2, name="Content", document_id=document_id, retrievable=True, filterable=False),
        Field(id=3, name="Document Type", document_id=document_id, retrievable=False, filterable=True),
        Field(id=4, name="File Name", document_id=document_id, retrievable=True, filterable=False),
    ]


class DocumentIngestor:
    """Convert uploaded files into registered documents with chunks and default fields."""

    def __init__(
        self,
        registry: DocumentRegistry,
        *,
        settings: Settings | None = None,
        analyzer: DocumentAnalyzer | None = None,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings or Settings()
        self._analyzer = analyzer or DocumentAnalyzer()
        self._metrics = metrics

    def default_configuration(self) -> ProcessingConfiguration:
        settings = self._settings
        return ProcessingConfiguration(
            rag=RagSettings(
                chunk_size=settings.default_chunk_size,
                chunk_overlap=settings.default_chunk_overlap,
                chunking_method=settings.default_chunking_method,
            )
        ).validate()

    def ingest_bytes(
        self,
        filename: str,
        data: bytes,
        content_type: str | None = None,
        *,
        source_location: str | None = None,
    ) -> IngestionResult:
        if not data:
            raise ValueError("Uploaded file is empty")

        logger.info("ingest.start filename=%s bytes=%s", filename, len(data))
        metrics = self._metrics
        overall_start = time.perf_counter() if metrics else None
        extracted = self._extract_document(filename, data, content_type)
        if not extracted.text.strip():
            raise ValueError("No textual content could be extracted from the document")

        document_id = uuid4().hex
        created_at = _now()
        title = extracted.title or Path(filename).stem or filename
        configuration = self.default_configuration()
        chunks = build_chunks(
            document_id,
            title,
            extracted.text,
            method=configuration.rag.chunking_method,
            chunk_size=configuration.rag.chunk_size,
            chunk_overlap=configuration.rag.chunk_overlap,
        )
        page_count = extracted.page_count or max(1, math.ceil(len(extracted.text.split()) / WORDS_PER_PAGE))
        analysis = self._analyzer.analyze(filename, file_extension(filename) or None)

        entry = DocumentEntry(
            uploaded=UploadedDocument(
                id=document_id,
                name=filename,
                type=extracted.content_type,
                size=len(data),
                upload_date=created_at,
            ),
            document=Document(
                id=document_id,
                title=title,
                content=extracted.text,
                page_count=page_count,
                user_id=None,
                created_at=created_at,
            ),
            chunks=chunks,
            fields=default_fields(document_id),
            metadata_fields=default_metadata_fields(
                title=title,
                filename=filename,
                content_type=extracted.content_type,
                size_bytes=len(data),
                source_location=source_location or f"upload://{filename}",
                created_at=created_at,
            ),
            configuration=configuration,
            embedding_model=self._settings.default_embedding_model,
            analysis=analysis,
        )
        self._registry.register(entry)
        logger.info(
            "ingest.completed document_id=%s type=%s chunks=%s",
            document_id,
            analysis.document_type,
            len(chunks),
        )
        if metrics and overall_start is not None:
            metrics.record_timing(
                "ingestion.total_duration",
                time.perf_counter() - overall_start,
                content_type=extracted.content_type,
                chunks=len(chunks),
                size_bytes=len(data),
            )
            metrics.increment("ingestion.documents", document_type=analysis.document_type)
            metrics.increment("ingestion.chunks", value=len(chunks), document_type=analysis.document_type)
        return IngestionResult(entry=entry, chunks_ingested=len(chunks))

    def ingest_url(self, url: str, *, timeout: float = 10.0) -> IngestionResult:
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"}:
            raise ValueError("Only http and https URLs are supported")
        try:
            response = httpx.get(url, timeout=timeout, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise ValueError(f"Failed to download URL: {exc}") from exc
        if response.status_code >= 400:
            raise ValueError(f"Failed to download URL (status {response.status_code})")
        content = response.content
        if not content:
            raise ValueError("URL returned no content")

        content_type = response.headers.get("content-type")
        if content_type:
            content_type = content_type.split(";", 1)[0].strip()

        filename = Path(parsed.path).name or parsed.netloc or "document"
        if not Path(filename).suffix and content_type:
            extension = mimetypes.guess_extension(content_type)
            if extension:
                filename = f"{filename}{extension}"

        return self.ingest_bytes(filename, content, content_type, source_location=url)

    @staticmethod
    def _extract_document(filename: str, data: bytes, content_type: str | None) -> ExtractedDocument:
        suffix = Path(filename).suffix.lower()
        guessed_type = content_type or mimetypes.guess_type(filename)[0]

        if suffix in _MARKDOWN_SUFFIXES:
            text = data.decode("utf-8", errors="ignore")
            return ExtractedDocument(
                text=text,
                title=_derive_markdown_title(text),
                content_type=guessed_type or "text/markdown",
            )

        if suffix == ".pdf" or guessed_type == "application/pdf":
            try:
                reader = PdfReader(io.BytesIO(data))
                texts = [page.extract_text() or "" for page in reader.pages]
                info = reader.metadata
                metadata_title = info.title if info is not None and info.title else None
            except Exception as exc:
                raise ValueError(f"Failed to extract text from PDF: {exc}") from exc
            combined = "\n\n".join(filter(None, texts))
            return ExtractedDocument(
                text=combined,
                title=metadata_title or _derive_plain_title(combined),
                content_type="application/pdf",
                page_count=len(texts) or None,
            )

        if suffix == ".docx" or guessed_type == _DOCX_TYPE:
            try:
                document = DocxDocument(io.BytesIO(data))
            except Exception as exc:
                raise ValueError(f"Failed to extract text from DOCX: {exc}") from exc
            paragraphs = [paragraph.text.strip() for paragraph in document.paragraphs if paragraph.text.strip()]
            text = "\n\n".join(paragraphs)
            core_title = document.core_properties.title or None
            return ExtractedDocument(
                text=text,
                title=core_title or (paragraphs[0][:160] if paragraphs else None),
                content_type=_DOCX_TYPE,
            )

        if suffix in _HTML_SUFFIXES or (guessed_type and "html" in guessed_type):
            soup = BeautifulSoup(data, "html.parser")
            for tag in soup(["script", "style"]):
                tag.extract()
            title = soup.title.string.strip() if soup.title and soup.title.string else None
            text = soup.get_text(separator="\n")
            return ExtractedDocument(
                text=text,
                title=title or _derive_plain_title(text),
                content_type="text/html",
            )

        if suffix in _TEXT_SUFFIXES or (not suffix and not guessed_type) or (guessed_type or "").startswith("text/"):
            text = data.decode("utf-8", errors="ignore")
            return ExtractedDocument(
                text=text,
                title=_derive_plain_title(text),
                content_type=guessed_type or "text/plain",
            )

        raise ValueError(f"Unsupported file type '{suffix or guessed_type}'")


def _derive_markdown_title(text: str) -> str | None:
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("#"):
            return stripped.lstrip("#").strip()[:160] or None
        return stripped[:160]
    return None


def _derive_plain_title(text: str) -> str | None:
    for line in text.splitlines():
        stripped = line.strip()
        if stripped:
            return stripped[:160]
    return None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


__all__ = [
    "DEFAULT_COLLECTION",
    "DocumentIngestor",
    "ExtractedDocument",
    "IngestionJob",
    "IngestionJobManager",
    "IngestionResult",
    "default_fields",
    "default_metadata_fields",
]
