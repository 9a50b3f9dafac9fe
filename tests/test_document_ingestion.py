from __future__ import annotations

import io

import httpx
import pytest
from docx import Document as DocxDocument

from docintel.config import Settings
from docintel.documents import DocumentRegistry
from docintel.ingestion import DocumentIngestor
from docintel.observability import MetricsRecorder

# Minimal PDF with extractable text ("PDF sample text")
SAMPLE_PDF_BYTES = b"%PDF-1.1\n1 0 obj<<>>endobj\n2 0 obj<< /Length 56 >>stream\nBT /F1 12 Tf 72 720 Td (PDF sample text) Tj ET\nendstream\nendobj\n3 0 obj<< /Type /Page /Parent 4 0 R /MediaBox [0 0 612 792] /Contents 2 0 R /Resources << /Font << /F1 5 0 R >> >> >>endobj\n4 0 obj<< /Type /Pages /Kids [3 0 R] /Count 1 >>endobj\n5 0 obj<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>endobj\n6 0 obj<< /Type /Catalog /Pages 4 0 R >>endobj\nxref\n0 7\n0000000000 65535 f \n0000000010 00000 n \n0000000056 00000 n \n0000000125 00000 n \n0000000230 00000 n \n0000000302 00000 n \n0000000373 00000 n \ntrailer<< /Root 6 0 R /Size 7 >>\nstartxref\n430\n%%EOF"

HTML_SAMPLE_BYTES = b"""<html><head><title>Support FAQ</title><style>p {color: red}</style></head><body><h1>FAQ</h1><p>Reset the router before calling support.</p><script>track()</script></body></html>"""


def _build_docx_bytes() -> bytes:
    document = DocxDocument()
    document.core_properties.title = "Service Agreement"
    document.add_paragraph("This agreement is made between ACME Corp and Widget Ltd.")
    document.add_paragraph("The term is three years.")
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def test_ingest_markdown_registers_document_with_defaults(
    ingestor: DocumentIngestor,
    registry: DocumentRegistry,
    sample_markdown: str,
) -> None:
    result = ingestor.ingest_bytes("quarterly-report.md", sample_markdown.encode("utf-8"))

    entry = registry.get(result.entry.id)
    assert result.chunks_ingested == len(entry.chunks) >= 1
    assert entry.document.title == "Quarterly Report"
    assert entry.document.page_count == 1
    assert entry.document_type == "report"
    assert entry.configuration.enabled_types == ["rag"]
    assert entry.embedding_model == "openai-text-embedding-3-large"
    assert [item.name for item in entry.fields] == ["Title", "Content", "Document Type", "File Name"]

    metadata = {item.name: item for item in entry.metadata_fields}
    assert metadata["title"].value == "Quarterly Report"
    assert metadata["author"].value == "Unknown"
    assert metadata["author"].confidence == 0.6
    assert metadata["fileType"].value == "md"
    assert metadata["sourceLocation"].value == "upload://quarterly-report.md"
    assert metadata["fileSize"].value == str(len(sample_markdown.encode("utf-8")))


def test_ingest_pdf_uses_page_count() -> None:
    registry = DocumentRegistry()
    ingestor = DocumentIngestor(registry)

    result = ingestor.ingest_bytes("manual.pdf", SAMPLE_PDF_BYTES, "application/pdf")

    assert "PDF sample text" in result.entry.document.content
    assert result.entry.document.page_count == 1
    assert result.entry.uploaded.type == "application/pdf"


def test_ingest_docx_and_html_extract_titles(ingestor: DocumentIngestor) -> None:
    docx = ingestor.ingest_bytes("service-agreement.docx", _build_docx_bytes())
    html = ingestor.ingest_bytes("faq.html", HTML_SAMPLE_BYTES)

    assert docx.entry.document.title == "Service Agreement"
    assert "three years" in docx.entry.document.content
    assert docx.entry.document_type == "contract"

    assert html.entry.document.title == "Support FAQ"
    assert "Reset the router" in html.entry.document.content
    assert "track()" not in html.entry.document.content
    assert "color: red" not in html.entry.document.content


def test_ingest_rejects_empty_and_unsupported_files(ingestor: DocumentIngestor) -> None:
    with pytest.raises(ValueError, match="empty"):
        ingestor.ingest_bytes("notes.txt", b"")
    with pytest.raises(ValueError, match="No textual content"):
        ingestor.ingest_bytes("notes.txt", b"   \n  ")
    with pytest.raises(ValueError, match="Unsupported"):
        ingestor.ingest_bytes("diagram.png", b"\x89PNG\r\n")


def test_page_count_estimated_from_word_count(ingestor: DocumentIngestor) -> None:
    text = " ".join("word" for _ in range(1200))

    result = ingestor.ingest_bytes("long-notes.txt", text.encode("utf-8"))

    assert result.entry.document.page_count == 3


def test_ingest_uses_settings_for_chunking_and_records_metrics(registry: DocumentRegistry) -> None:
    settings = Settings(default_chunk_size=60, default_chunk_overlap=5, default_chunking_method="fixed")
    metrics = MetricsRecorder()
    ingestor = DocumentIngestor(registry, settings=settings, metrics=metrics)
    text = " ".join(f"term{index}" for index in range(200))

    result = ingestor.ingest_bytes("notes.txt", text.encode("utf-8"))

    assert result.entry.configuration.rag.chunking_method == "fixed"
    assert result.chunks_ingested == 4
    assert metrics.counter_total("ingestion.documents") == 1
    assert metrics.counter_total("ingestion.chunks") == 4


def test_ingest_url_downloads_and_names_document(
    ingestor: DocumentIngestor,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    requested: list[str] = []

    def fake_get(url: str, **kwargs) -> httpx.Response:
        requested.append(url)
        return httpx.Response(
            200,
            content=HTML_SAMPLE_BYTES,
            headers={"content-type": "text/html; charset=utf-8"},
            request=httpx.Request("GET", url),
        )

    monkeypatch.setattr("docintel.ingestion.httpx.get", fake_get)

    result = ingestor.ingest_url("https://example.com/help/faq")

    assert requested == ["https://example.com/help/faq"]
    assert result.entry.uploaded.name.startswith("faq")
    assert result.entry.document.title == "Support FAQ"
    metadata = {item.name: item.value for item in result.entry.metadata_fields}
    assert metadata["sourceLocation"] == "https://example.com/help/faq"


def test_ingest_url_rejects_bad_scheme_and_status(
    ingestor: DocumentIngestor,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    with pytest.raises(ValueError, match="http"):
        ingestor.ingest_url("ftp://example.com/file.txt")

    monkeypatch.setattr(
        "docintel.ingestion.httpx.get",
        lambda url, **kwargs: httpx.Response(404, request=httpx.Request("GET", url)),
    )
    with pytest.raises(ValueError, match="404"):
        ingestor.ingest_url("https://example.com/missing.txt")
