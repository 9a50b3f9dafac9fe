from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from docintel.app import create_app
from docintel.config import Settings
from docintel.documents import DocumentEntry, DocumentRegistry
from docintel.ingestion import DocumentIngestor
from docintel.observability import MetricsRecorder

SAMPLE_MARKDOWN = """# Quarterly Report

## Revenue

Revenue grew to $2,100,000 in the fourth quarter. Profit reached $900,000 thanks to lower expenses.

## Outlook

The company expects steady growth next year. Hiring will focus on engineering and support roles.
"""


def make_settings(**overrides) -> Settings:
    values = {
        "pipeline_step_delay": 0.0,
        "pipeline_random_seed": 7,
        "pipeline_sync_mode": True,
        "ingestion_files_per_minute": 0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def registry() -> DocumentRegistry:
    return DocumentRegistry()


@pytest.fixture()
def ingestor(registry: DocumentRegistry, settings: Settings) -> DocumentIngestor:
    return DocumentIngestor(registry, settings=settings)


@pytest.fixture()
def report_entry(ingestor: DocumentIngestor) -> DocumentEntry:
    result = ingestor.ingest_bytes("quarterly-report.md", SAMPLE_MARKDOWN.encode("utf-8"))
    return result.entry


@pytest.fixture()
def api_client() -> Iterator[TestClient]:
    settings = make_settings(observability_prometheus_enabled=True)
    metrics = MetricsRecorder(namespace="test", prometheus_enabled=True)
    app = create_app(settings=settings, metrics=metrics)
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def sample_markdown() -> str:
    return SAMPLE_MARKDOWN
