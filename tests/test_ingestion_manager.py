from __future__ import annotations

import threading
import time

from docintel.ingestion import IngestionJobManager


def _wait_for_status(manager: IngestionJobManager, job_id: str, status: str, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = manager.get(job_id)
        if job is not None and job.status == status:
            return True
        time.sleep(0.01)
    return False


def test_job_lifecycle_records_document_and_errors() -> None:
    manager = IngestionJobManager()
    ok = manager.create_job("report.pdf", size_bytes=1024)
    bad = manager.create_job("broken.pdf")
    assert ok.status == "pending"

    manager.mark_processing(ok.id)
    manager.mark_completed(ok.id, "doc-1")
    manager.mark_processing(bad.id)
    manager.mark_failed(bad.id, "No textual content")

    completed = manager.get(ok.id)
    failed = manager.get(bad.id)
    assert completed is not None and completed.status == "completed"
    assert completed.document_id == "doc-1"
    assert failed is not None and failed.error == "No textual content"
    payload = completed.to_dict()
    assert payload["documentId"] == "doc-1"
    assert payload["sizeBytes"] == 1024
    assert [job.id for job in manager.list_jobs()] == [ok.id, bad.id]
    assert manager.list_jobs(collection="other") == []


def test_mark_processing_throttles_per_collection() -> None:
    manager = IngestionJobManager(max_active_per_collection=1, throttle_poll_interval=0.05)
    first = manager.create_job("a.txt")
    second = manager.create_job("b.txt")
    manager.mark_processing(first.id)

    worker = threading.Thread(target=manager.mark_processing, args=(second.id,))
    worker.start()
    try:
        assert _wait_for_status(manager, second.id, "throttled")
        manager.mark_completed(first.id, "doc-a")
        assert _wait_for_status(manager, second.id, "processing")
    finally:
        worker.join(timeout=2.0)
    assert not worker.is_alive()


def test_wait_for_rate_blocks_until_window_frees() -> None:
    manager = IngestionJobManager(max_files_per_minute=2, rate_window_seconds=1.0, throttle_poll_interval=0.05)

    started = time.monotonic()
    manager.wait_for_rate()
    manager.wait_for_rate()
    assert time.monotonic() - started < 0.5

    manager.wait_for_rate()
    assert time.monotonic() - started >= 0.9


def test_wait_for_rate_disabled_when_limit_is_zero() -> None:
    manager = IngestionJobManager(max_files_per_minute=0)
    started = time.monotonic()
    for _ in range(50):
        manager.wait_for_rate()
    assert time.monotonic() - started < 0.5
