from __future__ import annotations

import io
import logging

import pytest

from docintel.observability import MetricsRecorder


def _capture_logger_output(name: str) -> tuple[logging.Logger, io.StringIO, logging.Handler]:
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger = logging.getLogger(name)
    logger.handlers = [handler]
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger, stream, handler


def test_metrics_recorder_logs_fields_before_tags() -> None:
    logger, stream, handler = _capture_logger_output("docintel.test.metrics")
    recorder = MetricsRecorder(namespace="docintel", logger=logger)

    recorder.increment("search.queries", intent="entity")
    recorder.set_gauge("search.results", 3.0, intent="entity")
    recorder.record_timing("search.duration", 0.25, intent="entity")

    handler.flush()
    lines = stream.getvalue().strip().splitlines()
    assert lines[0] == "docintel.search.queries value=1 intent=entity"
    assert lines[1] == "docintel.search.results value=3 intent=entity"
    assert lines[2] == "docintel.search.duration duration_ms=250 intent=entity"
    assert recorder.counter_total("search.queries") == 1


def test_metrics_recorder_disabled_emits_nothing() -> None:
    logger, stream, handler = _capture_logger_output("docintel.test.disabled")
    recorder = MetricsRecorder(enabled=False, logger=logger)

    recorder.increment("ingestion.documents")
    with recorder.track_timing("ingestion.total_duration"):
        pass

    handler.flush()
    assert stream.getvalue() == ""
    assert recorder.counter_total("ingestion.documents") == 0


def test_metrics_recorder_drops_empty_tags_and_tracks_totals() -> None:
    logger, stream, handler = _capture_logger_output("docintel.test.totals")
    recorder = MetricsRecorder(logger=logger)

    recorder.increment("ingestion.chunks", value=4, document_type=None)
    recorder.increment("ingestion.chunks", value=2, document_type="report")

    handler.flush()
    lines = stream.getvalue().strip().splitlines()
    assert lines[0] == "docintel.ingestion.chunks value=4"
    assert lines[1] == "docintel.ingestion.chunks value=2 document_type=report"
    assert recorder.counter_total("ingestion.chunks") == 6


def test_metrics_recorder_exports_prometheus() -> None:
    logger, _, _ = _capture_logger_output("docintel.test.prometheus")
    recorder = MetricsRecorder(namespace="docintel", logger=logger, prometheus_enabled=True)

    recorder.increment("pipeline.run.enqueued", document_id="doc-1")
    recorder.set_gauge("pipeline.run.active", 2)
    recorder.record_timing("pipeline.step.duration", 0.1, step="rag-chunking", status="completed")

    payload = recorder.render_prometheus().decode("utf-8")
    assert 'docintel_pipeline_run_enqueued_total{document_id="doc-1"} 1.0' in payload
    assert "docintel_pipeline_run_active 2.0" in payload
    assert "docintel_pipeline_step_duration_count" in payload
    assert recorder.prometheus_content_type.startswith("text/plain")


def test_render_prometheus_requires_export_enabled() -> None:
    recorder = MetricsRecorder()
    with pytest.raises(RuntimeError):
        recorder.render_prometheus()
