"""Metrics instrumentation that logs every sample and optionally mirrors it to Prometheus."""

from __future__ import annotations

import logging
import re
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Iterator

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

_PROM_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")
_PROM_TYPES = {"counter": Counter, "gauge": Gauge, "histogram": Histogram}


class MetricsRecorder:
    """Emit structured metrics via logging and (optionally) Prometheus.

    Log lines look like ``docintel.search.queries value=1 intent=entity``;
    fields come first, tags after, both sorted by key.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        namespace: str = "docintel",
        logger: logging.Logger | None = None,
        prometheus_enabled: bool = False,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self._enabled = enabled
        self._namespace = namespace.strip() or "docintel"
        self._logger = logger or logging.getLogger("docintel.metrics")
        self._prometheus_enabled = prometheus_enabled
        if registry is None and prometheus_enabled:
            registry = CollectorRegistry()
        self._registry = registry
        self._prom_metrics: dict[tuple[str, str, tuple[str, ...]], Any] = {}
        self._counter_totals: defaultdict[str, float] = defaultdict(float)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def prometheus_enabled(self) -> bool:
        return self._prometheus_enabled and self._registry is not None

    @property
    def prometheus_registry(self) -> CollectorRegistry | None:
        return self._registry

    @property
    def prometheus_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def render_prometheus(self) -> bytes:
        if not self.prometheus_enabled:
            raise RuntimeError("Prometheus export is disabled")
        return generate_latest(self._registry)

    def counter_total(self, metric: str) -> float:
        """Return the running total for ``metric`` across all tag combinations."""

        return self._counter_totals.get(metric, 0.0)

    def increment(self, metric: str, *, value: int = 1, **tags: Any) -> None:
        """Increment a counter metric."""

        if not self._enabled:
            return
        value = int(value)
        clean_tags = _clean(tags)
        self._counter_totals[metric] += max(value, 0)
        self._emit(metric, fields={"value": value}, tags=clean_tags)
        child = self._prom_child("counter", metric, clean_tags)
        if child is not None:
            child.inc(float(max(value, 0)))

    def set_gauge(self, metric: str, value: float, **tags: Any) -> None:
        """Set the value of a gauge metric."""

        if not self._enabled:
            return
        clean_tags = _clean(tags)
        self._emit(metric, fields={"value": value}, tags=clean_tags)
        child = self._prom_child("gauge", metric, clean_tags)
        if child is not None:
            child.set(float(value))

    def record_timing(self, metric: str, duration_seconds: float, **tags: Any) -> None:
        """Emit a timing metric, recording milliseconds to logs."""

        if not self._enabled:
            return
        duration_seconds = max(duration_seconds, 0.0)
        clean_tags = _clean(tags)
        self._emit(metric, fields={"duration_ms": round(duration_seconds * 1000.0, 4)}, tags=clean_tags)
        child = self._prom_child("histogram", metric, clean_tags)
        if child is not None:
            child.observe(duration_seconds)

    @contextmanager
    def track_timing(self, metric: str, **tags: Any) -> Iterator[None]:
        """Context manager that records execution time for the wrapped block."""

        if not self._enabled:
            yield
            return

        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(metric, time.perf_counter() - start, **tags)

    def _emit(self, metric: str, *, fields: dict[str, Any], tags: dict[str, Any]) -> None:
        segments = [f"{key}={_stringify(value)}" for key, value in sorted(fields.items())]
        segments.extend(f"{key}={_stringify(value)}" for key, value in sorted(tags.items()))
        message = f"{self._namespace}.{metric}"
        if segments:
            message = f"{message} {' '.join(segments)}"
        self._logger.info(message)

    def _prom_child(self, kind: str, metric: str, tags: dict[str, Any]):
        if not self.prometheus_enabled:
            return None
        label_keys = tuple(sorted(tags))
        label_names = tuple(_sanitize_label(key) for key in label_keys)
        cache_key = (kind, metric, label_names)
        collector = self._prom_metrics.get(cache_key)
        if collector is None:
            collector = _PROM_TYPES[kind](
                self._prom_metric_name(metric),
                f"{metric} {kind}",
                labelnames=list(label_names),
                registry=self._registry,
            )
            self._prom_metrics[cache_key] = collector
        if not label_names:
            return collector
        values = {name: _stringify(tags[key]) for name, key in zip(label_names, label_keys)}
        return collector.labels(**values)

    def _prom_metric_name(self, metric: str) -> str:
        return f"{_PROM_NAME_RE.sub('_', self._namespace)}_{_PROM_NAME_RE.sub('_', metric)}".strip("_")


def _clean(tags: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in tags.items() if value is not None}


def _sanitize_label(label: str) -> str:
    return _PROM_NAME_RE.sub("_", label) or "label"


def _stringify(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.4f}" if not value.is_integer() else f"{int(value)}"
    return str(value)


__all__ = ["MetricsRecorder"]
