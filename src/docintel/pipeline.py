"""Dependency-ordered processing pipeline for RAG, KG and IDP steps."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Protocol

from .models import PROCESSING_TYPES, ProcessingConfiguration
from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

INTENTS: tuple[str, ...] = ("find_answers_tables", "extract_form_fields", "understand_relationships")


class PipelineError(RuntimeError):
    """Raised when the pipeline cannot be executed or a step fails."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class ProcessingStep:
    id: str
    type: str
    name: str
    status: str = "pending"
    progress: float = 0.0
    results: dict[str, Any] | None = None
    dependencies: list[str] = field(default_factory=list)
    start_time: str | None = None
    end_time: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "status": self.status,
            "progress": self.progress,
            "results": self.results,
            "dependencies": list(self.dependencies),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "error": self.error,
        }


@dataclass(slots=True)
class PipelineStatus:
    status: str = "idle"
    current_step: str | None = None
    total_steps: int = 0
    completed_steps: int = 0
    progress: float = 0.0
    start_time: str | None = None
    end_time: str | None = None
    error: str | None = None

    def copy(self) -> "PipelineStatus":
        return PipelineStatus(
            status=self.status,
            current_step=self.current_step,
            total_steps=self.total_steps,
            completed_steps=self.completed_steps,
            progress=self.progress,
            start_time=self.start_time,
            end_time=self.end_time,
            error=self.error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "currentStep": self.current_step,
            "totalSteps": self.total_steps,
            "completedSteps": self.completed_steps,
            "progress": self.progress,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "error": self.error,
        }


class StepExecutor(Protocol):
    async def __call__(
        self,
        step: ProcessingStep,
        report_progress: Callable[[float], None],
    ) -> dict[str, Any]:  # pragma: no cover - protocol definition
        ...


ProgressCallback = Callable[[PipelineStatus], None]
StepCallback = Callable[[ProcessingStep], None]


def _step(step_id: str, step_type: str, name: str, *dependencies: str) -> ProcessingStep:
    return ProcessingStep(id=step_id, type=step_type, name=name, dependencies=list(dependencies))


def _chain(step_type: str, candidates: list[tuple[bool, str, str]]) -> list[ProcessingStep]:
    steps: list[ProcessingStep] = []
    previous: str | None = None
    for enabled, step_id, name in candidates:
        if not enabled:
            continue
        steps.append(_step(step_id, step_type, name, *([previous] if previous else [])))
        previous = step_id
    return steps


def steps_for_intent(intent: str, configuration: ProcessingConfiguration) -> list[ProcessingStep]:
    if intent not in INTENTS:
        raise ValueError(f"Unknown processing intent '{intent}'")
    steps: list[ProcessingStep] = []
    if intent == "find_answers_tables":
        if configuration.idp.enabled:
            steps.append(_step("idp-table-extraction", "idp", "Extract Tables"))
        if configuration.rag.enabled:
            steps.append(_step("rag-table-chunking", "rag", "Process Table Data", "idp-table-extraction"))
            steps.append(_step("rag-indexing", "rag", "Index for Search", "rag-table-chunking"))
    elif intent == "extract_form_fields":
        if configuration.idp.enabled:
            steps.append(_step("idp-field-detection", "idp", "Detect Form Fields"))
            steps.append(_step("idp-field-extraction", "idp", "Extract Field Values", "idp-field-detection"))
    elif configuration.kg.enabled:
        steps.extend(
            [
                _step("kg-entity-extraction", "kg", "Extract Entities"),
                _step("kg-relation-mapping", "kg", "Map Relationships", "kg-entity-extraction"),
                _step("kg-graph-building", "kg", "Build Knowledge Graph", "kg-relation-mapping"),
            ]
        )
    return steps


def steps_for_configuration(configuration: ProcessingConfiguration) -> list[ProcessingStep]:
    steps: list[ProcessingStep] = []
    idp = configuration.idp
    if idp.enabled:
        root = "idp-text-extraction" if idp.text_extraction else None
        if root:
            steps.append(_step(root, "idp", "Extract Text"))
        deps = [root] if root else []
        if idp.classification:
            steps.append(_step("idp-classification", "idp", "Classify Document", *deps))
        if idp.metadata:
            steps.append(_step("idp-metadata-extraction", "idp", "Extract Metadata", *deps))
        if idp.extract_tables:
            steps.append(_step("idp-table-extraction", "idp", "Extract Tables", *deps))
        if idp.extract_forms:
            steps.append(_step("idp-field-detection", "idp", "Detect Form Fields", *deps))
            steps.append(_step("idp-field-extraction", "idp", "Extract Field Values", "idp-field-detection"))

    rag = configuration.rag
    if rag.enabled:
        steps.extend(
            _chain(
                "rag",
                [
                    (rag.chunking, "rag-chunking", "Chunk Document"),
                    (rag.vectorization, "rag-vectorization", "Create Embeddings"),
                    (rag.indexing, "rag-indexing", "Index for Search"),
                ],
            )
        )

    kg = configuration.kg
    if kg.enabled:
        steps.extend(
            _chain(
                "kg",
                [
                    (kg.entity_extraction, "kg-entity-extraction", "Extract Entities"),
                    (kg.relation_mapping, "kg-relation-mapping", "Map Relationships"),
                    (kg.graph_building, "kg-graph-building", "Build Knowledge Graph"),
                ],
            )
        )
    return steps


class ProcessingPipeline:
    """Runs a configured set of steps in dependency order, one at a time.

    Configure with :meth:`configure_from_intent` or
    :meth:`configure_from_configuration`, then ``await execute()``. Progress
    and step subscribers are called synchronously on every state change.
    """

    def __init__(
        self,
        executor: StepExecutor,
        *,
        document_id: str | None = None,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._executor = executor
        self._document_id = document_id
        self._metrics = metrics
        self._steps: Dict[str, ProcessingStep] = {}
        self._status = PipelineStatus()
        self._progress_callbacks: List[ProgressCallback] = []
        self._step_callbacks: List[StepCallback] = []

    # Configuration -----------------------------------------------------

    def configure_from_intent(self, intent: str, configuration: ProcessingConfiguration) -> list[ProcessingStep]:
        return self._configure(steps_for_intent(intent, configuration))

    def configure_from_configuration(self, configuration: ProcessingConfiguration) -> list[ProcessingStep]:
        return self._configure(steps_for_configuration(configuration))

    def _configure(self, steps: list[ProcessingStep]) -> list[ProcessingStep]:
        self.reset()
        for step in steps:
            self._steps[step.id] = step
        self._status = PipelineStatus(
            status="preparing",
            total_steps=len(steps),
            start_time=_now(),
        )
        logger.info(
            "pipeline.configured document_id=%s steps=%s",
            self._document_id,
            ",".join(step.id for step in steps) or "-",
        )
        self._notify_progress()
        return list(steps)

    def reset(self) -> None:
        self._steps.clear()
        self._status = PipelineStatus()

    # Execution ---------------------------------------------------------

    async def execute(self) -> dict[str, dict[str, Any]]:
        if not self._steps:
            raise PipelineError("Pipeline not configured")

        status = self._status
        status.status = "processing"
        status.start_time = _now()
        status.error = None
        self._notify_progress()
        started = time.perf_counter()

        try:
            for step in self.ordered_steps():
                status.current_step = step.id
                self._notify_progress()
                await self._execute_step(step)
                status.completed_steps += 1
                status.progress = status.completed_steps / status.total_steps * 100
                self._notify_progress()
        except Exception as exc:
            status.status = "error"
            status.error = str(exc) or "Pipeline execution failed"
            status.end_time = _now()
            self._notify_progress()
            logger.exception(
                "pipeline.failed document_id=%s step=%s",
                self._document_id,
                status.current_step,
            )
            self._record_run(started, "error")
            raise

        status.status = "completed"
        status.end_time = _now()
        status.current_step = None
        self._notify_progress()
        self._record_run(started, "completed")
        logger.info(
            "pipeline.completed document_id=%s steps=%s",
            self._document_id,
            status.completed_steps,
        )
        return self.get_combined_results()

    async def _execute_step(self, step: ProcessingStep) -> None:
        missing = [
            dep for dep in step.dependencies if dep in self._steps and self._steps[dep].status != "completed"
        ]
        if missing:
            raise PipelineError(f"Step '{step.id}' has incomplete dependencies: {', '.join(missing)}")

        step.status = "processing"
        step.start_time = _now()
        self._notify_step(step)
        started = time.perf_counter()

        def report(progress: float) -> None:
            step.progress = min(max(progress, step.progress), 95.0)
            self._notify_step(step)

        try:
            step.results = await self._executor(step, report)
        except Exception as exc:
            step.status = "error"
            step.error = str(exc) or "Step execution failed"
            step.end_time = _now()
            self._notify_step(step)
            if self._metrics is not None:
                self._metrics.record_timing(
                    "pipeline.step.duration",
                    time.perf_counter() - started,
                    step=step.id,
                    status="error",
                )
            raise

        step.status = "completed"
        step.progress = 100.0
        step.end_time = _now()
        self._notify_step(step)
        if self._metrics is not None:
            self._metrics.record_timing(
                "pipeline.step.duration",
                time.perf_counter() - started,
                step=step.id,
                status="completed",
            )
        logger.info("pipeline.step.completed document_id=%s step=%s", self._document_id, step.id)

    def ordered_steps(self) -> list[ProcessingStep]:
        """Return the configured steps in dependency order (depth-first)."""

        visited: set[str] = set()
        visiting: set[str] = set()
        ordered: list[ProcessingStep] = []

        def visit(step_id: str) -> None:
            if step_id in visited:
                return
            step = self._steps.get(step_id)
            if step is None:
                return
            if step_id in visiting:
                raise PipelineError(f"Circular dependency detected at step '{step_id}'")
            visiting.add(step_id)
            for dependency in step.dependencies:
                visit(dependency)
            visiting.discard(step_id)
            visited.add(step_id)
            ordered.append(step)

        for step_id in list(self._steps):
            visit(step_id)
        return ordered

    def _record_run(self, started: float, outcome: str) -> None:
        if self._metrics is None:
            return
        self._metrics.record_timing("pipeline.run.duration", time.perf_counter() - started, status=outcome)

    # Results and subscriptions -----------------------------------------

    def get_combined_results(self) -> dict[str, dict[str, Any]]:
        combined: dict[str, dict[str, Any]] = {name: {} for name in PROCESSING_TYPES}
        for step in self._steps.values():
            if step.status == "completed" and step.results is not None:
                combined.setdefault(step.type, {})[step.id] = step.results
        return combined

    @property
    def status(self) -> PipelineStatus:
        return self._status.copy()

    @property
    def steps(self) -> list[ProcessingStep]:
        return list(self._steps.values())

    def on_progress(self, callback: ProgressCallback) -> Callable[[], None]:
        self._progress_callbacks.append(callback)
        return lambda: self._unsubscribe(self._progress_callbacks, callback)

    def on_step(self, callback: StepCallback) -> Callable[[], None]:
        self._step_callbacks.append(callback)
        return lambda: self._unsubscribe(self._step_callbacks, callback)

    @staticmethod
    def _unsubscribe(callbacks: list, callback: Callable[..., Any]) -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    def _notify_progress(self) -> None:
        snapshot = self._status.copy()
        for callback in list(self._progress_callbacks):
            callback(snapshot)

    def _notify_step(self, step: ProcessingStep) -> None:
        for callback in list(self._step_callbacks):
            callback(step)


__all__ = [
    "INTENTS",
    "PipelineError",
    "PipelineStatus",
    "ProcessingPipeline",
    "ProcessingStep",
    "StepExecutor",
    "steps_for_configuration",
    "steps_for_intent",
]
