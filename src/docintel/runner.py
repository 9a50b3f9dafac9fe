"""Reusable document pipeline executor for background jobs and synchronous runs."""

from __future__ import annotations

import logging
import random
from typing import Any

from .config import Settings
from .documents import DocumentEntry, DocumentRegistry
from .extraction import ProcessingContext, SimulatedStepExecutor, SleepFunc
from .observability import MetricsRecorder
from .pipeline import PipelineStatus, ProcessingPipeline, ProcessingStep

logger = logging.getLogger(__name__)


def build_processing_context(entry: DocumentEntry) -> ProcessingContext:
    return ProcessingContext(
        document_id=entry.id,
        title=entry.document.title,
        text=entry.document.content,
        document_type=entry.document_type,
        page_count=entry.document.page_count,
        chunk_count=sum(1 for chunk in entry.chunks if not chunk.is_record),
        embedding_model=entry.embedding_model,
        configuration=entry.configuration.copy(),
        metadata_fields=list(entry.metadata_fields),
    )


async def execute_document_pipeline(
    registry: DocumentRegistry,
    document_id: str,
    *,
    intent: str | None = None,
    settings: Settings | None = None,
    metrics: MetricsRecorder | None = None,
    rng: random.Random | None = None,
    sleep: SleepFunc | None = None,
) -> dict[str, Any]:
    """Run the simulated pipeline for one document and store its combined results.

    Status and step snapshots are written back to the registry as the run
    progresses so that ``GET /pipeline`` reflects work in flight.
    """

    settings = settings or Settings()
    entry = registry.get(document_id)
    if rng is None:
        rng = random.Random(settings.pipeline_random_seed)
    executor = SimulatedStepExecutor(
        build_processing_context(entry),
        step_delay=settings.pipeline_step_delay,
        rng=rng,
        sleep=sleep,
    )
    pipeline = ProcessingPipeline(executor, document_id=document_id, metrics=metrics)

    def publish(_: PipelineStatus | ProcessingStep) -> None:
        registry.update_pipeline(
            document_id,
            pipeline.status.to_dict(),
            [step.to_dict() for step in pipeline.steps],
        )

    unsubscribe_progress = pipeline.on_progress(publish)
    unsubscribe_step = pipeline.on_step(publish)
    if intent:
        pipeline.configure_from_intent(intent, entry.configuration)
    else:
        pipeline.configure_from_configuration(entry.configuration)
    logger.info("pipeline.run.start document_id=%s intent=%s", document_id, intent or "-")
    try:
        results = await pipeline.execute()
    finally:
        unsubscribe_progress()
        unsubscribe_step()
        registry.update_pipeline(
            document_id,
            pipeline.status.to_dict(),
            [step.to_dict() for step in pipeline.steps],
        )

    registry.store_results(document_id, results)
    return results


__all__ = ["build_processing_context", "execute_document_pipeline"]
