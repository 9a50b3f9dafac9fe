from __future__ import annotations

from typing import Any, Callable

import pytest

from docintel.models import ProcessingConfiguration
from docintel.pipeline import (
    PipelineError,
    PipelineStatus,
    ProcessingPipeline,
    ProcessingStep,
    steps_for_configuration,
    steps_for_intent,
)


class RecordingExecutor:
    def __init__(self, fail_on: str | None = None) -> None:
        self.calls: list[str] = []
        self.fail_on = fail_on

    async def __call__(self, step: ProcessingStep, report_progress: Callable[[float], None]) -> dict[str, Any]:
        self.calls.append(step.id)
        report_progress(50.0)
        report_progress(120.0)
        if step.id == self.fail_on:
            raise RuntimeError(f"{step.id} exploded")
        return {"step": step.id}


def _all_enabled() -> ProcessingConfiguration:
    return ProcessingConfiguration.from_dict(
        {
            "processingTypes": {"rag": True, "kg": True, "idp": True},
            "idpSettings": {"extractTables": True, "extractForms": True},
        }
    )


def test_steps_for_configuration_covers_enabled_types() -> None:
    steps = steps_for_configuration(_all_enabled())
    ids = [step.id for step in steps]

    assert ids == [
        "idp-text-extraction",
        "idp-classification",
        "idp-metadata-extraction",
        "idp-table-extraction",
        "idp-field-detection",
        "idp-field-extraction",
        "rag-chunking",
        "rag-vectorization",
        "rag-indexing",
        "kg-entity-extraction",
        "kg-relation-mapping",
        "kg-graph-building",
    ]
    by_id = {step.id: step for step in steps}
    assert by_id["rag-indexing"].dependencies == ["rag-vectorization"]
    assert by_id["idp-field-extraction"].dependencies == ["idp-field-detection"]


def test_disabled_sub_steps_are_skipped_in_chains() -> None:
    configuration = ProcessingConfiguration.from_dict({"ragSettings": {"vectorization": False}})

    steps = steps_for_configuration(configuration)

    assert [step.id for step in steps] == ["rag-chunking", "rag-indexing"]
    assert steps[1].dependencies == ["rag-chunking"]


def test_steps_for_intent_respects_enabled_types() -> None:
    configuration = _all_enabled()
    assert [step.id for step in steps_for_intent("find_answers_tables", configuration)] == [
        "idp-table-extraction",
        "rag-table-chunking",
        "rag-indexing",
    ]
    assert [step.id for step in steps_for_intent("extract_form_fields", configuration)] == [
        "idp-field-detection",
        "idp-field-extraction",
    ]
    assert steps_for_intent("understand_relationships", ProcessingConfiguration()) == []
    with pytest.raises(ValueError):
        steps_for_intent("summarize", configuration)


@pytest.mark.asyncio
async def test_pipeline_executes_in_dependency_order() -> None:
    executor = RecordingExecutor()
    pipeline = ProcessingPipeline(executor, document_id="doc-1")
    statuses: list[PipelineStatus] = []
    unsubscribe = pipeline.on_progress(statuses.append)

    pipeline.configure_from_intent("understand_relationships", _all_enabled())
    results = await pipeline.execute()
    unsubscribe()

    assert executor.calls == ["kg-entity-extraction", "kg-relation-mapping", "kg-graph-building"]
    assert set(results["kg"]) == set(executor.calls)
    assert results["rag"] == {} and results["idp"] == {}
    assert statuses[0].status == "preparing"
    assert statuses[-1].status == "completed"
    assert statuses[-1].progress == 100.0
    assert pipeline.status.completed_steps == 3
    assert all(step.progress == 100.0 and step.status == "completed" for step in pipeline.steps)


@pytest.mark.asyncio
async def test_step_callbacks_see_capped_progress() -> None:
    pipeline = ProcessingPipeline(RecordingExecutor())
    seen: list[tuple[str, str, float]] = []
    pipeline.on_step(lambda step: seen.append((step.id, step.status, step.progress)))

    pipeline.configure_from_configuration(ProcessingConfiguration())
    await pipeline.execute()

    chunking = [entry for entry in seen if entry[0] == "rag-chunking"]
    assert chunking[0][1] == "processing"
    assert (chunking[1][2], chunking[2][2]) == (50.0, 95.0)
    assert chunking[-1] == ("rag-chunking", "completed", 100.0)


@pytest.mark.asyncio
async def test_pipeline_failure_marks_status_and_step() -> None:
    executor = RecordingExecutor(fail_on="rag-vectorization")
    pipeline = ProcessingPipeline(executor)
    pipeline.configure_from_configuration(ProcessingConfiguration())

    with pytest.raises(RuntimeError, match="exploded"):
        await pipeline.execute()

    status = pipeline.status
    assert status.status == "error"
    assert status.error == "rag-vectorization exploded"
    assert status.completed_steps == 1
    steps = {step.id: step for step in pipeline.steps}
    assert steps["rag-vectorization"].status == "error"
    assert steps["rag-indexing"].status == "pending"
    assert executor.calls == ["rag-chunking", "rag-vectorization"]
    assert list(pipeline.get_combined_results()["rag"]) == ["rag-chunking"]


@pytest.mark.asyncio
async def test_pipeline_without_steps_raises() -> None:
    pipeline = ProcessingPipeline(RecordingExecutor())
    with pytest.raises(PipelineError, match="not configured"):
        await pipeline.execute()

    pipeline.configure_from_intent("extract_form_fields", ProcessingConfiguration())
    with pytest.raises(PipelineError):
        await pipeline.execute()


@pytest.mark.asyncio
async def test_circular_dependencies_are_rejected() -> None:
    executor = RecordingExecutor()
    pipeline = ProcessingPipeline(executor)
    pipeline.configure_from_configuration(ProcessingConfiguration())
    steps = {step.id: step for step in pipeline.steps}
    steps["rag-chunking"].dependencies = ["rag-indexing"]

    with pytest.raises(PipelineError, match="Circular dependency"):
        pipeline.ordered_steps()
    with pytest.raises(PipelineError, match="Circular dependency"):
        await pipeline.execute()

    assert executor.calls == []
    assert pipeline.status.status == "error"
