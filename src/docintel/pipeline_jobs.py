"""Asynchronous queue for executing document pipeline runs in background workers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

PipelineRunExecutor = Callable[["PipelineRunJob"], Awaitable[Dict[str, Any]]]

_FINISHED = frozenset({"completed", "error"})


class JobNotFoundError(LookupError):
    """Raised when a pipeline run id is unknown."""


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@dataclass(slots=True)
class PipelineRunJob:
    """In-memory representation of a pipeline run queued for execution."""

    id: str
    document_id: str
    intent: str | None
    requested_at: str
    status: str = "pending"
    started_at: str | None = None
    completed_at: str | None = None
    results: dict[str, Any] | None = None
    error: str | None = None
    _event: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)

    @property
    def finished(self) -> bool:
        return self.status in _FINISHED

    async def wait(self, timeout: float | None = None) -> bool:
        if self.finished:
            return True
        if timeout is not None and timeout <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def mark_running(self) -> None:
        self.status = "running"
        self.started_at = _utcnow_iso()

    def mark_completed(self, results: dict[str, Any]) -> None:
        self.status = "completed"
        self.results = results
        self.completed_at = _utcnow_iso()
        self._event.set()

    def mark_error(self, message: str) -> None:
        self.status = "error"
        self.error = message
        self.completed_at = _utcnow_iso()
        self._event.set()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "documentId": self.document_id,
            "intent": self.intent,
            "status": self.status,
            "requestedAt": self.requested_at,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "error": self.error,
        }


class PipelineRunQueue:
    """Manage asynchronous pipeline runs with global and per-document concurrency."""

    def __init__(
        self,
        *,
        max_queue: int = 8,
        max_concurrency: int = 2,
        max_concurrency_per_document: int | None = 1,
        executor: PipelineRunExecutor | None = None,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._max_queue = max(1, max_queue)
        self._max_concurrency = max(1, max_concurrency)
        if max_concurrency_per_document is None or max_concurrency_per_document <= 0:
            self._max_concurrency_per_document: int | None = None
        else:
            self._max_concurrency_per_document = max_concurrency_per_document
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=self._max_queue)
        self._jobs: Dict[str, PipelineRunJob] = {}
        self._lock = asyncio.Lock()
        self._document_semaphore_lock = asyncio.Lock()
        self._document_semaphores: Dict[str, asyncio.Semaphore] = {}
        self._workers: List[asyncio.Task] = []
        self._shutdown = False
        self._executor = executor
        self._metrics = metrics
        self._active_jobs = 0
        self._document_active_counts: defaultdict[str, int] = defaultdict(int)

    def configure_executor(self, executor: PipelineRunExecutor) -> None:
        self._executor = executor

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._shutdown

    async def enqueue(self, document_id: str, *, intent: str | None = None) -> PipelineRunJob:
        if self._shutdown:
            raise RuntimeError("PipelineRunQueue is shut down")

        job = PipelineRunJob(
            id=uuid4().hex,
            document_id=document_id,
            intent=intent,
            requested_at=_utcnow_iso(),
        )
        async with self._lock:
            try:
                self._queue.put_nowait(job.id)
            except asyncio.QueueFull as exc:
                raise RuntimeError("Pipeline run queue is full") from exc
            self._jobs[job.id] = job

        if self._metrics:
            self._metrics.increment("pipeline.run.enqueued", document_id=document_id)
        logger.info("pipeline.run.enqueued job_id=%s document_id=%s intent=%s", job.id, document_id, intent)
        return job

    async def get(self, job_id: str) -> PipelineRunJob:
        async with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Pipeline run '{job_id}' not found")
        return job

    async def list_for_document(self, document_id: str) -> list[PipelineRunJob]:
        async with self._lock:
            return [job for job in self._jobs.values() if job.document_id == document_id]

    async def latest_for_document(self, document_id: str) -> PipelineRunJob | None:
        jobs = await self.list_for_document(document_id)
        return jobs[-1] if jobs else None

    def start(self) -> None:
        if self._workers:
            return
        self._shutdown = False
        for _ in range(self._max_concurrency):
            self._workers.append(asyncio.create_task(self._worker_loop()))

    async def shutdown(self) -> None:
        self._shutdown = True
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers.clear()

    async def _worker_loop(self) -> None:
        while not self._shutdown:
            try:
                job_id = await self._queue.get()
            except asyncio.CancelledError:
                break
            async with self._lock:
                job = self._jobs.get(job_id)
            if job is None:
                self._queue.task_done()
                continue
            await self._run(job)

    async def _run(self, job: PipelineRunJob) -> None:
        document_semaphore: asyncio.Semaphore | None = None
        job_running = False
        try:
            if self._max_concurrency_per_document is not None:
                document_semaphore = await self._acquire_document_slot(job.document_id)
            job.mark_running()
            job_running = True
            await self._track_start(job)

            if self._executor is None:
                raise RuntimeError("Pipeline run executor not configured")
            results = await self._executor(job)
            job.mark_completed(results)
            logger.info("pipeline.run.completed job_id=%s document_id=%s", job.id, job.document_id)
        except asyncio.CancelledError:
            job.mark_error("Pipeline run cancelled")
            raise
        except Exception as exc:
            logger.exception("pipeline.run.failed job_id=%s document_id=%s", job.id, job.document_id)
            job.mark_error(str(exc) or exc.__class__.__name__)
        finally:
            if job_running:
                await self._track_finish(job)
            self._queue.task_done()
            if document_semaphore is not None:
                document_semaphore.release()

    async def _track_start(self, job: PipelineRunJob) -> None:
        async with self._lock:
            self._active_jobs += 1
            self._document_active_counts[job.document_id] += 1
            active_total = self._active_jobs
        if not self._metrics:
            return
        requested_at = _parse_iso(job.requested_at)
        started_at = _parse_iso(job.started_at)
        if requested_at and started_at:
            self._metrics.record_timing(
                "pipeline.run.queue_time",
                max((started_at - requested_at).total_seconds(), 0.0),
                document_id=job.document_id,
            )
        self._metrics.set_gauge("pipeline.run.active", float(active_total))

    async def _track_finish(self, job: PipelineRunJob) -> None:
        async with self._lock:
            self._active_jobs = max(self._active_jobs - 1, 0)
            remaining = max(self._document_active_counts.get(job.document_id, 0) - 1, 0)
            if remaining:
                self._document_active_counts[job.document_id] = remaining
            else:
                self._document_active_counts.pop(job.document_id, None)
            active_total = self._active_jobs
        if self._metrics:
            self._metrics.set_gauge("pipeline.run.active", float(active_total))

    async def _acquire_document_slot(self, document_id: str) -> asyncio.Semaphore:
        async with self._document_semaphore_lock:
            semaphore = self._document_semaphores.get(document_id)
            if semaphore is None:
                semaphore = asyncio.Semaphore(self._max_concurrency_per_document)
                self._document_semaphores[document_id] = semaphore
        await semaphore.acquire()
        return semaphore


__all__ = ["JobNotFoundError", "PipelineRunExecutor", "PipelineRunJob", "PipelineRunQueue"]
