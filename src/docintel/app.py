"""FastAPI application exposing the document processing console as a JSON API."""

from __future__ import annotations

import json
import logging
import random
from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from .analyzer import DocumentAnalyzer
from .config import Settings
from .documents import DocumentRegistry
from .embeddings import EMBEDDING_MODELS, AdvancedEmbeddingOptions, get_embedding_model, recommended_models
from .extraction import TableExtractionOptions, TableExtractor, find_table, tables_from_results
from .ingestion import DocumentIngestor, IngestionJobManager
from .models import ProcessingConfiguration
from .observability import MetricsRecorder
from .pipeline import INTENTS, PipelineStatus
from .pipeline_jobs import JobNotFoundError, PipelineRunJob, PipelineRunQueue
from .runner import execute_document_pipeline
from .search import SearchFilters, SearchOptions, UnifiedSearch, generate_suggestions
from .templates import TemplateStore

logger = logging.getLogger(__name__)


_LOGGING_CONFIGURED = False


def _ensure_logging() -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    docintel_logger = logging.getLogger("docintel")
    uvicorn_logger = logging.getLogger("uvicorn.error")

    handlers = list(uvicorn_logger.handlers)
    if handlers:
        docintel_logger.handlers = []
        for handler in handlers:
            docintel_logger.addHandler(handler)
    else:
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        docintel_logger.addHandler(handler)

    if docintel_logger.level == logging.NOTSET or docintel_logger.level > logging.INFO:
        docintel_logger.setLevel(logging.INFO)
    docintel_logger.propagate = False
    _LOGGING_CONFIGURED = True


@contextmanager
def _domain_errors() -> Iterator[None]:
    """Translate domain exceptions raised inside the block into HTTP errors."""

    try:
        yield
    except (KeyError, IndexError):
        raise
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


async def _read_json(request: Request, *, required: bool = True) -> dict[str, Any]:
    body = await request.body()
    if not body.strip():
        if required:
            raise HTTPException(status_code=400, detail="Request body is required")
        return {}
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return payload


class ApplicationState:
    """Container for runtime dependencies used by the FastAPI app."""

    def __init__(
        self,
        *,
        settings: Settings,
        registry: DocumentRegistry,
        template_store: TemplateStore,
        analyzer: DocumentAnalyzer,
        ingestion_service: DocumentIngestor,
        ingestion_jobs: IngestionJobManager,
        pipeline_queue: PipelineRunQueue,
        search_service: UnifiedSearch,
        table_extractor: TableExtractor,
        metrics: MetricsRecorder | None,
        rng: random.Random,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.template_store = template_store
        self.analyzer = analyzer
        self.ingestion_service = ingestion_service
        self.ingestion_jobs = ingestion_jobs
        self.pipeline_queue = pipeline_queue
        self.search_service = search_service
        self.table_extractor = table_extractor
        self.metrics = metrics
        self.rng = rng


def create_app(
    *,
    settings: Settings | None = None,
    registry: DocumentRegistry | None = None,
    template_store: TemplateStore | None = None,
    analyzer: DocumentAnalyzer | None = None,
    ingestion_service: DocumentIngestor | None = None,
    ingestion_jobs: IngestionJobManager | None = None,
    pipeline_queue: PipelineRunQueue | None = None,
    search_service: UnifiedSearch | None = None,
    metrics: MetricsRecorder | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    _ensure_logging()

    settings = settings or Settings.from_env()
    metrics = metrics or settings.build_metrics_recorder()
    registry = registry or DocumentRegistry()
    template_store = template_store or TemplateStore.with_defaults(settings.templates_path)
    analyzer = analyzer or DocumentAnalyzer()
    ingestion_service = ingestion_service or DocumentIngestor(
        registry,
        settings=settings,
        analyzer=analyzer,
        metrics=metrics,
    )
    ingestion_jobs = ingestion_jobs or IngestionJobManager(
        max_active_per_collection=settings.ingestion_document_concurrency_limit,
        max_files_per_minute=settings.ingestion_files_per_minute,
    )
    search_service = search_service or UnifiedSearch(metrics=metrics)

    async def run_pipeline_job(job: PipelineRunJob) -> dict[str, Any]:
        return await execute_document_pipeline(
            registry,
            job.document_id,
            intent=job.intent,
            settings=settings,
            metrics=metrics,
        )

    if pipeline_queue is None:
        pipeline_queue = PipelineRunQueue(
            max_queue=settings.pipeline_max_queue,
            max_concurrency=settings.pipeline_max_concurrency,
            max_concurrency_per_document=settings.pipeline_max_concurrency_per_document,
            executor=run_pipeline_job,
            metrics=metrics,
        )
    else:
        pipeline_queue.configure_executor(run_pipeline_job)

    logger.info(
        "app.start templates=%s sync_mode=%s step_delay=%s",
        len(template_store),
        settings.pipeline_sync_mode,
        settings.pipeline_step_delay,
    )

    app = FastAPI(title="docintel")
    app.state.services = ApplicationState(
        settings=settings,
        registry=registry,
        template_store=template_store,
        analyzer=analyzer,
        ingestion_service=ingestion_service,
        ingestion_jobs=ingestion_jobs,
        pipeline_queue=pipeline_queue,
        search_service=search_service,
        table_extractor=TableExtractor(),
        metrics=metrics,
        rng=random.Random(settings.pipeline_random_seed),
    )

    @app.on_event("startup")
    async def _start_pipeline_queue() -> None:
        pipeline_queue.start()

    @app.on_event("shutdown")
    async def _shutdown_pipeline_queue() -> None:
        await pipeline_queue.shutdown()

    def get_state(request: Request) -> ApplicationState:
        return request.app.state.services

    def get_settings_dependency(request: Request) -> Settings:
        return get_state(request).settings

    def get_registry(request: Request) -> DocumentRegistry:
        return get_state(request).registry

    def get_template_store(request: Request) -> TemplateStore:
        return get_state(request).template_store

    def get_ingestion_service(request: Request) -> DocumentIngestor:
        return get_state(request).ingestion_service

    def get_ingestion_jobs(request: Request) -> IngestionJobManager:
        return get_state(request).ingestion_jobs

    def get_pipeline_queue(request: Request) -> PipelineRunQueue:
        return get_state(request).pipeline_queue

    def get_search_service(request: Request) -> UnifiedSearch:
        return get_state(request).search_service

    def get_table_extractor(request: Request) -> TableExtractor:
        return get_state(request).table_extractor

    def get_metrics(request: Request) -> MetricsRecorder | None:
        return get_state(request).metrics

    # Analysis -------------------------------------------------------------

    @app.post("/api/analyze-document", response_class=JSONResponse)
    async def analyze_document(request: Request) -> JSONResponse:
        payload = await _read_json(request)
        file_name = str(payload.get("fileName") or "").strip()
        if not file_name:
            raise HTTPException(status_code=400, detail="fileName is required")
        try:
            file_size = int(payload.get("fileSize") or 0)
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail="fileSize must be an integer") from exc
        state = get_state(request)
        with _domain_errors():
            summary = state.analyzer.summarize_upload(file_name, payload.get("fileType"), file_size, state.rng)
        return JSONResponse(summary)

    # Uploads --------------------------------------------------------------

    @app.post("/api/documents", response_class=JSONResponse)
    async def upload_documents(
        background_tasks: BackgroundTasks,
        files: list[UploadFile] = File(...),
        settings: Settings = Depends(get_settings_dependency),
        ingestion: DocumentIngestor = Depends(get_ingestion_service),
        job_manager: IngestionJobManager = Depends(get_ingestion_jobs),
    ) -> JSONResponse:
        if not files:
            raise HTTPException(status_code=400, detail="At least one file is required")

        uploads: list[tuple[str, str | None, bytes]] = []
        for upload in files:
            filename = upload.filename or "document"
            raw_bytes = await upload.read()
            if len(raw_bytes) > settings.max_upload_bytes:
                raise HTTPException(
                    status_code=413,
                    detail=f"File '{filename}' exceeds the {settings.max_upload_bytes} byte upload limit",
                )
            uploads.append((filename, upload.content_type, raw_bytes))

        jobs_payload: list[dict[str, Any]] = []
        for filename, content_type, raw_bytes in uploads:
            job = job_manager.create_job(filename, size_bytes=len(raw_bytes))
            if not raw_bytes:
                job_manager.mark_failed(job.id, "File is empty")
            else:
                background_tasks.add_task(
                    _process_ingestion_job,
                    job_manager,
                    ingestion,
                    job.id,
                    filename,
                    content_type,
                    raw_bytes,
                )
            jobs_payload.append(job.to_dict())
        return JSONResponse({"jobs": jobs_payload}, status_code=202)

    @app.post("/api/documents/url", response_class=JSONResponse)
    async def upload_document_url(
        background_tasks: BackgroundTasks,
        url: str = Form(...),
        ingestion: DocumentIngestor = Depends(get_ingestion_service),
        job_manager: IngestionJobManager = Depends(get_ingestion_jobs),
    ) -> JSONResponse:
        sanitized_url = url.strip()
        if not sanitized_url:
            raise HTTPException(status_code=400, detail="URL is required")

        job = job_manager.create_job(sanitized_url)
        background_tasks.add_task(
            _process_ingestion_job,
            job_manager,
            ingestion,
            job.id,
            sanitized_url,
            None,
            None,
            sanitized_url,
        )
        return JSONResponse({"job": job.to_dict()}, status_code=202)

    @app.get("/api/documents/uploads", response_class=JSONResponse)
    async def list_upload_jobs(job_manager: IngestionJobManager = Depends(get_ingestion_jobs)) -> JSONResponse:
        return JSONResponse({"jobs": [job.to_dict() for job in job_manager.list_jobs()]})

    # Documents ------------------------------------------------------------

    @app.get("/api/documents", response_class=JSONResponse)
    async def list_documents(registry: DocumentRegistry = Depends(get_registry)) -> JSONResponse:
        return JSONResponse({"documents": [entry.summary() for entry in registry.list_documents()]})

    @app.get("/api/documents/{document_id}", response_class=JSONResponse)
    async def get_document(document_id: str, registry: DocumentRegistry = Depends(get_registry)) -> JSONResponse:
        with _domain_errors():
            entry = registry.get(document_id)
        payload = entry.summary()
        payload["document"] = entry.document.to_dict()
        return JSONResponse(payload)

    @app.delete("/api/documents/{document_id}", response_class=Response)
    async def delete_document(document_id: str, registry: DocumentRegistry = Depends(get_registry)) -> Response:
        with _domain_errors():
            registry.delete(document_id)
        return Response(status_code=204)

    @app.get("/api/documents/{document_id}/analysis", response_class=JSONResponse)
    async def get_document_analysis(
        document_id: str,
        request: Request,
        registry: DocumentRegistry = Depends(get_registry),
    ) -> JSONResponse:
        with _domain_errors():
            entry = registry.get(document_id)
        analysis = entry.analysis or get_state(request).analyzer.analyze(entry.uploaded.name)
        return JSONResponse(analysis.to_dict())

    @app.get("/api/documents/{document_id}/chunks", response_class=JSONResponse)
    async def get_document_chunks(document_id: str, registry: DocumentRegistry = Depends(get_registry)) -> JSONResponse:
        with _domain_errors():
            entry = registry.get(document_id)
        return JSONResponse(
            {
                "documentId": document_id,
                "chunks": [chunk.to_dict() for chunk in entry.chunks],
                "totalChunks": len(entry.chunks),
            }
        )

    @app.post("/api/documents/{document_id}/chunks/preview", response_class=JSONResponse)
    async def preview_document_chunks(
        document_id: str,
        request: Request,
        registry: DocumentRegistry = Depends(get_registry),
    ) -> JSONResponse:
        payload = await _read_json(request, required=False)
        with _domain_errors():
            rag = registry.get(document_id).configuration.rag
            chunks = registry.preview_chunks(
                document_id,
                str(payload.get("method", rag.chunking_method)),
                int(payload.get("chunkSize", rag.chunk_size)),
                int(payload.get("chunkOverlap", rag.chunk_overlap)),
            )
        return JSONResponse({"chunks": [chunk.to_dict() for chunk in chunks], "totalChunks": len(chunks)})

    # Configuration --------------------------------------------------------

    def _configuration_payload(entry) -> dict[str, Any]:
        return {
            "documentId": entry.id,
            "configuration": entry.configuration.to_dict(),
            "embeddingModel": entry.embedding_model,
            "embeddingOptions": entry.embedding_options.to_dict(),
        }

    @app.get("/api/documents/{document_id}/config", response_class=JSONResponse)
    async def get_document_config(document_id: str, registry: DocumentRegistry = Depends(get_registry)) -> JSONResponse:
        with _domain_errors():
            entry = registry.get(document_id)
        return JSONResponse(_configuration_payload(entry))

    @app.put("/api/documents/{document_id}/config", response_class=JSONResponse)
    async def update_document_config(
        document_id: str,
        request: Request,
        registry: DocumentRegistry = Depends(get_registry),
    ) -> JSONResponse:
        payload = await _read_json(request)
        embedding_model = payload.get("embeddingModel")
        if embedding_model is not None:
            try:
                get_embedding_model(str(embedding_model))
            except LookupError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        raw_options = payload.get("embeddingOptions")
        with _domain_errors():
            embedding_options = AdvancedEmbeddingOptions.from_dict(raw_options) if raw_options is not None else None
            entry = registry.get(document_id)
            configuration = ProcessingConfiguration.from_dict(
                payload.get("configuration", payload),
                base=entry.configuration,
            )
            entry = registry.update_configuration(
                document_id,
                configuration,
                embedding_model=str(embedding_model) if embedding_model is not None else None,
                embedding_options=embedding_options,
            )
        return JSONResponse(_configuration_payload(entry))

    @app.post("/api/documents/{document_id}/config/template/{template_id}", response_class=JSONResponse)
    async def apply_template_to_document(
        document_id: str,
        template_id: str,
        registry: DocumentRegistry = Depends(get_registry),
        template_store: TemplateStore = Depends(get_template_store),
    ) -> JSONResponse:
        with _domain_errors():
            registry.get(document_id)
            configuration = template_store.apply(template_id)
            entry = registry.update_configuration(document_id, configuration)
        payload = _configuration_payload(entry)
        payload["templateId"] = template_id
        return JSONResponse(payload)

    # Fields and metadata --------------------------------------------------

    @app.get("/api/documents/{document_id}/fields", response_class=JSONResponse)
    async def list_document_fields(document_id: str, registry: DocumentRegistry = Depends(get_registry)) -> JSONResponse:
        with _domain_errors():
            entry = registry.get(document_id)
        return JSONResponse({"fields": [item.to_dict() for item in entry.fields]})

    @app.patch("/api/documents/{document_id}/fields/{field_id}", response_class=JSONResponse)
    async def update_document_field(
        document_id: str,
        field_id: int,
        request: Request,
        registry: DocumentRegistry = Depends(get_registry),
    ) -> JSONResponse:
        payload = await _read_json(request)
        value = payload.get("value")
        if not isinstance(value, bool):
            raise HTTPException(status_code=400, detail="value must be a boolean")
        with _domain_errors():
            updated = registry.update_field(
                document_id,
                field_id,
                str(payload.get("property", "")),
                value,
            )
        return JSONResponse(updated.to_dict())

    @app.get("/api/documents/{document_id}/metadata", response_class=JSONResponse)
    async def list_metadata_fields(document_id: str, registry: DocumentRegistry = Depends(get_registry)) -> JSONResponse:
        with _domain_errors():
            entry = registry.get(document_id)
        return JSONResponse({"metadataFields": [item.to_dict() for item in entry.metadata_fields]})

    @app.post("/api/documents/{document_id}/metadata", response_class=JSONResponse)
    async def add_metadata_field(
        document_id: str,
        request: Request,
        registry: DocumentRegistry = Depends(get_registry),
    ) -> JSONResponse:
        payload = await _read_json(request)
        name = str(payload.get("name") or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="name is required")
        with _domain_errors():
            created = registry.add_metadata_field(document_id, name, str(payload.get("value") or ""))
        return JSONResponse(created.to_dict(), status_code=201)

    @app.patch("/api/documents/{document_id}/metadata/{field_id}", response_class=JSONResponse)
    async def update_metadata_field(
        document_id: str,
        field_id: int,
        request: Request,
        registry: DocumentRegistry = Depends(get_registry),
    ) -> JSONResponse:
        payload = await _read_json(request)
        if payload.get("property") == "included" and not isinstance(payload.get("value"), bool):
            raise HTTPException(status_code=400, detail="value must be a boolean")
        with _domain_errors():
            updated = registry.update_metadata_field(
                document_id,
                field_id,
                str(payload.get("property", "")),
                payload.get("value"),
            )
        return JSONResponse(updated.to_dict())

    @app.put("/api/documents/{document_id}/record", response_class=JSONResponse)
    async def update_record_indexing(
        document_id: str,
        request: Request,
        registry: DocumentRegistry = Depends(get_registry),
    ) -> JSONResponse:
        payload = await _read_json(request)
        structure = payload.get("structure")
        enabled = payload.get("enabled")
        if enabled is None and structure is None:
            raise HTTPException(status_code=400, detail="enabled or structure is required")
        if enabled is not None and not isinstance(enabled, bool):
            raise HTTPException(status_code=400, detail="enabled must be a boolean")
        with _domain_errors():
            if enabled is None:
                entry = registry.set_record_structure(document_id, str(structure))
            else:
                entry = registry.set_record_level_indexing(
                    document_id,
                    enabled,
                    str(structure) if structure is not None else None,
                )
        return JSONResponse(
            {
                "documentId": document_id,
                "recordLevelIndexing": entry.record_level_indexing,
                "recordStructure": entry.record_structure,
                "chunks": [chunk.to_dict() for chunk in entry.chunks],
            }
        )

    @app.get("/api/documents/{document_id}/index", response_class=JSONResponse)
    async def get_index_configuration(document_id: str, registry: DocumentRegistry = Depends(get_registry)) -> JSONResponse:
        with _domain_errors():
            configuration = registry.index_configuration(document_id)
        return JSONResponse(configuration.to_dict())

    # Pipeline -------------------------------------------------------------

    @app.post("/api/documents/{document_id}/process", response_class=JSONResponse)
    async def process_document(
        document_id: str,
        request: Request,
        registry: DocumentRegistry = Depends(get_registry),
        queue: PipelineRunQueue = Depends(get_pipeline_queue),
        settings: Settings = Depends(get_settings_dependency),
    ) -> JSONResponse:
        payload = await _read_json(request, required=False)
        intent = payload.get("intent")
        if intent is not None and intent not in INTENTS:
            raise HTTPException(status_code=400, detail=f"intent must be one of {', '.join(INTENTS)}")
        with _domain_errors():
            registry.get(document_id)
        try:
            job = await queue.enqueue(document_id, intent=intent)
        except RuntimeError as exc:
            raise HTTPException(status_code=429, detail=str(exc)) from exc

        if settings.pipeline_sync_mode and await job.wait(settings.pipeline_inline_timeout):
            with _domain_errors():
                entry = registry.get(document_id)
            return JSONResponse(
                {
                    "job": job.to_dict(),
                    "status": entry.pipeline_status,
                    "results": job.results,
                },
                status_code=200,
            )
        return JSONResponse({"job": job.to_dict()}, status_code=202)

    @app.get("/api/documents/{document_id}/pipeline", response_class=JSONResponse)
    async def get_pipeline_status(
        document_id: str,
        registry: DocumentRegistry = Depends(get_registry),
        queue: PipelineRunQueue = Depends(get_pipeline_queue),
    ) -> JSONResponse:
        with _domain_errors():
            entry = registry.get(document_id)
        latest = await queue.latest_for_document(document_id)
        return JSONResponse(
            {
                "documentId": document_id,
                "status": entry.pipeline_status or PipelineStatus().to_dict(),
                "steps": list(entry.pipeline_steps),
                "latestRun": latest.to_dict() if latest else None,
            }
        )

    @app.get("/api/documents/{document_id}/runs", response_class=JSONResponse)
    async def list_pipeline_runs(
        document_id: str,
        registry: DocumentRegistry = Depends(get_registry),
        queue: PipelineRunQueue = Depends(get_pipeline_queue),
    ) -> JSONResponse:
        with _domain_errors():
            registry.get(document_id)
        jobs = await queue.list_for_document(document_id)
        return JSONResponse({"documentId": document_id, "runs": [job.to_dict() for job in jobs]})

    @app.get("/api/documents/{document_id}/runs/{job_id}", response_class=JSONResponse)
    async def get_pipeline_run(
        document_id: str,
        job_id: str,
        queue: PipelineRunQueue = Depends(get_pipeline_queue),
    ) -> JSONResponse:
        with _domain_errors():
            job = await queue.get(job_id)
            if job.document_id != document_id:
                raise JobNotFoundError(f"Pipeline run '{job_id}' not found for document '{document_id}'")
        return JSONResponse(job.to_dict())

    @app.get("/api/documents/{document_id}/results", response_class=JSONResponse)
    async def get_pipeline_results(document_id: str, registry: DocumentRegistry = Depends(get_registry)) -> JSONResponse:
        with _domain_errors():
            results = registry.get_results(document_id)
        return JSONResponse({"documentId": document_id, "results": results})

    # Tables ---------------------------------------------------------------

    @app.post("/api/documents/{document_id}/tables/search", response_class=JSONResponse)
    async def search_document_tables(
        document_id: str,
        request: Request,
        registry: DocumentRegistry = Depends(get_registry),
        extractor: TableExtractor = Depends(get_table_extractor),
    ) -> JSONResponse:
        payload = await _read_json(request)
        with _domain_errors():
            tables = tables_from_results(registry.get_results(document_id))
        options = payload.get("options")
        if options is not None:
            if not isinstance(options, dict):
                raise HTTPException(status_code=400, detail="options must be an object")
            tables = extractor.extract(tables, TableExtractionOptions.from_dict(options)).tables
        term = str(payload.get("term") or "")
        matches = extractor.search_in_tables(tables, term)
        return JSONResponse(
            {
                "term": term,
                "tables": [table.to_dict() for table in matches],
                "total": len(matches),
            }
        )

    @app.get("/api/documents/{document_id}/tables/{table_id}.csv", response_class=Response)
    async def export_document_table(
        document_id: str,
        table_id: str,
        registry: DocumentRegistry = Depends(get_registry),
        extractor: TableExtractor = Depends(get_table_extractor),
    ) -> Response:
        with _domain_errors():
            tables = tables_from_results(registry.get_results(document_id))
        table = find_table(tables, table_id)
        if table is None:
            raise HTTPException(status_code=404, detail=f"Table '{table_id}' not found")
        return Response(
            content=extractor.export_to_csv(table),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{table_id}.csv"'},
        )

    # Search ---------------------------------------------------------------

    @app.post("/api/search", response_class=JSONResponse)
    async def unified_search(
        request: Request,
        registry: DocumentRegistry = Depends(get_registry),
        search_service: UnifiedSearch = Depends(get_search_service),
    ) -> JSONResponse:
        payload = await _read_json(request)
        query = str(payload.get("query") or "")
        document_ids = payload.get("documentIds")
        if document_ids is not None and not isinstance(document_ids, list):
            raise HTTPException(status_code=400, detail="documentIds must be a list")
        with _domain_errors():
            filters = SearchFilters.from_dict(payload.get("filters"))
            options = SearchOptions.from_dict(payload.get("options"))
            corpus = registry.build_search_corpus(document_ids)
            response = search_service.search(corpus, query, filters, options)
        return JSONResponse(response.to_dict())

    @app.get("/api/search/suggestions", response_class=JSONResponse)
    async def search_suggestions(q: str = Query("")) -> JSONResponse:
        return JSONResponse({"query": q, "suggestions": generate_suggestions(q)})

    # Templates ------------------------------------------------------------

    @app.get("/api/templates", response_class=JSONResponse)
    async def list_templates(
        category: str = Query("all"),
        q: str | None = Query(None),
        template_store: TemplateStore = Depends(get_template_store),
    ) -> JSONResponse:
        if category not in {"all", "system", "user"}:
            raise HTTPException(status_code=400, detail="category must be 'all', 'system' or 'user'")
        templates = template_store.list(category=category, query=q)
        return JSONResponse({"templates": [template.to_dict() for template in templates]})

    @app.post("/api/templates", response_class=JSONResponse)
    async def create_template(
        request: Request,
        registry: DocumentRegistry = Depends(get_registry),
        template_store: TemplateStore = Depends(get_template_store),
    ) -> JSONResponse:
        payload = await _read_json(request)
        with _domain_errors():
            document_id = payload.get("documentId")
            if document_id:
                configuration = registry.get(str(document_id)).configuration
            else:
                configuration = ProcessingConfiguration.from_dict(payload.get("configuration"))
            tags = (payload.get("metadata") or {}).get("tags") or payload.get("tags") or []
            template = template_store.create_from_configuration(
                str(payload.get("name") or ""),
                str(payload.get("description") or ""),
                configuration,
                tags=[str(tag) for tag in tags],
            )
        return JSONResponse(template.to_dict(), status_code=201)

    @app.post("/api/templates/import", response_class=JSONResponse)
    async def import_template(
        request: Request,
        template_store: TemplateStore = Depends(get_template_store),
    ) -> JSONResponse:
        payload = await _read_json(request)
        source = payload.get("template", payload)
        with _domain_errors():
            template = template_store.import_template(source)
        return JSONResponse(template.to_dict(), status_code=201)

    @app.get("/api/templates/{template_id}", response_class=JSONResponse)
    async def get_template(template_id: str, template_store: TemplateStore = Depends(get_template_store)) -> JSONResponse:
        with _domain_errors():
            template = template_store.get(template_id)
        return JSONResponse(template.to_dict())

    @app.put("/api/templates/{template_id}", response_class=JSONResponse)
    async def update_template(
        template_id: str,
        request: Request,
        template_store: TemplateStore = Depends(get_template_store),
    ) -> JSONResponse:
        payload = await _read_json(request)
        with _domain_errors():
            template = template_store.update(template_id, payload)
        return JSONResponse(template.to_dict())

    @app.delete("/api/templates/{template_id}", response_class=Response)
    async def delete_template(template_id: str, template_store: TemplateStore = Depends(get_template_store)) -> Response:
        with _domain_errors():
            template_store.delete(template_id)
        return Response(status_code=204)

    @app.get("/api/templates/{template_id}/export", response_class=Response)
    async def export_template(template_id: str, template_store: TemplateStore = Depends(get_template_store)) -> Response:
        with _domain_errors():
            exported = template_store.export(template_id)
        return Response(
            content=exported,
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{template_id}.json"'},
        )

    # Catalogue and metrics ------------------------------------------------

    @app.get("/api/embedding-models", response_class=JSONResponse)
    async def list_embedding_models() -> JSONResponse:
        return JSONResponse(
            {
                "models": [model.to_dict() for model in EMBEDDING_MODELS],
                "recommended": [model.id for model in recommended_models()],
            }
        )

    @app.get("/metrics")
    async def metrics_endpoint(metrics: MetricsRecorder | None = Depends(get_metrics)) -> Response:
        if metrics is None or not metrics.prometheus_enabled:
            raise HTTPException(status_code=404, detail="Metrics export disabled")
        try:
            payload = metrics.render_prometheus()
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return Response(content=payload, media_type=metrics.prometheus_content_type)

    return app


def _process_ingestion_job(
    job_manager: IngestionJobManager,
    ingestion_service: DocumentIngestor,
    job_id: str,
    filename: str,
    content_type: str | None,
    data: bytes | None = None,
    source_url: str | None = None,
) -> None:
    logger.info(
        "ingest.job.start job_id=%s filename=%s source=%s size_bytes=%s",
        job_id,
        filename,
        "url" if source_url else "upload",
        len(data) if data is not None else None,
    )
    job_manager.wait_for_rate()
    job_manager.mark_processing(job_id)
    try:
        if source_url:
            result = ingestion_service.ingest_url(source_url)
        else:
            if data is None:
                raise ValueError("No data provided for ingestion job")
            result = ingestion_service.ingest_bytes(filename, data, content_type)
        job_manager.mark_completed(job_id, result.entry.id)
        logger.info("ingest.job.completed job_id=%s document_id=%s", job_id, result.entry.id)
    except Exception as exc:
        logger.exception("ingest.job.failed job_id=%s error=%s", job_id, exc)
        job_manager.mark_failed(job_id, str(exc))


__all__ = ["ApplicationState", "create_app"]
