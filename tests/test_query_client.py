from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from docintel.app import create_app
from docintel.config import Settings
from docintel.observability import MetricsRecorder
from docintel.query_client import (
    ApiError,
    DocintelClient,
    MemoryManager,
    QueryClient,
    QueryClientConfig,
    RequestQueue,
    cache_type_for,
)


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _client(handler, **kwargs) -> QueryClient:
    return QueryClient("http://testserver", transport=httpx.MockTransport(handler), **kwargs)


def test_cache_type_for_urls() -> None:
    assert cache_type_for("/api/embedding-models") == "models"
    assert cache_type_for("/api/templates/quick-search") == "templates"
    assert cache_type_for("/api/documents/abc/results") == "results"
    assert cache_type_for("/static/images/logo.png") == "images"
    assert cache_type_for("/api/documents") == "default"


def test_retry_delay_is_exponential_and_capped() -> None:
    config = QueryClientConfig()
    assert [config.retry_delay(attempt) for attempt in range(6)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]
    assert config.stale_time("templates") == 12 * 60 * 60
    assert config.stale_time("unknown") == 5 * 60


@pytest.mark.asyncio
async def test_query_retries_server_errors_with_backoff() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if len(calls) <= 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"ok": True})

    sleep = FakeSleep()
    metrics = MetricsRecorder()
    client = _client(handler, sleep=sleep, metrics=metrics)

    assert await client.query("/api/status") == {"ok": True}
    assert len(calls) == 4
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert metrics.counter_total("query_client.retries") == 3
    await client.aclose()


@pytest.mark.asyncio
async def test_query_gives_up_after_max_retries() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(504, text="gateway timeout")

    client = _client(handler, sleep=FakeSleep())

    with pytest.raises(ApiError) as excinfo:
        await client.query("/api/status")

    assert calls == 4
    assert excinfo.value.status == 504
    assert excinfo.value.hint == "Timeout processing large document."
    await client.aclose()


@pytest.mark.asyncio
async def test_client_errors_are_not_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404, text="not here")

    sleep = FakeSleep()
    client = _client(handler, sleep=sleep)

    with pytest.raises(ApiError) as excinfo:
        await client.query("/api/documents/missing")

    assert calls == 1
    assert sleep.delays == []
    assert str(excinfo.value) == "404: not here"
    assert excinfo.value.is_client_error
    await client.aclose()


@pytest.mark.asyncio
async def test_unauthorized_can_return_none() -> None:
    client = _client(lambda request: httpx.Response(401, text="login required"))

    assert await client.query("/api/documents/abc/results", on_401="return_null") is None
    with pytest.raises(ApiError, match="401"):
        await client.query("/api/documents/abc/results")
    await client.aclose()


@pytest.mark.asyncio
async def test_query_cache_respects_stale_time_and_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"templates": [], "call": len(seen)})

    clock = FakeClock()
    metrics = MetricsRecorder()
    client = _client(handler, clock=clock, metrics=metrics)

    first = await client.query("/api/templates")
    clock.now += 60 * 60
    second = await client.query("/api/templates")
    clock.now += 12 * 60 * 60
    third = await client.query("/api/templates")

    assert first == second == {"templates": [], "call": 1}
    assert third["call"] == 2
    assert seen[0].headers["X-Cache-Type"] == "templates"
    assert seen[0].headers["X-Request-Priority"] == "normal"
    assert metrics.counter_total("query_client.cache_hits") == 1

    await client.query("/api/documents")
    assert "X-Cache-Type" not in seen[-1].headers
    await client.aclose()


@pytest.mark.asyncio
async def test_clear_cache_by_type() -> None:
    client = _client(lambda request: httpx.Response(200, json={"path": request.url.path}))

    await client.query("/api/templates")
    await client.query("/api/embedding-models")
    await client.query("/api/documents")

    assert client.get_memory_usage()["totalSize"] > 0
    assert client.clear_cache("templates") == 1
    assert client.cached("/api/templates") is None
    assert client.cached("/api/embedding-models") == {"path": "/api/embedding-models"}
    assert client.clear_cache() == 2
    assert client.get_memory_usage()["totalSize"] == 0
    await client.aclose()


def test_memory_manager_evicts_least_recently_used_images() -> None:
    clock = FakeClock(1.0)
    evicted: list[str] = []
    manager = MemoryManager(max_cache_size_mb=1, image_cache_size_mb=1, on_evict=evicted.append, clock=clock)

    assert manager.add_to_cache("a", 300_000, is_image=True) == []
    clock.now = 2.0
    manager.add_to_cache("b", 300_000, is_image=True)
    clock.now = 3.0
    manager.touch("a")
    clock.now = 4.0
    removed = manager.add_to_cache("c", 400_000, is_image=True)

    assert removed == ["b"] == evicted
    usage = manager.get_usage()
    assert usage["totalSize"] == 700_000
    assert usage["imageSize"] == 700_000


@pytest.mark.asyncio
async def test_request_queue_limits_concurrency() -> None:
    queue = RequestQueue(max_concurrent_requests=2)

    async def request(value: int) -> int:
        await asyncio.sleep(0.01)
        return value

    results = await asyncio.gather(*(queue.add(lambda value=value: request(value)) for value in range(5)))

    assert results == [0, 1, 2, 3, 4]
    assert queue.peak_in_flight == 2
    assert queue.in_flight == 0


@pytest.mark.asyncio
async def test_batched_requests_share_outcome() -> None:
    sleep = FakeSleep()
    queue = RequestQueue(batch_delay=0.25, sleep=sleep)

    async def ok(value: int) -> int:
        return value

    async def broken() -> int:
        raise RuntimeError("backend down")

    assert await asyncio.gather(queue.add_batch(lambda: ok(1)), queue.add_batch(lambda: ok(2))) == [1, 2]
    assert sleep.delays == [0.25]

    outcomes = await asyncio.gather(
        queue.add_batch(lambda: ok(1)),
        queue.add_batch(broken),
        queue.add_batch(lambda: ok(3)),
        return_exceptions=True,
    )
    assert all(isinstance(item, RuntimeError) for item in outcomes)
    assert queue.pending_batch == 0
    await queue.aclose()


@pytest.mark.asyncio
async def test_mutate_retries_once_and_handles_empty_bodies() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        if request.url.path == "/api/templates/user-1" and request.method == "DELETE":
            return httpx.Response(204)
        if request.url.path == "/api/flaky" and len(calls) == 1:
            return httpx.Response(500, text="oops")
        if request.url.path == "/api/bad":
            return httpx.Response(400, text="invalid")
        return httpx.Response(200, json=json.loads(request.content or b"{}"))

    sleep = FakeSleep()
    client = _client(handler, sleep=sleep)

    assert await client.mutate("POST", "/api/flaky", {"name": "x"}) == {"name": "x"}
    assert sleep.delays == [1.0]
    assert await client.mutate("DELETE", "/api/templates/user-1") is None

    calls.clear()
    with pytest.raises(ApiError):
        await client.mutate("POST", "/api/bad", {})
    assert calls == ["POST"]
    await client.aclose()


@pytest.mark.asyncio
async def test_progressive_request_reports_progress() -> None:
    body = b"x" * 4096
    seen: list[httpx.Headers] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers)
        return httpx.Response(200, content=body)

    client = _client(handler)
    progress: list[float] = []

    response = await client.progressive_request(
        "GET",
        "/api/documents/abc/results",
        on_progress=progress.append,
        large_document=True,
        document_type="report",
    )

    assert response.content == body
    assert progress and progress[-1] == 1.0
    assert seen[0]["X-Progressive-Loading"] == "true"
    assert seen[0]["X-Document-Type"] == "report"
    await client.aclose()


@pytest.mark.asyncio
async def test_docintel_client_talks_to_the_api() -> None:
    app = create_app(settings=Settings(pipeline_step_delay=0.0, pipeline_random_seed=7))
    client = DocintelClient("http://testserver", transport=httpx.ASGITransport(app=app))

    analysis = await client.analyze_document("annual-report.pdf", "pdf", 2 * 1024 * 1024)
    assert analysis["success"] is True
    assert analysis["analysis"]["documentType"] == "report"

    templates = await client.list_templates()
    assert {template["id"] for template in templates} >= {"financial-analysis", "quick-search"}

    models = await client.embedding_models()
    assert len(models) == 11

    assert await client.suggestions("acme") == [
        "acme in documents",
        "entity: acme",
        "relationship: acme",
        "metadata: acme",
        '"acme" (exact match)',
    ]

    search = await client.search("revenue")
    assert search["total"] == 0

    with pytest.raises(ApiError) as excinfo:
        await client.document_results("missing")
    assert excinfo.value.status == 404
    await client.aclose()
