"""HTTP client with request queueing, batching, typed caching and memory accounting."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Tuple, TypeVar
from urllib.parse import urlencode

import httpx

from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MIB = 1024 * 1024
_HOUR = 60 * 60.0

CacheType = Literal["models", "templates", "results", "images", "default"]
UnauthorizedBehavior = Literal["throw", "return_null"]

# Checked in order; the first marker contained in a URL decides its cache type.
CACHE_TYPE_MARKERS: Tuple[Tuple[str, str], ...] = (
    ("images", "/images/"),
    ("models", "/embedding-models"),
    ("templates", "/templates"),
    ("results", "/results"),
)

_ERROR_HINTS = {
    413: "Document too large for processing. Consider using progressive loading.",
    422: "Invalid data format detected.",
    504: "Timeout processing large document.",
}


@dataclass(slots=True)
class QueryClientConfig:
    max_concurrent_requests: int = 3
    max_batch_size: int = 10
    batch_delay: float = 0.1
    max_cache_size_mb: float = 100
    image_cache_size_mb: float = 50
    cleanup_threshold: float = 0.9
    models_stale_time: float = 24 * _HOUR
    templates_stale_time: float = 12 * _HOUR
    results_stale_time: float = _HOUR
    images_stale_time: float = 7 * 24 * _HOUR
    default_stale_time: float = 5 * 60.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    mutation_retries: int = 1
    mutation_retry_delay: float = 1.0
    timeout: float = 30.0

    def stale_time(self, cache_type: str) -> float:
        return getattr(self, f"{cache_type}_stale_time", self.default_stale_time)

    def retry_delay(self, attempt: int) -> float:
        return min(self.retry_base_delay * 2**attempt, self.retry_max_delay)


def cache_type_for(url: str) -> str:
    for cache_type, marker in CACHE_TYPE_MARKERS:
        if marker in url:
            return cache_type
    return "default"


class ApiError(Exception):
    """Raised for non-2xx responses; ``str(error)`` is ``"<status>: <text>"``."""

    def __init__(
        self,
        status: int,
        message: str,
        *,
        body: str | None = None,
        context: str | None = None,
    ) -> None:
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message
        self.body = body
        self.context = context

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    @property
    def hint(self) -> str | None:
        return _ERROR_HINTS.get(self.status)


def raise_if_not_ok(response: httpx.Response, context: str | None = None) -> None:
    if response.is_success:
        return
    text = response.text or response.reason_phrase
    error = ApiError(response.status_code, text, body=response.text, context=context)
    if error.hint:
        logger.error("query_client.error status=%s hint=%s", error.status, error.hint)
    raise error


def _should_retry(error: Exception) -> bool:
    if isinstance(error, ApiError):
        return not error.is_client_error
    return isinstance(error, httpx.TransportError)


class RequestQueue:
    """Limit concurrent requests and gather batchable requests into groups."""

    def __init__(
        self,
        *,
        max_concurrent_requests: int = 3,
        max_batch_size: int = 10,
        batch_delay: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._max_batch_size = max(1, max_batch_size)
        self._batch_delay = max(0.0, batch_delay)
        self._sleep = sleep or asyncio.sleep
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent_requests))
        self._in_flight = 0
        self._peak_in_flight = 0
        self._batch: List[Tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = []
        self._batch_task: asyncio.Task | None = None

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        return self._peak_in_flight

    @property
    def pending_batch(self) -> int:
        return len(self._batch)

    async def add(self, request: Callable[[], Awaitable[T]]) -> T:
        async with self._semaphore:
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
            try:
                return await request()
            finally:
                self._in_flight -= 1

    async def add_batch(self, request: Callable[[], Awaitable[T]]) -> T:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._batch.append((request, future))
        if self._batch_task is None:
            self._batch_task = asyncio.create_task(self._flush_after_delay())
        return await future

    async def _flush_after_delay(self) -> None:
        await self._sleep(self._batch_delay)
        batch = self._batch[: self._max_batch_size]
        del self._batch[: self._max_batch_size]
        self._batch_task = None
        if self._batch:
            self._batch_task = asyncio.create_task(self._flush_after_delay())
        if not batch:
            return

        outcomes = await asyncio.gather(*(request() for request, _ in batch), return_exceptions=True)
        failure = next((item for item in outcomes if isinstance(item, BaseException)), None)
        for (_, future), outcome in zip(batch, outcomes):
            if future.done():
                continue
            if failure is not None:
                future.set_exception(failure)
            else:
                future.set_result(outcome)

    async def aclose(self) -> None:
        task = self._batch_task
        self._batch_task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for _, future in self._batch:
            if not future.done():
                future.cancel()
        self._batch.clear()


class MemoryManager:
    """Track approximate cache size and evict least-recently-used images when full."""

    def __init__(
        self,
        *,
        max_cache_size_mb: float = 100,
        image_cache_size_mb: float = 50,
        cleanup_threshold: float = 0.9,
        on_evict: Callable[[str], None] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._max_bytes = max_cache_size_mb * _MIB
        self._max_image_bytes = image_cache_size_mb * _MIB
        self._threshold = cleanup_threshold
        self._on_evict = on_evict
        self._clock = clock or time.monotonic
        self._cache_size = 0
        self._images: Dict[str, Tuple[int, float]] = {}

    def add_to_cache(self, key: str, size: int, is_image: bool = False) -> list[str]:
        self._cache_size += size
        if is_image:
            self._images[key] = (size, self._clock())
        if (
            self._cache_size > self._max_bytes * self._threshold
            or self._image_size() > self._max_image_bytes * self._threshold
        ):
            return self.cleanup()
        return []

    def remove_from_cache(self, key: str, size: int) -> None:
        self._cache_size = max(self._cache_size - size, 0)
        self._images.pop(key, None)

    def touch(self, key: str) -> None:
        entry = self._images.get(key)
        if entry is not None:
            self._images[key] = (entry[0], self._clock())

    def cleanup(self) -> list[str]:
        """Evict least-recently-used images until 30% of the tracked size is freed."""

        target = self._cache_size * 0.3
        freed = 0
        evicted: list[str] = []
        for key, (size, _) in sorted(self._images.items(), key=lambda item: item[1][1]):
            if freed >= target:
                break
            del self._images[key]
            freed += size
            evicted.append(key)
            if self._on_evict is not None:
                self._on_evict(key)
        self._cache_size = max(self._cache_size - freed, 0)
        logger.info("query_client.cache.cleanup freed_mb=%.2f evicted=%s", freed / _MIB, len(evicted))
        return evicted

    def reset(self) -> None:
        self._cache_size = 0
        self._images.clear()

    def _image_size(self) -> int:
        return sum(size for size, _ in self._images.values())

    def get_usage(self) -> dict[str, float]:
        return {
            "totalSize": self._cache_size,
            "imageSize": self._image_size(),
            "utilization": self._cache_size / self._max_bytes if self._max_bytes else 0.0,
        }


@dataclass(slots=True)
class CacheEntry:
    data: Any
    fetched_at: float
    cache_type: str
    size: int
    tracked: bool


class QueryClient:
    """Async HTTP client that caches GET queries by URL and retries transient failures.

    ``transport`` lets tests plug in :class:`httpx.MockTransport` or
    :class:`httpx.ASGITransport`; ``sleep`` replaces :func:`asyncio.sleep` for
    retry and batch delays.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        config: QueryClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        metrics: MetricsRecorder | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config or QueryClientConfig()
        self._metrics = metrics
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=self._config.timeout,
            transport=transport,
        )
        self._queue = RequestQueue(
            max_concurrent_requests=self._config.max_concurrent_requests,
            max_batch_size=self._config.max_batch_size,
            batch_delay=self._config.batch_delay,
            sleep=self._sleep,
        )
        self._memory = MemoryManager(
            max_cache_size_mb=self._config.max_cache_size_mb,
            image_cache_size_mb=self._config.image_cache_size_mb,
            cleanup_threshold=self._config.cleanup_threshold,
            on_evict=self._evict,
            clock=self._clock,
        )
        self._cache: Dict[str, CacheEntry] = {}

    @property
    def config(self) -> QueryClientConfig:
        return self._config

    @property
    def request_queue(self) -> RequestQueue:
        return self._queue

    async def __aenter__(self) -> "QueryClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._queue.aclose()
        await self._client.aclose()

    # Requests --------------------------------------------------------------

    async def api_request(
        self,
        method: str,
        url: str,
        data: Any = None,
        *,
        queue: bool = False,
        batch: bool = False,
        context: str | None = None,
    ) -> httpx.Response:
        async def make_request() -> httpx.Response:
            response = await self._client.request(method, url, json=data if data is not None else None)
            self._count_request(method, response.status_code)
            raise_if_not_ok(response, context)
            return response

        if batch:
            return await self._queue.add_batch(make_request)
        if queue:
            return await self._queue.add(make_request)
        return await make_request()

    async def progressive_request(
        self,
        method: str,
        url: str,
        data: Any = None,
        *,
        on_progress: Callable[[float], None] | None = None,
        large_document: bool = False,
        document_type: str | None = None,
    ) -> httpx.Response:
        """Stream the response body, reporting ``received / content-length`` as it arrives."""

        headers: dict[str, str] = {}
        if document_type:
            headers["X-Document-Type"] = document_type
        if large_document:
            headers["X-Progressive-Loading"] = "true"

        async with self._client.stream(
            method,
            url,
            json=data if data is not None else None,
            headers=headers,
        ) as response:
            total = int(response.headers.get("content-length") or 0)
            received = 0
            parts: list[bytes] = []
            async for chunk in response.aiter_bytes():
                parts.append(chunk)
                received += len(chunk)
                if on_progress is not None and total > 0:
                    on_progress(min(received / total, 1.0))
            body = b"".join(parts)
            rebuilt = httpx.Response(
                response.status_code,
                headers=[
                    (name, value)
                    for name, value in response.headers.multi_items()
                    if name.lower() not in {"content-encoding", "transfer-encoding"}
                ],
                content=body,
                request=response.request,
            )
        self._count_request(method, rebuilt.status_code)
        raise_if_not_ok(rebuilt, document_type)
        return rebuilt

    async def query(
        self,
        url: str,
        *,
        on_401: UnauthorizedBehavior = "throw",
        cache_type: str | None = None,
    ) -> Any:
        """GET ``url`` as JSON, serving a fresh cached copy without a request."""

        detected = cache_type_for(url)
        resolved_type = cache_type or detected
        entry = self._cache.get(url)
        if entry is not None and self._clock() - entry.fetched_at < self._config.stale_time(entry.cache_type):
            self._memory.touch(url)
            if self._metrics:
                self._metrics.increment("query_client.cache_hits", cache_type=entry.cache_type)
            return entry.data

        typed = detected != "default" or resolved_type != "default"
        headers = {"X-Cache-Type": resolved_type, "X-Request-Priority": "normal"} if typed else {}

        attempt = 0
        while True:
            try:
                response = await self._client.get(url, headers=headers)
                self._count_request("GET", response.status_code)
                if on_401 == "return_null" and response.status_code == 401:
                    return None
                raise_if_not_ok(response)
                data = response.json()
                break
            except (ApiError, httpx.TransportError) as exc:
                if not _should_retry(exc) or attempt >= self._config.max_retries:
                    raise
                delay = self._config.retry_delay(attempt)
                attempt += 1
                logger.warning("query_client.retry url=%s attempt=%s delay=%.2f error=%s", url, attempt, delay, exc)
                if self._metrics:
                    self._metrics.increment("query_client.retries", kind="query")
                await self._sleep(delay)

        self._store(url, data, resolved_type, track=typed)
        return data

    async def mutate(self, method: str, url: str, data: Any = None) -> Any:
        """Send a mutating request, retrying server/transport failures once."""

        attempt = 0
        while True:
            try:
                response = await self.api_request(method, url, data)
                break
            except (ApiError, httpx.TransportError) as exc:
                if not _should_retry(exc) or attempt >= self._config.mutation_retries:
                    raise
                attempt += 1
                logger.warning("query_client.retry url=%s attempt=%s mutation=true error=%s", url, attempt, exc)
                if self._metrics:
                    self._metrics.increment("query_client.retries", kind="mutation")
                await self._sleep(self._config.mutation_retry_delay)
        if not response.content:
            return None
        return response.json()

    # Cache -----------------------------------------------------------------

    def cached(self, url: str) -> Any:
        entry = self._cache.get(url)
        return entry.data if entry is not None else None

    def _store(self, key: str, data: Any, cache_type: str, *, track: bool) -> None:
        previous = self._cache.pop(key, None)
        if previous is not None and previous.tracked:
            self._memory.remove_from_cache(key, previous.size)
        size = len(json.dumps(data)) if data is not None else 0
        self._cache[key] = CacheEntry(
            data=data,
            fetched_at=self._clock(),
            cache_type=cache_type,
            size=size,
            tracked=track and data is not None,
        )
        if track and data is not None:
            is_image = cache_type == "images" or "/image/" in key
            self._memory.add_to_cache(key, size, is_image)
            if self._metrics:
                self._metrics.set_gauge(
                    "query_client.cache_utilization",
                    self._memory.get_usage()["utilization"],
                )

    def _evict(self, key: str) -> None:
        self._cache.pop(key, None)
        if self._metrics:
            self._metrics.increment("query_client.cache_evictions")

    def clear_cache(self, cache_type: str | None = None) -> int:
        """Drop cached queries, either all of them or those of one cache type."""

        if cache_type is None:
            removed = len(self._cache)
            self._cache.clear()
            self._memory.reset()
            return removed
        marker = dict(CACHE_TYPE_MARKERS).get(cache_type)
        keys = [
            key
            for key, entry in self._cache.items()
            if entry.cache_type == cache_type or (marker is not None and marker in key)
        ]
        for key in keys:
            entry = self._cache.pop(key)
            if entry.tracked:
                self._memory.remove_from_cache(key, entry.size)
        return len(keys)

    def get_memory_usage(self) -> dict[str, float]:
        usage = self._memory.get_usage()
        if self._metrics:
            self._metrics.set_gauge("query_client.cache_utilization", usage["utilization"])
        return usage

    def _count_request(self, method: str, status: int) -> None:
        if self._metrics:
            self._metrics.increment("query_client.requests", method=method.upper(), status=status)


class DocintelClient(QueryClient):
    """Typed helpers for the docintel JSON API."""

    async def analyze_document(self, file_name: str, file_type: str | None, file_size: int) -> dict[str, Any]:
        return await self.mutate(
            "POST",
            "/api/analyze-document",
            {"fileName": file_name, "fileType": file_type, "fileSize": file_size},
        )

    async def search(
        self,
        query: str,
        *,
        filters: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        document_ids: list[str] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"query": query}
        if filters is not None:
            payload["filters"] = filters
        if options is not None:
            payload["options"] = options
        if document_ids is not None:
            payload["documentIds"] = document_ids
        response = await self.api_request("POST", "/api/search", payload, queue=True)
        return response.json()

    async def suggestions(self, query: str) -> list[str]:
        data = await self.query(f"/api/search/suggestions?{urlencode({'q': query})}")
        return list((data or {}).get("suggestions", []))

    async def list_templates(self) -> list[dict[str, Any]]:
        data = await self.query("/api/templates")
        return list((data or {}).get("templates", []))

    async def embedding_models(self) -> list[dict[str, Any]]:
        data = await self.query("/api/embedding-models")
        return list((data or {}).get("models", []))

    async def document_results(self, document_id: str) -> Optional[dict[str, Any]]:
        return await self.query(f"/api/documents/{document_id}/results", on_401="return_null")


__all__ = [
    "ApiError",
    "CACHE_TYPE_MARKERS",
    "CacheEntry",
    "DocintelClient",
    "MemoryManager",
    "QueryClient",
    "QueryClientConfig",
    "RequestQueue",
    "cache_type_for",
    "raise_if_not_ok",
]
