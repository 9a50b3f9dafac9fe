"""Configuration helpers for the docintel service."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import TYPE_CHECKING, Final

try:  # pragma: no cover - optional dependency loaded at runtime
    from dotenv import load_dotenv
except Exception:  # pragma: no cover
    load_dotenv = None

if load_dotenv is not None:
    load_dotenv()

if TYPE_CHECKING:  # pragma: no cover - imports for annotations only
    from .observability import MetricsRecorder
    from .query_client import QueryClientConfig

_DEFAULT_CHUNK_SIZE: Final[int] = 150
_DEFAULT_CHUNK_OVERLAP: Final[int] = 20
_DEFAULT_CHUNKING_METHOD: Final[str] = "semantic"
_DEFAULT_EMBEDDING_MODEL: Final[str] = "openai-text-embedding-3-large"
_DEFAULT_PIPELINE_STEP_DELAY: Final[float] = 0.5
_DEFAULT_PIPELINE_MAX_QUEUE: Final[int] = 8
_DEFAULT_PIPELINE_MAX_CONCURRENCY: Final[int] = 2
_DEFAULT_PIPELINE_MAX_CONCURRENCY_PER_DOCUMENT: Final[int] = 1
_DEFAULT_PIPELINE_SYNC_MODE: Final[bool] = False
_DEFAULT_PIPELINE_INLINE_TIMEOUT: Final[float] = 5.0
_DEFAULT_INGESTION_CONCURRENCY: Final[int] = 3
_DEFAULT_INGESTION_FILES_PER_MINUTE: Final[int] = 180
_DEFAULT_MAX_UPLOAD_BYTES: Final[int] = 25 * 1024 * 1024
_DEFAULT_OBSERVABILITY_NAMESPACE: Final[str] = "docintel"
_DEFAULT_QUERY_CLIENT_BASE_URL: Final[str] = "http://localhost:8000"
_DEFAULT_QUERY_CLIENT_TIMEOUT: Final[float] = 30.0
_VALID_CHUNKING_METHODS: Final[frozenset[str]] = frozenset({"semantic", "fixed", "header"})


def _env_optional_bool(name: str) -> bool | None:
    """Read an optional boolean environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    msg = f"Environment variable {name} must be a boolean value (true/false)."
    raise ValueError(msg)


def _env_optional_int(name: str) -> int | None:
    """Read an optional integer environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_optional_float(name: str) -> float | None:
    """Read an optional float environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable with a fallback (preserving zero)."""

    value = _env_optional_float(name)
    return default if value is None else value


def _env_int(name: str, default: int) -> int:
    value = _env_optional_int(name)
    return default if value is None else value


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment variable with a fallback."""

    value = _env_optional_bool(name)
    if value is None:
        return default
    return value


@dataclass(slots=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    default_chunk_size: int = _DEFAULT_CHUNK_SIZE
    default_chunk_overlap: int = _DEFAULT_CHUNK_OVERLAP
    default_chunking_method: str = _DEFAULT_CHUNKING_METHOD
    default_embedding_model: str = _DEFAULT_EMBEDDING_MODEL
    pipeline_step_delay: float = _DEFAULT_PIPELINE_STEP_DELAY
    pipeline_random_seed: int | None = None
    pipeline_max_queue: int = _DEFAULT_PIPELINE_MAX_QUEUE
    pipeline_max_concurrency: int = _DEFAULT_PIPELINE_MAX_CONCURRENCY
    pipeline_max_concurrency_per_document: int = _DEFAULT_PIPELINE_MAX_CONCURRENCY_PER_DOCUMENT
    pipeline_sync_mode: bool = _DEFAULT_PIPELINE_SYNC_MODE
    pipeline_inline_timeout: float = _DEFAULT_PIPELINE_INLINE_TIMEOUT
    ingestion_document_concurrency_limit: int = _DEFAULT_INGESTION_CONCURRENCY
    ingestion_files_per_minute: int = _DEFAULT_INGESTION_FILES_PER_MINUTE
    max_upload_bytes: int = _DEFAULT_MAX_UPLOAD_BYTES
    templates_path: str | None = None
    observability_metrics_enabled: bool = True
    observability_namespace: str = _DEFAULT_OBSERVABILITY_NAMESPACE
    observability_prometheus_enabled: bool = False
    query_client_base_url: str = _DEFAULT_QUERY_CLIENT_BASE_URL
    query_client_timeout: float = _DEFAULT_QUERY_CLIENT_TIMEOUT

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings by reading environment variables."""

        metrics_enabled = _env_optional_bool("OBSERVABILITY_METRICS_ENABLED")
        chunking_method = os.getenv("DEFAULT_CHUNKING_METHOD", _DEFAULT_CHUNKING_METHOD).strip().lower()
        if chunking_method not in _VALID_CHUNKING_METHODS:
            msg = (
                "Environment variable DEFAULT_CHUNKING_METHOD must be one of "
                f"{', '.join(sorted(_VALID_CHUNKING_METHODS))}"
            )
            raise ValueError(msg)

        return cls(
            default_chunk_size=max(1, _env_int("DEFAULT_CHUNK_SIZE", _DEFAULT_CHUNK_SIZE)),
            default_chunk_overlap=max(0, _env_int("DEFAULT_CHUNK_OVERLAP", _DEFAULT_CHUNK_OVERLAP)),
            default_chunking_method=chunking_method,
            default_embedding_model=os.getenv("DEFAULT_EMBEDDING_MODEL", _DEFAULT_EMBEDDING_MODEL),
            pipeline_step_delay=max(0.0, _env_float("PIPELINE_STEP_DELAY", _DEFAULT_PIPELINE_STEP_DELAY)),
            pipeline_random_seed=_env_optional_int("PIPELINE_RANDOM_SEED"),
            pipeline_max_queue=max(1, _env_int("PIPELINE_MAX_QUEUE", _DEFAULT_PIPELINE_MAX_QUEUE)),
            pipeline_max_concurrency=max(
                1,
                _env_int("PIPELINE_MAX_CONCURRENCY", _DEFAULT_PIPELINE_MAX_CONCURRENCY),
            ),
            pipeline_max_concurrency_per_document=_env_int(
                "PIPELINE_MAX_CONCURRENCY_PER_DOCUMENT",
                _DEFAULT_PIPELINE_MAX_CONCURRENCY_PER_DOCUMENT,
            ),
            pipeline_sync_mode=_env_bool("PIPELINE_SYNC_MODE", _DEFAULT_PIPELINE_SYNC_MODE),
            pipeline_inline_timeout=_env_float(
                "PIPELINE_INLINE_TIMEOUT",
                _DEFAULT_PIPELINE_INLINE_TIMEOUT,
            ),
            ingestion_document_concurrency_limit=max(
                1,
                _env_int("INGESTION_DOCUMENT_CONCURRENCY_LIMIT", _DEFAULT_INGESTION_CONCURRENCY),
            ),
            ingestion_files_per_minute=_env_int(
                "INGESTION_FILES_PER_MINUTE",
                _DEFAULT_INGESTION_FILES_PER_MINUTE,
            ),
            max_upload_bytes=max(1, _env_int("MAX_UPLOAD_BYTES", _DEFAULT_MAX_UPLOAD_BYTES)),
            templates_path=os.getenv("TEMPLATES_PATH") or None,
            observability_metrics_enabled=metrics_enabled if metrics_enabled is not None else True,
            observability_namespace=os.getenv("OBSERVABILITY_NAMESPACE", _DEFAULT_OBSERVABILITY_NAMESPACE),
            observability_prometheus_enabled=_env_bool("OBSERVABILITY_PROMETHEUS_ENABLED", False),
            query_client_base_url=os.getenv("QUERY_CLIENT_BASE_URL", _DEFAULT_QUERY_CLIENT_BASE_URL),
            query_client_timeout=_env_float("QUERY_CLIENT_TIMEOUT", _DEFAULT_QUERY_CLIENT_TIMEOUT),
        )

    def build_metrics_recorder(self) -> "MetricsRecorder":
        """Instantiate the configured metrics recorder."""

        from .observability import MetricsRecorder

        return MetricsRecorder(
            enabled=self.observability_metrics_enabled,
            namespace=self.observability_namespace,
            prometheus_enabled=self.observability_prometheus_enabled,
        )

    def query_client_config(self) -> "QueryClientConfig":
        """Return the request/caching configuration for :class:`QueryClient`."""

        from .query_client import QueryClientConfig

        return QueryClientConfig(timeout=self.query_client_timeout)


__all__ = ["Settings"]
