"""docintel application package."""

from __future__ import annotations

from .config import Settings
from .search import SearchCorpus, SearchResponse, UnifiedSearch

__all__ = [
    "Settings",
    "SearchCorpus",
    "SearchResponse",
    "UnifiedSearch",
    "DocintelClient",
    "QueryClient",
    "create_app",
]


def __getattr__(name: str):  # pragma: no cover - small helper
    if name in {"DocintelClient", "QueryClient"}:
        from .query_client import DocintelClient, QueryClient

        return {"DocintelClient": DocintelClient, "QueryClient": QueryClient}[name]
    if name == "create_app":
        from .app import create_app

        return create_app
    raise AttributeError(f"module 'docintel' has no attribute {name}")
