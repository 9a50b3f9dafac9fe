"""Catalog of the embedding models a document index can be configured with."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

_ADVANCED_OPTION_CHOICES: dict[str, tuple[str, ...]] = {
    "pooling_strategy": ("mean", "max", "cls"),
    "truncation_method": ("head", "tail", "middle"),
}


@dataclass(frozen=True, slots=True)
class EmbeddingModel:
    id: str
    name: str
    provider: str
    dimensions: int
    description: str
    languages: tuple[str, ...] = ("English",)
    max_tokens: int = 512
    speed: str = "medium"
    quality: str = "medium"
    recommended: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "dimensions": self.dimensions,
            "languages": list(self.languages),
            "maxTokens": self.max_tokens,
            "speed": self.speed,
            "quality": self.quality,
            "description": self.description,
            "isRecommended": self.recommended,
        }


@dataclass(slots=True)
class AdvancedEmbeddingOptions:
    normalize_embeddings: bool = True
    pooling_strategy: str = "mean"
    truncation_method: str = "tail"
    batch_size: int = 32
    enable_caching: bool = True

    def __post_init__(self) -> None:
        for name, allowed in _ADVANCED_OPTION_CHOICES.items():
            value = getattr(self, name)
            if value not in allowed:
                raise ValueError(f"{name} must be one of {', '.join(allowed)}")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "AdvancedEmbeddingOptions":
        payload = payload or {}
        if not isinstance(payload, dict):
            raise ValueError("embeddingOptions must be an object")
        defaults = cls()
        flags: dict[str, bool] = {}
        for key, name in (("normalizeEmbeddings", "normalize_embeddings"), ("enableCaching", "enable_caching")):
            value = payload.get(key, getattr(defaults, name))
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
            flags[name] = value
        batch_size = payload.get("batchSize", defaults.batch_size)
        if isinstance(batch_size, bool) or not isinstance(batch_size, int):
            raise ValueError("batchSize must be an integer")
        return cls(
            pooling_strategy=str(payload.get("poolingStrategy", defaults.pooling_strategy)),
            truncation_method=str(payload.get("truncationMethod", defaults.truncation_method)),
            batch_size=batch_size,
            **flags,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "normalizeEmbeddings": self.normalize_embeddings,
            "poolingStrategy": self.pooling_strategy,
            "truncationMethod": self.truncation_method,
            "batchSize": self.batch_size,
            "enableCaching": self.enable_caching,
        }


_MULTILINGUAL = ("English", "Multilingual")

EMBEDDING_MODELS: tuple[EmbeddingModel, ...] = (
    EmbeddingModel(
        id="openai-text-embedding-3-large",
        name="text-embedding-3-large",
        provider="OpenAI",
        dimensions=3072,
        languages=_MULTILINGUAL,
        max_tokens=8191,
        quality="high",
        recommended=True,
        description="Most capable OpenAI embedding model for semantic search, text similarity and code search.",
    ),
    EmbeddingModel(
        id="openai-text-embedding-3-small",
        name="text-embedding-3-small",
        provider="OpenAI",
        dimensions=1536,
        languages=_MULTILINGUAL,
        max_tokens=8191,
        speed="fast",
        quality="high",
        description="Smaller, cost-effective OpenAI model balancing performance and price.",
    ),
    EmbeddingModel(
        id="openai-text-embedding-ada-002",
        name="text-embedding-ada-002",
        provider="OpenAI",
        dimensions=1536,
        languages=_MULTILINGUAL,
        max_tokens=8191,
        speed="fast",
        description="Older but reliable OpenAI model for general text embedding tasks.",
    ),
    EmbeddingModel(
        id="cohere-embed-english-v3.0",
        name="embed-english-v3.0",
        provider="Cohere",
        dimensions=1024,
        max_tokens=2048,
        speed="fast",
        quality="high",
        description="English embedding model tuned for semantic search and text similarity.",
    ),
    EmbeddingModel(
        id="cohere-embed-multilingual-v3.0",
        name="embed-multilingual-v3.0",
        provider="Cohere",
        dimensions=1024,
        languages=(
            "English",
            "Spanish",
            "German",
            "French",
            "Italian",
            "Portuguese",
            "Russian",
            "Chinese",
            "Japanese",
            "Korean",
        ),
        max_tokens=2048,
        quality="high",
        description="Multilingual model with strong cross-lingual similarity.",
    ),
    EmbeddingModel(
        id="e5-large",
        name="E5-large",
        provider="E5",
        dimensions=1024,
        languages=_MULTILINGUAL,
        max_tokens=4096,
        quality="high",
        recommended=True,
        description="Largest E5 model; strong on retrieval and semantic search.",
    ),
    EmbeddingModel(
        id="e5-base",
        name="E5-base",
        provider="E5",
        dimensions=768,
        languages=_MULTILINGUAL,
        max_tokens=4096,
        speed="fast",
        description="Balanced E5 model with moderate compute requirements.",
    ),
    EmbeddingModel(
        id="e5-small",
        name="E5-small",
        provider="E5",
        dimensions=384,
        languages=_MULTILINGUAL,
        max_tokens=4096,
        speed="fast",
        description="Smallest E5 model for low-latency workloads.",
    ),
    EmbeddingModel(
        id="bert-all-MiniLM-L6-v2",
        name="all-MiniLM-L6-v2",
        provider="BERT",
        dimensions=384,
        speed="fast",
        description="Compact BERT-based model with very low compute requirements.",
    ),
    EmbeddingModel(
        id="bert-all-mpnet-base-v2",
        name="all-mpnet-base-v2",
        provider="BERT",
        dimensions=768,
        description="MPNet-based model with improved sentence similarity quality.",
    ),
    EmbeddingModel(
        id="sentence-t5-xxl",
        name="sentence-t5-xxl",
        provider="Sentence Transformers",
        dimensions=768,
        languages=_MULTILINGUAL,
        speed="slow",
        quality="high",
        description="Large T5-based sentence transformer for semantic textual similarity.",
    ),
)

_MODELS_BY_ID = {model.id: model for model in EMBEDDING_MODELS}


def get_embedding_model(model_id: str) -> EmbeddingModel:
    try:
        return _MODELS_BY_ID[model_id]
    except KeyError:
        raise LookupError(f"Unknown embedding model '{model_id}'") from None


def vector_dimensions(model_id: str) -> int:
    return get_embedding_model(model_id).dimensions


def recommended_models() -> list[EmbeddingModel]:
    return [model for model in EMBEDDING_MODELS if model.recommended]


__all__ = [
    "AdvancedEmbeddingOptions",
    "EMBEDDING_MODELS",
    "EmbeddingModel",
    "get_embedding_model",
    "recommended_models",
    "vector_dimensions",
]
