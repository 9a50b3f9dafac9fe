from __future__ import annotations

import pytest

from docintel.embeddings import (
    EMBEDDING_MODELS,
    AdvancedEmbeddingOptions,
    get_embedding_model,
    recommended_models,
    vector_dimensions,
)


def test_catalogue_ids_are_unique() -> None:
    ids = [model.id for model in EMBEDDING_MODELS]
    assert len(ids) == len(set(ids)) == 11


def test_lookup_and_dimensions() -> None:
    model = get_embedding_model("e5-small")

    assert model.provider == "E5"
    assert vector_dimensions("e5-small") == 384
    assert vector_dimensions("openai-text-embedding-3-large") == 3072
    assert model.to_dict()["isRecommended"] is False

    with pytest.raises(LookupError, match="word2vec"):
        get_embedding_model("word2vec")


def test_recommended_models() -> None:
    assert [model.id for model in recommended_models()] == ["openai-text-embedding-3-large", "e5-large"]


def test_advanced_options_validate_choices() -> None:
    options = AdvancedEmbeddingOptions(pooling_strategy="cls", truncation_method="middle")
    assert options.to_dict()["poolingStrategy"] == "cls"

    with pytest.raises(ValueError, match="pooling_strategy"):
        AdvancedEmbeddingOptions(pooling_strategy="sum")
    with pytest.raises(ValueError, match="truncation_method"):
        AdvancedEmbeddingOptions(truncation_method="random")
    with pytest.raises(ValueError, match="batch_size"):
        AdvancedEmbeddingOptions(batch_size=0)


def test_advanced_options_from_payload() -> None:
    options = AdvancedEmbeddingOptions.from_dict({"truncationMethod": "head", "enableCaching": False})

    assert options.truncation_method == "head"
    assert options.enable_caching is False
    assert options.batch_size == 32
    assert AdvancedEmbeddingOptions.from_dict(None) == AdvancedEmbeddingOptions()

    with pytest.raises(ValueError, match="normalizeEmbeddings"):
        AdvancedEmbeddingOptions.from_dict({"normalizeEmbeddings": "true"})
    with pytest.raises(ValueError, match="batchSize"):
        AdvancedEmbeddingOptions.from_dict({"batchSize": "64"})
