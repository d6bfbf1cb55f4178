"""Tests for settings and pipeline configuration."""

import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from study_rag.core import config as config_module
from study_rag.core.config import ChunkingConfig, RAGConfig, Settings
from study_rag.core.rag_constants import DEFAULT_SEPARATORS, MODE_PROMPTS


class TestRAGConfig:
    """Tests for the immutable pipeline configuration."""

    def test_defaults(self):
        config = RAGConfig()

        assert config.embedding.model == "text-embedding-3-small"
        assert config.embedding.dimensions == 1536
        assert config.embedding.batch_size == 100
        assert config.chunking.chunk_size == 500
        assert config.chunking.chunk_overlap == 50
        assert config.chunking.separators == DEFAULT_SEPARATORS
        assert config.retrieval.top_k == 5
        assert config.retrieval.min_similarity == 0.7
        assert config.retrieval.rerank is True
        assert config.generation.model == "gpt-4o-mini"
        assert config.generation.temperature == 0.7
        assert config.generation.max_tokens == 1000
        assert set(config.mode_prompts) == {"general", "quarterly", "devotional"}

    def test_frozen(self):
        config = RAGConfig()

        with pytest.raises(PydanticValidationError):
            config.chunking = ChunkingConfig(chunk_size=10)

    def test_rejects_invalid_values(self):
        with pytest.raises(PydanticValidationError):
            ChunkingConfig(chunk_size=0)


class TestSettings:
    """Tests for environment-driven settings."""

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("CHUNK_SIZE", "300")
        monkeypatch.setenv("RETRIEVAL_MIN_SIMILARITY", "0.5")
        monkeypatch.setenv("LLM_MODEL", "gpt-4o")

        rag_config = Settings(_env_file=None).rag_config()

        assert rag_config.chunking.chunk_size == 300
        assert rag_config.retrieval.min_similarity == 0.5
        assert rag_config.generation.model == "gpt-4o"
        assert rag_config.mode_prompts == MODE_PROMPTS

    def test_rerank_weights_from_environment(self, monkeypatch):
        monkeypatch.setenv("RERANK_SIMILARITY_WEIGHT", "0.5")
        monkeypatch.setenv("RERANK_LEXICAL_WEIGHT", "0.5")

        retrieval = Settings(_env_file=None).rag_config().retrieval

        assert retrieval.rerank_similarity_weight == 0.5
        assert retrieval.rerank_lexical_weight == 0.5

    def test_get_settings_warns_without_key(self, monkeypatch, caplog):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.setattr(
            config_module, "Settings", lambda: Settings(_env_file=None)
        )
        config_module.get_settings.cache_clear()

        try:
            with caplog.at_level(logging.WARNING, logger="study_rag.core.config"):
                settings = config_module.get_settings()
        finally:
            config_module.get_settings.cache_clear()

        assert settings.openai_api_key is None
        assert "openai_api_key is not set" in caplog.text
