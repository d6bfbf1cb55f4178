"""Pytest configuration and fixtures for backend tests."""

from typing import AsyncGenerator

import numpy as np
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from study_rag.api.v1.endpoints.chat import get_rag_service
from study_rag.core.config import ChunkingConfig, EmbeddingConfig, RAGConfig, RetrievalConfig
from study_rag.main import app as main_app
from study_rag.rag.chunking import chunk_bible_verse, chunk_devotional, chunk_lesson_day
from study_rag.rag.retriever import InMemoryVectorStore
from study_rag.rag.service import RAGService, build_rag_service
from tests.fakes import VOCABULARY, FakeEmbeddingProvider, FakeGenerationProvider, keyword_vector

# -------------------------------------------------------------------------
# Configuration and store fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def rag_config() -> RAGConfig:
    """Small-dimension pipeline configuration matching the fake embeddings."""
    return RAGConfig(
        embedding=EmbeddingConfig(dimensions=len(VOCABULARY), batch_size=2),
        chunking=ChunkingConfig(chunk_size=60, chunk_overlap=10),
        retrieval=RetrievalConfig(top_k=2, min_similarity=0.5),
    )


@pytest.fixture
def embedding_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def generation_provider() -> FakeGenerationProvider:
    return FakeGenerationProvider()


@pytest.fixture
async def vector_store() -> InMemoryVectorStore:
    """Store seeded with one chunk per source kind.

    Row ids: 1 devotional on faith and prayer, 2 quarterly on sabbath and
    grace, 3 Ephesians 2:8 on grace and faith, 4 devotional on prayer.
    """
    store = InMemoryVectorStore()
    chunks = [
        *chunk_devotional(
            devotional_id=10,
            date="2024-03-01",
            title="Living Faith",
            memory_verse="",
            content="Faith grows through prayer.",
        ),
        *chunk_lesson_day(
            lesson_day_id=21,
            lesson_id=2,
            day_index=3,
            title="Rest",
            content="The sabbath is a gift of grace.",
            lesson_number=2,
            lesson_title="Creation",
            quarterly_id=7,
            quarterly_title="In the Beginning",
        ),
        *chunk_bible_verse("Ephesians", 2, 8, "For by grace are ye saved through faith."),
        *chunk_devotional(
            devotional_id=11,
            date="2024-03-02",
            title="Morning Watch",
            memory_verse="",
            content="Prayer changes hearts.",
        ),
    ]
    embeddings = np.asarray([keyword_vector(chunk.text) for chunk in chunks], dtype=np.float32)
    await store.add(chunks, embeddings)
    return store


@pytest.fixture
def rag_service(
    vector_store: InMemoryVectorStore,
    embedding_provider: FakeEmbeddingProvider,
    generation_provider: FakeGenerationProvider,
    rag_config: RAGConfig,
) -> RAGService:
    return build_rag_service(vector_store, embedding_provider, generation_provider, rag_config)


# -------------------------------------------------------------------------
# App Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def app(rag_service: RAGService) -> FastAPI:
    """FastAPI app whose chat endpoint runs over the in-memory store."""
    main_app.dependency_overrides[get_rag_service] = lambda: rag_service
    yield main_app
    main_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
