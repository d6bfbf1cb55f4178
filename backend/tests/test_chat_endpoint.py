"""Tests for chat endpoints (/api/v1/chat/*)."""

import json
from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException
from httpx import AsyncClient

from study_rag.api.v1.endpoints.chat import get_rag_service
from study_rag.core.exceptions import ConfigurationError, ProviderError
from study_rag.core.rag_constants import NO_RESULTS_ANSWER
from study_rag.main import app as main_app
from study_rag.rag.service import build_rag_service
from tests.fakes import FakeEmbeddingProvider, FakeGenerationProvider

URL = "/api/v1/chat/query"


def parse_sse(body: str) -> list[tuple[str, object]]:
    """Split an SSE body into (event, data) pairs."""
    events = []
    for block in body.strip().split("\n\n"):
        event_line, data_line = block.split("\n")
        events.append(
            (event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: ")))
        )
    return events


# -------------------------------------------------------------------------
# Tests: batch answers
# -------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_query_returns_answer_and_sources(client: AsyncClient):
    """Test a grounded answer with citations."""
    response = await client.post(URL, json={"query": "What is faith?"})
    assert response.status_code == 200

    data = response.json()
    assert data["answer"] == "Faith comes by hearing [1], and grace saves [2]."
    assert data["citedIndices"] == [1, 2]
    assert [s["index"] for s in data["sources"]] == [1, 2]
    assert data["sources"][0]["source"] == "Devotional: Living Faith (2024-03-01)"
    assert data["sources"][0]["metadata"]["devotionalId"] == 10


@pytest.mark.asyncio
async def test_query_top_k_and_filter(client: AsyncClient):
    """Test camelCase request options are honoured."""
    response = await client.post(
        URL,
        json={"query": "grace", "mode": "quarterly", "topK": 1, "filter": {"quarterlyId": 7}},
    )
    assert response.status_code == 200

    sources = response.json()["sources"]
    assert len(sources) == 1
    assert sources[0]["source"] == "In the Beginning, Lesson 2: Creation, Day 3"


@pytest.mark.asyncio
async def test_query_with_history(client: AsyncClient, generation_provider):
    """Test conversation history reaches the provider."""
    response = await client.post(
        URL,
        json={
            "query": "And grace?",
            "conversationHistory": [
                {"role": "user", "content": "What is faith?"},
                {"role": "assistant", "content": "Trust in God [1]."},
            ],
        },
    )
    assert response.status_code == 200

    roles = [m["role"] for m in generation_provider.messages[0]]
    assert roles == ["system", "user", "assistant", "user"]


@pytest.mark.asyncio
async def test_query_no_context(client: AsyncClient, generation_provider):
    """Test empty retrieval returns the canned answer."""
    response = await client.post(URL, json={"query": "Tell me about the weather"})
    assert response.status_code == 200

    data = response.json()
    assert data == {"answer": NO_RESULTS_ANSWER, "sources": [], "citedIndices": []}
    assert generation_provider.messages == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {},
        {"query": ""},
        {"query": "   "},
        {"query": "a" * 1001},
        {"query": "faith", "mode": "sermon"},
        {"query": "faith", "topK": 0},
        {"query": "faith", "topK": 21},
        {"query": "faith", "filter": {"date": "not-a-date"}},
        {"query": "faith", "conversationHistory": [{"role": "narrator", "content": "x"}]},
    ],
)
async def test_query_invalid_body(client: AsyncClient, body):
    """Test invalid requests are rejected with 422."""
    response = await client.post(URL, json=body)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_query_provider_error(client: AsyncClient, generation_provider):
    """Test provider failures map to 502."""
    generation_provider.complete_error = ProviderError(
        "OpenAI API error: overloaded", status_code=529
    )

    response = await client.post(URL, json={"query": "faith"})
    assert response.status_code == 502
    assert "overloaded" in response.json()["detail"]


@pytest.mark.asyncio
async def test_query_missing_credentials(client: AsyncClient, vector_store, rag_config):
    """Test a missing provider credential maps to 503."""
    service = build_rag_service(
        vector_store,
        FakeEmbeddingProvider(error=ConfigurationError("OPENAI_API_KEY not configured")),
        FakeGenerationProvider(),
        rag_config,
    )
    main_app.dependency_overrides[get_rag_service] = lambda: service

    response = await client.post(URL, json={"query": "faith"})
    assert response.status_code == 503
    assert response.json()["detail"] == "OPENAI_API_KEY not configured"


# -------------------------------------------------------------------------
# Tests: streaming answers
# -------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_stream_events(client: AsyncClient):
    """Test SSE event order for a streamed answer."""
    response = await client.post(URL, json={"query": "What is faith?", "stream": True})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    events = parse_sse(response.text)
    names = [name for name, _ in events]
    assert names == ["sources", "chunk", "chunk", "chunk", "done"]
    assert [s["index"] for s in events[0][1]] == [1, 2]
    assert "".join(data["text"] for name, data in events if name == "chunk") == (
        "Faith comes by hearing [1], and grace saves [2]."
    )
    assert events[-1][1] == {}


@pytest.mark.asyncio
async def test_stream_error_after_two_chunks(client: AsyncClient, generation_provider):
    """Test a mid-stream provider failure ends with an error event."""
    generation_provider.fragments = ["a", "b", "c"]
    generation_provider.fail_after = 2

    response = await client.post(URL, json={"query": "faith", "stream": True})
    assert response.status_code == 200

    events = parse_sse(response.text)
    assert [name for name, _ in events] == ["sources", "chunk", "chunk", "error"]
    assert events[-1][1] == {"error": "OpenAI API error: stream interrupted"}


@pytest.mark.asyncio
async def test_stream_no_context(client: AsyncClient):
    """Test empty retrieval streams the canned answer."""
    response = await client.post(URL, json={"query": "weather", "stream": True})

    events = parse_sse(response.text)
    assert events == [
        ("sources", []),
        ("chunk", {"text": NO_RESULTS_ANSWER}),
        ("done", {}),
    ]


@pytest.mark.asyncio
async def test_stream_validation_error_before_events(client: AsyncClient):
    """Test validation errors are HTTP errors, not stream events."""
    response = await client.post(URL, json={"query": "  ", "stream": True})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_stream_unexpected_error_becomes_error_event(client: AsyncClient, generation_provider):
    """Test unexpected failures still terminate the stream cleanly."""

    async def broken_stream(messages):
        yield "partial"
        raise RuntimeError("socket closed")

    generation_provider.stream_complete = broken_stream

    response = await client.post(URL, json={"query": "faith", "stream": True})

    events = parse_sse(response.text)
    assert [name for name, _ in events] == ["sources", "chunk", "error"]
    assert events[-1][1] == {"error": "Failed to generate response"}


# -------------------------------------------------------------------------
# Tests: dependencies and service endpoints
# -------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_rag_service_unsupported_provider():
    """Test provider configuration errors surface as 503."""
    with patch(
        "study_rag.api.v1.endpoints.chat.get_openai_provider",
        side_effect=ConfigurationError("Unsupported llm provider: anthropic"),
    ):
        with pytest.raises(HTTPException) as exc_info:
            await get_rag_service(db=MagicMock())

    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_metrics(client: AsyncClient):
    await client.get("/health")

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text
