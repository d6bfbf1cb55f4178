"""Question answering endpoints over the study corpus."""

import json
import logging
from functools import lru_cache
from typing import AsyncGenerator, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from study_rag.core.config import get_rag_config, get_settings
from study_rag.core.database import get_db
from study_rag.core.exceptions import (
    ConfigurationError,
    ProviderError,
    RAGError,
    ValidationError,
)
from study_rag.core.rag_constants import QUERY_MAX_LENGTH, QUERY_MIN_LENGTH
from study_rag.rag.generator import StreamEvent
from study_rag.rag.models import ChatMessage, Citation, RetrievalFilter
from study_rag.rag.providers import OpenAIProvider, get_provider
from study_rag.rag.retriever import PgVectorStore
from study_rag.rag.service import RAGService, build_rag_service

router = APIRouter()
logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------


class QueryRequest(BaseModel):
    """Question to answer from the study corpus."""

    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., min_length=QUERY_MIN_LENGTH, max_length=QUERY_MAX_LENGTH)
    mode: Literal["general", "quarterly", "devotional"] = "general"
    filter: Optional[RetrievalFilter] = None
    stream: bool = False
    conversation_history: list[ChatMessage] = Field(
        default_factory=list, alias="conversationHistory"
    )
    top_k: Optional[int] = Field(None, ge=1, le=20, alias="topK")


class QueryResponse(BaseModel):
    """Complete answer with the numbered sources it was grounded on."""

    model_config = ConfigDict(populate_by_name=True)

    answer: str
    sources: list[Citation]
    cited_indices: list[int] = Field(..., alias="citedIndices")


# -------------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------------


@lru_cache
def get_openai_provider() -> OpenAIProvider:
    """Shared provider client; holds no per-request state."""
    settings = get_settings()
    config = get_rag_config()
    return get_provider(
        settings.openai_api_key,
        config.embedding,
        config.generation,
        base_url=settings.openai_base_url,
    )


async def get_rag_service(db: AsyncSession = Depends(get_db)) -> RAGService:
    """Build a per-request service over the database-backed store."""
    try:
        provider = get_openai_provider()
    except ConfigurationError as e:
        raise _http_error(e) from e
    return build_rag_service(PgVectorStore(db), provider, provider, get_rag_config())


def _http_error(error: RAGError) -> HTTPException:
    if isinstance(error, ValidationError):
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(error, ConfigurationError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(error, ProviderError):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=status_code, detail=str(error))


def _format_sse(event: StreamEvent) -> str:
    return f"event: {event.event.value}\ndata: {json.dumps(event.data)}\n\n"


# -------------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------------


@router.post("/query", response_model=QueryResponse)
async def query(
    request: QueryRequest,
    service: RAGService = Depends(get_rag_service),
):
    """Answer a question, in one response or as a Server-Sent Events stream.

    SSE format (``stream: true``):
        event: sources
        data: [{"index": 1, "source": "...", "metadata": {...}}, ...]

        event: chunk
        data: {"text": "..."}

        event: done
        data: {}

    ``event: error`` with ``{"error": "..."}`` replaces ``done`` when the
    provider fails mid-stream.

    Raises:
        HTTPException: 422 on invalid input, 503 when no provider is
            configured, 502 when the provider fails before streaming starts.
    """
    options = {
        "mode": request.mode,
        "filter": request.filter,
        "conversation_history": request.conversation_history,
        "top_k": request.top_k,
    }

    if not request.stream:
        try:
            result = await service.answer(request.query, **options)
        except RAGError as e:
            logger.warning("Query failed: %s: %s", type(e).__name__, e)
            raise _http_error(e) from e
        return QueryResponse(
            answer=result.answer,
            sources=result.sources,
            cited_indices=result.cited_indices,
        )

    try:
        stream = await service.answer_stream(request.query, **options)
    except RAGError as e:
        logger.warning("Stream setup failed: %s: %s", type(e).__name__, e)
        raise _http_error(e) from e

    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            async for event in stream:
                yield _format_sse(event)
        except Exception as e:
            logger.error("Answer stream aborted: %s: %s", type(e).__name__, e)
            yield _format_sse(StreamEvent.error("Failed to generate response"))

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
