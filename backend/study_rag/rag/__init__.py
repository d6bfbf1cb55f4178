"""Retrieval-augmented question answering over devotional, lesson and scripture content.

This module provides functionality to chunk, embed and search study content
and to generate cited answers, in one response or as a stream.
"""

from study_rag.rag.context import FormattedContext, format_context, format_source
from study_rag.rag.embeddings import Embedder, cosine_similarity
from study_rag.rag.generator import (
    AnswerGenerator,
    AnswerResult,
    AnswerStream,
    StreamEvent,
    StreamEventType,
    StreamState,
    extract_citation_indices,
)
from study_rag.rag.models import (
    ChatMessage,
    Chunk,
    Citation,
    RetrievalFilter,
    RetrievalResult,
)
from study_rag.rag.reranker import Reranker
from study_rag.rag.retriever import InMemoryVectorStore, PgVectorStore, SimilarityIndex
from study_rag.rag.service import RAGService, build_rag_service

__all__ = [
    "AnswerGenerator",
    "AnswerResult",
    "AnswerStream",
    "ChatMessage",
    "Chunk",
    "Citation",
    "Embedder",
    "FormattedContext",
    "InMemoryVectorStore",
    "PgVectorStore",
    "RAGService",
    "Reranker",
    "RetrievalFilter",
    "RetrievalResult",
    "SimilarityIndex",
    "StreamEvent",
    "StreamEventType",
    "StreamState",
    "build_rag_service",
    "cosine_similarity",
    "extract_citation_indices",
    "format_context",
    "format_source",
]
