"""Question answering over the study corpus.

Wires the retrieval and generation components for one request:
validate -> retrieve and rerank -> (empty? canned reply) -> generate.
"""

import logging
import time
from typing import Optional

from study_rag.core.config import RAGConfig
from study_rag.core.exceptions import ValidationError
from study_rag.core.rag_constants import NO_RESULTS_ANSWER, QUERY_MAX_LENGTH, QUERY_MIN_LENGTH
from study_rag.observability import get_metrics_backend
from study_rag.rag.embeddings import Embedder
from study_rag.rag.generator import AnswerGenerator, AnswerResult, AnswerStream
from study_rag.rag.models import ChatMessage, RetrievalFilter, RetrievalResult
from study_rag.rag.providers import EmbeddingProvider, GenerationProvider
from study_rag.rag.reranker import Reranker
from study_rag.rag.retriever import SimilarityIndex, VectorStore

logger = logging.getLogger(__name__)


class RAGService:
    """Stateless per-request question answering pipeline."""

    def __init__(
        self,
        reranker: Reranker,
        generator: AnswerGenerator,
        config: Optional[RAGConfig] = None,
    ) -> None:
        self._reranker = reranker
        self._generator = generator
        self._config = config or RAGConfig()

    def validate(self, query: str, mode: str) -> None:
        """Reject a query before any retrieval work.

        Raises:
            ValidationError: On an empty/over-long query or unknown mode.
        """
        length = len(query.strip())
        if length < QUERY_MIN_LENGTH:
            raise ValidationError("Query must not be empty")
        if len(query) > QUERY_MAX_LENGTH:
            raise ValidationError(f"Query must be at most {QUERY_MAX_LENGTH} characters")
        if mode not in self._config.mode_prompts:
            raise ValidationError(
                f"Unknown mode: {mode}. Expected one of {sorted(self._config.mode_prompts)}"
            )

    async def retrieve(
        self,
        query: str,
        filter: Optional[RetrievalFilter] = None,
        top_k: Optional[int] = None,
    ) -> list[RetrievalResult]:
        return await self._reranker.retrieve(query, top_k=top_k, filter=filter)

    async def answer(
        self,
        query: str,
        mode: str = "general",
        filter: Optional[RetrievalFilter] = None,
        conversation_history: Optional[list[ChatMessage]] = None,
        top_k: Optional[int] = None,
    ) -> AnswerResult:
        """Answer a question in one response.

        Returns the canned "couldn't find" reply with no sources when
        retrieval comes back empty.
        """
        self.validate(query, mode)
        start_time = time.perf_counter()

        results = await self.retrieve(query, filter, top_k)
        if not results:
            logger.info("No context found for mode=%s query=%r", mode, query[:50])
            answer = AnswerResult(answer=NO_RESULTS_ANSWER, sources=[], cited_indices=[])
        else:
            answer = await self._generator.generate(query, results, mode, conversation_history)

        duration_ms = (time.perf_counter() - start_time) * 1000
        get_metrics_backend().observe_rag_query(mode, False, len(results), duration_ms)
        logger.info(
            "Answered mode=%s results=%d cited=%s duration_ms=%.2f",
            mode,
            len(results),
            answer.cited_indices,
            duration_ms,
        )
        return answer

    async def answer_stream(
        self,
        query: str,
        mode: str = "general",
        filter: Optional[RetrievalFilter] = None,
        conversation_history: Optional[list[ChatMessage]] = None,
        top_k: Optional[int] = None,
    ) -> AnswerStream:
        """Retrieve context and return an unstarted answer stream.

        Validation and retrieval errors are raised here, before any event
        is emitted.
        """
        self.validate(query, mode)
        start_time = time.perf_counter()

        results = await self.retrieve(query, filter, top_k)
        duration_ms = (time.perf_counter() - start_time) * 1000
        get_metrics_backend().observe_rag_query(mode, True, len(results), duration_ms)

        if not results:
            logger.info("No context found for mode=%s query=%r", mode, query[:50])
            return AnswerStream(None, [], [], canned_answer=NO_RESULTS_ANSWER)
        return self._generator.stream(query, results, mode, conversation_history)


def build_rag_service(
    store: VectorStore,
    embedding_provider: EmbeddingProvider,
    generation_provider: GenerationProvider,
    config: Optional[RAGConfig] = None,
) -> RAGService:
    """Assemble a service from a store, providers and configuration."""
    config = config or RAGConfig()
    embedder = Embedder(embedding_provider, config.embedding)
    index = SimilarityIndex(embedder, store, config.retrieval)
    return RAGService(
        reranker=Reranker(index, config.retrieval),
        generator=AnswerGenerator(generation_provider, config),
        config=config,
    )
