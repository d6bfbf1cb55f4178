"""Cheap second-pass ranking of over-fetched search results."""

import logging
from typing import Optional

from study_rag.core.config import RetrievalConfig
from study_rag.rag.models import RetrievalFilter, RetrievalResult
from study_rag.rag.retriever import SimilarityIndex

logger = logging.getLogger(__name__)


def query_terms(query: str) -> set[str]:
    """Distinct lowercase whitespace-delimited terms of a query."""
    return set(query.lower().split())


def lexical_overlap(terms: set[str], text: str) -> float:
    """Fraction of query terms appearing as substrings of ``text``.

    Returns 0.0 for an empty term set.
    """
    if not terms:
        return 0.0
    lowered = text.lower()
    matched = sum(1 for term in terms if term in lowered)
    return matched / len(terms)


class Reranker:
    """Re-orders similarity results by a blend of similarity and term overlap.

    ``rerank_score = similarity * w_sim + overlap * w_lex``; the weights come
    from ``RetrievalConfig`` and default to 0.7 / 0.3.
    """

    def __init__(self, index: SimilarityIndex, config: Optional[RetrievalConfig] = None) -> None:
        self._index = index
        self._config = config or RetrievalConfig()

    async def retrieve(
        self,
        query: str,
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
        filter: Optional[RetrievalFilter] = None,
    ) -> list[RetrievalResult]:
        """Retrieve documents with reranking.

        Fetches ``2 * top_k`` candidates so reranking has room to promote
        lexically closer chunks, then truncates to ``top_k``.
        """
        top_k = top_k or self._config.top_k
        candidates = await self._index.search(
            query,
            top_k=top_k * 2,
            min_similarity=min_similarity,
            filter=filter,
        )

        if not self._config.rerank or len(candidates) <= top_k:
            return candidates[:top_k]

        return self.rerank(query, candidates)[:top_k]

    def rerank(self, query: str, candidates: list[RetrievalResult]) -> list[RetrievalResult]:
        """Score and sort candidates, highest blended score first."""
        terms = query_terms(query)
        sim_weight = self._config.rerank_similarity_weight
        lex_weight = self._config.rerank_lexical_weight

        scored = [
            candidate.model_copy(
                update={
                    "rerank_score": candidate.similarity * sim_weight
                    + lexical_overlap(terms, candidate.text) * lex_weight
                }
            )
            for candidate in candidates
        ]
        # sorted() is stable, so equal scores keep similarity order
        ranked = sorted(scored, key=lambda result: result.rerank_score, reverse=True)

        logger.debug(
            "Reranked %d candidates for %d query terms; top ids=%s",
            len(ranked),
            len(terms),
            [result.id for result in ranked[:5]],
        )
        return ranked
