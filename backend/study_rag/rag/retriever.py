"""Similarity search over embedded content chunks.

``SimilarityIndex`` embeds the query and asks a ``VectorStore`` for the
nearest rows by cosine distance. Two stores are provided: ``PgVectorStore``
for PostgreSQL with the pgvector extension, and ``InMemoryVectorStore``
for tests and local development.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence, Union

import numpy as np
from sqlalchemy import Integer, Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from study_rag.core.config import RetrievalConfig
from study_rag.models.rag_document import RagDocument
from study_rag.rag.embeddings import Embedder
from study_rag.rag.models import Chunk, RetrievalFilter, RetrievalResult

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

FilterConditions = Sequence[tuple[str, Union[str, int]]]


@dataclass(frozen=True)
class ScoredRow:
    """A stored row and its cosine distance (0 = same direction, 2 = opposite)."""

    id: int
    text_content: str
    metadata: dict[str, Any]
    distance: float


class VectorStore(Protocol):
    """Read and write access to embedded chunks."""

    async def nearest(
        self,
        vector: "NDArray[np.float32]",
        top_k: int,
        conditions: FilterConditions = (),
        max_distance: Optional[float] = None,
    ) -> list[ScoredRow]:
        """Return up to ``top_k`` rows ordered by ascending distance, then id."""
        ...

    async def add(self, chunks: list[Chunk], embeddings: "NDArray[np.float32]") -> list[int]:
        """Persist chunks with their embeddings and return the new row ids."""
        ...


# -------------------------------------------------------------------------
# PostgreSQL / pgvector
# -------------------------------------------------------------------------


class PgVectorStore:
    """Vector store backed by the ``rag_document`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def build_query(
        self,
        vector: "NDArray[np.float32]",
        top_k: int,
        conditions: FilterConditions = (),
        max_distance: Optional[float] = None,
    ) -> Select:
        """Build the nearest-neighbour SELECT.

        ``<=>`` is pgvector's cosine distance; ties are broken by id so the
        order is deterministic.
        """
        distance = RagDocument.embedding.cosine_distance(np.asarray(vector).tolist()).label(
            "distance"
        )
        stmt = select(
            RagDocument.id,
            RagDocument.text_content,
            RagDocument.metadata_.label("metadata"),
            distance,
        )

        for key, value in conditions:
            field_text = RagDocument.metadata_[key].astext
            if isinstance(value, int):
                stmt = stmt.where(field_text.cast(Integer) == value)
            else:
                stmt = stmt.where(field_text == value)

        if max_distance is not None:
            stmt = stmt.where(distance <= max_distance)

        return stmt.order_by(distance, RagDocument.id).limit(top_k)

    async def nearest(
        self,
        vector: "NDArray[np.float32]",
        top_k: int,
        conditions: FilterConditions = (),
        max_distance: Optional[float] = None,
    ) -> list[ScoredRow]:
        result = await self._session.execute(
            self.build_query(vector, top_k, conditions, max_distance)
        )
        return [
            ScoredRow(
                id=row["id"],
                text_content=row["text_content"],
                metadata=row["metadata"] or {},
                distance=float(row["distance"]),
            )
            for row in result.mappings()
        ]

    async def add(self, chunks: list[Chunk], embeddings: "NDArray[np.float32]") -> list[int]:
        documents = [
            RagDocument(
                text_content=chunk.text,
                metadata_=chunk.metadata,
                embedding=np.asarray(embedding).tolist(),
            )
            for chunk, embedding in zip(chunks, embeddings)
        ]
        self._session.add_all(documents)
        await self._session.commit()
        return [document.id for document in documents]


# -------------------------------------------------------------------------
# In-memory
# -------------------------------------------------------------------------


class InMemoryVectorStore:
    """NumPy-backed store with the same ordering and filter rules as pgvector."""

    def __init__(self) -> None:
        self._ids: list[int] = []
        self._texts: list[str] = []
        self._metadata: list[dict[str, Any]] = []
        self._vectors: list["NDArray[np.float32]"] = []

    def __len__(self) -> int:
        return len(self._ids)

    async def add(self, chunks: list[Chunk], embeddings: "NDArray[np.float32]") -> list[int]:
        new_ids: list[int] = []
        for chunk, embedding in zip(chunks, embeddings):
            row_id = (self._ids[-1] if self._ids else 0) + 1
            self._ids.append(row_id)
            self._texts.append(chunk.text)
            self._metadata.append(dict(chunk.metadata))
            self._vectors.append(np.asarray(embedding, dtype=np.float32))
            new_ids.append(row_id)
        return new_ids

    async def nearest(
        self,
        vector: "NDArray[np.float32]",
        top_k: int,
        conditions: FilterConditions = (),
        max_distance: Optional[float] = None,
    ) -> list[ScoredRow]:
        if not self._ids:
            return []

        matrix = np.vstack(self._vectors).astype(np.float64)
        query = np.asarray(vector, dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        with np.errstate(divide="ignore", invalid="ignore"):
            similarities = np.where(norms > 0, dots / norms, 0.0)
        distances = 1.0 - np.clip(similarities, -1.0, 1.0)

        rows = [
            ScoredRow(
                id=self._ids[i],
                text_content=self._texts[i],
                metadata=self._metadata[i],
                distance=float(distances[i]),
            )
            for i in range(len(self._ids))
            if _matches(self._metadata[i], conditions)
            and (max_distance is None or distances[i] <= max_distance)
        ]
        rows.sort(key=lambda row: (row.distance, row.id))
        return rows[:top_k]


def _matches(metadata: dict[str, Any], conditions: FilterConditions) -> bool:
    for key, value in conditions:
        stored = metadata.get(key)
        if isinstance(value, int):
            try:
                if int(stored) != value:  # type: ignore[arg-type]
                    return False
            except (TypeError, ValueError):
                return False
        elif stored != value:
            return False
    return True


# -------------------------------------------------------------------------
# Similarity index accessor
# -------------------------------------------------------------------------


class SimilarityIndex:
    """Nearest-neighbour retrieval of stored chunks for a text query."""

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        config: Optional[RetrievalConfig] = None,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self._config = config or RetrievalConfig()

    async def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
        filter: Optional[RetrievalFilter] = None,
    ) -> list[RetrievalResult]:
        """Retrieve relevant chunks using vector similarity search.

        Args:
            query: Search query text.
            top_k: Maximum number of results to return.
            min_similarity: Minimum cosine similarity to include a row.
            filter: Metadata equality filters, ANDed together.

        Returns:
            Results sorted by similarity (highest first), ties by id.
        """
        top_k = top_k or self._config.top_k
        if min_similarity is None:
            min_similarity = self._config.min_similarity
        conditions = filter.conditions() if filter else []

        query_embedding = await self._embedder.embed_query(query)
        rows = await self._store.nearest(
            query_embedding,
            top_k,
            conditions,
            max_distance=1.0 - min_similarity,
        )

        results: list[RetrievalResult] = []
        for row in rows:
            similarity = min(1.0, max(-1.0, 1.0 - row.distance))
            # The store may not honour max_distance; check again
            if similarity < min_similarity:
                continue
            results.append(
                RetrievalResult(
                    id=row.id,
                    text=row.text_content,
                    metadata=row.metadata,
                    similarity=similarity,
                )
            )

        logger.debug(
            "Similarity search top_k=%d min_similarity=%.2f filters=%s -> %d results",
            top_k,
            min_similarity,
            conditions,
            len(results),
        )
        return results
