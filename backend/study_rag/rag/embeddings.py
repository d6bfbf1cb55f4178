"""Embedding generation for content chunks and queries."""

import logging
from typing import TYPE_CHECKING, Sequence, Union

import numpy as np

from study_rag.core.config import EmbeddingConfig
from study_rag.core.exceptions import DimensionMismatchError, ProviderError
from study_rag.rag.providers import EmbeddingProvider

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

VectorLike = Union[Sequence[float], "NDArray[np.float32]"]


class Embedder:
    """Turns text into fixed-dimension vectors through a provider.

    Large inputs are split into ``batch_size`` requests that run one after
    another; results are concatenated in input order. Any failed batch
    fails the whole call.
    """

    def __init__(self, provider: EmbeddingProvider, config: EmbeddingConfig | None = None) -> None:
        self._provider = provider
        self._config = config or EmbeddingConfig()

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    async def embed_documents(self, texts: list[str]) -> "NDArray[np.float32]":
        """Generate embeddings for a list of texts.

        Args:
            texts: List of text strings to embed.

        Returns:
            NumPy array of shape (len(texts), dimensions).

        Raises:
            ProviderError: If any batch fails or returns a malformed payload.
            ConfigurationError: If the provider has no credential.
        """
        if not texts:
            return np.empty((0, self._config.dimensions), dtype=np.float32)

        batch_size = self._config.batch_size
        embeddings: list[list[float]] = []

        # Sequential batches to stay inside provider rate limits
        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            batch_embeddings = await self._provider.embed(batch)

            if len(batch_embeddings) != len(batch):
                raise ProviderError(
                    f"Embedding provider returned {len(batch_embeddings)} vectors "
                    f"for {len(batch)} inputs",
                    operation="embeddings",
                )
            for vector in batch_embeddings:
                if len(vector) != self._config.dimensions:
                    raise ProviderError(
                        f"Embedding provider returned a {len(vector)}-dim vector, "
                        f"expected {self._config.dimensions}",
                        operation="embeddings",
                    )
            embeddings.extend(batch_embeddings)

        logger.debug(
            "Embedded %d texts in %d batches",
            len(texts),
            (len(texts) + batch_size - 1) // batch_size,
        )
        return np.asarray(embeddings, dtype=np.float32)

    async def embed_query(self, text: str) -> "NDArray[np.float32]":
        """Generate embedding for a single text.

        Returns:
            NumPy array of shape (dimensions,).
        """
        embeddings = await self.embed_documents([text])
        return embeddings[0]


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """Calculate cosine similarity between two vectors.

    Raises:
        DimensionMismatchError: If the vectors differ in length.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        logger.error(
            "Embedding dimension mismatch: %s vs %s; was the model changed without re-indexing?",
            va.shape,
            vb.shape,
        )
        raise DimensionMismatchError(va.size, vb.size)

    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)
