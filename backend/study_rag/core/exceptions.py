"""Exception hierarchy for the RAG pipeline."""

from typing import Optional


class RAGError(Exception):
    """Base exception for RAG pipeline errors."""

    pass


class ConfigurationError(RAGError):
    """Missing credential or unsupported provider configuration."""

    pass


class ValidationError(RAGError):
    """Query, mode or filter rejected before retrieval."""

    pass


class DimensionMismatchError(RAGError):
    """Two vectors of different length were compared."""

    def __init__(self, left: int, right: int) -> None:
        self.left = left
        self.right = right
        super().__init__(f"Vectors must have same dimensions (got {left} and {right})")


class ProviderError(RAGError):
    """Failed or malformed response from an embedding/generation provider."""

    def __init__(
        self,
        message: str,
        provider: str = "openai",
        operation: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        self.provider = provider
        self.operation = operation
        self.status_code = status_code
        super().__init__(message)
