"""SQLAlchemy models."""

from study_rag.models.rag_document import RagDocument

__all__ = ["RagDocument"]
