"""Embedded content chunk stored for similarity search."""

from datetime import datetime
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, Integer, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from study_rag.core.config import get_settings
from study_rag.core.database import Base

EMBEDDING_DIMENSIONS = get_settings().embedding_dimensions


class RagDocument(Base):
    """One chunk of devotional, lesson or scripture text with its embedding.

    Rows are written once during ingestion and never updated; re-embedding
    a chunk means inserting a new row.
    """

    __tablename__ = "rag_document"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    text_content: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )
    embedding: Mapped[list[float]] = mapped_column(
        Vector(EMBEDDING_DIMENSIONS), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        source = (self.metadata_ or {}).get("source")
        return f"<RagDocument(id={self.id}, source={source})>"
