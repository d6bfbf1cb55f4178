"""Create rag_document table with pgvector embeddings.

Revision ID: 001_rag_document
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_rag_document"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSIONS = 1536


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "rag_document",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("text_content", sa.Text(), nullable=False),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSIONS), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # Cosine distance (<=>) search
    op.create_index(
        "ix_rag_document_embedding_hnsw",
        "rag_document",
        ["embedding"],
        postgresql_using="hnsw",
        postgresql_ops={"embedding": "vector_cosine_ops"},
    )
    # Metadata filters (source, quarterlyId, date)
    op.create_index(
        "ix_rag_document_metadata",
        "rag_document",
        ["metadata"],
        postgresql_using="gin",
    )


def downgrade() -> None:
    op.drop_index("ix_rag_document_metadata", table_name="rag_document")
    op.drop_index("ix_rag_document_embedding_hnsw", table_name="rag_document")
    op.drop_table("rag_document")
