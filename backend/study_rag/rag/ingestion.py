"""Ingestion write path: chunk, embed and store study content."""

import logging
from typing import Any, Optional

from study_rag.core.config import ChunkingConfig
from study_rag.rag.chunking import chunk_bible_verse, chunk_devotional, chunk_lesson_day
from study_rag.rag.embeddings import Embedder
from study_rag.rag.models import Chunk
from study_rag.rag.retriever import VectorStore

logger = logging.getLogger(__name__)


class IngestionService:
    """Turns raw devotionals, lesson days and verses into stored embeddings."""

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        chunking: Optional[ChunkingConfig] = None,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self._chunking = chunking or ChunkingConfig()

    async def ingest_chunks(self, chunks: list[Chunk]) -> list[int]:
        """Embed chunks and persist them.

        Nothing is written if embedding fails for any batch.

        Returns:
            Ids of the new rows, parallel to ``chunks``.
        """
        if not chunks:
            return []
        embeddings = await self._embedder.embed_documents([chunk.text for chunk in chunks])
        ids = await self._store.add(chunks, embeddings)
        logger.info("Ingested %d chunks", len(ids))
        return ids

    async def ingest_devotional(self, devotional: dict[str, Any]) -> list[int]:
        """Ingest one devotional (``id``, ``date``, ``title``, ``memoryVerse``, ``content``)."""
        chunks = chunk_devotional(
            devotional_id=devotional["id"],
            date=str(devotional["date"]),
            title=devotional["title"],
            memory_verse=devotional.get("memoryVerse", ""),
            content=devotional["content"],
            author=devotional.get("author"),
            config=self._chunking,
        )
        return await self.ingest_chunks(chunks)

    async def ingest_lesson_day(
        self,
        lesson_day: dict[str, Any],
        lesson_info: dict[str, Any],
    ) -> list[int]:
        """Ingest one lesson day with its parent lesson and quarterly info."""
        chunks = chunk_lesson_day(
            lesson_day_id=lesson_day["id"],
            lesson_id=lesson_day["lessonId"],
            day_index=lesson_day["dayIndex"],
            title=lesson_day["title"],
            content=lesson_day["content"],
            memory_verse=lesson_day.get("memoryVerse"),
            lesson_number=lesson_info["lessonNumber"],
            lesson_title=lesson_info["lessonTitle"],
            quarterly_id=lesson_info["quarterlyId"],
            quarterly_title=lesson_info["quarterlyTitle"],
            config=self._chunking,
        )
        return await self.ingest_chunks(chunks)

    async def ingest_bible_verses(self, verses: list[dict[str, Any]]) -> list[int]:
        """Ingest verses (``book``, ``chapter``, ``verse``, ``text``) in one call."""
        chunks: list[Chunk] = []
        for verse in verses:
            chunks.extend(
                chunk_bible_verse(verse["book"], verse["chapter"], verse["verse"], verse["text"])
            )
        return await self.ingest_chunks(chunks)
