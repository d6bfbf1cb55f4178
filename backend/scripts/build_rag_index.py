#!/usr/bin/env python3
"""Build the similarity index from a JSON export of study content.

The export is a single object with any of these lists:

    {
      "devotionals": [{"id", "date", "title", "memoryVerse", "content", "author"?}],
      "lessonDays": [{"id", "lessonId", "dayIndex", "title", "content",
                      "memoryVerse"?, "lessonInfo": {"lessonNumber", "lessonTitle",
                                                    "quarterlyId", "quarterlyTitle"}}],
      "verses": [{"book", "chapter", "verse", "text"}]
    }

Run from backend directory:
    python scripts/build_rag_index.py content.json

Environment variables:
    OPENAI_API_KEY: Required for embeddings
    DATABASE_URL: Target database (default: local postgres)
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from dotenv import load_dotenv

load_dotenv(backend_dir / ".env")

from study_rag.core.config import get_rag_config, get_settings
from study_rag.core.database import async_session_maker
from study_rag.core.exceptions import RAGError
from study_rag.rag.embeddings import Embedder
from study_rag.rag.ingestion import IngestionService
from study_rag.rag.providers import get_provider
from study_rag.rag.retriever import PgVectorStore

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def build_index(export_path: Path, dry_run: bool = False) -> dict[str, int]:
    """Ingest every item of the export and return chunk counts per source."""
    with open(export_path, encoding="utf-8") as f:
        export = json.load(f)

    settings = get_settings()
    config = get_rag_config()
    provider = get_provider(
        settings.openai_api_key,
        config.embedding,
        config.generation,
        base_url=settings.openai_base_url,
    )
    counts = {"devotional": 0, "quarterly": 0, "bible": 0}

    if dry_run:
        logger.info(
            "Dry run: %d devotionals, %d lesson days, %d verses",
            len(export.get("devotionals", [])),
            len(export.get("lessonDays", [])),
            len(export.get("verses", [])),
        )
        return counts

    async with async_session_maker() as session:
        service = IngestionService(
            Embedder(provider, config.embedding),
            PgVectorStore(session),
            config.chunking,
        )

        for devotional in export.get("devotionals", []):
            ids = await service.ingest_devotional(devotional)
            counts["devotional"] += len(ids)
            logger.info("Devotional %s: %d chunks", devotional["id"], len(ids))

        for lesson_day in export.get("lessonDays", []):
            ids = await service.ingest_lesson_day(lesson_day, lesson_day["lessonInfo"])
            counts["quarterly"] += len(ids)
            logger.info("Lesson day %s: %d chunks", lesson_day["id"], len(ids))

        verses = export.get("verses", [])
        if verses:
            ids = await service.ingest_bible_verses(verses)
            counts["bible"] += len(ids)

    return counts


def main():
    parser = argparse.ArgumentParser(
        description="Chunk, embed and store study content for retrieval."
    )
    parser.add_argument("export", type=Path, help="Path to the JSON content export")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only count the items in the export",
    )
    args = parser.parse_args()

    if not args.export.exists():
        logger.error(f"Export not found: {args.export}")
        sys.exit(1)

    try:
        counts = asyncio.run(build_index(args.export, dry_run=args.dry_run))
    except RAGError as e:
        logger.error(f"Indexing failed: {e}")
        sys.exit(1)

    logger.info("=" * 60)
    for source, count in counts.items():
        logger.info(f"  {source}: {count} chunks")
    logger.info(f"  total: {sum(counts.values())} chunks")
    logger.info("=" * 60)


if __name__ == "__main__":
    main()
