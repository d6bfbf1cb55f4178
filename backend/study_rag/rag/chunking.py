"""Document chunking for RAG ingestion.

Splits devotionals, lesson days and long passages into overlapping,
boundary-aware chunks suitable for embedding.
"""

from typing import Any, Optional

from study_rag.core.config import ChunkingConfig
from study_rag.rag.models import BibleMetadata, Chunk, DevotionalMetadata, QuarterlyMetadata


def chunk_text(
    text: str,
    config: Optional[ChunkingConfig] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> list[Chunk]:
    """Split text into overlapping chunks.

    Each window is ``chunk_size`` characters wide. When the window does not
    reach the end of the text, it is cut right after the rightmost
    separator found inside it so that words and sentences stay whole. The
    next window starts ``chunk_overlap`` characters before the cut.

    Args:
        text: Text to split.
        config: Chunk window parameters (defaults when omitted).
        metadata: Metadata copied onto every chunk.

    Returns:
        Chunks in increasing ``start_index`` order.
    """
    config = config or ChunkingConfig()
    metadata = metadata or {}
    chunk_size = config.chunk_size
    overlap = config.chunk_overlap

    if not text:
        return []

    # Small enough to keep whole
    if len(text) <= chunk_size:
        stripped = text.strip()
        if not stripped:
            return []
        return [Chunk(text=stripped, start_index=0, end_index=len(text), metadata=dict(metadata))]

    chunks: list[Chunk] = []
    start = 0
    text_length = len(text)

    while start < text_length:
        window_end = min(start + chunk_size, text_length)
        cut_end = window_end

        if window_end < text_length:
            cut_end = _find_cut(text, start, window_end, config.separators) or window_end

        segment = text[start:cut_end].strip()
        if segment:
            chunks.append(
                Chunk(text=segment, start_index=start, end_index=cut_end, metadata=dict(metadata))
            )

        if cut_end >= text_length:
            break

        next_start = cut_end - overlap
        # Separator placed too early to leave room for the overlap
        if next_start <= start:
            next_start = cut_end
        start = next_start

    return chunks


def _find_cut(text: str, start: int, end: int, separators: tuple[str, ...]) -> Optional[int]:
    """Return the offset just past the rightmost separator in ``text[start:end]``.

    Separators are tried in preference order; a later separator only wins
    when it sits strictly further right. Matches at ``start`` itself are
    ignored because they would produce an empty chunk.
    """
    best_pos = -1
    best_len = 0
    for separator in separators:
        pos = text.rfind(separator, start, end)
        if pos > start and pos > best_pos:
            best_pos = pos
            best_len = len(separator)

    if best_pos < 0:
        return None
    return best_pos + best_len


# -------------------------------------------------------------------------
# Source-specific helpers
# -------------------------------------------------------------------------


def chunk_devotional(
    devotional_id: int,
    date: str,
    title: str,
    memory_verse: str,
    content: str,
    author: Optional[str] = None,
    config: Optional[ChunkingConfig] = None,
) -> list[Chunk]:
    """Prepare a devotional for ingestion."""
    full_text = f"{title}\n\n{memory_verse}\n\n{content}"
    chunks = chunk_text(full_text, config)

    return [
        chunk.model_copy(
            update={
                "metadata": DevotionalMetadata(
                    devotional_id=devotional_id,
                    date=date,
                    title=title,
                    author=author,
                    chunk_index=index,
                    total_chunks=len(chunks),
                ).to_storage()
            }
        )
        for index, chunk in enumerate(chunks)
    ]


def chunk_lesson_day(
    lesson_day_id: int,
    lesson_id: int,
    day_index: int,
    title: str,
    content: str,
    lesson_number: int,
    lesson_title: str,
    quarterly_id: int,
    quarterly_title: str,
    memory_verse: Optional[str] = None,
    config: Optional[ChunkingConfig] = None,
) -> list[Chunk]:
    """Prepare one day of a quarterly lesson for ingestion."""
    memory_verse_text = f"{memory_verse}\n\n" if memory_verse else ""
    full_text = f"{title}\n\n{memory_verse_text}{content}"
    chunks = chunk_text(full_text, config)

    return [
        chunk.model_copy(
            update={
                "metadata": QuarterlyMetadata(
                    lesson_day_id=lesson_day_id,
                    lesson_id=lesson_id,
                    lesson_number=lesson_number,
                    lesson_title=lesson_title,
                    day_index=day_index,
                    day_title=title,
                    quarterly_id=quarterly_id,
                    quarterly_title=quarterly_title,
                    chunk_index=index,
                    total_chunks=len(chunks),
                ).to_storage()
            }
        )
        for index, chunk in enumerate(chunks)
    ]


def chunk_bible_verse(book: str, chapter: int, verse: int, text: str) -> list[Chunk]:
    """Prepare a Bible verse for ingestion.

    Verses are never split, whatever their length.
    """
    metadata = BibleMetadata(
        book=book,
        chapter=chapter,
        verse=verse,
        reference=f"{book} {chapter}:{verse}",
    )
    return [
        Chunk(
            text=text,
            start_index=0,
            end_index=len(text),
            metadata=metadata.to_storage(),
        )
    ]
