"""Tests for document chunking."""

from study_rag.core.config import ChunkingConfig
from study_rag.rag.chunking import (
    chunk_bible_verse,
    chunk_devotional,
    chunk_lesson_day,
    chunk_text,
)


class TestChunkText:
    """Tests for the windowed splitter."""

    def test_empty_text(self):
        assert chunk_text("") == []

    def test_whitespace_only_text(self):
        assert chunk_text("   \n\n  ") == []

    def test_short_text_is_single_chunk(self):
        chunks = chunk_text("  Be still, and know.  ")

        assert len(chunks) == 1
        assert chunks[0].text == "Be still, and know."
        assert chunks[0].start_index == 0
        assert chunks[0].end_index == len("  Be still, and know.  ")

    def test_text_of_exactly_chunk_size(self):
        config = ChunkingConfig(chunk_size=20, chunk_overlap=5)
        chunks = chunk_text("x" * 20, config)

        assert len(chunks) == 1

    def test_prefers_paragraph_break(self):
        config = ChunkingConfig(chunk_size=40, chunk_overlap=5)
        text = "a" * 30 + "\n\n" + "b" * 30

        chunks = chunk_text(text, config)

        assert len(chunks) == 2
        assert chunks[0].text == "a" * 30
        assert chunks[0].end_index == 32
        assert chunks[1].start_index == 27
        assert chunks[1].text.endswith("b" * 30)

    def test_rightmost_separator_wins(self):
        """A space further right beats an earlier newline."""
        config = ChunkingConfig(chunk_size=20, chunk_overlap=2)
        text = "alpha\nbeta gamma delta epsilon zeta"

        chunks = chunk_text(text, config)

        assert chunks[0].text == "alpha\nbeta gamma"
        assert chunks[0].end_index == 17

    def test_hard_cut_without_separators(self):
        config = ChunkingConfig(chunk_size=40, chunk_overlap=10)
        chunks = chunk_text("x" * 100, config)

        assert [c.start_index for c in chunks] == [0, 30, 60]
        assert [c.end_index for c in chunks] == [40, 70, 100]

    def test_chunks_respect_size_and_cover_text(self):
        config = ChunkingConfig(chunk_size=50, chunk_overlap=10)
        text = " ".join(f"word{i}" for i in range(80))

        chunks = chunk_text(text, config)

        assert len(chunks) > 1
        assert chunks[0].start_index == 0
        assert chunks[-1].end_index == len(text)
        for chunk in chunks:
            assert len(chunk.text) <= 50
            assert chunk.end_index - chunk.start_index <= 50
        for previous, current in zip(chunks, chunks[1:]):
            assert current.start_index > previous.start_index
            # No gap between consecutive windows
            assert current.start_index <= previous.end_index

    def test_no_trailing_duplicate_chunk(self):
        config = ChunkingConfig(chunk_size=40, chunk_overlap=10)
        chunks = chunk_text("x" * 100, config)

        assert chunks[-1].end_index == 100
        assert sum(1 for c in chunks if c.end_index == 100) == 1

    def test_progress_when_overlap_exceeds_cut(self):
        config = ChunkingConfig(chunk_size=10, chunk_overlap=8)
        text = "ab cdefghijklmnopqrstuvwxyz"

        chunks = chunk_text(text, config)

        starts = [c.start_index for c in chunks]
        assert starts == sorted(set(starts))
        assert chunks[0].text == "ab"
        assert chunks[1].start_index == 3

    def test_metadata_copied_per_chunk(self):
        config = ChunkingConfig(chunk_size=10, chunk_overlap=0)
        chunks = chunk_text("one two three four", config, {"source": "bible"})

        assert len(chunks) > 1
        assert all(c.metadata == {"source": "bible"} for c in chunks)
        assert chunks[0].metadata is not chunks[1].metadata


class TestSourceChunkers:
    """Tests for the devotional, lesson and verse helpers."""

    def test_devotional_text_and_metadata(self):
        chunks = chunk_devotional(
            devotional_id=5,
            date="2024-01-15",
            title="Morning Light",
            memory_verse="Psalm 119:105",
            content="Thy word is a lamp unto my feet.",
        )

        assert len(chunks) == 1
        assert chunks[0].text == (
            "Morning Light\n\nPsalm 119:105\n\nThy word is a lamp unto my feet."
        )
        assert chunks[0].metadata == {
            "source": "devotional",
            "devotionalId": 5,
            "date": "2024-01-15",
            "title": "Morning Light",
            "chunkIndex": 0,
            "totalChunks": 1,
        }

    def test_devotional_numbers_every_chunk(self):
        config = ChunkingConfig(chunk_size=40, chunk_overlap=5)
        chunks = chunk_devotional(
            devotional_id=5,
            date="2024-01-15",
            title="Long",
            memory_verse="John 1:1",
            content="In the beginning was the Word. " * 6,
            author="E. White",
            config=config,
        )

        assert len(chunks) > 1
        assert [c.metadata["chunkIndex"] for c in chunks] == list(range(len(chunks)))
        assert {c.metadata["totalChunks"] for c in chunks} == {len(chunks)}
        assert chunks[0].metadata["author"] == "E. White"

    def test_lesson_day_metadata(self):
        chunks = chunk_lesson_day(
            lesson_day_id=31,
            lesson_id=3,
            day_index=2,
            title="Monday",
            content="Read Genesis 2:1-3.",
            lesson_number=3,
            lesson_title="The Sabbath",
            quarterly_id=9,
            quarterly_title="Rest in Christ",
            memory_verse="Exodus 20:8",
        )

        assert chunks[0].text == "Monday\n\nExodus 20:8\n\nRead Genesis 2:1-3."
        metadata = chunks[0].metadata
        assert metadata["source"] == "quarterly"
        assert metadata["lessonDayId"] == 31
        assert metadata["quarterlyId"] == 9
        assert metadata["dayTitle"] == "Monday"
        assert metadata["quarterlyTitle"] == "Rest in Christ"

    def test_lesson_day_without_memory_verse(self):
        chunks = chunk_lesson_day(
            lesson_day_id=31,
            lesson_id=3,
            day_index=2,
            title="Monday",
            content="Read Genesis 2:1-3.",
            lesson_number=3,
            lesson_title="The Sabbath",
            quarterly_id=9,
            quarterly_title="Rest in Christ",
        )

        assert chunks[0].text == "Monday\n\nRead Genesis 2:1-3."

    def test_bible_verse_is_never_split(self):
        text = "And it came to pass " * 100
        chunks = chunk_bible_verse("Genesis", 1, 1, text)

        assert len(chunks) == 1
        assert chunks[0].text == text
        assert chunks[0].metadata == {
            "source": "bible",
            "book": "Genesis",
            "chapter": 1,
            "verse": 1,
            "reference": "Genesis 1:1",
        }
