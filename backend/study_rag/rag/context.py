"""Rendering of retrieved chunks into a numbered, citable context block."""

from typing import NamedTuple

from study_rag.core.rag_constants import (
    CONTEXT_SEPARATOR,
    NO_CONTEXT_SENTINEL,
    UNKNOWN_SOURCE_LABEL,
)
from study_rag.rag.models import (
    BibleMetadata,
    Citation,
    DevotionalMetadata,
    QuarterlyMetadata,
    RetrievalResult,
    SourceMetadata,
)


class FormattedContext(NamedTuple):
    context: str
    citations: list[Citation]


def format_source(metadata: SourceMetadata) -> str:
    """Human-readable citation label for one chunk's source."""
    if isinstance(metadata, DevotionalMetadata):
        return f"Devotional: {metadata.title} ({metadata.date})"

    if isinstance(metadata, QuarterlyMetadata):
        return (
            f"{metadata.quarterly_title}, Lesson {metadata.lesson_number}: "
            f"{metadata.lesson_title}, Day {metadata.day_index}"
        )

    if isinstance(metadata, BibleMetadata):
        return f"Bible: {metadata.reference}"

    return UNKNOWN_SOURCE_LABEL


def extract_citations(results: list[RetrievalResult]) -> list[Citation]:
    """Number results 1..N in order, pairing each with its source label."""
    return [
        Citation(
            index=index,
            source=format_source(result.metadata),
            metadata=result.metadata.to_storage(),
        )
        for index, result in enumerate(results, 1)
    ]


def format_context(results: list[RetrievalResult]) -> FormattedContext:
    """Format retrieved results into a context string and citation list.

    An empty list yields the "no relevant context" sentinel and no
    citations; callers treat that as "cannot answer", not as an error.
    """
    if not results:
        return FormattedContext(NO_CONTEXT_SENTINEL, [])

    citations = extract_citations(results)
    sections = [
        f"[{citation.index}] {citation.source}\n{result.text}"
        for citation, result in zip(citations, results)
    ]
    return FormattedContext(CONTEXT_SEPARATOR.join(sections), citations)
