"""Data models for content chunks, retrieval results and chat messages."""

import logging
from datetime import date as Date
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Source metadata (discriminated by ``source``)
# -------------------------------------------------------------------------


class _MetadataBase(BaseModel):
    """Stored keys are camelCase; unrecognized keys are kept as-is."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    def to_storage(self) -> dict[str, Any]:
        """Serialize to the JSON shape persisted in the store."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# Only the fields a citation label prints are required; ids and chunk
# counters are bookkeeping written at ingestion.


class DevotionalMetadata(_MetadataBase):
    source: Literal["devotional"] = "devotional"
    date: str
    title: str
    devotional_id: Optional[int] = Field(None, alias="devotionalId")
    author: Optional[str] = None
    chunk_index: Optional[int] = Field(None, alias="chunkIndex")
    total_chunks: Optional[int] = Field(None, alias="totalChunks")


class QuarterlyMetadata(_MetadataBase):
    source: Literal["quarterly"] = "quarterly"
    lesson_number: int = Field(..., alias="lessonNumber")
    lesson_title: str = Field(..., alias="lessonTitle")
    day_index: int = Field(..., alias="dayIndex")
    quarterly_title: str = Field(..., alias="quarterlyTitle")
    lesson_day_id: Optional[int] = Field(None, alias="lessonDayId")
    lesson_id: Optional[int] = Field(None, alias="lessonId")
    day_title: Optional[str] = Field(None, alias="dayTitle")
    quarterly_id: Optional[int] = Field(None, alias="quarterlyId")
    chunk_index: Optional[int] = Field(None, alias="chunkIndex")
    total_chunks: Optional[int] = Field(None, alias="totalChunks")


class BibleMetadata(_MetadataBase):
    source: Literal["bible"] = "bible"
    book: str
    chapter: int
    verse: int
    reference: str


class UnknownMetadata(_MetadataBase):
    """Any source kind this version does not know how to render."""

    source: Optional[str] = None


SourceMetadata = Union[DevotionalMetadata, QuarterlyMetadata, BibleMetadata, UnknownMetadata]

_METADATA_MODELS: dict[str, type[_MetadataBase]] = {
    "devotional": DevotionalMetadata,
    "quarterly": QuarterlyMetadata,
    "bible": BibleMetadata,
}


def parse_metadata(raw: Union[dict[str, Any], _MetadataBase, None]) -> SourceMetadata:
    """Turn a stored metadata mapping into its typed variant.

    Unknown source kinds, and known kinds missing required fields, become
    ``UnknownMetadata`` so that one bad row never fails a whole query.
    """
    if isinstance(raw, _MetadataBase):
        return raw  # type: ignore[return-value]
    raw = raw or {}

    model = _METADATA_MODELS.get(raw.get("source"))  # type: ignore[arg-type]
    if model is None:
        return UnknownMetadata.model_validate(raw)

    try:
        return model.model_validate(raw)  # type: ignore[return-value]
    except PydanticValidationError as e:
        logger.warning(
            "Malformed %s metadata, treating as unknown source: %s",
            raw.get("source"),
            e.errors(include_url=False),
        )
        return UnknownMetadata.model_validate(raw)


# -------------------------------------------------------------------------
# Chunks and retrieval
# -------------------------------------------------------------------------


class Chunk(BaseModel):
    """A bounded text segment cut from one source document.

    ``start_index``/``end_index`` are offsets of the cut window in the
    original text; ``text`` is that window with surrounding whitespace
    trimmed.
    """

    text: str
    start_index: int = Field(..., ge=0)
    end_index: int = Field(..., ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class RetrievalFilter(BaseModel):
    """Equality filters on stored metadata. Supplied fields are ANDed."""

    model_config = ConfigDict(populate_by_name=True)

    source: Optional[str] = None
    quarterly_id: Optional[int] = Field(None, alias="quarterlyId")
    date: Optional[Date] = None

    def conditions(self) -> list[tuple[str, Union[str, int]]]:
        """Return ``(metadata_key, value)`` pairs for every supplied field."""
        pairs: list[tuple[str, Union[str, int]]] = []
        if self.source is not None:
            pairs.append(("source", self.source))
        if self.quarterly_id is not None:
            pairs.append(("quarterlyId", self.quarterly_id))
        if self.date is not None:
            pairs.append(("date", self.date.isoformat()))
        return pairs


class RetrievalResult(BaseModel):
    """A stored chunk matched by similarity search.

    Lives only for the duration of one query.
    """

    id: int
    text: str
    metadata: SourceMetadata
    similarity: float = Field(..., ge=-1.0, le=1.0, description="1 - cosine distance")
    rerank_score: Optional[float] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _parse_metadata(cls, value: Any) -> SourceMetadata:
        return parse_metadata(value)


class Citation(BaseModel):
    """Numbered reference to one context entry."""

    index: int
    source: str
    metadata: dict[str, Any]


# -------------------------------------------------------------------------
# Conversation
# -------------------------------------------------------------------------


class ChatMessage(BaseModel):
    """One turn of caller-supplied conversation history."""

    role: Literal["user", "assistant", "system"]
    content: str

    def to_provider(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}
