"""Answer generation from retrieved context.

Builds the prompt for a study mode and asks the generation provider for
either a single completion (``AnswerGenerator.generate``) or a live token
stream (``AnswerGenerator.stream``).

A stream is an ``AnswerStream``: a one-shot state machine

    idle -> connecting -> streaming -> done | errored

that emits ``sources`` first, then one ``chunk`` per provider fragment in
arrival order, then exactly one terminal ``done`` or ``error`` event.
It can be consumed by iteration or by passing a callback to ``run``.
"""

import enum
import logging
import re
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from pydantic import BaseModel

from study_rag.core.config import RAGConfig
from study_rag.core.exceptions import ProviderError, ValidationError
from study_rag.rag.context import format_context
from study_rag.rag.models import ChatMessage, Citation, RetrievalResult
from study_rag.rag.providers import GenerationProvider

logger = logging.getLogger(__name__)

_CITATION_PATTERN = re.compile(r"\[(\d+)\]")


def extract_citation_indices(answer: str) -> list[int]:
    """Return the distinct ``[n]`` references in ``answer``, sorted."""
    return sorted({int(match) for match in _CITATION_PATTERN.findall(answer)})


class AnswerResult(BaseModel):
    """Complete (non-streamed) answer."""

    answer: str
    sources: list[Citation]
    cited_indices: list[int]


# -------------------------------------------------------------------------
# Streaming
# -------------------------------------------------------------------------


class StreamState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    DONE = "done"
    ERRORED = "errored"


class StreamEventType(str, enum.Enum):
    SOURCES = "sources"
    CHUNK = "chunk"
    DONE = "done"
    ERROR = "error"


class StreamEvent(BaseModel):
    """One event of an answer stream."""

    event: StreamEventType
    data: Any = None

    @classmethod
    def sources(cls, citations: list[Citation]) -> "StreamEvent":
        return cls(event=StreamEventType.SOURCES, data=[c.model_dump() for c in citations])

    @classmethod
    def chunk(cls, text: str) -> "StreamEvent":
        return cls(event=StreamEventType.CHUNK, data={"text": text})

    @classmethod
    def done(cls) -> "StreamEvent":
        return cls(event=StreamEventType.DONE, data={})

    @classmethod
    def error(cls, message: str) -> "StreamEvent":
        return cls(event=StreamEventType.ERROR, data={"error": message})


class AnswerStream:
    """Single-use streamed answer.

    Closing the iterator early (client disconnect) closes the provider
    stream. Nothing needs cleaning up beyond that because nothing is
    persisted. Without a provider the stream replays ``canned_answer`` as
    a single chunk.
    """

    def __init__(
        self,
        provider: Optional[GenerationProvider],
        messages: list[dict[str, str]],
        sources: list[Citation],
        canned_answer: Optional[str] = None,
    ) -> None:
        self._provider = provider
        self._messages = messages
        self._canned_answer = canned_answer
        self.sources = sources
        self.state = StreamState.IDLE
        self.answer = ""
        self.error: Optional[str] = None

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self.events()

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Drive the stream, yielding events in protocol order."""
        if self.state is not StreamState.IDLE:
            raise RuntimeError("AnswerStream can only be consumed once")

        # Leave IDLE before the first yield so a second iterator is refused
        self.state = StreamState.CONNECTING
        yield StreamEvent.sources(self.sources)

        if self._provider is None:
            self.state = StreamState.STREAMING
            self.answer = self._canned_answer or ""
            yield StreamEvent.chunk(self.answer)
            self.state = StreamState.DONE
            yield StreamEvent.done()
            return

        fragments = self._provider.stream_complete(self._messages)
        parts: list[str] = []
        try:
            async for fragment in fragments:
                self.state = StreamState.STREAMING
                parts.append(fragment)
                yield StreamEvent.chunk(fragment)
        except ProviderError as e:
            self.state = StreamState.ERRORED
            self.error = str(e)
            self.answer = "".join(parts)
            logger.warning(
                "Answer stream failed after %d fragments: %s", len(parts), e
            )
            yield StreamEvent.error(self.error)
            return
        except Exception:
            self.state = StreamState.ERRORED
            raise
        finally:
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()

        self.answer = "".join(parts)
        self.state = StreamState.DONE
        yield StreamEvent.done()

    async def run(self, on_event: Callable[[StreamEvent], Awaitable[None]]) -> StreamState:
        """Push every event to ``on_event`` and return the final state."""
        async for event in self.events():
            await on_event(event)
        return self.state

    @property
    def cited_indices(self) -> list[int]:
        return extract_citation_indices(self.answer)


# -------------------------------------------------------------------------
# Generator
# -------------------------------------------------------------------------


class AnswerGenerator:
    """Produces answers constrained to retrieved context."""

    def __init__(self, provider: GenerationProvider, config: Optional[RAGConfig] = None) -> None:
        self._provider = provider
        self._config = config or RAGConfig()

    def build_messages(
        self,
        query: str,
        context: str,
        mode: str = "general",
        conversation_history: Optional[list[ChatMessage]] = None,
    ) -> list[dict[str, str]]:
        """Build the system + history + user message sequence for a mode.

        Raises:
            ValidationError: If ``mode`` has no prompt.
        """
        try:
            mode_prompt = self._config.mode_prompts[mode]
        except KeyError:
            raise ValidationError(f"Unknown mode: {mode}") from None

        system_content = (
            f"{mode_prompt}\n\nContext:\n{context}\n\n{self._config.citation_instruction}"
        )
        messages = [{"role": "system", "content": system_content}]
        messages.extend(message.to_provider() for message in conversation_history or [])
        messages.append({"role": "user", "content": query})
        return messages

    async def generate(
        self,
        query: str,
        results: list[RetrievalResult],
        mode: str = "general",
        conversation_history: Optional[list[ChatMessage]] = None,
    ) -> AnswerResult:
        """Generate a complete answer with one provider call.

        Sources are the formatter's citations for ``results``, not the
        subset the model happened to reference.
        """
        context, citations = format_context(results)
        messages = self.build_messages(query, context, mode, conversation_history)

        answer = await self._provider.complete(messages)
        return AnswerResult(
            answer=answer,
            sources=citations,
            cited_indices=extract_citation_indices(answer),
        )

    def stream(
        self,
        query: str,
        results: list[RetrievalResult],
        mode: str = "general",
        conversation_history: Optional[list[ChatMessage]] = None,
    ) -> AnswerStream:
        """Prepare a streamed answer. Nothing is sent until it is consumed."""
        context, citations = format_context(results)
        messages = self.build_messages(query, context, mode, conversation_history)
        return AnswerStream(self._provider, messages, citations)
