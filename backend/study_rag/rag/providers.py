"""Embedding and text-generation provider clients.

The pipeline only talks to providers through the two protocols below, so
any client (or a test fake) with the same shape can be plugged in.
"""

import logging
import time
from typing import AsyncIterator, Optional, Protocol

import openai
from openai import AsyncOpenAI

from study_rag.core.config import EmbeddingConfig, GenerationConfig
from study_rag.core.exceptions import ConfigurationError, ProviderError
from study_rag.observability import get_metrics_backend

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Anything that can turn a batch of strings into vectors."""

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input string, in input order."""
        ...


class GenerationProvider(Protocol):
    """Anything that can complete a chat message sequence."""

    async def complete(self, messages: list[dict[str, str]]) -> str:
        """Return the full completion text."""
        ...

    def stream_complete(self, messages: list[dict[str, str]]) -> AsyncIterator[str]:
        """Yield completion text fragments in arrival order."""
        ...


class OpenAIProvider:
    """OpenAI-backed embedding and generation client.

    The underlying ``AsyncOpenAI`` client is created on first use, so a
    missing API key surfaces as ``ConfigurationError`` before any network
    call is attempted. Retries are left to the caller.
    """

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        embedding: Optional[EmbeddingConfig] = None,
        generation: Optional[GenerationConfig] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._embedding = embedding or EmbeddingConfig()
        self._generation = generation or GenerationConfig()
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if not self._api_key:
            raise ConfigurationError("OPENAI_API_KEY not configured")
        if self._client is None:
            # Retries belong to the caller, not to this client
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                max_retries=0,
            )
        return self._client

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed one batch of texts."""
        client = self._get_client()
        metrics = get_metrics_backend()

        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await client.embeddings.create(
                model=self._embedding.model,
                input=texts,
                dimensions=self._embedding.dimensions,
            )
            status_code = 200
        except openai.APIStatusError as e:
            status_code = e.status_code
            raise ProviderError(
                f"OpenAI API error: {e.message}",
                provider=self.name,
                operation="embeddings",
                status_code=e.status_code,
            ) from e
        except openai.APIError as e:
            raise ProviderError(
                f"OpenAI API error: {e}",
                provider=self.name,
                operation="embeddings",
            ) from e
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            metrics.observe_external_api(self.name, "embeddings", status_code, duration_ms)
            logger.info(
                "OpenAI API embeddings status=%s batch=%d duration_ms=%.2f",
                status_code,
                len(texts),
                duration_ms,
            )

        # The API may return items out of order; index is authoritative
        items = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in items]

    async def complete(self, messages: list[dict[str, str]]) -> str:
        """Return a single chat completion."""
        client = self._get_client()
        metrics = get_metrics_backend()

        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await client.chat.completions.create(
                model=self._generation.model,
                messages=messages,  # type: ignore[arg-type]
                temperature=self._generation.temperature,
                max_tokens=self._generation.max_tokens,
            )
            status_code = 200
        except openai.APIStatusError as e:
            status_code = e.status_code
            raise ProviderError(
                f"OpenAI API error: {e.message}",
                provider=self.name,
                operation="chat.completions",
                status_code=e.status_code,
            ) from e
        except openai.APIError as e:
            raise ProviderError(
                f"OpenAI API error: {e}",
                provider=self.name,
                operation="chat.completions",
            ) from e
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            metrics.observe_external_api(self.name, "chat.completions", status_code, duration_ms)
            logger.info(
                "OpenAI API chat.completions status=%s duration_ms=%.2f",
                status_code,
                duration_ms,
            )

        if not response.choices or response.choices[0].message.content is None:
            raise ProviderError(
                "OpenAI API returned no completion content",
                provider=self.name,
                operation="chat.completions",
            )
        return response.choices[0].message.content

    async def stream_complete(self, messages: list[dict[str, str]]) -> AsyncIterator[str]:
        """Stream a chat completion as text fragments.

        The HTTP stream is closed when the caller stops iterating, whether
        it finished, failed or was cancelled.
        """
        client = self._get_client()
        metrics = get_metrics_backend()

        start_time = time.perf_counter()
        status_code = 500
        stream = None
        try:
            stream = await client.chat.completions.create(
                model=self._generation.model,
                messages=messages,  # type: ignore[arg-type]
                temperature=self._generation.temperature,
                max_tokens=self._generation.max_tokens,
                stream=True,
            )
            async for event in stream:
                if not event.choices:
                    continue
                content = event.choices[0].delta.content
                if content:
                    yield content
            status_code = 200
        except GeneratorExit:
            # Consumer went away mid-stream
            status_code = 499
            raise
        except openai.APIStatusError as e:
            status_code = e.status_code
            raise ProviderError(
                f"OpenAI API error: {e.message}",
                provider=self.name,
                operation="chat.completions.stream",
                status_code=e.status_code,
            ) from e
        except openai.APIError as e:
            raise ProviderError(
                f"OpenAI API error: {e}",
                provider=self.name,
                operation="chat.completions.stream",
            ) from e
        finally:
            if stream is not None:
                await stream.close()
            duration_ms = (time.perf_counter() - start_time) * 1000
            metrics.observe_external_api(
                self.name, "chat.completions.stream", status_code, duration_ms
            )
            logger.info(
                "OpenAI API chat.completions stream status=%s duration_ms=%.2f",
                status_code,
                duration_ms,
            )


def get_provider(
    api_key: Optional[str],
    embedding: EmbeddingConfig,
    generation: GenerationConfig,
    base_url: Optional[str] = None,
) -> OpenAIProvider:
    """Build the configured provider client.

    Raises:
        ConfigurationError: If a provider other than OpenAI is configured.
    """
    for kind, provider in (("embedding", embedding.provider), ("llm", generation.provider)):
        if provider != OpenAIProvider.name:
            raise ConfigurationError(f"Unsupported {kind} provider: {provider}")
    return OpenAIProvider(
        api_key=api_key,
        embedding=embedding,
        generation=generation,
        base_url=base_url,
    )
