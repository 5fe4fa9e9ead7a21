"""Embedding backend client: any OpenAI-compatible ``/v1/embeddings`` endpoint.

Leave ``EMBEDDING_BASE_URL`` empty to use OpenAI, or point it at a local
server (e.g. ``http://localhost:11434/v1`` for Ollama).  Requests carry an
explicit timeout and are never retried automatically; callers decide what a
failure means.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import openai

from chatlore.config import settings
from chatlore.errors import EmbeddingBackendError

if TYPE_CHECKING:
    from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

# Local OpenAI-compatible servers ignore the key but the SDK requires one.
_LOCAL_API_KEY = "local"


class EmbeddingClient:
    """Turns text into vectors through the configured backend.

    Args:
        model: Embedding model name (default from settings).
        client: Pre-built ``AsyncOpenAI`` instance (for testing).
    """

    def __init__(self, model: str | None = None, client: AsyncOpenAI | None = None) -> None:
        self.model = model or settings.embedding_model
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        """Return a lazily-initialised AsyncOpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            api_key = settings.openai_api_key or (
                _LOCAL_API_KEY if settings.embedding_base_url else None
            )
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=settings.embedding_base_url or None,
                timeout=settings.embedding_timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def embed(self, texts: str | list[str], model: str | None = None) -> list[list[float]]:
        """Embed one text or a list of texts.

        Returns one vector per input, in the order the backend returned them.
        Pairing vectors back to inputs relies on that order.

        Raises:
            EmbeddingBackendError: the backend is unreachable, timed out,
                rejected the request, or returned the wrong number of vectors.
        """
        inputs = [texts] if isinstance(texts, str) else list(texts)
        if not inputs:
            return []

        model = model or self.model
        try:
            response = await self._get_client().embeddings.create(model=model, input=inputs)
        except openai.OpenAIError as exc:
            logger.warning("Embedding request failed (%d inputs): %s", len(inputs), exc)
            msg = f"Embedding backend error: {exc}"
            raise EmbeddingBackendError(msg) from exc

        vectors = [list(item.embedding) for item in response.data]
        if len(vectors) != len(inputs):
            msg = f"Embedding backend returned {len(vectors)} vectors for {len(inputs)} inputs"
            raise EmbeddingBackendError(msg)
        return vectors
