"""Embedding coordinator: single-record generation and batched backfill."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from chatlore.config import settings
from chatlore.embeddings.client import EmbeddingClient
from chatlore.errors import EmbeddingBackendError, ValidationFailure
from chatlore.knowledge.store import KnowledgeStore

if TYPE_CHECKING:
    from chatlore.knowledge.models import KnowledgeRecord

logger = logging.getLogger(__name__)

_DIMENSION_PROBE = "dimension probe"


@dataclass
class BackfillResult:
    """Outcome of one backfill run.

    A failed batch stops the run but earlier batches stay committed, so
    ``processed`` is accurate even when ``error`` is set.
    """

    processed: int = 0
    batches: int = 0
    skipped: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class EmbeddingGenerator:
    """Generates embeddings and writes them onto knowledge records.

    Args:
        store: Knowledge store to read pending records from and write
            vectors to (default: the shared instance).
        client: Embedding backend client (default: built from settings).
    """

    def __init__(
        self,
        store: KnowledgeStore | None = None,
        client: EmbeddingClient | None = None,
    ) -> None:
        self.store = store or KnowledgeStore.get()
        self.client = client or EmbeddingClient()

    def _check_vectors(self, vectors: list[list[float]]) -> None:
        for vector in vectors:
            if len(vector) != self.store.dimensions:
                msg = (
                    f"Embedding backend returned {len(vector)}-dim vectors, "
                    f"store expects {self.store.dimensions}"
                )
                raise EmbeddingBackendError(msg)

    async def generate(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            ValidationFailure: *text* is empty.
            EmbeddingBackendError: the backend failed.
        """
        if not text or not text.strip():
            msg = "Cannot embed empty text"
            raise ValidationFailure(msg)
        vectors = await self.client.embed(text)
        self._check_vectors(vectors)
        return vectors[0]

    async def generate_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one backend request, one vector per text."""
        if not texts:
            return []
        vectors = await self.client.embed(texts)
        self._check_vectors(vectors)
        return vectors

    async def embed_record(self, record: KnowledgeRecord) -> bool:
        """Embed *record* and store the vector.

        Returns False when the record already had an embedding (in memory or
        in the store); an existing vector is never replaced.
        """
        if record.embedding is not None:
            return False
        vector = await self.generate(record.text)
        stored = await self.store.set_embedding(record.id, vector)
        if stored:
            record.embedding = vector
        else:
            logger.debug("Record %s already embedded, keeping existing vector", record.id)
        return stored

    async def backfill(self, batch_size: int | None = None) -> BackfillResult:
        """Embed every record that still lacks a vector.

        Batches run strictly one after another.  The scan is keyset-paginated
        on insertion order, so a record embedded concurrently (or rejected by
        ``set_embedding``) is never revisited within the run.  The first
        backend failure stops the run and is reported in ``error``.
        """
        batch_size = batch_size or settings.embedding_batch_size
        if batch_size <= 0:
            msg = f"batch_size must be positive, got {batch_size}"
            raise ValueError(msg)

        result = BackfillResult()
        after = 0
        while True:
            page = await self.store.pending_embeddings(limit=batch_size, after=after)
            if not page:
                break

            records = [record for _, record in page]
            try:
                vectors = await self.generate_batch([r.text for r in records])
            except EmbeddingBackendError as exc:
                logger.warning(
                    "Backfill stopped after %d batches (%d embedded): %s",
                    result.batches,
                    result.processed,
                    exc,
                )
                result.error = str(exc)
                break

            for record, vector in zip(records, vectors, strict=True):
                if await self.store.set_embedding(record.id, vector):
                    result.processed += 1
                else:
                    result.skipped += 1
            result.batches += 1
            after = page[-1][0]
            logger.debug("Backfill batch %d: %d records", result.batches, len(records))

        logger.info(
            "Backfill finished: %d embedded in %d batches", result.processed, result.batches
        )
        return result

    async def embedding_dimension(self) -> int:
        """Probe the backend and return the length of the vectors it produces."""
        vectors = await self.client.embed(_DIMENSION_PROBE)
        return len(vectors[0])
