"""Similarity search and context assembly over embedded knowledge records.

Every search follows the same contract: take the ``limit`` nearest records by
cosine distance first, then drop those whose similarity (``1 - distance``)
falls below ``threshold``.  A low threshold therefore never returns more than
``limit`` results, and a high one may return fewer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from chatlore.config import settings
from chatlore.embeddings.generator import EmbeddingGenerator
from chatlore.errors import MissingEmbeddingError
from chatlore.knowledge.store import KnowledgeStore
from chatlore.knowledge.vectors import similarity

if TYPE_CHECKING:
    from collections.abc import Sequence

    from chatlore.knowledge.models import KnowledgeRecord, SourceType

logger = logging.getLogger(__name__)

DEFAULT_SEPARATOR = "\n\n---\n\n"
DEFAULT_CONTEXT_LIMIT = 10
CHARS_PER_TOKEN = 4


@dataclass
class SearchResult:
    record: KnowledgeRecord
    similarity: float

    @property
    def distance(self) -> float:
        return 1.0 - self.similarity


class Retriever:
    """Query side of the knowledge base.

    Args:
        store: Knowledge store to search (default: the shared instance).
        generator: Used to embed query text (default: built on *store*).
    """

    def __init__(
        self,
        store: KnowledgeStore | None = None,
        generator: EmbeddingGenerator | None = None,
    ) -> None:
        self.store = store or KnowledgeStore.get()
        self.generator = generator or EmbeddingGenerator(store=self.store)

    async def search(
        self,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
        source_types: Sequence[SourceType] | None = None,
    ) -> list[SearchResult]:
        """Embed *query* and return the closest records above *threshold*."""
        embedding = await self.generator.generate(query)
        return await self.search_by_embedding(
            embedding, limit=limit, threshold=threshold, source_types=source_types
        )

    async def search_by_embedding(
        self,
        embedding: Sequence[float],
        limit: int | None = None,
        threshold: float | None = None,
        source_types: Sequence[SourceType] | None = None,
    ) -> list[SearchResult]:
        """Same as :meth:`search` for a precomputed vector."""
        limit = settings.retrieval_limit if limit is None else limit
        threshold = settings.retrieval_threshold if threshold is None else threshold

        nearest = await self.store.nearest(embedding, limit=limit, source_types=source_types)
        results = [
            SearchResult(record=record, similarity=similarity(distance))
            for record, distance in nearest
        ]
        kept = [r for r in results if r.similarity >= threshold]
        logger.debug(
            "Search: %d candidates, %d above threshold %.2f", len(results), len(kept), threshold
        )
        return kept

    async def find_similar(
        self,
        record: KnowledgeRecord,
        limit: int | None = None,
        threshold: float | None = None,
        source_types: Sequence[SourceType] | None = None,
    ) -> list[SearchResult]:
        """Records most similar to *record*, excluding *record* itself.

        Raises:
            MissingEmbeddingError: *record* has not been embedded yet.
        """
        if record.embedding is None:
            msg = f"Record {record.id} has no embedding"
            raise MissingEmbeddingError(msg)

        limit = settings.retrieval_limit if limit is None else limit
        # One extra slot so the record itself can be dropped.
        results = await self.search_by_embedding(
            record.embedding, limit=limit + 1, threshold=threshold, source_types=source_types
        )
        return [r for r in results if r.record.id != record.id][:limit]

    async def get_context(
        self,
        query: str,
        max_tokens: int | None = None,
        separator: str = DEFAULT_SEPARATOR,
        limit: int = DEFAULT_CONTEXT_LIMIT,
        threshold: float | None = None,
        source_types: Sequence[SourceType] | None = None,
    ) -> str:
        """Concatenate the best-matching record texts under a size budget.

        The budget is ``max_tokens * 4`` characters.  Results are taken in
        ranked order and assembly stops at the first one that would overflow
        the budget, even if a later, shorter one would still fit.
        """
        max_tokens = settings.context_max_tokens if max_tokens is None else max_tokens
        max_chars = max_tokens * CHARS_PER_TOKEN

        results = await self.search(
            query, limit=limit, threshold=threshold, source_types=source_types
        )

        parts: list[str] = []
        used = 0
        for result in results:
            text = result.record.text
            if used + len(text) > max_chars:
                break
            parts.append(text)
            used += len(text) + len(separator)
        return separator.join(parts)
