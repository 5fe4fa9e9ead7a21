"""Embedding coordinator and retrieval: generation, backfill, detached queue, search."""

from chatlore.embeddings.client import EmbeddingClient
from chatlore.embeddings.generator import BackfillResult, EmbeddingGenerator
from chatlore.embeddings.queue import EmbeddingQueue
from chatlore.embeddings.retriever import Retriever, SearchResult

__all__ = [
    "BackfillResult",
    "EmbeddingClient",
    "EmbeddingGenerator",
    "EmbeddingQueue",
    "Retriever",
    "SearchResult",
]
