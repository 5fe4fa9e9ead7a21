"""Shared test fixtures."""

from pathlib import Path

import pytest

from chatlore.embeddings.generator import EmbeddingGenerator
from chatlore.errors import EmbeddingBackendError
from chatlore.knowledge.store import KnowledgeStore
from chatlore.messages.store import MessageStore

DIMENSIONS = 3


class FakeEmbeddingClient:
    """Deterministic stand-in for EmbeddingClient.

    Texts found in *vectors* get that vector; anything else gets *default*.
    Set ``fail_on_call`` to make the n-th call (1-based) raise.
    """

    def __init__(self, vectors: dict | None = None, default=(1.0, 0.0, 0.0)) -> None:
        self.vectors = dict(vectors or {})
        self.default = list(default)
        self.calls: list[list[str]] = []
        self.fail_on_call: int | None = None

    async def embed(self, texts, model=None):
        inputs = [texts] if isinstance(texts, str) else list(texts)
        self.calls.append(inputs)
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise EmbeddingBackendError("embedding backend down")
        return [list(self.vectors.get(t, self.default)) for t in inputs]


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("chatlore.config.settings.turso_database_url", "")


@pytest.fixture
def knowledge_store(tmp_path: Path, _no_turso) -> KnowledgeStore:
    """KnowledgeStore backed by a temp database, with 3-dim vectors."""
    return KnowledgeStore(db_path=tmp_path / "test.db", dimensions=DIMENSIONS)


@pytest.fixture
def message_store(tmp_path: Path, _no_turso) -> MessageStore:
    """MessageStore backed by the same temp database."""
    return MessageStore(db_path=tmp_path / "test.db")


@pytest.fixture
def embedder() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


@pytest.fixture
def generator(knowledge_store: KnowledgeStore, embedder: FakeEmbeddingClient) -> EmbeddingGenerator:
    return EmbeddingGenerator(store=knowledge_store, client=embedder)
