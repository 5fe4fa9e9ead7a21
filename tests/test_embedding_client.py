"""Tests for the OpenAI-compatible embedding client."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from chatlore.embeddings.client import EmbeddingClient
from chatlore.errors import EmbeddingBackendError


def _openai_mock(vectors: list[list[float]]) -> MagicMock:
    client = MagicMock()
    client.embeddings.create = AsyncMock(
        return_value=SimpleNamespace(data=[SimpleNamespace(embedding=v) for v in vectors])
    )
    return client


async def test_single_text_wrapped_in_list() -> None:
    mock = _openai_mock([[0.1, 0.2]])
    client = EmbeddingClient(model="test-model", client=mock)

    assert await client.embed("hello") == [[0.1, 0.2]]
    mock.embeddings.create.assert_awaited_once_with(model="test-model", input=["hello"])


async def test_batch_keeps_order() -> None:
    mock = _openai_mock([[1.0], [2.0], [3.0]])
    client = EmbeddingClient(client=mock)
    assert await client.embed(["a", "b", "c"]) == [[1.0], [2.0], [3.0]]


async def test_model_override() -> None:
    mock = _openai_mock([[1.0]])
    client = EmbeddingClient(model="default", client=mock)
    await client.embed("x", model="other")
    assert mock.embeddings.create.await_args.kwargs["model"] == "other"


async def test_empty_list_skips_request() -> None:
    mock = _openai_mock([])
    assert await EmbeddingClient(client=mock).embed([]) == []
    mock.embeddings.create.assert_not_awaited()


async def test_count_mismatch_raises() -> None:
    mock = _openai_mock([[1.0]])
    with pytest.raises(EmbeddingBackendError, match="1 vectors for 2 inputs"):
        await EmbeddingClient(client=mock).embed(["a", "b"])


async def test_backend_error_wrapped() -> None:
    mock = MagicMock()
    mock.embeddings.create = AsyncMock(
        side_effect=openai.APIConnectionError(
            request=httpx.Request("POST", "http://localhost:11434/v1/embeddings")
        )
    )
    with pytest.raises(EmbeddingBackendError):
        await EmbeddingClient(client=mock).embed("x")


def test_lazy_client_uses_settings(monkeypatch) -> None:
    monkeypatch.setattr("chatlore.config.settings.openai_api_key", "")
    monkeypatch.setattr("chatlore.config.settings.embedding_base_url", "http://localhost:11434/v1")
    monkeypatch.setattr("chatlore.config.settings.embedding_timeout_seconds", 12.0)

    with patch("openai.AsyncOpenAI") as cls:
        EmbeddingClient()._get_client()

    cls.assert_called_once_with(
        api_key="local",
        base_url="http://localhost:11434/v1",
        timeout=12.0,
        max_retries=0,
    )
