"""Tests for the detached embedding queue."""

import asyncio
from unittest.mock import AsyncMock

from chatlore.embeddings.queue import EmbeddingQueue
from chatlore.knowledge.models import KnowledgeRecord, SourceType


def _record(n: int) -> KnowledgeRecord:
    return KnowledgeRecord(
        source_type=SourceType.NOTES, source_id=f"n:{n}", raw_content=f"note {n}"
    )


async def test_workers_embed_submitted_records() -> None:
    generator = AsyncMock()
    queue = EmbeddingQueue(generator, maxsize=10, workers=2)
    queue.start()

    records = [_record(i) for i in range(4)]
    for r in records:
        assert queue.submit(r) is True
    await queue.drain()
    await queue.stop()

    embedded = {call.args[0].id for call in generator.embed_record.await_args_list}
    assert embedded == {r.id for r in records}
    assert queue.stats()["completed"] == 4


async def test_full_queue_drops_and_counts() -> None:
    generator = AsyncMock()
    queue = EmbeddingQueue(generator, maxsize=2, workers=1)

    assert queue.submit(_record(1)) is True
    assert queue.submit(_record(2)) is True
    assert queue.submit(_record(3)) is False

    stats = queue.stats()
    assert stats["dropped"] == 1
    assert stats["submitted"] == 2
    assert stats["pending"] == 2


async def test_failure_is_logged_not_retried(caplog) -> None:
    generator = AsyncMock()
    generator.embed_record.side_effect = RuntimeError("backend exploded")
    queue = EmbeddingQueue(generator, maxsize=5, workers=1)
    queue.start()

    queue.submit(_record(1))
    await queue.drain()
    await queue.stop()

    assert generator.embed_record.await_count == 1
    assert queue.stats()["failed"] == 1
    assert "backend exploded" in caplog.text


async def test_drain_starts_idle_queue() -> None:
    generator = AsyncMock()
    queue = EmbeddingQueue(generator, maxsize=5, workers=1)
    queue.submit(_record(1))

    await asyncio.wait_for(queue.drain(), timeout=1)
    await queue.stop()
    assert generator.embed_record.await_count == 1


async def test_start_twice_keeps_workers() -> None:
    queue = EmbeddingQueue(AsyncMock(), maxsize=5, workers=2)
    queue.start()
    workers = list(queue._workers)
    queue.start()
    assert queue._workers == workers
    await queue.stop()
    assert queue.running is False
