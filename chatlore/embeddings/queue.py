"""Bounded queue for detached (fire-and-forget) embedding work.

Importers submit freshly created records and carry on; a small pool of
worker tasks embeds them in the background.  Delivery is at-most-once and
best-effort: a full queue drops the submission (counted), a failed embed is
logged and not retried, and anything still queued when the process exits is
lost.  ``backfill`` picks up whatever was dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from chatlore.config import settings

if TYPE_CHECKING:
    from chatlore.embeddings.generator import EmbeddingGenerator
    from chatlore.knowledge.models import KnowledgeRecord

logger = logging.getLogger(__name__)


class EmbeddingQueue:
    """Bounded ``asyncio.Queue`` drained by N worker tasks.

    Args:
        generator: Performs the actual embedding.
        maxsize: Queue capacity (default ``EMBEDDING_QUEUE_SIZE``).
        workers: Worker task count (default ``EMBEDDING_WORKERS``).
    """

    def __init__(
        self,
        generator: EmbeddingGenerator,
        maxsize: int | None = None,
        workers: int | None = None,
    ) -> None:
        self.generator = generator
        self.maxsize = maxsize or settings.embedding_queue_size
        self.worker_count = workers or settings.embedding_workers
        self._queue: asyncio.Queue[KnowledgeRecord] = asyncio.Queue(maxsize=self.maxsize)
        self._workers: list[asyncio.Task] = []
        self.submitted = 0
        self.dropped = 0
        self.completed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Spawn the worker tasks. Calling it again while running is a no-op."""
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"embedding-worker-{n}")
            for n in range(self.worker_count)
        ]
        logger.info(
            "Embedding queue started (workers=%d, capacity=%d)", self.worker_count, self.maxsize
        )

    def submit(self, record: KnowledgeRecord) -> bool:
        """Enqueue *record* without waiting. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Embedding queue full, dropped record %s", record.id)
            return False
        self.submitted += 1
        return True

    async def drain(self) -> None:
        """Wait until every queued record has been attempted."""
        if not self.running and self.pending:
            self.start()
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the workers. Records still queued are discarded."""
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers = []

    def stats(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "submitted": self.submitted,
            "dropped": self.dropped,
            "completed": self.completed,
            "failed": self.failed,
        }

    async def _worker(self, n: int) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self.generator.embed_record(record)
                self.completed += 1
            except Exception:
                self.failed += 1
                logger.exception("Embedding worker %d failed for record %s", n, record.id)
            finally:
                self._queue.task_done()
