"""Import coordinator: runs the registered importers and reports store status."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from chatlore.errors import BackendUnavailable
from chatlore.importers.base import ImportStats
from chatlore.importers.live import LiveImporter
from chatlore.importers.sessions import SessionImporter
from chatlore.knowledge.models import SourceType
from chatlore.knowledge.store import KnowledgeStore
from chatlore.messages.store import MessageStore

if TYPE_CHECKING:
    from datetime import datetime

    from chatlore.embeddings.queue import EmbeddingQueue

logger = logging.getLogger(__name__)

# Source type → display name, in run order.
IMPORTERS: dict[SourceType, str] = {
    SourceType.CLAUDE_CODE: "Session logs",
    SourceType.WHATSAPP: "Chat bridge messages",
}


class ImportCoordinator:
    """Runs every registered importer, or one by source type.

    Each importer relies on the stores' unique keys for deduplication, so
    running the coordinator repeatedly is safe.
    """

    def __init__(
        self,
        message_store: MessageStore | None = None,
        knowledge_store: KnowledgeStore | None = None,
        embedding_queue: EmbeddingQueue | None = None,
        live: LiveImporter | None = None,
        sessions: SessionImporter | None = None,
    ) -> None:
        self.message_store = message_store or MessageStore.get()
        self.knowledge_store = knowledge_store or KnowledgeStore.get()
        stores = {
            "message_store": self.message_store,
            "knowledge_store": self.knowledge_store,
            "embedding_queue": embedding_queue,
        }
        self.live = live or LiveImporter(**stores)
        self.sessions = sessions or SessionImporter(**stores)

    @staticmethod
    def source_types() -> list[SourceType]:
        return list(IMPORTERS)

    async def run_all(
        self,
        with_embeddings: bool = False,
        user_only: bool | None = None,
        since: datetime | None = None,
    ) -> dict[SourceType, ImportStats]:
        """Run every importer. A source whose backend is down is reported, not raised."""
        results: dict[SourceType, ImportStats] = {}
        for source_type in IMPORTERS:
            results[source_type] = await self.run(
                source_type, with_embeddings=with_embeddings, user_only=user_only, since=since
            )
        return results

    async def run(
        self,
        source_type: SourceType | str,
        with_embeddings: bool = False,
        user_only: bool | None = None,
        since: datetime | None = None,
    ) -> ImportStats:
        """Run the importer for one source type.

        Raises:
            ValueError: no importer is registered for *source_type*.
        """
        source_type = SourceType(source_type)
        if source_type not in IMPORTERS:
            msg = f"No importer registered for source type {source_type.value!r}"
            raise ValueError(msg)

        logger.info("Importing %s...", IMPORTERS[source_type])
        try:
            if source_type is SourceType.CLAUDE_CODE:
                stats = await self.sessions.import_all(
                    since=since, with_embeddings=with_embeddings, user_only=user_only
                )
            else:
                stats = await self.live.import_all(
                    with_embeddings=with_embeddings, user_only=user_only
                )
        except BackendUnavailable as exc:
            logger.warning("%s import failed: %s", IMPORTERS[source_type], exc)
            return ImportStats(failed_reason=str(exc))

        logger.info(
            "%s: %d messages (%d new), %d knowledge records, %d errors",
            IMPORTERS[source_type],
            stats.processed,
            stats.inserted,
            stats.records,
            stats.errors,
        )
        return stats

    async def status(self) -> dict[str, Any]:
        """Row counts across both stores."""
        return {
            "chat_messages": await self.message_store.count_chat_messages(),
            "session_messages": await self.message_store.count_session_messages(),
            "sessions": await self.message_store.count_sessions(),
            "knowledge_records": await self.knowledge_store.count(),
            "by_source_type": await self.knowledge_store.count_by_source_type(),
            "pending_embeddings": await self.knowledge_store.count_pending_embeddings(),
        }
