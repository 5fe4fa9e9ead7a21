"""Live importer: drains the chat bridge buffer into the stores."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from chatlore.bridge.client import BridgeClient
from chatlore.errors import BridgeUnavailableError, ValidationFailure
from chatlore.importers.base import BaseImporter, ImportStats, should_create_record
from chatlore.knowledge.models import KnowledgeRecord, SourceType
from chatlore.messages.store import UNNAMED_CHAT_SCAN_LIMIT, MessageStore
from chatlore.parsers.bridge import normalize_bridge_message

if TYPE_CHECKING:
    from chatlore.embeddings.queue import EmbeddingQueue
    from chatlore.knowledge.store import KnowledgeStore
    from chatlore.messages.models import CanonicalMessage

logger = logging.getLogger(__name__)


def chat_record(message: CanonicalMessage) -> KnowledgeRecord:
    """Knowledge record for a live chat message."""
    return KnowledgeRecord(
        source_type=SourceType.WHATSAPP,
        source_id=f"whatsapp:{message.message_id}",
        raw_content=message.content,
        processed_content=message.content,
        source_timestamp=message.timestamp,
        metadata={
            "message_id": message.message_id,
            "chat_jid": message.chat_jid,
            "sender_jid": message.sender_jid,
            "sender_name": message.sender_name,
            "is_from_me": message.is_from_me,
            "is_group": message.is_group,
            "message_type": message.message_type.value,
        },
    )


class LiveImporter(BaseImporter):
    """Imports messages buffered by the chat bridge."""

    def __init__(
        self,
        bridge: BridgeClient | None = None,
        message_store: MessageStore | None = None,
        knowledge_store: KnowledgeStore | None = None,
        embedding_queue: EmbeddingQueue | None = None,
    ) -> None:
        super().__init__(message_store, knowledge_store, embedding_queue)
        self.bridge = bridge or BridgeClient()

    async def import_all(
        self,
        with_embeddings: bool = False,
        user_only: bool | None = None,
        quiet: bool = False,
    ) -> ImportStats:
        """Drain the bridge buffer, then fill in missing group chat names.

        Raises:
            BridgeUnavailableError: the buffer could not be fetched.
        """
        messages = await self.bridge.get_buffered_messages()
        if messages and not quiet:
            logger.info("Fetched %d messages from chat bridge", len(messages))

        stats = await self._import_messages(
            messages, with_embeddings=with_embeddings, user_only=self._user_only(user_only)
        )
        stats.sessions = 1
        stats.chat_names_updated = await self.sync_chat_names(quiet=quiet)
        return stats

    async def import_chat(
        self,
        chat_jid: str,
        limit: int = 50,
        with_embeddings: bool = False,
        user_only: bool | None = None,
    ) -> ImportStats:
        """Import the most recent *limit* messages of one chat."""
        messages = await self.bridge.get_messages(chat_jid, limit=limit)
        return await self._import_messages(
            messages, with_embeddings=with_embeddings, user_only=self._user_only(user_only)
        )

    async def sync_chat_names(
        self, quiet: bool = False, page_size: int = UNNAMED_CHAT_SCAN_LIMIT
    ) -> int:
        """Look up names for group chats stored without one.

        Walks every nameless chat id in pages of *page_size*, so ids that never
        resolve cannot crowd out the rest.  Each distinct id is looked up once
        per call and only rows whose name is still missing are updated.
        Returns the number of rows updated.
        """
        updated = 0
        looked_up = 0
        after = ""
        while True:
            jids = await self.message_store.unnamed_group_chats(limit=page_size, after=after)
            if not jids:
                break
            after = jids[-1]
            looked_up += len(jids)

            try:
                results = await self.bridge.fetch_names_for_jids(jids)
            except BridgeUnavailableError as exc:
                logger.warning("Could not fetch chat names: %s", exc)
                break

            for result in results:
                if result.resolved:
                    updated += await self.message_store.set_chat_name(result.jid, result.name)

        if looked_up and not quiet:
            logger.info("Looked up %d group chats without names", looked_up)
        if updated and not quiet:
            logger.info("Updated %d messages with chat names", updated)
        return updated

    async def backfill_chat_names(self) -> dict[str, int]:
        """Fill in missing chat names from the bridge's full chat list.

        Raises:
            BridgeUnavailableError: the chat list could not be fetched.
        """
        chats = await self.bridge.get_chats()
        names: dict[str, str] = {}
        for chat in chats:
            jid, name = chat.get("jid"), chat.get("name")
            if jid and name and name != jid:
                names[jid] = name

        logger.info("Backfilling chat names for %d chats", len(names))
        updated = 0
        for jid, name in names.items():
            updated += await self.message_store.set_chat_name(jid, name)
        logger.info("Updated %d messages with chat names", updated)
        return {"updated": updated, "chats": len(names)}

    async def _import_messages(
        self, messages: list[dict[str, Any]], *, with_embeddings: bool, user_only: bool
    ) -> ImportStats:
        stats = ImportStats()
        for raw in messages:
            try:
                message = normalize_bridge_message(raw)
            except ValidationFailure as exc:
                logger.debug("Failed to import bridge message: %s", exc)
                stats.errors += 1
                continue
            await self.import_message(
                message, stats, with_embeddings=with_embeddings, user_only=user_only
            )
        return stats

    async def import_message(
        self,
        message: CanonicalMessage,
        stats: ImportStats,
        *,
        with_embeddings: bool = False,
        user_only: bool = True,
    ) -> None:
        """Store one normalized message and derive its knowledge record."""
        if await self.message_store.insert_chat_message(message):
            stats.inserted += 1
        stats.processed += 1

        if not should_create_record(message.content, message.is_from_me, user_only):
            stats.skipped += 1
            return

        record = await self._create_record(
            chat_record(message), stats, with_embeddings=with_embeddings
        )
        if record is not None:
            await self.message_store.link_chat_message(message.message_id, record.id)
