"""Shared plumbing for source importers: stats, inclusion policy, record creation."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import TYPE_CHECKING

from chatlore.config import settings
from chatlore.knowledge.store import KnowledgeStore
from chatlore.messages.store import MessageStore

if TYPE_CHECKING:
    from chatlore.embeddings.queue import EmbeddingQueue
    from chatlore.knowledge.models import KnowledgeRecord

logger = logging.getLogger(__name__)


@dataclass
class ImportStats:
    """Counters for one import run.

    Attributes:
        processed: Messages normalized and written (new or already stored).
        inserted: Messages that were new to the message store.
        records: Knowledge records created by this run.
        skipped: Messages that produced no knowledge record (empty content
            or excluded by the inclusion policy).
        errors: Lines/messages that failed to normalize or store.
        failed_reason: Set when the run as a whole could not proceed.
        skip_reason: Set when the run was skipped on purpose (e.g. the
            bridge is not running).
    """

    processed: int = 0
    inserted: int = 0
    records: int = 0
    skipped: int = 0
    errors: int = 0
    files: int = 0
    sessions: int = 0
    projects: int = 0
    chat_names_updated: int = 0
    failed_reason: str | None = None
    skip_reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.failed_reason is None

    def merge(self, other: ImportStats) -> ImportStats:
        """Add *other*'s counters into this one and return self."""
        for f in fields(self):
            value = getattr(other, f.name)
            if isinstance(value, int):
                setattr(self, f.name, getattr(self, f.name) + value)
        return self

    def as_dict(self) -> dict:
        return asdict(self)


def should_create_record(content: str | None, included: bool, user_only: bool) -> bool:
    """Inclusion policy for knowledge records.

    Content must be non-blank.  With *user_only*, only messages written by the
    owner (outbound chat messages, user turns of a session) qualify.
    """
    if not content or not content.strip():
        return False
    return included or not user_only


class BaseImporter:
    """Common wiring for importers.

    Args:
        message_store: Canonical message store (default: shared instance).
        knowledge_store: Knowledge record store (default: shared instance).
        embedding_queue: Receives newly created records when an import runs
            with ``with_embeddings=True``.
    """

    def __init__(
        self,
        message_store: MessageStore | None = None,
        knowledge_store: KnowledgeStore | None = None,
        embedding_queue: EmbeddingQueue | None = None,
    ) -> None:
        self.message_store = message_store or MessageStore.get()
        self.knowledge_store = knowledge_store or KnowledgeStore.get()
        self.embedding_queue = embedding_queue

    @staticmethod
    def _user_only(user_only: bool | None) -> bool:
        return settings.import_user_only if user_only is None else user_only

    async def _create_record(
        self, record: KnowledgeRecord, stats: ImportStats, *, with_embeddings: bool
    ) -> KnowledgeRecord | None:
        """Insert *record* and return whichever record now owns its keys.

        A freshly created record is handed to the embedding queue when
        requested.  On a conflict the existing owner (same source key, else
        same content) is returned so the message can still be linked.
        """
        created = await self.knowledge_store.insert(record)
        if created is not None:
            stats.records += 1
            if with_embeddings:
                if self.embedding_queue is not None:
                    self.embedding_queue.submit(created)
                else:
                    logger.warning(
                        "No embedding queue configured; run backfill to embed %s", created.id
                    )
            return created

        existing = await self.knowledge_store.get_by_source(record.source_type, record.source_id)
        if existing is None:
            existing = await self.knowledge_store.get_by_hash(record.content_hash)
        return existing
