"""Export importer: loads chat-export transcripts (``.txt``) into the stores."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from chatlore.config import settings
from chatlore.importers.base import BaseImporter, ImportStats, should_create_record
from chatlore.knowledge.models import KnowledgeRecord, SourceType
from chatlore.parsers.export import EXPORT_SOURCE, ExportParser, derive_chat_name

if TYPE_CHECKING:
    from chatlore.messages.models import CanonicalMessage

logger = logging.getLogger(__name__)

EXPORT_SUFFIX = ".txt"


def export_record(message: CanonicalMessage) -> KnowledgeRecord:
    """Knowledge record for a message parsed from an export transcript."""
    return KnowledgeRecord(
        source_type=SourceType.WHATSAPP,
        source_id=f"whatsapp:export:{message.message_id}",
        raw_content=message.content,
        processed_content=message.content,
        source_timestamp=message.timestamp,
        metadata={
            "message_id": message.message_id,
            "chat_name": message.chat_name,
            "sender_name": message.sender_name,
            "is_from_me": message.is_from_me,
            "is_group": message.is_group,
            "source": EXPORT_SOURCE,
        },
    )


class ExportImporter(BaseImporter):
    """Imports exported chat transcripts."""

    async def import_file(
        self,
        path: str | Path,
        my_name: str | None = None,
        chat_name: str | None = None,
        with_embeddings: bool = False,
        user_only: bool | None = None,
    ) -> ImportStats:
        """Import one transcript.

        Args:
            path: Transcript file.
            my_name: Exporting user's display name, used to mark own messages
                (default ``EXPORT_OWNER_NAME``).
            chat_name: Overrides the name derived from the filename.

        Raises:
            OSError: the file cannot be read.
        """
        path = Path(path)
        chat_name = chat_name or derive_chat_name(path)
        my_name = my_name or settings.get_export_owner_name()
        user_only = self._user_only(user_only)

        logger.info("Importing chat export: %s", path)
        parser = ExportParser(chat_name, owner_name=my_name)
        with path.open(encoding="utf-8", errors="replace") as f:
            for line in f:
                parser.feed(line)
        messages = parser.finish()

        stats = ImportStats(files=1, sessions=1)
        for message in messages:
            await self._import_message(
                message, stats, with_embeddings=with_embeddings, user_only=user_only
            )

        logger.info(
            "Imported %d messages (%d skipped, %d errors)",
            stats.processed,
            stats.skipped,
            stats.errors,
        )
        return stats

    async def import_directory(
        self,
        directory: str | Path,
        my_name: str | None = None,
        with_embeddings: bool = False,
        user_only: bool | None = None,
    ) -> ImportStats:
        """Import every transcript in *directory*.

        A file that cannot be read counts as one error; the rest still run.

        Raises:
            OSError: the directory itself cannot be listed.
        """
        directory = Path(directory)
        files = sorted(p for p in directory.iterdir() if p.suffix == EXPORT_SUFFIX)
        logger.info("Found %d export files in %s", len(files), directory)

        total = ImportStats()
        for path in files:
            try:
                stats = await self.import_file(
                    path, my_name=my_name, with_embeddings=with_embeddings, user_only=user_only
                )
            except OSError as exc:
                logger.warning("Failed to import %s: %s", path, exc)
                total.errors += 1
                continue
            total.merge(stats)
        return total

    @staticmethod
    def list_exports(directory: str | Path) -> list[Path]:
        """Transcript files in *directory*, sorted. Empty if it does not exist."""
        directory = Path(directory)
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.iterdir() if p.suffix == EXPORT_SUFFIX)

    async def _import_message(
        self,
        message: CanonicalMessage,
        stats: ImportStats,
        *,
        with_embeddings: bool,
        user_only: bool,
    ) -> None:
        if not message.content.strip():
            stats.skipped += 1
            return

        if await self.message_store.insert_chat_message(message):
            stats.inserted += 1
        stats.processed += 1

        if not should_create_record(message.content, message.is_from_me, user_only):
            stats.skipped += 1
            return

        record = await self._create_record(
            export_record(message), stats, with_embeddings=with_embeddings
        )
        if record is not None:
            await self.message_store.link_chat_message(message.message_id, record.id)
