"""Session importer: loads JSONL session logs from the projects directory.

Layout::

    <projects_dir>/<project>/<session-id>.jsonl
    <projects_dir>/<project>/<session-id>/subagents/agent-<n>.jsonl
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from chatlore.config import settings
from chatlore.importers.base import BaseImporter, ImportStats, should_create_record
from chatlore.knowledge.models import KnowledgeRecord, SourceType
from chatlore.messages.models import Role
from chatlore.parsers.session_log import SessionParseStats, iter_session_messages

if TYPE_CHECKING:
    from datetime import datetime

    from chatlore.embeddings.queue import EmbeddingQueue
    from chatlore.knowledge.store import KnowledgeStore
    from chatlore.messages.models import SessionMessage
    from chatlore.messages.store import MessageStore

logger = logging.getLogger(__name__)

SESSION_GLOB = "*.jsonl"


def session_record(message: SessionMessage) -> KnowledgeRecord:
    """Knowledge record for one session message."""
    return KnowledgeRecord(
        source_type=SourceType.CLAUDE_CODE,
        source_id=f"claude:{message.session_id}:{message.message_index}",
        raw_content=message.content,
        processed_content=message.content,
        source_timestamp=message.timestamp,
        metadata={
            "session_id": message.session_id,
            "project_path": message.project_path,
            "role": message.role.value,
            "model": message.model,
        },
    )


class SessionImporter(BaseImporter):
    """Imports session logs.

    Args:
        projects_dir: Root holding one directory per project
            (default ``CLAUDE_PROJECTS_DIR``).
    """

    def __init__(
        self,
        projects_dir: Path | None = None,
        message_store: MessageStore | None = None,
        knowledge_store: KnowledgeStore | None = None,
        embedding_queue: EmbeddingQueue | None = None,
    ) -> None:
        super().__init__(message_store, knowledge_store, embedding_queue)
        self.projects_dir = projects_dir or settings.get_claude_projects_dir()

    # -- Discovery -------------------------------------------------------------

    def list_projects(self) -> list[Path]:
        """Project directories, sorted. Empty if the root is missing."""
        try:
            entries = list(self.projects_dir.iterdir())
        except OSError as exc:
            logger.warning("Could not list projects in %s: %s", self.projects_dir, exc)
            return []
        return sorted(p for p in entries if p.is_dir())

    @staticmethod
    def list_sessions(project: Path, since: datetime | None = None) -> list[Path]:
        """Every session file under *project*, including sub-agent logs.

        With *since*, only files modified after that moment are returned.
        """
        files = Path(project).rglob(SESSION_GLOB)
        if since is not None:
            cutoff = since.timestamp()
            files = (f for f in files if _modified_after(f, cutoff))
        return sorted(files)

    def derive_project_path(self, session_path: Path) -> str:
        """Name of the project directory a session file lives under."""
        try:
            relative = session_path.parent.relative_to(self.projects_dir)
        except ValueError:
            return session_path.parent.name
        return relative.parts[0] if relative.parts else session_path.parent.name

    # -- Import ----------------------------------------------------------------

    async def import_session(
        self,
        session_path: str | Path,
        with_embeddings: bool = False,
        user_only: bool | None = None,
    ) -> ImportStats:
        """Import one session file, streaming it line by line.

        Raises:
            OSError: the file cannot be opened.
        """
        session_path = Path(session_path)
        user_only = self._user_only(user_only)
        parse_stats = SessionParseStats()
        stats = ImportStats(sessions=1)

        with session_path.open(encoding="utf-8", errors="replace") as f:
            for message in iter_session_messages(
                f,
                session_id=session_path.stem,
                project_path=self.derive_project_path(session_path),
                stats=parse_stats,
            ):
                await self._import_message(
                    message, stats, with_embeddings=with_embeddings, user_only=user_only
                )

        stats.errors += parse_stats.errors
        if parse_stats.errors:
            logger.debug(
                "%s: %d malformed lines (%s)",
                session_path.name,
                parse_stats.errors,
                ", ".join(str(n) for n in parse_stats.error_lines[:10]),
            )
        return stats

    async def import_project(
        self,
        project: str | Path,
        since: datetime | None = None,
        with_embeddings: bool = False,
        user_only: bool | None = None,
    ) -> ImportStats:
        """Import every session of one project. Unreadable files count as errors."""
        sessions = self.list_sessions(Path(project), since=since)
        logger.debug("Found %d session files in %s", len(sessions), project)

        total = ImportStats()
        for session_path in sessions:
            try:
                stats = await self.import_session(
                    session_path, with_embeddings=with_embeddings, user_only=user_only
                )
            except OSError as exc:
                logger.warning("Failed to import session %s: %s", session_path, exc)
                total.errors += 1
                continue
            total.merge(stats)
        return total

    async def import_all(
        self,
        since: datetime | None = None,
        with_embeddings: bool = False,
        user_only: bool | None = None,
        quiet: bool = False,
    ) -> ImportStats:
        """Import every project under the projects directory."""
        projects = self.list_projects()
        if not quiet:
            logger.info("Found %d projects in %s", len(projects), self.projects_dir)

        total = ImportStats()
        for project in projects:
            if not quiet:
                logger.info("Importing project: %s", project.name)
            stats = await self.import_project(
                project, since=since, with_embeddings=with_embeddings, user_only=user_only
            )
            total.merge(stats)
            total.projects += 1

        if not quiet:
            logger.info(
                "Session import complete: %d projects, %d sessions, %d messages",
                total.projects,
                total.sessions,
                total.processed,
            )
        return total

    async def _import_message(
        self,
        message: SessionMessage,
        stats: ImportStats,
        *,
        with_embeddings: bool,
        user_only: bool,
    ) -> None:
        if await self.message_store.insert_session_message(message):
            stats.inserted += 1
        stats.processed += 1

        if not should_create_record(message.content, message.role is Role.USER, user_only):
            stats.skipped += 1
            return

        record = await self._create_record(
            session_record(message), stats, with_embeddings=with_embeddings
        )
        if record is not None:
            await self.message_store.link_session_message(
                message.session_id, message.message_index, record.id
            )


def _modified_after(path: Path, cutoff: float) -> bool:
    try:
        return path.stat().st_mtime > cutoff
    except OSError:
        return True
