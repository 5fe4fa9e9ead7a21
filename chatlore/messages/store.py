"""MessageStore: idempotent persistence for canonical chat and session messages."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from chatlore.db import get_connection
from chatlore.messages.models import CanonicalMessage, SessionMessage

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS chat_messages (
        message_id          TEXT PRIMARY KEY,
        chat_jid            TEXT NOT NULL,
        chat_name           TEXT,
        sender_jid          TEXT NOT NULL,
        sender_name         TEXT,
        content             TEXT NOT NULL DEFAULT '',
        message_type        TEXT NOT NULL DEFAULT 'text',
        is_from_me          INTEGER NOT NULL DEFAULT 0,
        is_group            INTEGER NOT NULL DEFAULT 0,
        quoted_message_id   TEXT,
        timestamp           TEXT NOT NULL,
        raw_data            TEXT NOT NULL DEFAULT '{}',
        knowledge_record_id TEXT,
        inserted_at         TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS chat_messages_chat_idx ON chat_messages (chat_jid, timestamp)",
    "CREATE INDEX IF NOT EXISTS chat_messages_from_me_idx ON chat_messages (is_from_me)",
    """
    CREATE TABLE IF NOT EXISTS session_messages (
        session_id          TEXT NOT NULL,
        message_index       INTEGER NOT NULL,
        project_path        TEXT,
        role                TEXT NOT NULL,
        content             TEXT NOT NULL DEFAULT '',
        tool_calls          TEXT NOT NULL DEFAULT '[]',
        timestamp           TEXT,
        model               TEXT,
        raw_data            TEXT NOT NULL DEFAULT '{}',
        knowledge_record_id TEXT,
        inserted_at         TEXT NOT NULL,
        PRIMARY KEY (session_id, message_index)
    )
    """,
)

_CHAT_COLUMNS = (
    "message_id, chat_jid, chat_name, sender_jid, sender_name, content, message_type, "
    "is_from_me, is_group, quoted_message_id, timestamp, raw_data, knowledge_record_id"
)
_SESSION_COLUMNS = (
    "session_id, message_index, project_path, role, content, tool_calls, "
    "timestamp, model, raw_data, knowledge_record_id"
)

# Upper bound on distinct nameless chats looked up per sync cycle.
UNNAMED_CHAT_SCAN_LIMIT = 500


class MessageStore:
    """Persists canonical messages in SQLite / Turso.

    Singleton accessed via ``MessageStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).

    Chat messages are keyed by ``message_id`` and session messages by
    ``(session_id, message_index)``.  Re-inserting an existing key is a
    no-op, so overlapping or repeated imports are safe without locking.
    """

    _instance: MessageStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> MessageStore:
        """Return the shared MessageStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self):  # noqa: ANN202
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await db.apply_schema(_SCHEMA)
            self._initialised = True
        return db

    async def _write(self, sql: str, params: tuple) -> int:
        db = await self._connect()
        try:
            await db.execute(sql, params)
            changed = await db.changes()
            await db.commit()
            return changed
        finally:
            await db.close()

    async def _count(self, sql: str) -> int:
        db = await self._connect()
        try:
            cursor = await db.execute(sql)
            row = await cursor.fetchone()
            return row[0] if row else 0
        finally:
            await db.close()

    # -- Chat messages ---------------------------------------------------------

    async def insert_chat_message(self, message: CanonicalMessage) -> bool:
        """Insert a chat message. Returns False if ``message_id`` already exists."""
        inserted = await self._write(
            f"INSERT OR IGNORE INTO chat_messages ({_CHAT_COLUMNS}, inserted_at) "  # noqa: S608
            f"VALUES ({', '.join('?' * 14)})",
            (*message.to_row(), datetime.now(UTC).isoformat()),
        )
        return inserted > 0

    async def get_chat_message(self, message_id: str) -> CanonicalMessage | None:
        """Fetch a chat message by id, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_CHAT_COLUMNS} FROM chat_messages WHERE message_id = ?",  # noqa: S608
                (message_id,),
            )
            row = await cursor.fetchone()
            return CanonicalMessage.from_row(row) if row else None
        finally:
            await db.close()

    async def link_chat_message(self, message_id: str, record_id: str) -> bool:
        """Point a chat message at the knowledge record derived from it."""
        updated = await self._write(
            "UPDATE chat_messages SET knowledge_record_id = ? "
            "WHERE message_id = ? AND knowledge_record_id IS NULL",
            (record_id, message_id),
        )
        return updated > 0

    async def unnamed_group_chats(
        self, limit: int = UNNAMED_CHAT_SCAN_LIMIT, after: str = ""
    ) -> list[str]:
        """Distinct group chat ids that still have no display name.

        Keyset-paginated on ``chat_jid``: pass the last id of the previous page
        as *after*.
        """
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT DISTINCT chat_jid FROM chat_messages "
                "WHERE chat_name IS NULL AND is_group = 1 AND chat_jid > ? "
                "ORDER BY chat_jid LIMIT ?",
                (after, limit),
            )
            rows = await cursor.fetchall()
            return [row[0] for row in rows]
        finally:
            await db.close()

    async def set_chat_name(self, chat_jid: str, chat_name: str) -> int:
        """Fill in *chat_name* on rows of *chat_jid* that still lack one.

        Existing names are never overwritten.  Returns the number of rows updated.
        """
        return await self._write(
            "UPDATE chat_messages SET chat_name = ? WHERE chat_jid = ? AND chat_name IS NULL",
            (chat_name, chat_jid),
        )

    async def count_chat_messages(self) -> int:
        return await self._count("SELECT COUNT(*) FROM chat_messages")

    # -- Session messages ------------------------------------------------------

    async def insert_session_message(self, message: SessionMessage) -> bool:
        """Insert a session message. Returns False if its key already exists."""
        inserted = await self._write(
            "INSERT OR IGNORE INTO session_messages "  # noqa: S608
            f"({_SESSION_COLUMNS}, inserted_at) "
            f"VALUES ({', '.join('?' * 11)})",
            (*message.to_row(), datetime.now(UTC).isoformat()),
        )
        return inserted > 0

    async def get_session_message(
        self, session_id: str, message_index: int
    ) -> SessionMessage | None:
        """Fetch one session message, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_SESSION_COLUMNS} FROM session_messages "  # noqa: S608
                "WHERE session_id = ? AND message_index = ?",
                (session_id, message_index),
            )
            row = await cursor.fetchone()
            return SessionMessage.from_row(row) if row else None
        finally:
            await db.close()

    async def link_session_message(
        self, session_id: str, message_index: int, record_id: str
    ) -> bool:
        """Point a session message at the knowledge record derived from it."""
        updated = await self._write(
            "UPDATE session_messages SET knowledge_record_id = ? "
            "WHERE session_id = ? AND message_index = ? AND knowledge_record_id IS NULL",
            (record_id, session_id, message_index),
        )
        return updated > 0

    async def count_session_messages(self) -> int:
        return await self._count("SELECT COUNT(*) FROM session_messages")

    async def count_sessions(self) -> int:
        return await self._count("SELECT COUNT(DISTINCT session_id) FROM session_messages")
