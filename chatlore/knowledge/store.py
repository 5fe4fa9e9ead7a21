"""KnowledgeStore: idempotent persistence and vector search for knowledge records."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from chatlore.config import settings
from chatlore.db import get_connection
from chatlore.knowledge.models import KnowledgeRecord, SourceType
from chatlore.knowledge.vectors import check_dimension, to_text

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

_VECTOR_INDEX = "knowledge_records_embedding_idx"


def _schema(dimensions: int) -> tuple[str, ...]:
    return (
        f"""
        CREATE TABLE IF NOT EXISTS knowledge_records (
            id                TEXT PRIMARY KEY,
            source_type       TEXT NOT NULL,
            source_id         TEXT NOT NULL,
            content_hash      TEXT NOT NULL,
            raw_content       TEXT NOT NULL,
            processed_content TEXT,
            metadata          TEXT NOT NULL DEFAULT '{{}}',
            embedding         F32_BLOB({dimensions}),
            source_timestamp  TEXT,
            created_at        TEXT NOT NULL,
            updated_at        TEXT NOT NULL
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS knowledge_records_source_idx
            ON knowledge_records (source_type, source_id)
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS knowledge_records_content_hash_idx
            ON knowledge_records (content_hash)
        """,
        """
        CREATE INDEX IF NOT EXISTS knowledge_records_source_timestamp_idx
            ON knowledge_records (source_timestamp)
        """,
        f"""
        CREATE INDEX IF NOT EXISTS {_VECTOR_INDEX}
            ON knowledge_records (libsql_vector_idx(embedding, 'metric=cosine'))
        """,
    )


_COLUMN_NAMES = (
    "id",
    "source_type",
    "source_id",
    "content_hash",
    "raw_content",
    "processed_content",
    "metadata",
    "embedding",
    "source_timestamp",
    "created_at",
    "updated_at",
)

_COLUMNS = ", ".join(_COLUMN_NAMES)


def _select_columns(alias: str = "") -> str:
    """Column list for SELECTs, reading the vector back as text."""
    prefix = f"{alias}." if alias else ""
    columns = []
    for name in _COLUMN_NAMES:
        if name == "embedding":
            columns.append(
                f"CASE WHEN {prefix}embedding IS NULL THEN NULL "
                f"ELSE vector_extract({prefix}embedding) END"
            )
        else:
            columns.append(prefix + name)
    return ", ".join(columns)


_SELECT_COLUMNS = _select_columns()


class KnowledgeStore:
    """Persists knowledge records in SQLite / Turso.

    Singleton accessed via ``KnowledgeStore.get()``.  Pass an explicit
    *db_path* for test isolation (e.g. ``tmp_path / "test.db"``) and
    *dimensions* to use small vectors in tests.

    Inserts are idempotent on two independent unique keys,
    ``(source_type, source_id)`` and ``content_hash``: a conflict on either is
    a silent no-op and the first writer wins.
    """

    _instance: KnowledgeStore | None = None

    def __init__(self, db_path: Path | None = None, dimensions: int | None = None) -> None:
        self._db_path = db_path
        self.dimensions = dimensions or settings.embedding_dimensions
        self._initialised = False

    @classmethod
    def get(cls) -> KnowledgeStore:
        """Return the shared KnowledgeStore instance."""
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
            await db.apply_schema(_schema(self.dimensions))
            self._initialised = True
        return db

    async def _fetch_one(self, where: str, params: tuple) -> KnowledgeRecord | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM knowledge_records WHERE {where}",  # noqa: S608
                params,
            )
            row = await cursor.fetchone()
            return KnowledgeRecord.from_row(row) if row else None
        finally:
            await db.close()

    # -- Write -----------------------------------------------------------------

    async def insert(self, record: KnowledgeRecord) -> KnowledgeRecord | None:
        """Insert *record* unless its source key or content hash already exists.

        Returns the record when this call created it, or None when an existing
        row won the conflict.
        """
        placeholders = ", ".join(
            "vector32(?)" if name == "embedding" and record.embedding is not None else "?"
            for name in _COLUMN_NAMES
        )
        if record.embedding is not None:
            check_dimension(record.embedding, self.dimensions)
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT OR IGNORE INTO knowledge_records ({_COLUMNS}) "  # noqa: S608
                f"VALUES ({placeholders})",
                record.to_row(),
            )
            created = await db.changes() > 0
            await db.commit()
        finally:
            await db.close()

        if not created:
            logger.debug(
                "Knowledge record already present: %s (hash %s)",
                record.source_id,
                record.content_hash[:12],
            )
            return None
        return record

    async def set_embedding(self, record_id: str, embedding: Sequence[float]) -> bool:
        """Store *embedding* for a record that does not have one yet.

        Never overwrites: returns False when the record is missing or already
        embedded.  Raises ``ValueError`` on a dimension mismatch.
        """
        check_dimension(embedding, self.dimensions)
        now = datetime.now(UTC).isoformat()
        db = await self._connect()
        try:
            await db.execute(
                "UPDATE knowledge_records SET embedding = vector32(?), updated_at = ? "
                "WHERE id = ? AND embedding IS NULL",
                (to_text(embedding), now, record_id),
            )
            updated = await db.changes() > 0
            await db.commit()
            return updated
        finally:
            await db.close()

    # -- Read ------------------------------------------------------------------

    async def get_by_id(self, record_id: str) -> KnowledgeRecord | None:
        """Fetch a record by id, or None if not found."""
        return await self._fetch_one("id = ?", (record_id,))

    async def get_by_source(
        self, source_type: SourceType, source_id: str
    ) -> KnowledgeRecord | None:
        """Fetch a record by its composite source key."""
        return await self._fetch_one(
            "source_type = ? AND source_id = ?", (source_type.value, source_id)
        )

    async def get_by_hash(self, digest: str) -> KnowledgeRecord | None:
        """Fetch the record owning *digest*, whichever source wrote it first."""
        return await self._fetch_one("content_hash = ?", (digest,))

    async def pending_embeddings(
        self, limit: int, after: int = 0
    ) -> list[tuple[int, KnowledgeRecord]]:
        """Return up to *limit* records still lacking an embedding.

        Keyset-paginated on the table's insertion sequence (``rowid``): pass
        the last sequence number of the previous page as *after*.  Each item
        is ``(sequence, record)``.
        """
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT rowid, {_SELECT_COLUMNS} FROM knowledge_records "  # noqa: S608
                "WHERE embedding IS NULL AND raw_content IS NOT NULL AND rowid > ? "
                "ORDER BY rowid LIMIT ?",
                (after, limit),
            )
            rows = await cursor.fetchall()
            return [(row[0], KnowledgeRecord.from_row(row[1:])) for row in rows]
        finally:
            await db.close()

    async def nearest(
        self,
        embedding: Sequence[float],
        limit: int,
        source_types: Sequence[SourceType] | None = None,
    ) -> list[tuple[KnowledgeRecord, float]]:
        """Return the *limit* embedded records closest to *embedding*.

        Without a source-type filter, candidates come from the ANN index via
        ``vector_top_k``.  With one, the database orders the filtered rows by
        ``vector_distance_cos`` directly, so the filter never shrinks the
        result below *limit* when enough matching rows exist.  Items are
        ``(record, distance)`` ordered by cosine distance ascending.
        """
        if limit <= 0:
            return []
        check_dimension(embedding, self.dimensions)
        query = to_text(embedding)

        if source_types:
            types = tuple(SourceType(t).value for t in source_types)
            sql = (
                f"SELECT {_SELECT_COLUMNS}, "  # noqa: S608
                "vector_distance_cos(embedding, vector32(?)) AS distance "
                "FROM knowledge_records WHERE embedding IS NOT NULL "
                f"AND source_type IN ({', '.join('?' * len(types))}) "
                "ORDER BY distance, rowid LIMIT ?"
            )
            params: tuple = (query, *types, limit)
        else:
            sql = (
                f"SELECT {_select_columns('k')}, "  # noqa: S608
                "vector_distance_cos(k.embedding, vector32(?)) AS distance "
                f"FROM vector_top_k('{_VECTOR_INDEX}', vector32(?), ?) AS v "
                "JOIN knowledge_records AS k ON k.rowid = v.id "
                "ORDER BY distance, k.rowid"
            )
            params = (query, query, limit)

        db = await self._connect()
        try:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        finally:
            await db.close()
        return [(KnowledgeRecord.from_row(row[:-1]), float(row[-1])) for row in rows]

    # -- Counters --------------------------------------------------------------

    async def count(self) -> int:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT COUNT(*) FROM knowledge_records")
            row = await cursor.fetchone()
            return row[0] if row else 0
        finally:
            await db.close()

    async def count_by_source_type(self) -> dict[str, int]:
        """Record counts grouped by source type."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT source_type, COUNT(*) FROM knowledge_records "
                "GROUP BY source_type ORDER BY source_type"
            )
            rows = await cursor.fetchall()
            return {row[0]: row[1] for row in rows}
        finally:
            await db.close()

    async def count_pending_embeddings(self) -> int:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM knowledge_records WHERE embedding IS NULL"
            )
            row = await cursor.fetchone()
            return row[0] if row else 0
        finally:
            await db.close()
