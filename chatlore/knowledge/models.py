"""KnowledgeRecord: the unified, embeddable unit that feeds retrieval."""

from __future__ import annotations

import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from chatlore.knowledge.vectors import from_text, to_text


class SourceType(StrEnum):
    WHATSAPP = "whatsapp"
    CLAUDE_CODE = "claude_code"
    GIT = "git"
    NOTES = "notes"
    OTHER = "other"


def content_hash(raw_content: str) -> str:
    """SHA-256 hex digest of *raw_content* (the cross-source dedup key)."""
    return hashlib.sha256(raw_content.encode("utf-8")).hexdigest()


@dataclass
class KnowledgeRecord:
    """A source-agnostic knowledge entry.

    Attributes:
        source_type: Closed :class:`SourceType`.
        source_id: Composite id, unique per source type
            (e.g. ``whatsapp:ABC``, ``claude:<session>:<index>``).
        raw_content: Original text; hashed into ``content_hash``.
        processed_content: Text used for embedding and context assembly.
        metadata: Free-form source details.
        source_timestamp: When the source message was written.
        embedding: Fixed-dimension vector, set once by the embedding
            coordinator and never overwritten.
        id: UUID hex.
        content_hash: SHA-256 of ``raw_content``; derived, never passed in.
    """

    source_type: SourceType
    source_id: str
    raw_content: str
    processed_content: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    source_timestamp: datetime | None = None
    embedding: list[float] | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    content_hash: str = ""
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        self.content_hash = content_hash(self.raw_content)
        if not self.created_at:
            self.created_at = datetime.now(UTC).isoformat()
        if not self.updated_at:
            self.updated_at = self.created_at

    @property
    def text(self) -> str:
        """The text to embed or show: processed content, else raw."""
        return self.processed_content or self.raw_content

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``knowledge_records`` column order."""
        return (
            self.id,
            self.source_type.value,
            self.source_id,
            self.content_hash,
            self.raw_content,
            self.processed_content,
            json.dumps(self.metadata, default=str),
            to_text(self.embedding) if self.embedding is not None else None,
            self.source_timestamp.isoformat() if self.source_timestamp else None,
            self.created_at,
            self.updated_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> KnowledgeRecord:
        """Deserialize from a ``knowledge_records`` row tuple."""
        record = cls(
            id=row[0],
            source_type=SourceType(row[1]),
            source_id=row[2],
            raw_content=row[4],
            processed_content=row[5],
            metadata=json.loads(row[6]) if row[6] else {},
            embedding=from_text(row[7]) if row[7] else None,
            source_timestamp=datetime.fromisoformat(row[8]) if row[8] else None,
            created_at=row[9],
            updated_at=row[10],
        )
        # Trust the stored hash over a recomputation.
        record.content_hash = row[3]
        return record
