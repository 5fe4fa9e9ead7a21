"""Canonical message models for chat sources and session logs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    REACTION = "reaction"
    OTHER = "other"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class CanonicalMessage:
    """One chat message, from the live bridge or an export transcript.

    Attributes:
        message_id: Source message id, unique across all chat messages.
            Export messages carry a synthesized digest instead.
        chat_jid: Chat identifier (``...@g.us`` for groups, ``export:<slug>``
            for transcripts).
        sender_jid: Sender identifier.
        content: Body text, possibly multi-line.
        message_type: Closed :class:`MessageType`.
        timestamp: Send time (UTC).
        chat_name: Display name of the chat; may be backfilled later.
        sender_name: Sender display name (push name).
        is_from_me: Outbound flag.
        is_group: Group chat flag.
        quoted_message_id: Id of the message this one replies to.
        raw_data: Opaque source payload, kept for traceability.
        knowledge_record_id: Weak link to the derived KnowledgeRecord.
    """

    message_id: str
    chat_jid: str
    sender_jid: str
    content: str
    message_type: MessageType
    timestamp: datetime
    chat_name: str | None = None
    sender_name: str | None = None
    is_from_me: bool = False
    is_group: bool = False
    quoted_message_id: str | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)
    knowledge_record_id: str | None = None

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``chat_messages`` column order."""
        return (
            self.message_id,
            self.chat_jid,
            self.chat_name,
            self.sender_jid,
            self.sender_name,
            self.content,
            self.message_type.value,
            int(self.is_from_me),
            int(self.is_group),
            self.quoted_message_id,
            self.timestamp.isoformat(),
            json.dumps(self.raw_data, default=str),
            self.knowledge_record_id,
        )

    @classmethod
    def from_row(cls, row: tuple) -> CanonicalMessage:
        """Deserialize from a ``chat_messages`` row tuple."""
        return cls(
            message_id=row[0],
            chat_jid=row[1],
            chat_name=row[2],
            sender_jid=row[3],
            sender_name=row[4],
            content=row[5] or "",
            message_type=MessageType(row[6]),
            is_from_me=bool(row[7]),
            is_group=bool(row[8]),
            quoted_message_id=row[9],
            timestamp=datetime.fromisoformat(row[10]),
            raw_data=json.loads(row[11]) if row[11] else {},
            knowledge_record_id=row[12],
        )


@dataclass
class SessionMessage:
    """One user/assistant turn from a session log.

    ``message_index`` is the zero-based physical line offset within the file,
    so it stays stable even though non-message lines are skipped.
    """

    session_id: str
    message_index: int
    role: Role
    content: str
    project_path: str | None = None
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    timestamp: datetime | None = None
    model: str | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)
    knowledge_record_id: str | None = None

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``session_messages`` column order."""
        return (
            self.session_id,
            self.message_index,
            self.project_path,
            self.role.value,
            self.content,
            json.dumps(self.tool_calls, default=str),
            self.timestamp.isoformat() if self.timestamp else None,
            self.model,
            json.dumps(self.raw_data, default=str),
            self.knowledge_record_id,
        )

    @classmethod
    def from_row(cls, row: tuple) -> SessionMessage:
        """Deserialize from a ``session_messages`` row tuple."""
        return cls(
            session_id=row[0],
            message_index=row[1],
            project_path=row[2],
            role=Role(row[3]),
            content=row[4] or "",
            tool_calls=json.loads(row[5]) if row[5] else [],
            timestamp=datetime.fromisoformat(row[6]) if row[6] else None,
            model=row[7],
            raw_data=json.loads(row[8]) if row[8] else {},
            knowledge_record_id=row[9],
        )
