"""Live-buffer normalizer: one bridge message map → one CanonicalMessage.

The bridge hands over loosely-typed JSON maps.  They are decoded exactly once,
through :class:`BridgeMessage`, so nothing downstream has to probe for
alternative key spellings or types.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from chatlore.errors import ValidationFailure
from chatlore.messages.models import CanonicalMessage, MessageType

logger = logging.getLogger(__name__)

GROUP_JID_SUFFIX = "@g.us"

# Bridge type string → MessageType. Anything not listed becomes OTHER.
MESSAGE_TYPES: dict[str, MessageType] = {
    "text": MessageType.TEXT,
    "image": MessageType.IMAGE,
    "video": MessageType.VIDEO,
    "audio": MessageType.AUDIO,
    "document": MessageType.DOCUMENT,
    "sticker": MessageType.STICKER,
    "reaction": MessageType.REACTION,
}


class BridgeMessage(BaseModel):
    """Wire shape of one buffered bridge message."""

    model_config = ConfigDict(extra="allow")

    message_id: str
    chat_jid: str
    sender_jid: str
    chat_name: str | None = None
    push_name: str | None = None
    content: str | None = None
    message_type: str | None = None
    is_from_me: bool = False
    timestamp: str | int | float | None = None
    quoted_message_id: str | None = None

    @field_validator("message_id", "chat_jid", "sender_jid")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "must not be blank"
            raise ValueError(msg)
        return value

    @field_validator("is_from_me", mode="before")
    @classmethod
    def _none_is_false(cls, value: Any) -> Any:
        return False if value is None else value


def map_message_type(value: str | None) -> MessageType:
    """Map a bridge type string through :data:`MESSAGE_TYPES`.

    A missing type means plain text; an unrecognised one means OTHER.
    """
    if value is None:
        return MessageType.TEXT
    return MESSAGE_TYPES.get(value.lower(), MessageType.OTHER)


def is_group_chat(chat_jid: str | None) -> bool:
    """Group chats are identified by the ``@g.us`` jid suffix."""
    return bool(chat_jid) and chat_jid.endswith(GROUP_JID_SUFFIX)


def _now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def parse_timestamp(value: str | int | float | None) -> datetime:
    """Parse an ISO-8601 string or epoch seconds into an aware UTC datetime.

    Missing or unparseable values fall back to the ingestion time.  That is
    an approximation, not an error: the message is still kept.
    """
    if value is None:
        return _now()
    try:
        if isinstance(value, (int, float)):
            parsed = datetime.fromtimestamp(value, tz=UTC)
        else:
            parsed = datetime.fromisoformat(value.strip())
    except (ValueError, OverflowError, OSError):
        logger.debug("Unparseable bridge timestamp %r, using now()", value)
        return _now()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).replace(microsecond=0)


def normalize_bridge_message(raw: dict[str, Any]) -> CanonicalMessage:
    """Convert one raw bridge map into a :class:`CanonicalMessage`.

    Raises:
        ValidationFailure: a required field (message_id, chat_jid,
            sender_jid) is missing or malformed.
    """
    try:
        decoded = BridgeMessage.model_validate(raw)
    except ValidationError as exc:
        fields = ", ".join(str(err["loc"][0]) for err in exc.errors() if err["loc"])
        msg = f"Invalid bridge message ({fields or 'payload'})"
        raise ValidationFailure(msg) from exc

    return CanonicalMessage(
        message_id=decoded.message_id,
        chat_jid=decoded.chat_jid,
        chat_name=decoded.chat_name,
        sender_jid=decoded.sender_jid,
        sender_name=decoded.push_name,
        content=decoded.content or "",
        message_type=map_message_type(decoded.message_type),
        is_from_me=decoded.is_from_me,
        is_group=is_group_chat(decoded.chat_jid),
        quoted_message_id=decoded.quoted_message_id,
        timestamp=parse_timestamp(decoded.timestamp),
        raw_data=dict(raw),
    )
