"""Session-log (JSONL) parser.

Each physical line is one JSON event.  Lines are decoded independently: a
malformed line is skipped without affecting the rest of the file.  Only
``user`` and ``assistant`` events become messages, but every physical line
advances the message index.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError

from chatlore.errors import ParseFailure, ValidationFailure
from chatlore.messages.models import Role, SessionMessage

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

MESSAGE_TYPES = frozenset(role.value for role in Role)
TEXT_BLOCK_SEPARATOR = "\n\n"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow")

    content: str | list[Any] | None = None
    model: str | None = None


class SessionLogEntry(BaseModel):
    """Decoded shape of one user/assistant event line."""

    model_config = ConfigDict(extra="allow")

    type: Role
    message: _Payload | None = None
    timestamp: str | None = None
    sessionId: str | None = None  # noqa: N815
    cwd: str | None = None


@dataclass
class SessionParseStats:
    """Per-file line accounting."""

    lines: int = 0
    messages: int = 0
    filtered: int = 0
    errors: int = 0
    error_lines: list[int] = field(default_factory=list)


def extract_content(content: str | list[Any] | None) -> str:
    """Body text: a plain string, or ``text`` blocks joined by a blank line."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return TEXT_BLOCK_SEPARATOR.join(
            block.get("text") or ""
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )
    return ""


def extract_tool_calls(content: str | list[Any] | None) -> list[dict[str, Any]]:
    """``tool_use`` blocks, reduced to ``{id, name, input}``."""
    if not isinstance(content, list):
        return []
    return [
        {"id": block.get("id"), "name": block.get("name"), "input": block.get("input")}
        for block in content
        if isinstance(block, dict) and block.get("type") == "tool_use"
    ]


def parse_timestamp(value: str | None) -> datetime | None:
    """ISO-8601 → aware UTC datetime truncated to seconds; None if absent/bad."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).replace(microsecond=0)


def decode_line(line: str) -> dict[str, Any] | None:
    """Decode one line. Returns None for blank lines.

    Raises:
        ParseFailure: the line is not a JSON object.
    """
    if not line.strip():
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        msg = f"Malformed JSON: {exc.msg}"
        raise ParseFailure(msg) from exc
    if not isinstance(data, dict):
        msg = "JSON line is not an object"
        raise ParseFailure(msg)
    return data


def to_session_message(
    data: dict[str, Any],
    index: int,
    session_id: str,
    project_path: str | None = None,
) -> SessionMessage:
    """Convert one decoded user/assistant event into a SessionMessage.

    Raises:
        ValidationFailure: the event's shape is not usable.
    """
    try:
        entry = SessionLogEntry.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid session entry at line {index}"
        raise ValidationFailure(msg) from exc

    payload = entry.message or _Payload()
    content = payload.content
    return SessionMessage(
        session_id=entry.sessionId or session_id,
        message_index=index,
        project_path=entry.cwd or project_path,
        role=entry.type,
        content=extract_content(content),
        tool_calls=extract_tool_calls(content),
        timestamp=parse_timestamp(entry.timestamp),
        model=payload.model,
        raw_data=data,
    )


def iter_session_messages(
    lines: Iterable[str],
    session_id: str,
    project_path: str | None = None,
    stats: SessionParseStats | None = None,
) -> Iterator[SessionMessage]:
    """Stream SessionMessages out of *lines* (a file object works).

    The message index is the zero-based physical line offset, so it is stable
    across re-imports even though non-message lines are filtered out.
    Pass *stats* to collect per-line accounting.
    """
    stats = stats if stats is not None else SessionParseStats()
    for index, line in enumerate(lines):
        stats.lines += 1
        try:
            data = decode_line(line)
        except ParseFailure:
            stats.errors += 1
            stats.error_lines.append(index)
            continue
        if data is None or data.get("type") not in MESSAGE_TYPES:
            stats.filtered += 1
            continue
        try:
            message = to_session_message(data, index, session_id, project_path)
        except ValidationFailure:
            logger.debug("Skipping invalid session entry %s:%d", session_id, index)
            stats.errors += 1
            stats.error_lines.append(index)
            continue
        stats.messages += 1
        yield message
