"""Chat-export transcript parser.

Exported transcripts have one header line per message, optionally followed by
continuation lines that belong to the same body.  Three header grammars are
recognised:

- ``[1/15/24, 10:30:15 AM] John Doe: Hello!``  (US, 12-hour, brackets)
- ``15/01/2024, 10:30 - John Doe: Hello!``     (EU, 24-hour, dash)
- ``[2024-01-15, 10:30:15] John Doe: Hello!``  (ISO, brackets)

Parsing is split in two: :func:`classify_line` tags each physical line as a
:class:`Header`, :data:`CONTINUATION` or :data:`BLANK`, and
:class:`ExportParser` folds those tags through a two-state accumulator.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from chatlore.messages.models import CanonicalMessage, MessageType

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

MESSAGE_ID_LENGTH = 32
EXPORT_SOURCE = "whatsapp_export"


class HeaderFormat(StrEnum):
    US = "us"
    EU = "eu"
    ISO = "iso"


_HEADER_PATTERNS: tuple[tuple[HeaderFormat, re.Pattern[str]], ...] = (
    (
        HeaderFormat.US,
        re.compile(
            r"^\[(\d{1,2}/\d{1,2}/\d{2,4}),\s*(\d{1,2}:\d{2}(?::\d{2})?\s*(?:AM|PM)?)\]"
            r"\s*([^:]+):\s*(.*)$",
            re.IGNORECASE,
        ),
    ),
    (
        HeaderFormat.EU,
        re.compile(
            r"^(\d{1,2}/\d{1,2}/\d{2,4}),\s*(\d{1,2}:\d{2}(?::\d{2})?)\s*-\s*([^:]+):\s*(.*)$",
            re.IGNORECASE,
        ),
    ),
    (
        HeaderFormat.ISO,
        re.compile(
            r"^\[(\d{4}-\d{2}-\d{2}),\s*(\d{2}:\d{2}(?::\d{2})?)\]\s*([^:]+):\s*(.*)$",
            re.IGNORECASE,
        ),
    ),
)

# Membership changes and other non-conversational lines.
SYSTEM_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"Messages and calls are end-to-end encrypted",
        r"created group",
        r"added you",
        r"changed the subject",
        r"changed this group's icon",
        r"left$",
        r"removed \w+$",
        r"changed the group description",
        r"<Media omitted>",
    )
)

# Body marker → message type, checked in order.
_MEDIA_MARKERS: tuple[tuple[str, MessageType], ...] = (
    ("<Media omitted>", MessageType.OTHER),
    ("image omitted", MessageType.IMAGE),
    ("video omitted", MessageType.VIDEO),
    ("audio omitted", MessageType.AUDIO),
    ("document omitted", MessageType.DOCUMENT),
    ("sticker omitted", MessageType.STICKER),
)

_CHAT_NAME_PREFIX = re.compile(r"^WhatsApp Chat (with |-)?\s*", re.IGNORECASE)
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")
_DIGITS = re.compile(r"\d+")


# -- Line classification -------------------------------------------------------


@dataclass(frozen=True)
class Header:
    """A line that opens a new message."""

    date: str
    time: str
    sender: str
    body: str
    format: HeaderFormat


class LineKind(Enum):
    CONTINUATION = "continuation"
    BLANK = "blank"


CONTINUATION = LineKind.CONTINUATION
BLANK = LineKind.BLANK

LineTag = Header | LineKind


def classify_line(line: str) -> LineTag:
    """Tag one physical line as a header, a continuation, or blank."""
    stripped = line.strip()
    if not stripped:
        return BLANK
    for fmt, pattern in _HEADER_PATTERNS:
        match = pattern.match(stripped)
        if match:
            date, time, sender, body = match.groups()
            return Header(date=date, time=time, sender=sender.strip(), body=body, format=fmt)
    return CONTINUATION


# -- Date handling -------------------------------------------------------------


def normalize_year(year: int) -> int:
    """Two-digit years are in the 2000s."""
    return 2000 + year if year < 100 else year


def convert_12h(hour: int, *, is_am: bool, is_pm: bool) -> int:
    """12 AM → 0, 12 PM → 12, other AM unchanged, other PM +12."""
    if is_am and not is_pm:
        return 0 if hour == 12 else hour
    if is_pm and not is_am:
        return 12 if hour == 12 else hour + 12
    return hour


def parse_time(time_str: str) -> tuple[int, int, int]:
    """Parse ``H:MM[:SS] [AM|PM]`` into 24-hour ``(hour, minute, second)``."""
    lowered = time_str.lower()
    is_pm = "pm" in lowered
    is_am = "am" in lowered
    parts = [int(p) for p in _DIGITS.findall(time_str)]
    if len(parts) == 3:
        h, m, s = parts
    elif len(parts) == 2:
        (h, m), s = parts, 0
    else:
        return (0, 0, 0)
    return (convert_12h(h, is_am=is_am, is_pm=is_pm), m, s)


def parse_date(date_str: str, fmt: HeaderFormat) -> tuple[int, int, int]:
    """Parse the date part of a header into ``(year, month, day)``."""
    parts = [int(p) for p in re.split(r"[/\-]", date_str)]
    if len(parts) != 3:
        msg = f"Unrecognised date {date_str!r}"
        raise ValueError(msg)
    if fmt is HeaderFormat.US:
        m, d, y = parts
    elif fmt is HeaderFormat.EU:
        d, m, y = parts
    else:
        y, m, d = parts
    return (normalize_year(y), m, d)


def parse_header_timestamp(header: Header) -> datetime:
    """Build a UTC timestamp from a header.

    An impossible date (e.g. month 13) falls back to the current time.  This
    is a known limitation: the message is kept, its timestamp is not real.
    """
    try:
        year, month, day = parse_date(header.date, header.format)
        hour, minute, second = parse_time(header.time)
        return datetime(year, month, day, hour, minute, second, tzinfo=UTC)
    except ValueError:
        logger.debug("Unparseable export date %r %r, using now()", header.date, header.time)
        return datetime.now(UTC).replace(microsecond=0)


# -- Helpers -------------------------------------------------------------------


def slugify(text: str) -> str:
    return _SLUG_STRIP.sub("-", text.lower()).strip("-")


def synthesize_message_id(chat_name: str, timestamp: datetime, sender: str) -> str:
    """Deterministic id so repeated imports of one file collapse to no-ops."""
    hash_input = f"{chat_name}:{int(timestamp.timestamp())}:{sender}"
    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()[:MESSAGE_ID_LENGTH]


def detect_message_type(body: str) -> MessageType:
    for marker, message_type in _MEDIA_MARKERS:
        if marker in body:
            return message_type
    return MessageType.TEXT


def is_system_message(body: str) -> bool:
    return any(pattern.search(body) for pattern in SYSTEM_PATTERNS)


def derive_chat_name(path: str | Path) -> str:
    """``WhatsApp Chat with Alice.txt`` → ``Alice``."""
    stem = Path(path).name
    if stem.lower().endswith(".txt"):
        stem = stem[:-4]
    return _CHAT_NAME_PREFIX.sub("", stem).strip()


# -- State machine -------------------------------------------------------------


class ParserState(Enum):
    AWAITING_HEADER = "awaiting_header"
    ACCUMULATING_BODY = "accumulating_body"


@dataclass
class _OpenMessage:
    header: Header
    lines: list[str] = field(default_factory=list)

    @property
    def body(self) -> str:
        return "\n".join([self.header.body, *self.lines])


class ExportParser:
    """Fold classified lines into CanonicalMessages for one transcript.

    Args:
        chat_name: Display name of the exported chat.
        owner_name: The exporting user's display name; messages from that
            sender (case-insensitive) are marked ``is_from_me``.
    """

    def __init__(self, chat_name: str, owner_name: str | None = None) -> None:
        self.chat_name = chat_name
        self.owner_name = owner_name
        self.state = ParserState.AWAITING_HEADER
        self.dropped_lines = 0
        self._open: _OpenMessage | None = None
        self._messages: list[CanonicalMessage] = []

    def feed(self, line: str) -> None:
        """Consume one physical line."""
        tag = classify_line(line)
        if isinstance(tag, Header):
            self._flush()
            self._open = _OpenMessage(header=tag)
            self.state = ParserState.ACCUMULATING_BODY
        elif tag is CONTINUATION:
            if self.state is ParserState.ACCUMULATING_BODY and self._open is not None:
                self._open.lines.append(line.strip())
            else:
                self.dropped_lines += 1

    def finish(self) -> list[CanonicalMessage]:
        """Flush the last message and drop system/membership lines."""
        self._flush()
        self.state = ParserState.AWAITING_HEADER
        kept = [m for m in self._messages if not is_system_message(m.content)]
        skipped = len(self._messages) - len(kept)
        if skipped:
            logger.debug("Dropped %d system messages from %s", skipped, self.chat_name)
        self._messages = []
        return kept

    def _flush(self) -> None:
        if self._open is not None:
            self._messages.append(self._build(self._open))
            self._open = None

    def _build(self, open_msg: _OpenMessage) -> CanonicalMessage:
        header = open_msg.header
        timestamp = parse_header_timestamp(header)
        is_from_me = bool(self.owner_name) and header.sender.lower() == self.owner_name.lower()
        raw: dict[str, Any] = {
            "source": EXPORT_SOURCE,
            "original": {
                "date": header.date,
                "time": header.time,
                "sender": header.sender,
                "content": header.body,
                "format": header.format.value,
            },
        }
        body = open_msg.body
        return CanonicalMessage(
            message_id=synthesize_message_id(self.chat_name, timestamp, header.sender),
            chat_jid=f"export:{slugify(self.chat_name)}",
            chat_name=self.chat_name,
            sender_jid=f"export:{slugify(header.sender)}",
            sender_name=header.sender,
            content=body,
            message_type=detect_message_type(header.body),
            is_from_me=is_from_me,
            is_group="group" in self.chat_name.lower(),
            timestamp=timestamp,
            raw_data=raw,
        )


def parse_export(
    lines: Iterable[str], chat_name: str, owner_name: str | None = None
) -> list[CanonicalMessage]:
    """Parse an entire transcript into CanonicalMessages."""
    parser = ExportParser(chat_name, owner_name=owner_name)
    for line in lines:
        parser.feed(line)
    return parser.finish()
