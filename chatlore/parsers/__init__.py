"""Source normalizers: live bridge buffer, export transcripts, session logs."""

from chatlore.parsers.bridge import normalize_bridge_message
from chatlore.parsers.export import ExportParser, classify_line, parse_export
from chatlore.parsers.session_log import SessionParseStats, iter_session_messages

__all__ = [
    "ExportParser",
    "SessionParseStats",
    "classify_line",
    "iter_session_messages",
    "normalize_bridge_message",
    "parse_export",
]
