"""Tests for the live, export and session importers."""

import json
import os
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatlore.bridge.client import BridgeClient, ChatNameResult
from chatlore.errors import BridgeUnavailableError
from chatlore.importers.base import ImportStats, should_create_record
from chatlore.importers.export import ExportImporter
from chatlore.importers.live import LiveImporter
from chatlore.importers.sessions import SessionImporter
from chatlore.knowledge.models import SourceType

EXPORT_TEXT = """\
[1/15/24, 10:30:15 AM] John Doe: Hello!
[1/15/24, 10:31:00 AM] Me: Hi John
how are you?
[1/15/24, 10:32:00 AM] John Doe: Messages and calls are end-to-end encrypted.
[1/15/24, 10:33:00 AM] Me: Lunch tomorrow?
"""


def _bridge_message(message_id: str, content: str = "hello", **overrides) -> dict:
    data = {
        "message_id": message_id,
        "chat_jid": "120363@g.us",
        "sender_jid": "me@s.whatsapp.net",
        "content": content,
        "is_from_me": True,
        "timestamp": "2024-03-01T12:00:00Z",
    }
    data.update(overrides)
    return data


@pytest.fixture
def bridge() -> AsyncMock:
    mock = AsyncMock(spec=BridgeClient)
    mock.fetch_names_for_jids.return_value = []
    return mock


@pytest.fixture
def live(bridge, message_store, knowledge_store) -> LiveImporter:
    return LiveImporter(bridge=bridge, message_store=message_store, knowledge_store=knowledge_store)


# -- inclusion policy ------------------------------------------------------------


def test_should_create_record() -> None:
    assert should_create_record("hi", included=True, user_only=True) is True
    assert should_create_record("hi", included=False, user_only=True) is False
    assert should_create_record("hi", included=False, user_only=False) is True
    assert should_create_record("   ", included=True, user_only=False) is False
    assert should_create_record(None, included=True, user_only=False) is False


def test_import_stats_merge() -> None:
    total = ImportStats(processed=1, errors=1)
    total.merge(ImportStats(processed=2, records=3, failed_reason="ignored"))
    assert total.processed == 3
    assert total.records == 3
    assert total.errors == 1
    assert total.failed_reason is None


# -- live importer ---------------------------------------------------------------


async def test_live_import_creates_records_for_own_messages(
    live, bridge, message_store, knowledge_store
) -> None:
    bridge.get_buffered_messages.return_value = [
        _bridge_message("m1", "my message"),
        _bridge_message("m2", "their message", is_from_me=False),
        _bridge_message("m3", "   "),
        {"chat_jid": "broken"},
    ]

    stats = await live.import_all()

    assert stats.processed == 3
    assert stats.inserted == 3
    assert stats.records == 1
    assert stats.skipped == 2
    assert stats.errors == 1
    assert await message_store.count_chat_messages() == 3

    record = await knowledge_store.get_by_source(SourceType.WHATSAPP, "whatsapp:m1")
    assert record is not None
    assert record.metadata["chat_jid"] == "120363@g.us"
    stored = await message_store.get_chat_message("m1")
    assert stored is not None
    assert stored.knowledge_record_id == record.id


async def test_live_import_all_authors(live, bridge, knowledge_store) -> None:
    bridge.get_buffered_messages.return_value = [
        _bridge_message("m1", "mine"),
        _bridge_message("m2", "theirs", is_from_me=False),
    ]
    stats = await live.import_all(user_only=False)
    assert stats.records == 2


async def test_live_reimport_is_idempotent(live, bridge, message_store, knowledge_store) -> None:
    bridge.get_buffered_messages.return_value = [_bridge_message("m1", "once")]
    await live.import_all()
    stats = await live.import_all()

    assert stats.inserted == 0
    assert stats.records == 0
    assert await message_store.count_chat_messages() == 1
    assert await knowledge_store.count() == 1


async def test_identical_content_makes_one_record(live, bridge, knowledge_store) -> None:
    bridge.get_buffered_messages.return_value = [
        _bridge_message("m1", "ok"),
        _bridge_message("m2", "ok"),
    ]
    stats = await live.import_all()

    assert stats.records == 1
    assert await knowledge_store.count() == 1


async def test_live_import_submits_to_queue(bridge, message_store, knowledge_store) -> None:
    queue = MagicMock()
    importer = LiveImporter(
        bridge=bridge,
        message_store=message_store,
        knowledge_store=knowledge_store,
        embedding_queue=queue,
    )
    bridge.get_buffered_messages.return_value = [_bridge_message("m1", "embed me")]

    await importer.import_all(with_embeddings=True)

    queue.submit.assert_called_once()
    assert queue.submit.call_args.args[0].raw_content == "embed me"


async def test_live_import_propagates_bridge_failure(live, bridge) -> None:
    bridge.get_buffered_messages.side_effect = BridgeUnavailableError("down")
    with pytest.raises(BridgeUnavailableError):
        await live.import_all()


async def test_sync_chat_names(live, bridge, message_store) -> None:
    bridge.get_buffered_messages.return_value = [
        _bridge_message("m1", chat_jid="g1@g.us"),
        _bridge_message("m2", chat_jid="g1@g.us"),
        _bridge_message("m3", chat_jid="g2@g.us"),
    ]
    bridge.fetch_names_for_jids.return_value = [
        ChatNameResult(jid="g1@g.us", name="Book Club", success=True),
        ChatNameResult(jid="g2@g.us", name=None, success=False),
    ]

    stats = await live.import_all()

    bridge.fetch_names_for_jids.assert_awaited_once_with(["g1@g.us", "g2@g.us"])
    assert stats.chat_names_updated == 2
    named = await message_store.get_chat_message("m1")
    unnamed = await message_store.get_chat_message("m3")
    assert named is not None and named.chat_name == "Book Club"
    assert unnamed is not None and unnamed.chat_name is None


async def test_sync_chat_names_survives_lookup_failure(live, bridge, message_store) -> None:
    bridge.get_buffered_messages.return_value = [_bridge_message("m1", chat_jid="g1@g.us")]
    bridge.fetch_names_for_jids.side_effect = BridgeUnavailableError("down")

    stats = await live.import_all()

    assert stats.processed == 1
    assert stats.chat_names_updated == 0


async def test_sync_chat_names_pages_past_unresolvable_chats(
    live, bridge, message_store
) -> None:
    jids = ["a@g.us", "b@g.us", "c@g.us", "z@g.us"]
    bridge.get_buffered_messages.return_value = [
        _bridge_message(f"m{i}", chat_jid=jid) for i, jid in enumerate(jids)
    ]
    await live.import_all()

    async def lookup(batch):
        return [
            ChatNameResult(jid=jid, name="Zed", success=True)
            if jid == "z@g.us"
            else ChatNameResult(jid=jid, success=False)
            for jid in batch
        ]

    bridge.fetch_names_for_jids.reset_mock()
    bridge.fetch_names_for_jids.side_effect = lookup

    assert await live.sync_chat_names(page_size=3) == 1

    batches = [c.args[0] for c in bridge.fetch_names_for_jids.await_args_list]
    assert batches == [["a@g.us", "b@g.us", "c@g.us"], ["z@g.us"]]
    named = await message_store.get_chat_message("m3")
    assert named is not None and named.chat_name == "Zed"


async def test_backfill_chat_names(live, bridge, message_store) -> None:
    bridge.get_buffered_messages.return_value = [
        _bridge_message("m1", chat_jid="alice@s.whatsapp.net"),
        _bridge_message("m2", chat_jid="g1@g.us", chat_name="Kept"),
    ]
    await live.import_all()
    bridge.get_chats.return_value = [
        {"jid": "alice@s.whatsapp.net", "name": "Alice"},
        {"jid": "g1@g.us", "name": "Renamed"},
        {"jid": "bob@s.whatsapp.net", "name": "bob@s.whatsapp.net"},
    ]

    result = await live.backfill_chat_names()

    assert result == {"updated": 1, "chats": 2}
    kept = await message_store.get_chat_message("m2")
    assert kept is not None and kept.chat_name == "Kept"


async def test_import_chat(live, bridge, message_store) -> None:
    bridge.get_messages.return_value = [_bridge_message("m9", "from history")]
    stats = await live.import_chat("120363@g.us", limit=10)

    bridge.get_messages.assert_awaited_once_with("120363@g.us", limit=10)
    assert stats.inserted == 1


# -- export importer -------------------------------------------------------------


@pytest.fixture
def exporter(message_store, knowledge_store) -> ExportImporter:
    return ExportImporter(message_store=message_store, knowledge_store=knowledge_store)


@pytest.fixture
def export_file(tmp_path: Path) -> Path:
    path = tmp_path / "exports" / "WhatsApp Chat with John Doe.txt"
    path.parent.mkdir()
    path.write_text(EXPORT_TEXT, encoding="utf-8")
    return path


async def test_export_import_file(exporter, export_file, message_store, knowledge_store) -> None:
    stats = await exporter.import_file(export_file, my_name="Me")

    assert stats.processed == 3
    assert stats.records == 2
    assert await message_store.count_chat_messages() == 3

    records = await knowledge_store.count_by_source_type()
    assert records == {"whatsapp": 2}


async def test_export_reimport_same_count(exporter, export_file, message_store) -> None:
    await exporter.import_file(export_file, my_name="Me")
    stats = await exporter.import_file(export_file, my_name="Me")

    assert stats.inserted == 0
    assert stats.records == 0
    assert await message_store.count_chat_messages() == 3


async def test_export_multiline_body_and_source_id(exporter, export_file, knowledge_store) -> None:
    await exporter.import_file(export_file, my_name="Me")
    hits = await knowledge_store.pending_embeddings(limit=10)
    bodies = sorted(r.raw_content for _, r in hits)
    assert bodies == ["Hi John\nhow are you?", "Lunch tomorrow?"]
    assert all(r.source_id.startswith("whatsapp:export:") for _, r in hits)
    assert hits[0][1].metadata["chat_name"] == "John Doe"


async def test_export_owner_from_settings(exporter, export_file, monkeypatch) -> None:
    monkeypatch.setattr("chatlore.config.settings.export_owner_name", "Me")
    stats = await exporter.import_file(export_file)
    assert stats.records == 2


async def test_export_without_owner_indexes_nothing(exporter, export_file) -> None:
    stats = await exporter.import_file(export_file)
    assert stats.records == 0
    assert stats.skipped == 3


async def test_export_missing_file_raises(exporter, tmp_path: Path) -> None:
    with pytest.raises(OSError):
        await exporter.import_file(tmp_path / "missing.txt")


async def test_export_directory(exporter, export_file, message_store) -> None:
    (export_file.parent / "notes.md").write_text("ignored", encoding="utf-8")
    (export_file.parent / "WhatsApp Chat with Jane.txt").write_text(
        "15/01/2024, 10:30 - Jane: Morning\n", encoding="utf-8"
    )

    stats = await exporter.import_directory(export_file.parent, my_name="Me")

    assert stats.files == 2
    assert stats.processed == 4
    assert await message_store.count_chat_messages() == 4


def test_list_exports(export_file: Path, tmp_path: Path) -> None:
    assert ExportImporter.list_exports(export_file.parent) == [export_file]
    assert ExportImporter.list_exports(tmp_path / "nope") == []


# -- session importer ------------------------------------------------------------


def _write_session(path: Path, entries: list) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [e if isinstance(e, str) else json.dumps(e) for e in entries]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    root = tmp_path / "projects"
    _write_session(
        root / "-home-me-app" / "sess-1.jsonl",
        [
            {"type": "summary", "summary": "Build app"},
            {"type": "user", "message": {"content": "add a login page"}},
            {
                "type": "assistant",
                "message": {"content": [{"type": "text", "text": "Done."}], "model": "m"},
            },
            "{not json",
        ],
    )
    _write_session(
        root / "-home-me-app" / "sess-1" / "subagents" / "agent-1.jsonl",
        [{"type": "user", "message": {"content": "sub task"}}],
    )
    _write_session(
        root / "-home-me-lib" / "sess-2.jsonl",
        [{"type": "user", "message": {"content": "write docs"}}],
    )
    return root


@pytest.fixture
def sessions(projects_dir, message_store, knowledge_store) -> SessionImporter:
    return SessionImporter(
        projects_dir=projects_dir, message_store=message_store, knowledge_store=knowledge_store
    )


def test_list_projects_and_sessions(sessions: SessionImporter, projects_dir: Path) -> None:
    projects = sessions.list_projects()
    assert [p.name for p in projects] == ["-home-me-app", "-home-me-lib"]

    files = sessions.list_sessions(projects[0])
    assert sorted(f.name for f in files) == ["agent-1.jsonl", "sess-1.jsonl"]


def test_list_sessions_since(sessions: SessionImporter, projects_dir: Path) -> None:
    old = projects_dir / "-home-me-lib" / "sess-2.jsonl"
    os.utime(old, (1_000_000, 1_000_000))
    since = datetime(2001, 1, 1, tzinfo=UTC)
    assert sessions.list_sessions(projects_dir / "-home-me-lib", since=since) == []


def test_list_projects_missing_root(message_store, knowledge_store, tmp_path: Path) -> None:
    importer = SessionImporter(
        projects_dir=tmp_path / "absent",
        message_store=message_store,
        knowledge_store=knowledge_store,
    )
    assert importer.list_projects() == []


def test_derive_project_path(sessions: SessionImporter, projects_dir: Path) -> None:
    nested = projects_dir / "-home-me-app" / "sess-1" / "subagents" / "agent-1.jsonl"
    assert sessions.derive_project_path(nested) == "-home-me-app"


async def test_import_session(sessions, projects_dir, message_store, knowledge_store) -> None:
    stats = await sessions.import_session(projects_dir / "-home-me-app" / "sess-1.jsonl")

    assert stats.processed == 2
    assert stats.records == 1
    assert stats.errors == 1

    record = await knowledge_store.get_by_source(SourceType.CLAUDE_CODE, "claude:sess-1:1")
    assert record is not None
    assert record.raw_content == "add a login page"
    assert record.metadata["project_path"] == "-home-me-app"

    assistant = await message_store.get_session_message("sess-1", 2)
    assert assistant is not None
    assert assistant.content == "Done."
    assert assistant.model == "m"


async def test_import_all_sessions(sessions, message_store) -> None:
    stats = await sessions.import_all()

    assert stats.projects == 2
    assert stats.sessions == 3
    assert stats.records == 3
    assert await message_store.count_sessions() == 3


async def test_session_reimport_is_idempotent(sessions, message_store, knowledge_store) -> None:
    await sessions.import_all()
    stats = await sessions.import_all()

    assert stats.inserted == 0
    assert stats.records == 0
    assert await knowledge_store.count() == 3


async def test_import_project_counts_unreadable_file(
    sessions, projects_dir, monkeypatch
) -> None:
    original = SessionImporter.import_session

    async def flaky(self, path, **kwargs):
        if path.name == "agent-1.jsonl":
            raise PermissionError("denied")
        return await original(self, path, **kwargs)

    monkeypatch.setattr(SessionImporter, "import_session", flaky)
    stats = await sessions.import_project(projects_dir / "-home-me-app")

    assert stats.errors == 2
    assert stats.sessions == 1
