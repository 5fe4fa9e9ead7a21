"""Tests for MessageStore: chat and session message persistence."""

from datetime import UTC, datetime

from chatlore.messages.models import CanonicalMessage, MessageType, Role, SessionMessage
from chatlore.messages.store import MessageStore

TS = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)


def _chat(message_id: str, chat_jid: str = "alice@s.whatsapp.net", **kwargs) -> CanonicalMessage:
    defaults = {
        "sender_jid": "alice@s.whatsapp.net",
        "content": "hello",
        "message_type": MessageType.TEXT,
        "timestamp": TS,
    }
    defaults.update(kwargs)
    return CanonicalMessage(message_id=message_id, chat_jid=chat_jid, **defaults)


def _session(index: int, session_id: str = "sess-1", **kwargs) -> SessionMessage:
    defaults = {"role": Role.USER, "content": f"turn {index}"}
    defaults.update(kwargs)
    return SessionMessage(session_id=session_id, message_index=index, **defaults)


# -- chat messages ---------------------------------------------------------------


async def test_insert_and_get_chat_message(message_store: MessageStore) -> None:
    msg = _chat("m1", is_from_me=True, raw_data={"k": "v"}, quoted_message_id="m0")
    assert await message_store.insert_chat_message(msg) is True

    fetched = await message_store.get_chat_message("m1")
    assert fetched == msg


async def test_duplicate_chat_message_is_noop(message_store: MessageStore) -> None:
    assert await message_store.insert_chat_message(_chat("m1")) is True
    assert await message_store.insert_chat_message(_chat("m1", content="edited")) is False

    assert await message_store.count_chat_messages() == 1
    fetched = await message_store.get_chat_message("m1")
    assert fetched is not None
    assert fetched.content == "hello"


async def test_link_chat_message_sets_once(message_store: MessageStore) -> None:
    await message_store.insert_chat_message(_chat("m1"))
    assert await message_store.link_chat_message("m1", "rec-1") is True
    assert await message_store.link_chat_message("m1", "rec-2") is False

    fetched = await message_store.get_chat_message("m1")
    assert fetched is not None
    assert fetched.knowledge_record_id == "rec-1"


async def test_unnamed_group_chats_distinct(message_store: MessageStore) -> None:
    await message_store.insert_chat_message(_chat("m1", "g1@g.us", is_group=True))
    await message_store.insert_chat_message(_chat("m2", "g1@g.us", is_group=True))
    await message_store.insert_chat_message(
        _chat("m3", "g2@g.us", is_group=True, chat_name="Named")
    )
    await message_store.insert_chat_message(_chat("m4", "bob@s.whatsapp.net"))

    assert await message_store.unnamed_group_chats() == ["g1@g.us"]


async def test_unnamed_group_chats_keyset_pages(message_store: MessageStore) -> None:
    for i, jid in enumerate(["a@g.us", "b@g.us", "c@g.us"]):
        await message_store.insert_chat_message(_chat(f"m{i}", jid, is_group=True))

    page1 = await message_store.unnamed_group_chats(limit=2)
    assert page1 == ["a@g.us", "b@g.us"]
    assert await message_store.unnamed_group_chats(limit=2, after=page1[-1]) == ["c@g.us"]
    assert await message_store.unnamed_group_chats(limit=2, after="c@g.us") == []


async def test_set_chat_name_only_fills_missing(message_store: MessageStore) -> None:
    await message_store.insert_chat_message(_chat("m1", "g1@g.us", is_group=True))
    await message_store.insert_chat_message(_chat("m2", "g1@g.us", is_group=True, chat_name="Old"))

    assert await message_store.set_chat_name("g1@g.us", "New") == 1

    first = await message_store.get_chat_message("m1")
    second = await message_store.get_chat_message("m2")
    assert first is not None and first.chat_name == "New"
    assert second is not None and second.chat_name == "Old"


# -- session messages ------------------------------------------------------------


async def test_insert_and_get_session_message(message_store: MessageStore) -> None:
    msg = _session(
        4,
        project_path="proj",
        tool_calls=[{"id": "t1", "name": "Read", "input": {}}],
        timestamp=TS,
        model="claude-sonnet",
    )
    assert await message_store.insert_session_message(msg) is True
    assert await message_store.get_session_message("sess-1", 4) == msg


async def test_duplicate_session_key_is_noop(message_store: MessageStore) -> None:
    assert await message_store.insert_session_message(_session(0)) is True
    assert await message_store.insert_session_message(_session(0, content="other")) is False
    assert await message_store.insert_session_message(_session(1)) is True

    assert await message_store.count_session_messages() == 2
    assert await message_store.count_sessions() == 1


async def test_link_session_message(message_store: MessageStore) -> None:
    await message_store.insert_session_message(_session(0))
    assert await message_store.link_session_message("sess-1", 0, "rec-1") is True

    fetched = await message_store.get_session_message("sess-1", 0)
    assert fetched is not None
    assert fetched.knowledge_record_id == "rec-1"


async def test_missing_session_message(message_store: MessageStore) -> None:
    assert await message_store.get_session_message("nope", 0) is None
