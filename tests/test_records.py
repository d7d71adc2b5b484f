from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from session_memory import ConversationRecord, InvalidArgument, Message, Role
from session_memory.records import SKILLS, TOPICS


T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


def test_message_rejects_blank_content():
    with pytest.raises(InvalidArgument):
        Message(Role.USER, "   ")
    with pytest.raises(InvalidArgument):
        Message.assistant("")


def test_message_role_parsing():
    assert Message("USER", "hi").role is Role.USER
    assert Message.assistant("hello").is_assistant
    with pytest.raises(InvalidArgument):
        Message("system", "hi")


def test_message_metadata_overwrites():
    m = Message.user("hi", timestamp=T0)
    m.add_metadata("lang", "en")
    m.add_metadata("lang", "fr")
    assert m.get_metadata("lang") == "fr"
    assert m.get_metadata("missing", 1) == 1
    assert m.to_dict()["timestamp"] == T0.isoformat()


def test_record_requires_session_id():
    with pytest.raises(InvalidArgument):
        ConversationRecord("")


def test_add_message_touches_and_filters_by_role():
    rec = ConversationRecord("s1", last_activity=T0)
    rec.add_message(Message.user("one", timestamp=_at(1)))
    rec.add_message(Message.assistant("two", timestamp=_at(2)))
    rec.add_message(Message.user("three", timestamp=_at(3)))

    assert rec.message_count == 3
    assert rec.last_activity == _at(3)
    assert rec.last_message.content == "three"
    assert [m.content for m in rec.user_messages] == ["one", "three"]
    assert [m.content for m in rec.assistant_messages] == ["two"]
    assert [m.content for m in rec.messages_in_range(_at(1), _at(2))] == ["one", "two"]


def test_recent_returns_suffix():
    rec = ConversationRecord("s1")
    for i in range(5):
        rec.add_user_message(f"m{i}")
    assert [m.content for m in rec.recent(2)] == ["m3", "m4"]
    assert len(rec.recent(50)) == 5
    assert rec.recent(0) == []


def test_touch_never_moves_backwards():
    rec = ConversationRecord("s1", last_activity=_at(10))
    rec.touch(_at(5))
    assert rec.last_activity == _at(10)
    rec.touch(_at(20))
    assert rec.last_activity == _at(20)


def test_is_inactive_for():
    rec = ConversationRecord("s1", last_activity=T0)
    assert rec.is_inactive_for(15, now=_at(30))
    assert not rec.is_inactive_for(15, now=_at(10))


def test_context_values_are_ordered_unique():
    rec = ConversationRecord("s1")
    assert rec.add_context_value(TOPICS, "python")
    assert rec.add_context_value(TOPICS, "docker")
    assert not rec.add_context_value(TOPICS, "python")
    assert rec.context_values(TOPICS) == ["python", "docker"]
    assert rec.has_context(TOPICS)
    assert not rec.has_context(SKILLS)

    assert rec.remove_context(TOPICS) == ["python", "docker"]
    assert not rec.has_context(TOPICS)


def test_copy_is_independent():
    rec = ConversationRecord("s1")
    rec.add_user_message("hello")
    rec.add_context_value(TOPICS, "python")

    snap = rec.copy()
    snap.add_user_message("more")
    snap.add_context_value(TOPICS, "java")

    assert rec.message_count == 1
    assert rec.context_values(TOPICS) == ["python"]


def test_export_text_includes_context_and_turns():
    rec = ConversationRecord("s1")
    rec.add_context_value(SKILLS, "python: beginner")
    rec.add_user_message("Hi")
    rec.add_assistant_message("Hello!")

    text = rec.export_text()
    assert text.startswith("=== CONTEXT ===\nskills: python: beginner\n")
    assert "user: Hi\n" in text
    assert "assistant: Hello!\n" in text
    assert len(rec.export_text(limit_chars=10)) == 10


def test_to_dict_shape():
    rec = ConversationRecord("s1", last_activity=T0)
    rec.add_message(Message.user("hi", timestamp=T0))
    d = rec.to_dict()
    assert d["session_id"] == "s1"
    assert d["message_count"] == 1
    assert d["messages"][0]["role"] == "user"
