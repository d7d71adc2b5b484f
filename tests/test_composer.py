from __future__ import annotations

import pytest

from session_memory import ConversationRecord, MemoryConfig, PromptComposer
from session_memory.composer import REFERENCE_NOTE, RESOLUTIONS_FOOTER, metadata_block
from session_memory.records import SKILLS, TOPICS


def _history() -> ConversationRecord:
    rec = ConversationRecord("s1")
    rec.add_user_message("I'm learning about algorithms")
    rec.add_assistant_message("Algorithms are step-by-step procedures...")
    return rec


def test_empty_record_returns_message_verbatim():
    composer = PromptComposer()
    assert composer.compose(None, "Hello") == "Hello"
    assert composer.compose(ConversationRecord("s1"), "Hello") == "Hello"


def test_history_block_format():
    prompt = PromptComposer().compose(_history(), "Hello there")
    assert prompt == (
        "Previous conversation context:\n"
        'User: "I\'m learning about algorithms"\n'
        'Assistant: "Algorithms are step-by-step procedures..."\n'
        "\n"
        'Current message: "Hello there"'
    )


def test_metadata_block_order_and_labels():
    rec = _history()
    rec.add_context_value(TOPICS, "algorithms")
    rec.add_context_value(SKILLS, "python: beginner")
    prompt = PromptComposer().compose(rec, "Hello there")
    assert (
        "Context information:\n"
        "- User skills: python: beginner\n"
        "- Discussion topics: algorithms\n"
        "\n"
        'Current message: "Hello there"'
    ) in prompt


def test_metadata_block_skips_empty_categories():
    assert metadata_block({TOPICS: [], SKILLS: []}) == ""
    assert metadata_block(None) == ""


def test_resolved_references_block():
    prompt = PromptComposer().compose(_history(), "Can you give me examples of that?")
    assert prompt.endswith(
        'Current message: "Can you give me examples of that?"\n\n'
        "Reference resolutions:\n"
        '- "that" likely refers to: algorithm\n'
        "\n" + RESOLUTIONS_FOOTER
    )


def test_unresolved_references_get_generic_note():
    rec = ConversationRecord("s1")
    rec.add_user_message("first question")
    prompt = PromptComposer().compose(rec, "what about it")
    assert prompt.endswith("\n\n" + REFERENCE_NOTE)


def test_window_never_shows_older_messages():
    rec = ConversationRecord("s1")
    for i in range(5):
        rec.add_user_message(f"msg-{i}")
    prompt = PromptComposer(window=2).compose(rec, "next")
    assert 'User: "msg-3"' in prompt
    assert 'User: "msg-4"' in prompt
    for i in range(3):
        assert f"msg-{i}" not in prompt


def test_from_config_uses_prompt_window():
    composer = PromptComposer.from_config(MemoryConfig(max_context_messages=3))
    assert composer.window == 3
    assert composer.resolver.window == 3


def test_window_must_be_positive():
    with pytest.raises(ValueError):
        PromptComposer(window=0)
