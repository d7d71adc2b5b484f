from __future__ import annotations

import re

import pytest

from session_memory import apply_rules
from session_memory.records import ENTITIES, PREFERENCES, SKILLS, TOPICS
from session_memory.rules import (
    ENTITY_RULE,
    PREFERENCE_RULE,
    SKILL_RULE,
    TOPIC_PHRASE_RULE,
    TOPIC_VOCABULARY_RULE,
    VOCABULARY,
    ExtractionRule,
    findings,
)


def test_negated_skill_is_beginner():
    assert findings(SKILL_RULE, "I am not good at python") == ["python: beginner"]


def test_skill_level_is_lowercased():
    assert findings(SKILL_RULE, "I'm Excellent at Java") == ["Java: excellent"]


def test_preference_keeps_verb_and_rest_of_sentence():
    assert findings(PREFERENCE_RULE, "Honestly I prefer short answers  ") == ["I prefer short answers"]


def test_topic_phrase():
    assert findings(TOPIC_PHRASE_RULE, "Tell me about recursion and regarding loops") == ["recursion", "loops"]


def test_topic_vocabulary_is_substring_and_vocabulary_ordered():
    # "javascript" also contains "java"; vocabulary order decides output order
    assert findings(TOPIC_VOCABULARY_RULE, "Docker and JavaScript") == ["java", "javascript", "docker"]


def test_entities_skip_common_words():
    assert findings(ENTITY_RULE, "The Django docs say This is Fine") == ["Django", "Fine"]


def test_apply_rules_scenario_skill():
    meta = apply_rules("I am not good at python")
    assert "python: beginner" in meta[SKILLS]
    assert "python" in meta[TOPICS]


def test_apply_rules_is_idempotent():
    text = "I love Kubernetes and I am great at docker"
    once = apply_rules(text)
    twice = apply_rules(text, once)
    assert once == twice


def test_apply_rules_does_not_mutate_input():
    base = {TOPICS: ["python"]}
    out = apply_rules("Tell me about sql", base)
    assert base == {TOPICS: ["python"]}
    assert out[TOPICS] == ["python", "sql"]


def test_apply_rules_blank_text_returns_copy():
    base = {ENTITIES: ["Alice"]}
    out = apply_rules("   ", base)
    assert out == base
    assert out is not base


def test_custom_rule_set():
    rule = ExtractionRule(
        name="ticket",
        category="tickets",
        pattern=re.compile(r"\bJIRA-(\d+)\b"),
        transform=lambda m: m.group(1),
    )
    assert apply_rules("see JIRA-42 and JIRA-7", rules=[rule]) == {"tickets": ["42", "7"]}


def test_rule_validation():
    with pytest.raises(ValueError):
        ExtractionRule(name="bad", category=PREFERENCES)
    with pytest.raises(ValueError):
        ExtractionRule(name="bad", category=TOPICS, kind=VOCABULARY)
    with pytest.raises(ValueError):
        ExtractionRule(name="bad", category=TOPICS, kind="fuzzy", pattern=re.compile("x"))
