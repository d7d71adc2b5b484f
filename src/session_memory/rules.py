"""Pattern-based extraction of context metadata from user messages.

Each rule is plain data (a tagged variant) evaluated by :func:`findings`;
:func:`apply_rules` folds the findings of a rule set into a category map.
The rules are heuristics: they bias prompt composition, nothing more.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from .records import ENTITIES, PREFERENCES, SKILLS, TOPICS

PATTERN = "pattern"
VOCABULARY = "vocabulary"

# Capitalized words that are never entities / concepts.
COMMON_WORDS: FrozenSet[str] = frozenset({
    "I", "You", "The", "This", "That", "How", "What", "When", "Where", "Why",
    "Can", "Could", "Should", "Would", "Will", "Do", "Does", "Did", "Have",
    "Has", "Had", "Is", "Are", "Was", "Were", "Be", "Been", "Being",
})

TECH_KEYWORDS: Tuple[str, ...] = (
    "java", "python", "javascript", "typescript", "react", "spring", "boot",
    "database", "sql", "api", "rest", "microservices", "docker", "kubernetes",
    "programming", "coding", "development", "software", "web", "frontend", "backend",
)


@dataclass(frozen=True)
class ExtractionRule:
    """One extraction rule.

    kind == "pattern":    every match of ``pattern`` is mapped through
                          ``transform`` (None results are dropped).
    kind == "vocabulary": every ``vocabulary`` term found as a
                          case-insensitive substring is a finding.
    Findings listed in ``exclude`` are discarded for either kind.
    """
    name: str
    category: str
    kind: str = PATTERN
    pattern: Optional[re.Pattern[str]] = None
    transform: Optional[Callable[[re.Match[str]], Optional[str]]] = None
    vocabulary: Tuple[str, ...] = ()
    exclude: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.kind == PATTERN and self.pattern is None:
            raise ValueError(f"rule {self.name!r}: pattern rules need a pattern")
        if self.kind == VOCABULARY and not self.vocabulary:
            raise ValueError(f"rule {self.name!r}: vocabulary rules need terms")
        if self.kind not in (PATTERN, VOCABULARY):
            raise ValueError(f"rule {self.name!r}: unknown kind {self.kind!r}")


def _skill(m: re.Match[str]) -> Optional[str]:
    level = "beginner" if m.group(2) else m.group(3).lower()
    return f"{m.group(4)}: {level}"


def _preference(m: re.Match[str]) -> Optional[str]:
    return f"{m.group(1)} {m.group(3).strip()}"


SKILL_RULE = ExtractionRule(
    name="skill",
    category=SKILLS,
    pattern=re.compile(
        r"\b(I am|I'm)\s+(not\s+)?(good|bad|terrible|excellent|great|new|experienced)\s+at\s+(\w+)",
        re.IGNORECASE,
    ),
    transform=_skill,
)

PREFERENCE_RULE = ExtractionRule(
    name="preference",
    category=PREFERENCES,
    pattern=re.compile(r"\b(I (like|prefer|hate|dislike|love|want|need))\s+(.+)", re.IGNORECASE),
    transform=_preference,
)

TOPIC_PHRASE_RULE = ExtractionRule(
    name="topic-phrase",
    category=TOPICS,
    pattern=re.compile(r"\b(about|regarding|concerning|related to)\s+(\w+)", re.IGNORECASE),
    transform=lambda m: m.group(2),
)

TOPIC_VOCABULARY_RULE = ExtractionRule(
    name="topic-vocabulary",
    category=TOPICS,
    kind=VOCABULARY,
    vocabulary=TECH_KEYWORDS,
)

ENTITY_RULE = ExtractionRule(
    name="entity",
    category=ENTITIES,
    pattern=re.compile(r"\b[A-Z][a-zA-Z]+\b"),
    transform=lambda m: m.group(0),
    exclude=COMMON_WORDS,
)

DEFAULT_RULES: Tuple[ExtractionRule, ...] = (
    SKILL_RULE,
    PREFERENCE_RULE,
    TOPIC_PHRASE_RULE,
    TOPIC_VOCABULARY_RULE,
    ENTITY_RULE,
)


def findings(rule: ExtractionRule, text: str) -> List[str]:
    """Evaluate a single rule against ``text`` (in order of appearance / vocabulary)."""
    out: List[str] = []
    if rule.kind == VOCABULARY:
        lowered = text.lower()
        out = [term for term in rule.vocabulary if term.lower() in lowered]
    else:
        for m in rule.pattern.finditer(text):  # type: ignore[union-attr]
            value = rule.transform(m) if rule.transform else m.group(0)
            if value:
                out.append(value)
    return [v for v in out if v not in rule.exclude]


def apply_rules(
    text: str,
    metadata: Optional[Mapping[str, Sequence[str]]] = None,
    rules: Iterable[ExtractionRule] = DEFAULT_RULES,
) -> Dict[str, List[str]]:
    """Return a copy of ``metadata`` extended with the findings of ``rules``.

    Categories stay ordered-unique, so applying the same text twice is a
    no-op the second time.
    """
    result: Dict[str, List[str]] = {k: list(v) for k, v in (metadata or {}).items()}
    if not text or not text.strip():
        return result

    for rule in rules:
        values = result.setdefault(rule.category, [])
        for found in findings(rule, text):
            if found not in values:
                values.append(found)
    return result
