"""Best-effort resolution of pronoun / demonstrative / backward references.

Given the new user text and the session record, map each reference span
("it", "that approach", "the above", ...) to a probable referent drawn from
the recent messages. This biases the prompt; it is not real NLU.
"""
from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .records import ConversationRecord, Message
from .rules import COMMON_WORDS

PRONOUN_PATTERN = re.compile(r"\b(that|it|this|these|those)\b", re.IGNORECASE)
DEMONSTRATIVE_PATTERN = re.compile(r"\b(this|that|these|those)\s+(\w+)", re.IGNORECASE)
EXPLICIT_PATTERN = re.compile(r"\b(the (above|previous|last|earlier|mentioned))\b", re.IGNORECASE)
CONCEPT_PATTERN = re.compile(r"\b[A-Z][a-zA-Z]{2,}\b")

# Checked in this order; the first hit wins.
TECH_TERMS: Tuple[str, ...] = (
    "algorithm", "function", "method", "class", "variable", "array", "list",
    "database", "query", "API", "framework", "library", "pattern", "design",
    "error", "exception", "bug", "issue", "problem", "solution", "approach",
)

CONTEXT_RADIUS = 3       # words either side of a demonstrative hit
SNIPPET_CHARS = 50       # fallback snippet length
FALLBACK_WORDS = 3


# -----------------------------
# Detection
# -----------------------------
def contains_pronouns(text: Optional[str]) -> bool:
    return bool(text) and PRONOUN_PATTERN.search(text) is not None


def contains_references(text: Optional[str]) -> bool:
    if not text:
        return False
    return any(p.search(text) for p in (PRONOUN_PATTERN, DEMONSTRATIVE_PATTERN, EXPLICIT_PATTERN))


# -----------------------------
# Shared helpers
# -----------------------------
def extract_key_concept(content: Optional[str]) -> Optional[str]:
    """Key concept of a message.

    Precedence: technical vocabulary -> first capitalized non-common word
    -> first three words of the message.
    """
    if not content or not content.strip():
        return None

    lowered = content.lower()
    for term in TECH_TERMS:
        if term.lower() in lowered:
            return term

    for m in CONCEPT_PATTERN.finditer(content):
        if m.group(0) not in COMMON_WORDS:
            return m.group(0)

    words = content.split()
    if len(words) > FALLBACK_WORDS:
        return " ".join(words[:FALLBACK_WORDS]) + "..."
    return " ".join(words)


def context_around(content: str, noun: str) -> str:
    """Short word window around the first word containing ``noun``."""
    words = content.split()
    needle = noun.lower()
    for i, w in enumerate(words):
        if needle in w.lower():
            start = max(0, i - CONTEXT_RADIUS)
            end = min(len(words), i + CONTEXT_RADIUS + 1)
            return " ".join(words[start:end])
    return content[:SNIPPET_CHARS] + "..." if len(content) > SNIPPET_CHARS else content


def find_noun(noun: str, messages: Sequence[Message]) -> Optional[str]:
    """Scan most-recent-first for ``noun``; return the context around the first hit."""
    needle = noun.lower()
    for message in reversed(messages):
        if needle in message.content.lower():
            return context_around(message.content, noun)
    return None


def most_mentioned_concept(messages: Sequence[Message]) -> Optional[str]:
    """Most frequent key concept; ties go to the first one encountered."""
    counts: Counter = Counter()
    for message in messages:
        concept = extract_key_concept(message.content)
        if concept is not None:
            counts[concept] += 1
    if not counts:
        return None
    # most_common keeps first-insertion order among equal counts
    return counts.most_common(1)[0][0]


# -----------------------------
# Strategies
# -----------------------------
@dataclass(frozen=True)
class ResolutionStrategy:
    """A named reference strategy: ``resolve(text, recent) -> {span: referent}``."""
    name: str
    pattern: re.Pattern
    resolve: Callable[[str, Sequence[Message]], Dict[str, str]]


def _resolve_demonstratives(text: str, recent: Sequence[Message]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for m in DEMONSTRATIVE_PATTERN.finditer(text):
        span, noun = m.group(0), m.group(2)
        if span in out:
            continue
        resolution = find_noun(noun, recent)
        if resolution is not None:
            out[span] = resolution
    return out


def _resolve_pronouns(text: str, recent: Sequence[Message]) -> Dict[str, str]:
    last_assistant = next((m for m in reversed(recent) if m.is_assistant), None)
    if last_assistant is None:
        return {}
    concept = extract_key_concept(last_assistant.content)
    if concept is None:
        return {}
    return {m.group(1): concept for m in PRONOUN_PATTERN.finditer(text)}


def _resolve_explicit(text: str, recent: Sequence[Message]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for m in EXPLICIT_PATTERN.finditer(text):
        span, kind = m.group(0), m.group(2).lower()
        if kind == "mentioned":
            resolution = most_mentioned_concept(recent)
        else:
            resolution = extract_key_concept(recent[-1].content) if recent else None
        if resolution is not None:
            out.setdefault(span, resolution)
    return out


DEMONSTRATIVE_STRATEGY = ResolutionStrategy("demonstrative", DEMONSTRATIVE_PATTERN, _resolve_demonstratives)
PRONOUN_STRATEGY = ResolutionStrategy("pronoun", PRONOUN_PATTERN, _resolve_pronouns)
EXPLICIT_STRATEGY = ResolutionStrategy("explicit", EXPLICIT_PATTERN, _resolve_explicit)

DEFAULT_STRATEGIES: Tuple[ResolutionStrategy, ...] = (
    DEMONSTRATIVE_STRATEGY,
    PRONOUN_STRATEGY,
    EXPLICIT_STRATEGY,
)


# -----------------------------
# Resolver
# -----------------------------
class ReferenceResolver:
    """Run every strategy over the recent window and merge by span (first writer wins)."""

    def __init__(self, window: int = 10, strategies: Sequence[ResolutionStrategy] = DEFAULT_STRATEGIES) -> None:
        if window <= 0:
            raise ValueError("window must be positive")
        self.window = window
        self.strategies = tuple(strategies)

    def resolve(self, text: Optional[str], record: Optional[ConversationRecord]) -> Dict[str, str]:
        resolutions: Dict[str, str] = {}
        if not text or record is None or record.is_empty:
            return resolutions

        recent: List[Message] = record.recent(self.window)
        for strategy in self.strategies:
            if strategy.pattern.search(text) is None:
                continue
            for span, referent in strategy.resolve(text, recent).items():
                resolutions.setdefault(span, referent)
        return resolutions
