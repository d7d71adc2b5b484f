"""Compose the context-augmented prompt sent to the language model."""
from __future__ import annotations

from typing import List, Mapping, Optional, Sequence

from .config import MemoryConfig
from .records import ENTITIES, PREFERENCES, SKILLS, TOPICS, ConversationRecord
from .resolver import ReferenceResolver, contains_references

HISTORY_HEADER = "Previous conversation context:"
METADATA_HEADER = "Context information:"
RESOLUTIONS_HEADER = "Reference resolutions:"
RESOLUTIONS_FOOTER = "Please use these reference resolutions when responding to the user's message."
REFERENCE_NOTE = (
    "Note: The user's message contains references (like 'that', 'it', 'this'). "
    "Please resolve these references using the conversation context above."
)

# (category, label) in display order
METADATA_LABELS = (
    (SKILLS, "User skills"),
    (TOPICS, "Discussion topics"),
    (PREFERENCES, "User preferences"),
    (ENTITIES, "Mentioned entities"),
)


def metadata_block(metadata: Optional[Mapping[str, Sequence[str]]]) -> str:
    """One ``- Label: a, b`` line per non-empty category; empty string if none."""
    if not metadata:
        return ""
    lines: List[str] = []
    for category, label in METADATA_LABELS:
        values = metadata.get(category)
        if values:
            lines.append(f"- {label}: {', '.join(values)}\n")
    return "".join(lines)


class PromptComposer:
    """Builds the prompt from the recent window, metadata and resolved references."""

    def __init__(self, window: int = 10, resolver: Optional[ReferenceResolver] = None) -> None:
        if window <= 0:
            raise ValueError("window must be positive")
        self.window = window
        self.resolver = resolver or ReferenceResolver(window)

    @classmethod
    def from_config(cls, config: MemoryConfig) -> "PromptComposer":
        return cls(window=config.max_context_messages)

    def compose(self, record: Optional[ConversationRecord], current_message: str) -> str:
        if record is None or record.is_empty:
            return current_message

        parts: List[str] = []

        recent = record.recent(self.window)
        if recent:
            parts.append(HISTORY_HEADER + "\n")
            for message in recent:
                role = "User" if message.is_user else "Assistant"
                parts.append(f'{role}: "{message.content}"\n')
            parts.append("\n")

        metadata = metadata_block(record.context_metadata)
        if metadata:
            parts.append(METADATA_HEADER + "\n")
            parts.append(metadata)
            parts.append("\n")

        parts.append(f'Current message: "{current_message}"')

        if contains_references(current_message):
            resolutions = self.resolver.resolve(current_message, record)
            if resolutions:
                parts.append("\n\n" + RESOLUTIONS_HEADER + "\n")
                for span, referent in resolutions.items():
                    parts.append(f'- "{span}" likely refers to: {referent}\n')
                parts.append("\n" + RESOLUTIONS_FOOTER)
            else:
                parts.append("\n\n" + REFERENCE_NOTE)

        return "".join(parts)
