"""Passive conversation records: messages and per-session conversation state."""
from __future__ import annotations

import io
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .errors import InvalidArgument, require_text


# -----------------------------
# Constants
# -----------------------------
SKILLS = "skills"
PREFERENCES = "preferences"
TOPICS = "topics"
ENTITIES = "entities"
CATEGORIES = (SKILLS, PREFERENCES, TOPICS, ENTITIES)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        if isinstance(value, Role):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidArgument(f"Unknown message role: {value!r}")


# -----------------------------
# Message
# -----------------------------
@dataclass(frozen=True)
class Message:
    """A single turn. ``content`` is validated; ``timestamp`` never changes."""
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", Role.parse(self.role))
        require_text(self.content, "Message content")

    @classmethod
    def user(cls, content: str, **kwargs: Any) -> "Message":
        return cls(Role.USER, content, **kwargs)

    @classmethod
    def assistant(cls, content: str, **kwargs: Any) -> "Message":
        return cls(Role.ASSISTANT, content, **kwargs)

    @property
    def is_user(self) -> bool:
        return self.role is Role.USER

    @property
    def is_assistant(self) -> bool:
        return self.role is Role.ASSISTANT

    def add_metadata(self, key: str, value: Any) -> None:
        self.metadata[key] = value

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }


# -----------------------------
# ConversationRecord
# -----------------------------
@dataclass
class ConversationRecord:
    """Message history, extracted context metadata and activity for one session.

    Records are owned by :class:`session_memory.store.ConversationStore`;
    mutate a snapshot and hand it back through ``save``.
    """
    session_id: str
    messages: List[Message] = field(default_factory=list)
    context_metadata: Dict[str, List[str]] = field(default_factory=dict)
    last_activity: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        require_text(self.session_id, "Session id")
        self.messages = list(self.messages)
        self.context_metadata = {k: list(v) for k, v in self.context_metadata.items()}

    # --------- messages ----------
    def add_message(self, message: Message, now: Optional[datetime] = None) -> Message:
        self.messages.append(message)
        self.touch(now or message.timestamp)
        return message

    def add_user_message(self, content: str) -> Message:
        return self.add_message(Message.user(content))

    def add_assistant_message(self, content: str) -> Message:
        return self.add_message(Message.assistant(content))

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    def messages_by_role(self, role: Role | str) -> List[Message]:
        r = Role.parse(role)
        return [m for m in self.messages if m.role is r]

    @property
    def user_messages(self) -> List[Message]:
        return self.messages_by_role(Role.USER)

    @property
    def assistant_messages(self) -> List[Message]:
        return self.messages_by_role(Role.ASSISTANT)

    def messages_in_range(self, start: datetime, end: datetime) -> List[Message]:
        """Messages with ``start <= timestamp <= end``."""
        return [m for m in self.messages if start <= m.timestamp <= end]

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def is_empty(self) -> bool:
        return not self.messages

    def recent(self, k: int) -> List[Message]:
        """Return at most the ``k`` most recent messages, oldest first."""
        if k <= 0:
            return []
        return list(self.messages[-k:])

    def replace_messages(self, messages: Iterable[Message], now: Optional[datetime] = None) -> None:
        self.messages = list(messages)
        self.touch(now)

    def clear_messages(self, now: Optional[datetime] = None) -> None:
        self.messages.clear()
        self.touch(now)

    # --------- context metadata ----------
    def add_context_value(self, category: str, value: str) -> bool:
        """Append ``value`` to ``category`` unless already present."""
        values = self.context_metadata.setdefault(category, [])
        if value in values:
            return False
        values.append(value)
        return True

    def context_values(self, category: str) -> List[str]:
        return list(self.context_metadata.get(category, []))

    def has_context(self, category: str) -> bool:
        return bool(self.context_metadata.get(category))

    def remove_context(self, category: str) -> Optional[List[str]]:
        return self.context_metadata.pop(category, None)

    def clear_context(self) -> None:
        self.context_metadata.clear()

    # --------- activity ----------
    def touch(self, now: Optional[datetime] = None) -> None:
        now = now or utc_now()
        # never move backwards
        if now > self.last_activity:
            self.last_activity = now

    def is_inactive_for(self, minutes: float, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return self.last_activity < now - timedelta(minutes=minutes)

    # --------- snapshots / export ----------
    def copy(self) -> "ConversationRecord":
        """Independent snapshot, down to each message's metadata dict."""
        return ConversationRecord(
            session_id=self.session_id,
            messages=[replace(m, metadata=dict(m.metadata)) for m in self.messages],
            context_metadata={k: list(v) for k, v in self.context_metadata.items()},
            last_activity=self.last_activity,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "messages": [m.to_dict() for m in self.messages],
            "context_metadata": {k: list(v) for k, v in self.context_metadata.items()},
            "last_activity": self.last_activity.isoformat(),
            "message_count": self.message_count,
        }

    def export_text(self, limit_chars: int = 8000) -> str:
        """Export a human-readable text of the conversation (context + turns)."""
        buf = io.StringIO()
        populated = [(c, self.context_metadata[c]) for c in CATEGORIES if self.context_metadata.get(c)]
        if populated:
            buf.write("=== CONTEXT ===\n")
            for category, values in populated:
                buf.write(f"{category}: {', '.join(values)}\n")
            buf.write("\n")
        for m in self.messages:
            buf.write(f"{m.role.value}: {m.content.strip()}\n")
        out = buf.getvalue()
        return out[:limit_chars]
