"""Conversation service: the public façade over store, rules, resolver and composer.

Fallback policy:
    - recording a turn surfaces a typed error; the transport decides whether
      to carry on without memory
    - metadata extraction is best-effort and never blocks a turn
    - ``compose_prompt`` never raises; the worst case is the verbatim input
"""
from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .composer import PromptComposer
from .errors import InvalidArgument, SessionMemoryError, StorageFailure, require_text
from .monitor import MemoryMonitor
from .records import ConversationRecord, Message, Role
from .resolver import contains_pronouns, contains_references
from .rules import DEFAULT_RULES, ExtractionRule, apply_rules
from .store import ConversationStore

logger = logging.getLogger(__name__)


class ConversationService:
    """Coordinates the store, extraction rules and prompt composer."""

    def __init__(
        self,
        store: ConversationStore,
        composer: Optional[PromptComposer] = None,
        *,
        rules: Iterable[ExtractionRule] = DEFAULT_RULES,
        monitor: Optional[MemoryMonitor] = None,
    ) -> None:
        if store is None:
            raise InvalidArgument("store is required")
        self.store = store
        self.composer = composer or PromptComposer.from_config(store.config)
        self.rules = tuple(rules)
        self.monitor = monitor if monitor is not None else store.monitor

    # -----------------------------
    # Recording turns
    # -----------------------------
    def record_user_turn(self, session_id: str, text: str) -> Message:
        """Append a user message and fold its extracted metadata into the record."""
        return self.record_turn(session_id, Role.USER, text)

    def record_assistant_turn(self, session_id: str, text: str) -> Message:
        return self.record_turn(session_id, Role.ASSISTANT, text)

    def record_turn(
        self,
        session_id: str,
        role: Role | str,
        text: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Message:
        require_text(session_id, "Session id")
        require_text(text, "Message")
        role = Role.parse(role)

        try:
            with self.store.session_lock(session_id):
                record = self.store.get_or_create(session_id)
                message = Message(role, text, timestamp=self.store.now(), metadata=dict(metadata or {}))
                record.add_message(message)
                if role is Role.USER:
                    self._extract(record, text)
                self.store.save(session_id, record)
        except StorageFailure:
            logger.error("Failed to add %s message to conversation for session: %s", role.value, session_id)
            self._error()
            raise
        except SessionMemoryError:
            raise
        except Exception as e:
            logger.exception("Failed to add %s message to conversation for session: %s", role.value, session_id)
            self._error()
            raise StorageFailure(f"Failed to add {role.value} message to conversation") from e

        if self.monitor is not None:
            self.monitor.record_message_stored()
        return message

    def _extract(self, record: ConversationRecord, text: str) -> None:
        try:
            record.context_metadata = apply_rules(text, record.context_metadata, self.rules)
        except Exception:
            logger.warning("Context extraction failed for session: %s", record.session_id, exc_info=True)
            self._error()

    # -----------------------------
    # Prompt composition
    # -----------------------------
    def compose_prompt(self, session_id: str, text: str) -> str:
        """Context-augmented prompt for ``text``; falls back to ``text`` itself."""
        if not isinstance(text, str) or not text.strip() or not isinstance(session_id, str) or not session_id.strip():
            return text

        start = time.perf_counter()
        try:
            with self.store.session_lock(session_id):
                record = self.store.get(session_id)
                if record is None:
                    return text
                record.touch(self.store.now())
                self.store.save(session_id, record)
            prompt = self.composer.compose(record, text)
        except Exception:
            logger.warning(
                "Failed to build contextual prompt for session: %s, falling back to original message",
                session_id, exc_info=True,
            )
            self._error()
            return text

        if self.monitor is not None:
            self.monitor.record_context_build((time.perf_counter() - start) * 1000)
        return prompt

    # -----------------------------
    # Delegations
    # -----------------------------
    def get(self, session_id: str) -> Optional[ConversationRecord]:
        if not session_id:
            return None
        try:
            return self.store.get(session_id)
        except SessionMemoryError:
            logger.warning("Failed to read conversation for session: %s", session_id)
            return None

    def get_or_create(self, session_id: str) -> ConversationRecord:
        require_text(session_id, "Session id")
        return self.store.get_or_create(session_id)

    def has(self, session_id: str) -> bool:
        if not session_id:
            return False
        try:
            return self.store.has(session_id)
        except SessionMemoryError:
            return False

    def clear(self, session_id: str) -> Optional[ConversationRecord]:
        if not session_id:
            return None
        try:
            with self.store.session_lock(session_id):
                return self.store.remove(session_id)
        except SessionMemoryError:
            logger.warning("Failed to clear conversation for session: %s", session_id)
            return None

    def history(self, session_id: str) -> List[Message]:
        record = self.get(session_id)
        return list(record.messages) if record is not None else []

    def message_count(self, session_id: str) -> int:
        record = self.get(session_id)
        return record.message_count if record is not None else 0

    def last_activity(self, session_id: str) -> Optional[datetime]:
        record = self.get(session_id)
        return record.last_activity if record is not None else None

    def touch(self, session_id: str) -> bool:
        if not session_id:
            return False
        try:
            with self.store.session_lock(session_id):
                return self.store.touch(session_id)
        except SessionMemoryError:
            return False

    def is_inactive(self, session_id: str, minutes: float) -> bool:
        if not session_id:
            return False
        try:
            return self.store.is_inactive(session_id, minutes)
        except SessionMemoryError:
            return False

    def active_count(self) -> int:
        return self.store.active_count()

    def context_metadata(self, session_id: str) -> Dict[str, List[str]]:
        record = self.get(session_id)
        return {k: list(v) for k, v in record.context_metadata.items()} if record is not None else {}

    @staticmethod
    def contains_pronouns(text: Optional[str]) -> bool:
        return contains_pronouns(text)

    @staticmethod
    def contains_references(text: Optional[str]) -> bool:
        return contains_references(text)

    def _error(self) -> None:
        if self.monitor is not None:
            self.monitor.record_error()
