"""In-process conversation store keyed by session id (thread-safe, bounded).

The store is the single owner of every :class:`ConversationRecord`.
Callers get snapshots from ``get`` / ``get_or_create``, mutate them, and
hand them back through ``save``. Growth is bounded three ways:

    - per-session retention (prefix truncation at save time)
    - periodic TTL sweep on a background thread (``start`` / ``stop``)
    - emergency eviction when the session count reaches capacity
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, MutableMapping, Optional

from .config import MemoryConfig
from .errors import InvalidArgument, SessionMemoryError, StorageFailure, require_text
from .monitor import MemoryMonitor, process_memory_mb
from .records import ConversationRecord, utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class _SessionLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.holders = 0


class ConversationStore:
    """Keyed collection of conversation records with eviction.

    Parameters
    ----------
    config : MemoryConfig | None
        Retention / eviction options; validated on construction.
    clock : callable | None
        Returns the current (aware) datetime. Injected in tests.
    memory_reader : callable | None
        Returns process memory in MB; defaults to psutil RSS.
    monitor : MemoryMonitor | None
        Receives cleanup/error counters.
    records : MutableMapping | None
        Backing collection (defaults to a plain dict guarded by the store lock).
    """

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        *,
        clock: Optional[Clock] = None,
        memory_reader: Optional[Callable[[], float]] = None,
        monitor: Optional[MemoryMonitor] = None,
        records: Optional[MutableMapping[str, ConversationRecord]] = None,
    ) -> None:
        self.config = (config or MemoryConfig()).validate()
        self.monitor = monitor
        self._clock = clock or utc_now
        self._read_memory = memory_reader or process_memory_mb

        self._records: MutableMapping[str, ConversationRecord] = records if records is not None else {}
        self._last_seen: Dict[str, datetime] = {}
        self._session_locks: Dict[str, _SessionLock] = {}
        self._lock = threading.RLock()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        if self.config.enable_automatic_cleanup:
            logger.info(
                "ConversationStore initialized with cleanup interval: %s minutes, session expiration: %s minutes",
                self.config.cleanup_interval_minutes, self.config.session_expiration_minutes,
            )
        else:
            logger.info("ConversationStore initialized with automatic cleanup disabled")

    def now(self) -> datetime:
        return self._clock()

    # --------- core API ----------
    def get_or_create(self, session_id: str) -> ConversationRecord:
        """Return a snapshot of the existing record, creating an empty one if needed."""
        require_text(session_id, "Session id")
        with self._lock:
            existing = self._read(session_id)
            if existing is not None:
                self._last_seen[session_id] = self.now()
                logger.debug(
                    "Retrieved existing conversation for session: %s with %d messages",
                    session_id, existing.message_count,
                )
                return existing.copy()

            record = ConversationRecord(session_id, last_activity=self.now())
            try:
                self.save(session_id, record)
            except StorageFailure:
                # Still hand back a usable record; the next save will retry the write.
                logger.error("Failed to store new conversation for session: %s", session_id)
            else:
                logger.debug("Created new conversation for session: %s", session_id)
            if self.monitor is not None:
                self.monitor.record_conversation_created()
            return record.copy()

    def get(self, session_id: str) -> Optional[ConversationRecord]:
        """Snapshot lookup. Touches last-seen bookkeeping, not ``last_activity``."""
        require_text(session_id, "Session id")
        with self._lock:
            record = self._read(session_id)
            if record is None:
                logger.debug("No conversation found for session: %s", session_id)
                return None
            self._last_seen[session_id] = self.now()
            logger.debug("Retrieved conversation for session: %s with %d messages", session_id, record.message_count)
            return record.copy()

    def save(self, session_id: str, record: ConversationRecord) -> None:
        """Truncate ``record`` to the retention window and store a snapshot of it.

        ``record`` itself is truncated in place so the caller sees what was kept.
        """
        require_text(session_id, "Session id")
        if record is None:
            raise InvalidArgument("ConversationRecord cannot be null")
        if record.session_id != session_id:
            raise InvalidArgument(
                f"Record belongs to session {record.session_id!r}, not {session_id!r}"
            )

        with self._lock:
            try:
                if len(self._last_seen) >= self.config.max_active_sessions:
                    self._emergency_evict(keep=session_id)

                self._truncate(record)
                self._records[session_id] = record.copy()
                self._last_seen[session_id] = self.now()
            except SessionMemoryError:
                raise
            except Exception as e:
                logger.error("Failed to store conversation for session: %s", session_id, exc_info=True)
                raise StorageFailure(f"Failed to store conversation for session {session_id!r}") from e

        logger.debug("Stored conversation for session: %s with %d messages", session_id, record.message_count)

    def remove(self, session_id: str) -> Optional[ConversationRecord]:
        require_text(session_id, "Session id")
        with self._lock:
            record = self._drop(session_id)
        if record is not None:
            logger.debug("Removed conversation for session: %s with %d messages", session_id, record.message_count)
        else:
            logger.debug("No conversation to remove for session: %s", session_id)
        return record

    def has(self, session_id: str) -> bool:
        with self._lock:
            return self._read(session_id) is not None

    def active_count(self) -> int:
        with self._lock:
            return len(self._last_seen)

    def session_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._last_seen)

    # --------- convenience ----------
    def touch(self, session_id: str) -> bool:
        """Bump ``last_activity`` of an existing record (read-then-touch)."""
        with self._lock:
            record = self.get(session_id)
            if record is None:
                return False
            record.touch(self.now())
            self.save(session_id, record)
        logger.debug("Updated last activity for session: %s", session_id)
        return True

    def is_inactive(self, session_id: str, minutes: float) -> bool:
        record = self.get(session_id)
        return record is not None and record.is_inactive_for(minutes, self.now())

    @contextmanager
    def session_lock(self, session_id: str) -> Iterator[None]:
        """Serialize a read-modify-write cycle on one session.

        The lock lives only while someone holds or waits on it, so unknown ids
        leave nothing behind and eviction never swaps a lock under a holder.
        """
        with self._lock:
            entry = self._session_locks.get(session_id)
            if entry is None:
                entry = self._session_locks[session_id] = _SessionLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._lock:
                entry.holders -= 1
                if entry.holders == 0 and self._session_locks.get(session_id) is entry:
                    del self._session_locks[session_id]

    def session_lock_count(self) -> int:
        with self._lock:
            return len(self._session_locks)

    # --------- eviction ----------
    def sweep(self) -> int:
        """Drop sessions idle past the expiration window; returns how many were removed."""
        expiration = timedelta(minutes=self.config.session_expiration_minutes)
        with self._lock:
            removed = self._evict_idle_since(self.now() - expiration)
            if removed:
                logger.info("Cleaned up %d expired sessions", len(removed))
            removed += self._relieve_memory_pressure()
            logger.debug("Cleanup completed. Active sessions: %d", len(self._last_seen))

        if self.monitor is not None:
            self.monitor.record_cleanup_operation(len(removed))
        return len(removed)

    def force_sweep(self) -> int:
        return self.sweep()

    def _relieve_memory_pressure(self) -> List[str]:
        try:
            used_mb = self._read_memory()
        except Exception:
            logger.error("Error during memory usage check", exc_info=True)
            return []
        if used_mb <= self.config.max_memory_usage_mb:
            return []

        logger.warning(
            "Memory usage (%.1f MB) exceeds threshold (%s MB), performing additional cleanup",
            used_mb, self.config.max_memory_usage_mb,
        )
        half = timedelta(minutes=self.config.session_expiration_minutes / 2)
        removed = self._evict_idle_since(self.now() - half)
        if removed:
            logger.info("Memory cleanup removed %d additional sessions", len(removed))
        return removed

    def _emergency_evict(self, keep: Optional[str] = None) -> None:
        logger.warning("Emergency cleanup triggered - session limit reached (%d)", len(self._last_seen))
        capacity = self.config.max_active_sessions

        half = timedelta(minutes=self.config.session_expiration_minutes / 2)
        removed = self._evict_idle_since(self.now() - half, keep=keep)
        logger.info("Emergency cleanup removed %d sessions", len(removed))

        if len(self._last_seen) >= capacity:
            target = capacity * 3 // 4
            excess = len(self._last_seen) - target
            # sorted() is stable, so equal timestamps keep insertion order
            candidates = sorted(
                (sid for sid in self._last_seen if sid != keep),
                key=self._activity,
            )
            oldest = candidates[:max(0, excess)]
            for sid in oldest:
                self._drop(sid)
            logger.info("Emergency cleanup removed %d additional oldest sessions", len(oldest))

    def _evict_idle_since(self, cutoff: datetime, keep: Optional[str] = None) -> List[str]:
        expired = [sid for sid in list(self._last_seen) if sid != keep and self._activity(sid) < cutoff]
        for sid in expired:
            self._drop(sid)
            logger.debug("Cleaned up expired session: %s", sid)
        return expired

    def _activity(self, session_id: str) -> datetime:
        """Most recent of the record's ``last_activity`` and its last-seen time."""
        seen = self._last_seen.get(session_id)
        record = self._records.get(session_id)
        candidates = [t for t in (seen, record.last_activity if record else None) if t is not None]
        return max(candidates)

    # --------- background thread ----------
    def start(self) -> "ConversationStore":
        """Start the periodic sweep thread (no-op if disabled or already running)."""
        if not self.config.enable_automatic_cleanup:
            logger.info("Automatic cleanup disabled; sweep thread not started")
            return self
        if self._thread is not None and self._thread.is_alive():
            return self
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="ConversationMemoryCleanup", daemon=True)
        self._thread.start()
        logger.info("Conversation sweep thread started")
        return self

    def stop(self, timeout: float = 5.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Conversation sweep thread did not stop within %.1fs", timeout)
        else:
            logger.info("Conversation sweep thread stopped")
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        interval = self.config.cleanup_interval_minutes * 60
        while not self._stop_event.wait(interval):
            try:
                self.sweep()
            except Exception:
                # A failed sweep is retried on the next tick.
                logger.exception("Error during session cleanup")
                if self.monitor is not None:
                    self.monitor.record_error()

    def __enter__(self) -> "ConversationStore":
        return self.start()

    def __exit__(self, *exc: Any) -> None:
        self.stop()

    # --------- stats ----------
    def stats(self) -> Dict[str, Any]:
        try:
            used = round(self._read_memory(), 2)
        except Exception:
            logger.debug("Memory reading failed", exc_info=True)
            used = None
        return {
            "used_memory_mb": used,
            "memory_threshold_mb": self.config.max_memory_usage_mb,
            "active_sessions": self.active_count(),
            "max_active_sessions": self.config.max_active_sessions,
            "session_locks": self.session_lock_count(),
            "sweep_running": self.running,
        }

    # --------- internals ----------
    def _read(self, session_id: str) -> Optional[ConversationRecord]:
        try:
            return self._records.get(session_id)
        except Exception as e:
            logger.error("Failed to read conversation for session: %s", session_id, exc_info=True)
            raise StorageFailure(f"Failed to read conversation for session {session_id!r}") from e

    def _drop(self, session_id: str) -> Optional[ConversationRecord]:
        self._last_seen.pop(session_id, None)
        return self._records.pop(session_id, None)

    def _truncate(self, record: ConversationRecord) -> None:
        """Keep the newest messages; drop a leading orphaned assistant reply."""
        limit = self.config.max_messages_per_session
        count = record.message_count
        if count <= limit:
            return

        kept = record.messages[count - limit:]
        if len(kept) % 2 == 1 and kept[0].is_assistant:
            kept = kept[1:]
        record.replace_messages(kept, self.now())
        logger.info(
            "Truncated conversation for session %s, removed %d messages, %d remaining",
            record.session_id, count - record.message_count, record.message_count,
        )
