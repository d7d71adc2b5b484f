"""Counters and timings for the conversation memory subsystem."""
from __future__ import annotations

import logging
import os
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import psutil

from .config import MemoryConfig

logger = logging.getLogger(__name__)

SLOW_BUILD_MS = 1000
ERROR_RATE_THRESHOLD = 0.05
MIN_OPERATIONS_FOR_RATE = 100


def process_memory_mb() -> float:
    """Resident set size of this process in MB."""
    return psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)


def total_memory_mb() -> float:
    return psutil.virtual_memory().total / (1024 * 1024)


class MemoryMonitor:
    """Thread-safe operation counters plus a coarse health verdict."""

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        memory_reader: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config or MemoryConfig()
        self._read_memory = memory_reader or process_memory_mb
        self._lock = threading.Lock()
        self._reset_counters()
        logger.info("MemoryMonitor initialized")

    def _reset_counters(self) -> None:
        self.conversations_created = 0
        self.messages_stored = 0
        self.context_builds = 0
        self.cleanup_operations = 0
        self.sessions_evicted = 0
        self.errors = 0
        self.last_cleanup: Optional[float] = None   # epoch seconds
        self.average_build_ms = 0.0
        self.max_build_ms = 0.0

    # ---------- recording ----------
    def record_conversation_created(self) -> None:
        with self._lock:
            self.conversations_created += 1
            total = self.conversations_created
        logger.debug("Conversation created. Total: %d", total)

    def record_message_stored(self) -> None:
        with self._lock:
            self.messages_stored += 1
            total = self.messages_stored
        if total % 100 == 0:
            logger.info("Messages stored milestone: %d", total)

    def record_context_build(self, duration_ms: float) -> None:
        with self._lock:
            self.context_builds += 1
            n = self.context_builds
            self.max_build_ms = max(self.max_build_ms, duration_ms)
            self.average_build_ms += (duration_ms - self.average_build_ms) / n
        if duration_ms > SLOW_BUILD_MS:
            logger.warning("Slow context build operation: %.1fms", duration_ms)
        logger.debug("Context build completed in %.1fms. Total builds: %d", duration_ms, n)

    def record_cleanup_operation(self, removed: int = 0) -> None:
        with self._lock:
            self.cleanup_operations += 1
            self.sessions_evicted += removed
            self.last_cleanup = time.time()
            total = self.cleanup_operations
        logger.info("Cleanup operation completed (%d removed). Total cleanups: %d", removed, total)

    def record_error(self) -> None:
        with self._lock:
            self.errors += 1
            count = self.errors
        logger.warning("Error recorded. Total errors: %d", count)
        if count % 10 == 0:
            logger.warning("High error count detected: %d errors", count)

    # ---------- reporting ----------
    def performance_metrics(self) -> Dict[str, Any]:
        with self._lock:
            metrics: Dict[str, Any] = {
                "total_conversations_created": self.conversations_created,
                "total_messages_stored": self.messages_stored,
                "total_context_builds": self.context_builds,
                "total_cleanup_operations": self.cleanup_operations,
                "total_sessions_evicted": self.sessions_evicted,
                "total_errors": self.errors,
                "average_context_build_ms": round(self.average_build_ms, 3),
                "max_context_build_ms": round(self.max_build_ms, 3),
                "last_cleanup_time": self._last_cleanup_iso(),
            }
        used = self._used_mb()
        metrics["used_memory_mb"] = round(used, 2) if used is not None else None
        metrics["memory_threshold_mb"] = self.config.max_memory_usage_mb
        return metrics

    def health_status(self) -> Dict[str, Any]:
        try:
            used = self._read_memory()
            healthy = self._is_healthy(used)
            with self._lock:
                info: Dict[str, Any] = {
                    "status": "UP" if healthy else "DOWN",
                    "memory_usage_mb": round(used, 2),
                    "memory_threshold_mb": self.config.max_memory_usage_mb,
                    "automatic_cleanup_enabled": self.config.enable_automatic_cleanup,
                    "last_cleanup_time": self._last_cleanup_iso() or "Never",
                    "total_conversations_created": self.conversations_created,
                    "total_messages_stored": self.messages_stored,
                    "total_errors": self.errors,
                }
            return info
        except Exception as e:
            logger.exception("Error checking conversation memory health")
            self.record_error()
            return {"status": "DOWN", "error": "Failed to check system health", "exception": str(e)}

    def system_info(self) -> Dict[str, Any]:
        used = self._used_mb()
        utilization = 0.0
        if used is not None:
            try:
                total = total_memory_mb()
                utilization = used / total * 100.0 if total > 0 else 0.0
            except Exception:
                logger.debug("Could not read total memory", exc_info=True)
        return {
            "configuration": self.config.to_dict(),
            "performance": self.performance_metrics(),
            "status": {
                "memory_usage_mb": round(used, 2) if used is not None else None,
                "memory_utilization_percent": round(utilization, 2),
            },
        }

    def reset(self) -> None:
        with self._lock:
            self._reset_counters()
        logger.info("Performance metrics reset")

    # ---------- internals ----------
    def _used_mb(self) -> Optional[float]:
        try:
            return self._read_memory()
        except Exception:
            logger.warning("Memory reading failed", exc_info=True)
            return None

    def _is_healthy(self, used_mb: float) -> bool:
        if used_mb > self.config.max_memory_usage_mb * 1.2:
            logger.warning(
                "Memory usage (%.1f MB) significantly exceeds threshold (%s MB)",
                used_mb, self.config.max_memory_usage_mb,
            )
            return False

        with self._lock:
            operations = self.conversations_created + self.messages_stored + self.context_builds
            errors = self.errors
        if operations >= MIN_OPERATIONS_FOR_RATE and errors > 0:
            rate = errors / operations
            if rate > ERROR_RATE_THRESHOLD:
                logger.warning(
                    "High error rate detected: %d errors out of %d operations (%.1f%%)",
                    errors, operations, rate * 100,
                )
                return False
        return True

    def _last_cleanup_iso(self) -> Optional[str]:
        if self.last_cleanup is None:
            return None
        return datetime.fromtimestamp(self.last_cleanup, tz=timezone.utc).isoformat(timespec="seconds")
