"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from session_memory import ConversationService, ConversationStore, MemoryConfig, MemoryMonitor  # noqa: E402


class FakeClock:
    """Manually advanced clock returning aware UTC datetimes."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, minutes: float = 0, seconds: float = 0) -> datetime:
        self.current += timedelta(minutes=minutes, seconds=seconds)
        return self.current


class FakeMemoryReader:
    """Memory reader with a settable reading (MB)."""

    def __init__(self, value: float = 10.0):
        self.value = value

    def __call__(self) -> float:
        return self.value


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Default config/default.yaml path."""
    return project_root / "config" / "default.yaml"


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    monkeypatch.delenv("SESSION_MEMORY_CONFIG", raising=False)
    for var in list(os.environ):
        if var.startswith("SESSION_MEMORY__"):
            monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_reader() -> FakeMemoryReader:
    return FakeMemoryReader()


@pytest.fixture
def memory_config() -> MemoryConfig:
    return MemoryConfig(
        max_messages_per_session=6,
        max_context_messages=4,
        cleanup_interval_minutes=5,
        session_expiration_minutes=15,
        max_active_sessions=8,
        enable_automatic_cleanup=False,
        max_memory_usage_mb=100,
    )


@pytest.fixture
def monitor(memory_config: MemoryConfig, memory_reader: FakeMemoryReader) -> MemoryMonitor:
    return MemoryMonitor(memory_config, memory_reader=memory_reader)


@pytest.fixture
def store(memory_config: MemoryConfig, clock: FakeClock, memory_reader: FakeMemoryReader, monitor: MemoryMonitor) -> ConversationStore:
    return ConversationStore(memory_config, clock=clock, memory_reader=memory_reader, monitor=monitor)


@pytest.fixture
def service(store: ConversationStore) -> ConversationService:
    return ConversationService(store)
