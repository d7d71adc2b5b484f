from __future__ import annotations

from pathlib import Path

import pytest

from session_memory import ConfigurationInvalid, MemoryConfig, load_config, memory_config_from


def test_defaults_are_valid():
    cfg = MemoryConfig().validate()
    assert cfg.max_messages_per_session == 50
    assert cfg.max_context_messages == 10
    assert cfg.session_expiration_minutes == 120
    assert cfg.enable_automatic_cleanup is True


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"max_messages_per_session": 0}, "Max messages per session must be positive"),
        ({"max_active_sessions": -1}, "Max active sessions must be positive"),
        ({"max_context_messages": 60}, "Max context messages cannot exceed max messages per session"),
        ({"cleanup_interval_minutes": 120}, "Cleanup interval should be less than session expiration time"),
    ],
)
def test_validation_messages(kwargs, message):
    with pytest.raises(ConfigurationInvalid, match=message):
        MemoryConfig(**kwargs).validate()


def test_from_mapping_coerces_and_ignores_unknown_keys():
    cfg = MemoryConfig.from_mapping({
        "max_active_sessions": "25",
        "enable_automatic_cleanup": "off",
        "session_expiration_minutes": "90",
        "something_else": 1,
    })
    assert cfg.max_active_sessions == 25
    assert cfg.enable_automatic_cleanup is False
    assert cfg.session_expiration_minutes == 90.0


def test_from_mapping_rejects_garbage():
    with pytest.raises(ConfigurationInvalid):
        MemoryConfig.from_mapping({"max_active_sessions": "lots"})


def test_load_config_missing_file_uses_defaults(tmp_path: Path, clean_env):
    cfg = load_config(str(tmp_path / "nope.yaml"))
    assert cfg["memory"]["max_messages_per_session"] == 50
    assert memory_config_from(cfg) == MemoryConfig()


def test_load_config_reads_yaml(tmp_path: Path, clean_env):
    path = tmp_path / "memory.yaml"
    path.write_text(
        "memory:\n"
        "  max_messages_per_session: 20\n"
        "  max_context_messages: 5\n"
        "server:\n"
        "  log_level: debug\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    mem = memory_config_from(cfg)
    assert mem.max_messages_per_session == 20
    assert mem.max_context_messages == 5
    assert cfg["server"]["log_level"] == "debug"


def test_env_overrides(tmp_path: Path, clean_env, monkeypatch: pytest.MonkeyPatch):
    path = tmp_path / "memory.yaml"
    path.write_text("memory:\n  max_active_sessions: 10\n", encoding="utf-8")
    monkeypatch.setenv("SESSION_MEMORY_CONFIG", str(path))
    monkeypatch.setenv("SESSION_MEMORY__MEMORY__MAX_ACTIVE_SESSIONS", "42")
    monkeypatch.setenv("SESSION_MEMORY__MEMORY__ENABLE_AUTOMATIC_CLEANUP", "false")

    mem = memory_config_from(load_config())
    assert mem.max_active_sessions == 42
    assert mem.enable_automatic_cleanup is False


def test_invalid_yaml_raises(tmp_path: Path, clean_env):
    path = tmp_path / "broken.yaml"
    path.write_text("memory: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigurationInvalid):
        load_config(str(path))

    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigurationInvalid):
        load_config(str(path))


def test_shipped_default_config_is_valid(config_path: Path, clean_env):
    mem = memory_config_from(load_config(str(config_path)))
    assert mem == MemoryConfig()
