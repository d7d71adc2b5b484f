"""Configuration loading and validation for session memory.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable SESSION_MEMORY_CONFIG
3. Fallback to "config/default.yaml"

It also supports optional overrides from environment variables with prefix
``SESSION_MEMORY__`` (e.g., SESSION_MEMORY__MEMORY__MAX_ACTIVE_SESSIONS=50).
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigurationInvalid

logger = logging.getLogger(__name__)

ENV_PREFIX = "SESSION_MEMORY__"
ENV_CONFIG_PATH = "SESSION_MEMORY_CONFIG"
DEFAULT_CONFIG_PATH = "config/default.yaml"


@dataclass
class MemoryConfig:
    """Recognized options for retention, prompt window and eviction."""
    max_messages_per_session: int = 50     # retention window
    max_context_messages: int = 10         # messages shown per composed prompt
    cleanup_interval_minutes: float = 30   # sweep cadence
    session_expiration_minutes: float = 120
    max_active_sessions: int = 1000        # emergency eviction kicks in here
    enable_automatic_cleanup: bool = True
    max_memory_usage_mb: float = 512       # RSS above this triggers the aggressive sweep

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "MemoryConfig":
        """Build from a (YAML) mapping; unknown keys are ignored."""
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigurationInvalid(f"memory config must be a mapping, got {type(data).__name__}")

        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                continue
            raw = data[f.name]
            try:
                if f.name == "enable_automatic_cleanup":
                    kwargs[f.name] = _bool(raw)
                elif f.name in {"max_messages_per_session", "max_context_messages", "max_active_sessions"}:
                    kwargs[f.name] = int(raw)
                else:
                    kwargs[f.name] = float(raw)
            except (TypeError, ValueError) as e:
                raise ConfigurationInvalid(f"Invalid value for {f.name}: {raw!r}") from e
        return cls(**kwargs)

    def validate(self) -> "MemoryConfig":
        """Check option invariants; raises ConfigurationInvalid."""
        positive = {
            "max_messages_per_session": "Max messages per session must be positive",
            "max_context_messages": "Max context messages must be positive",
            "cleanup_interval_minutes": "Cleanup interval must be positive",
            "session_expiration_minutes": "Session expiration time must be positive",
            "max_active_sessions": "Max active sessions must be positive",
            "max_memory_usage_mb": "Max memory usage must be positive",
        }
        for name, message in positive.items():
            if getattr(self, name) <= 0:
                raise ConfigurationInvalid(message)

        if self.max_context_messages > self.max_messages_per_session:
            raise ConfigurationInvalid("Max context messages cannot exceed max messages per session")
        if self.cleanup_interval_minutes >= self.session_expiration_minutes:
            raise ConfigurationInvalid("Cleanup interval should be less than session expiration time")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, str):
        s = v.strip().lower()
        if s in {"1", "true", "yes", "y", "on"}:
            return True
        if s in {"0", "false", "no", "n", "off"}:
            return False
        raise ValueError(f"not a boolean: {v!r}")
    return bool(v)


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix SESSION_MEMORY__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., SESSION_MEMORY__MEMORY__MAX_ACTIVE_SESSIONS -> cfg["memory"]["max_active_sessions"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        leaf = parts[-1]
        if value.lower() in {"true", "false"}:
            sub[leaf] = value.lower() == "true"
        else:
            try:
                if "." in value:
                    sub[leaf] = float(value)
                else:
                    sub[leaf] = int(value)
            except ValueError:
                sub[leaf] = value
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``SESSION_MEMORY_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Parsed configuration dictionary with environment overrides applied.
    """
    if path is None:
        path = os.environ.get(ENV_CONFIG_PATH, DEFAULT_CONFIG_PATH)

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        cfg: Dict[str, Any] = {"memory": MemoryConfig().to_dict(), "server": {}}
        return _apply_env_overrides(cfg)

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationInvalid(f"Failed to parse config file {path_obj}: {e}") from e

    if not isinstance(cfg, dict):
        raise ConfigurationInvalid(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(cfg)


def memory_config_from(cfg: Mapping[str, Any]) -> MemoryConfig:
    """Extract and validate the ``memory`` section of a loaded config."""
    return MemoryConfig.from_mapping(cfg.get("memory") or {}).validate()
