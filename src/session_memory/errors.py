"""Error taxonomy for the session memory subsystem."""
from __future__ import annotations


class SessionMemoryError(Exception):
    """Base class for every error raised by :mod:`session_memory`."""


class InvalidArgument(SessionMemoryError, ValueError):
    """Empty or missing session id / message text. Always the caller's fault."""


class StorageFailure(SessionMemoryError, RuntimeError):
    """The keyed record collection rejected a read or a write."""


class ConfigurationInvalid(SessionMemoryError, ValueError):
    """Recognized configuration options violate their invariants."""


def require_text(value: object, what: str) -> str:
    """Return ``value`` if it is a non-blank string, else raise InvalidArgument."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"{what} cannot be null or empty")
    return value
