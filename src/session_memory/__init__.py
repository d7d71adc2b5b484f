"""Session-scoped conversational memory and context resolution.

Typical usage
-------------
from session_memory import ConversationService, ConversationStore, MemoryConfig

store = ConversationStore(MemoryConfig()).start()
service = ConversationService(store)

prompt = service.compose_prompt(session_id, text)
service.record_user_turn(session_id, text)
reply = model.generate(prompt)
service.record_assistant_turn(session_id, reply)
...
store.stop()
"""

from __future__ import annotations

from .composer import PromptComposer
from .config import MemoryConfig, load_config, memory_config_from
from .errors import ConfigurationInvalid, InvalidArgument, SessionMemoryError, StorageFailure
from .monitor import MemoryMonitor
from .records import CATEGORIES, ConversationRecord, Message, Role
from .resolver import ReferenceResolver, contains_pronouns, contains_references, extract_key_concept
from .rules import DEFAULT_RULES, ExtractionRule, apply_rules
from .service import ConversationService
from .store import ConversationStore

__all__ = [
    "__version__",
    "get_version",
    "CATEGORIES",
    "ConfigurationInvalid",
    "ConversationRecord",
    "ConversationService",
    "ConversationStore",
    "DEFAULT_RULES",
    "ExtractionRule",
    "InvalidArgument",
    "MemoryConfig",
    "MemoryMonitor",
    "Message",
    "PromptComposer",
    "ReferenceResolver",
    "Role",
    "SessionMemoryError",
    "StorageFailure",
    "apply_rules",
    "contains_pronouns",
    "contains_references",
    "extract_key_concept",
    "load_config",
    "memory_config_from",
]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__
