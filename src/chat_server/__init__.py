"""Chat server package: a thin FastAPI adapter over :mod:`session_memory`.

This package provides a FastAPI application factory named ``create_app``
inside ``chat_server/server.py`` (see :func:`create_app`).

Typical usage
-------------
from chat_server import create_app
app = create_app(model=my_model)

where ``my_model`` is any object exposing ``generate(prompt: str) -> str``.
"""

from __future__ import annotations

from session_memory import __version__, get_version

from .server import ChunkStream, create_app

__all__ = ["create_app", "ChunkStream", "__version__", "get_version"]
