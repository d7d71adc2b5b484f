"""Script to launch the session memory chat server."""

from __future__ import annotations

import argparse
import importlib
import os
import sys
from typing import Any

import uvicorn

# Ensure src/ is on sys.path (so imports work when run directly)
SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from chat_server.server import create_app  # noqa: E402


def load_model(target: str) -> Any:
    """Resolve ``package.module:attr``; a class or factory is called with no arguments."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise SystemExit(f"--model must look like 'package.module:attr', got {target!r}")
    obj = getattr(importlib.import_module(module_name), attr)
    # A class carries "generate" as a plain function, so instantiate it first.
    if isinstance(obj, type) or (callable(obj) and not hasattr(obj, "generate")):
        obj = obj()
    if not hasattr(obj, "generate"):
        raise SystemExit(f"{target} does not provide generate(prompt) -> str")
    return obj


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the session memory chat server.")
    parser.add_argument(
        "--model",
        type=str,
        default=os.environ.get("CHAT_MODEL"),
        required="CHAT_MODEL" not in os.environ,
        help="Import path of the text model, e.g. mypkg.models:EchoModel (or CHAT_MODEL)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to the YAML config (default: SESSION_MEMORY_CONFIG or config/default.yaml)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=os.environ.get("HOST", "127.0.0.1"),
        help="Host to bind the server to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", "8000")),
        help="Port to bind the server to (default: 8000)",
    )
    args = parser.parse_args()

    # Sessions live in process memory: one worker only.
    app = create_app(config_path=args.config, model=load_model(args.model))

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
