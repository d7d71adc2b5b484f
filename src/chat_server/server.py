"""FastAPI application wiring a language model to session conversation memory."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterator, Optional, Protocol

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from session_memory import (
    ConversationService,
    ConversationStore,
    MemoryMonitor,
    SessionMemoryError,
    load_config,
    memory_config_from,
)

logger = logging.getLogger(__name__)

CHUNK_CHARS = 64


class TextModel(Protocol):
    def generate(self, prompt: str) -> str: ...


# -----------------------------
# Pydantic request/response
# -----------------------------
class ChatRequest(BaseModel):
    identity: str = Field(default="default", min_length=1, description="Conversation session id.")
    message: str = Field(..., min_length=1)
    stream: bool = Field(default=False)


class ChatResponse(BaseModel):
    response: str


# -----------------------------
# Streaming
# -----------------------------
class ChunkStream:
    """Chunked reply writer that owns an explicit ``closed`` flag.

    The flag is checked before every write; once the consumer goes away
    (``close()`` called or generator closed) nothing else is produced and the
    turn is not recorded.
    """

    def __init__(self, service: ConversationService, identity: str, text: str, chunk_chars: int = CHUNK_CHARS) -> None:
        self.service = service
        self.identity = identity
        self.text = text
        self.chunk_chars = chunk_chars
        self.closed = False
        self.completed = False

    def __iter__(self) -> Iterator[str]:
        try:
            for i in range(0, len(self.text), self.chunk_chars):
                if self.closed:
                    return
                yield self.text[i : i + self.chunk_chars]
            self.completed = True
        finally:
            self.closed = True
            if self.completed:
                _record_reply(self.service, self.identity, self.text)
            else:
                logger.info("Client disconnected during streaming (Session: %s)", self.identity)

    def close(self) -> None:
        self.closed = True


async def stream_until_disconnect(stream: ChunkStream, request: Any) -> AsyncIterator[str]:
    """Relay ``stream`` chunks, closing it as soon as the client goes away."""
    chunks = iter(stream)
    try:
        while True:
            if await request.is_disconnected():
                stream.close()
            try:
                chunk = next(chunks)
            except StopIteration:
                return
            yield chunk
    finally:
        chunks.close()


def _record_reply(service: ConversationService, identity: str, text: str) -> None:
    if not text.strip():
        return
    try:
        service.record_assistant_turn(identity, text)
    except SessionMemoryError as e:
        logger.warning("Failed to store assistant response in conversation memory (Session: %s): %s", identity, e)


# -----------------------------
# Utilities
# -----------------------------
def _make_service(cfg: Dict[str, Any]) -> ConversationService:
    mem_cfg = memory_config_from(cfg)
    monitor = MemoryMonitor(mem_cfg)
    store = ConversationStore(mem_cfg, monitor=monitor)
    return ConversationService(store, monitor=monitor)


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    model: Optional[TextModel] = None,
    service: Optional[ConversationService] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    server_cfg = cfg.get("server", {}) or {}
    logging.basicConfig(level=str(server_cfg.get("log_level", "INFO")).upper())

    if model is None:
        raise RuntimeError("create_app() needs a model exposing generate(prompt) -> str")

    service = service or _make_service(cfg)
    store = service.store
    monitor = service.monitor or MemoryMonitor(store.config)
    cors_origins = server_cfg.get("cors_origins", ["*"])

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        store.start()
        try:
            yield
        finally:
            store.stop()

    app = FastAPI(title="Session Memory Chat Server", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> Dict[str, Any]:
        status = monitor.health_status()
        status["active_sessions"] = service.active_count()
        return status

    @app.get("/stats")
    def stats() -> Dict[str, Any]:
        return {"store": store.stats(), "monitor": monitor.system_info()}

    @app.get("/memory/{identity}")
    def get_memory(identity: str) -> JSONResponse:
        record = service.get(identity)
        if record is None:
            raise HTTPException(status_code=404, detail="No conversation for this identity.")
        return JSONResponse(record.to_dict())

    @app.delete("/memory/{identity}")
    def clear_memory(identity: str) -> Dict[str, Any]:
        removed = service.clear(identity)
        return {"cleared": removed is not None, "messages": removed.message_count if removed else 0}

    @app.get("/memory/{identity}/inactive")
    def inactive(identity: str, minutes: float = Query(default=15, gt=0)) -> Dict[str, Any]:
        return {"identity": identity, "minutes": minutes, "inactive": service.is_inactive(identity, minutes)}

    @app.post("/chat", response_model=ChatResponse)
    def chat(req: ChatRequest, request: Request):
        msg = (req.message or "").strip()
        if not msg:
            raise HTTPException(status_code=400, detail="Message cannot be empty.")

        # Prompt first, so the current turn is not duplicated in the history block.
        prompt = service.compose_prompt(req.identity, msg)
        try:
            service.record_user_turn(req.identity, msg)
        except SessionMemoryError as e:
            # Continue processing even if memory storage fails
            logger.warning("Failed to store user message in conversation memory (Session: %s): %s", req.identity, e)

        text = model.generate(prompt)

        if req.stream:
            stream = ChunkStream(service, req.identity, text)
            return StreamingResponse(stream_until_disconnect(stream, request), media_type="text/plain")

        _record_reply(service, req.identity, text)
        return ChatResponse(response=text)

    return app
