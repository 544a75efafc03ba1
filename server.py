# server.py
#
# Description: Backend HTTP API. Accepts a message plus the client's
#              conversation history, assembles the prompt with the compliance
#              system instruction and relays the completion to the browser,
#              either streamed as text/plain or as a single JSON object.
#

# --------------------------------------------------------------------------- #
# imports
# --------------------------------------------------------------------------- #
from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, AsyncIterator, Dict, Iterator, List, Literal, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.concurrency import iterate_in_threadpool

from api_client import INCOMPLETE_MARKER
from config import settings
from errors import ChatError, RateLimited, StreamInterrupted
from history import HistoryBuffer, Role, Turn
from llm_client import CompletionClient, CompletionOptions
from logging_config import setup_logging
from prompt import SYSTEM_INSTRUCTION, PromptRequest, build_prompt
from relay import StreamRelay

logger = logging.getLogger(__name__)

STREAM_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}

# --------------------------------------------------------------------------- #
# request models
# --------------------------------------------------------------------------- #
class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    message: Optional[str] = None
    conversationHistory: List[HistoryTurn] = Field(default_factory=list)

# --------------------------------------------------------------------------- #
# dependencies
# --------------------------------------------------------------------------- #
@lru_cache()
def get_completion_client() -> CompletionClient:
    """Get the shared upstream client (stateless, safe across requests)."""
    return CompletionClient()


def get_completion_options() -> CompletionOptions:
    return CompletionOptions()


def assemble(body: ChatRequest) -> PromptRequest:
    """Build the prompt from the request, keeping the most recent history turns."""
    history = HistoryBuffer(
        settings.history_cap,
        (Turn(Role(turn.role), turn.content) for turn in body.conversationHistory),
    )
    return build_prompt(SYSTEM_INSTRUCTION, history.snapshot(), body.message)

# --------------------------------------------------------------------------- #
# application
# --------------------------------------------------------------------------- #
app = FastAPI(title="Compliance Chat API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    logger.error(
        "Request failed",
        extra={"path": request.url.path, "error_type": type(exc).__name__, "error": str(exc)},
    )
    headers = None
    if isinstance(exc, RateLimited) and exc.retry_after is not None:
        headers = {"Retry-After": str(int(exc.retry_after))}
    return JSONResponse(
        status_code=exc.status_code, content={"error": exc.public_message}, headers=headers
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Rejected malformed request body", extra={"path": request.url.path})
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


async def _stream_body(
    relay: StreamRelay, first: str, fragments: Iterator[str], message: str
) -> AsyncIterator[str]:
    try:
        if first:
            yield first
        try:
            async for fragment in iterate_in_threadpool(fragments):
                yield fragment
        except StreamInterrupted as exc:
            logger.warning("Stream terminated early", extra={"partial_chars": len(exc.partial_text)})
            yield INCOMPLETE_MARKER
            return
        logger.info("Exchange streamed", extra={"message_chars": len(message)})
    finally:
        # client gone or body closed early
        relay.cancel()


@app.post("/api/chat")
def chat(
    body: ChatRequest,
    client: CompletionClient = Depends(get_completion_client),
    options: CompletionOptions = Depends(get_completion_options),
) -> StreamingResponse:
    request = assemble(body)
    relay = StreamRelay(client.complete_streaming(request, options))
    fragments = iter(relay)
    # pull the first fragment so upstream failures still get a proper status
    first = next(fragments, "")
    return StreamingResponse(
        _stream_body(relay, first, fragments, request.user.content),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )


@app.post("/api/chat/simple")
def chat_simple(
    body: ChatRequest,
    client: CompletionClient = Depends(get_completion_client),
    options: CompletionOptions = Depends(get_completion_options),
) -> Dict[str, Any]:
    request = assemble(body)
    result = client.complete_batch(request, options)
    logger.info(
        "Exchange completed",
        extra={"message_chars": len(request.user.content), "reply_chars": len(result.text)},
    )
    return {"response": result.text, "usage": result.usage.model_dump(by_alias=True)}


@app.get("/api/health")
def health() -> Dict[str, str]:
    timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return {"status": "OK", "timestamp": timestamp.replace("+00:00", "Z")}


@app.get("/api/validate-key")
def validate_key(client: CompletionClient = Depends(get_completion_client)) -> Dict[str, Any]:
    try:
        count = client.list_models()
    except ChatError as e:
        logger.warning("API key validation failed", extra={"error_type": type(e).__name__})
        return {"valid": False, "error": str(e)}
    return {"valid": True, "modelCount": count}

# --------------------------------------------------------------------------- #
# entry point
# --------------------------------------------------------------------------- #
def main() -> None:
    setup_logging()
    logger.info(
        "Starting API server",
        extra={
            "port": settings.port,
            "model": settings.openai_model,
            "api_key_configured": "yes" if settings.openai_api_key.get_secret_value() else "no",
        },
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
