"""
FastAPI server for the OpenAI compatibility router.
This module contains the FastAPI application and API endpoints.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .handler import (
    AnthropicAPIError,
    handle_count_tokens_request,
    handle_messages_request,
    parse_messages_request,
    resolve_backend,
)
from .interceptors import load_all_interceptors

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan event handler."""
    # Logging is configured by the CLI entry point, not here
    load_all_interceptors()

    yield


app = FastAPI(lifespan=lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.debug(f"Request: {request.method} {request.url.path}")
    return await call_next(request)


@app.exception_handler(AnthropicAPIError)
async def anthropic_error_handler(request: Request, exc: AnthropicAPIError):
    logger.warning(
        f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_type}: "
        f"{exc.message[:200]}"
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.post("/v1/messages")
async def create_message(raw_request: Request):
    backend = resolve_backend(raw_request.headers.get("x-api-key"))
    request = parse_messages_request(await raw_request.body())
    logger.debug(
        f"Messages request: model={request.model}, messages={len(request.messages)}, "
        f"stream={request.stream}"
    )
    return await handle_messages_request(request, backend)


@app.post("/v1/messages/count_tokens")
async def count_tokens(raw_request: Request):
    return handle_count_tokens_request(await raw_request.body())
