"""
Request orchestration for the router.

Validates the backend descriptor, converts the Anthropic request for the
resolved wire format, calls the backend under the per-backend queue and
converts the reply (JSON or SSE) back to Anthropic format.
"""

import asyncio
import copy
import json
import logging
from contextlib import AsyncExitStack
from typing import Any

import httpx
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from .api_type import EndpointURLError, resolve_api_type, should_force_stream
from .chat_stream import ChatStreamConverter
from .client import UpstreamDeadline, build_upstream_request, create_upstream_client
from .config import config
from .converter import convert_response
from .interceptors import build_canned_response, build_canned_stream, interceptor_manager
from .request_converter import convert_request
from .request_queue import generate_queue_key, request_slot
from .responses_stream import ResponsesStreamConverter
from .streaming import BaseStreamConverter, StreamToolCall
from .types import (
    BackendConfig,
    ClaudeMessagesRequest,
    ClaudeTokenCountRequest,
    ClaudeTokenCountResponse,
    Constants,
)
from .utils import (
    _extract_error_details,
    decode_backend_config,
    estimate_tokens,
    filter_github_urls,
)

logger = logging.getLogger(__name__)

STREAM_REQUIRED_MARKER = "stream must be set to true"
INVALID_API_KEY_MESSAGE = (
    "Invalid x-api-key format. Expect base64(JSON.stringify({ url, key, model?, apiType? }))"
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_FILTERED_PART_TYPES = ("text", "input_text", "output_text")


class AnthropicAPIError(Exception):
    """An error returned to the caller in the Anthropic error envelope."""

    def __init__(self, status_code: int, error_type: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"type": "error", "error": {"type": self.error_type, "message": self.message}}


# === Inbound validation ===
def resolve_backend(api_key: str | None) -> BackendConfig:
    """Decode the x-api-key header into the backend descriptor."""
    if not api_key:
        raise AnthropicAPIError(401, Constants.ERROR_AUTHENTICATION, "x-api-key is required")
    backend = decode_backend_config(api_key)
    if backend is None:
        raise AnthropicAPIError(400, Constants.ERROR_INVALID_REQUEST, INVALID_API_KEY_MESSAGE)
    return backend


def _load_json_object(body: bytes) -> dict[str, Any]:
    try:
        data = json.loads(body) if body else {}
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise AnthropicAPIError(
            400, Constants.ERROR_INVALID_REQUEST, f"Invalid JSON body: {e}"
        ) from e
    if not isinstance(data, dict):
        raise AnthropicAPIError(
            400, Constants.ERROR_INVALID_REQUEST, "Request body must be a JSON object"
        )
    return data


def parse_messages_request(body: bytes) -> ClaudeMessagesRequest:
    data = _load_json_object(body)
    try:
        return ClaudeMessagesRequest.model_validate(data)
    except ValidationError as e:
        raise AnthropicAPIError(
            400, Constants.ERROR_INVALID_REQUEST, f"Invalid request body: {e.errors()[0]['msg']}"
        ) from e


# === Request preparation ===
def should_stream(
    request: ClaudeMessagesRequest, backend: BackendConfig, api_type: str
) -> bool:
    """Responses backends stream unless the caller explicitly opted out."""
    return (
        should_force_stream()
        or backend.force_stream
        or (api_type == Constants.API_RESPONSES and request.stream is None)
        or bool(request.stream)
    )


def filter_request_content(body: dict[str, Any]) -> dict[str, Any]:
    """Drop lines mentioning GitHub URLs from message text of a converted request."""
    filtered = copy.deepcopy(body)
    for key in ("messages", "input"):
        for message in filtered.get(key) or []:
            if not isinstance(message, dict):
                continue
            content = message.get("content")
            if isinstance(content, str):
                message["content"] = filter_github_urls(content)
            elif isinstance(content, list):
                for part in content:
                    if (
                        isinstance(part, dict)
                        and part.get("type") in _FILTERED_PART_TYPES
                        and isinstance(part.get("text"), str)
                    ):
                        part["text"] = filter_github_urls(part["text"])
    return filtered


def build_upstream_body(
    request: ClaudeMessagesRequest, backend: BackendConfig, api_type: str, stream: bool
) -> dict[str, Any]:
    body = convert_request(request.model_copy(update={"stream": stream}), api_type)
    if backend.filter_content:
        body = filter_request_content(body)
    return body


def create_stream_converter(
    api_type: str, model: str, on_tool_call=None
) -> BaseStreamConverter:
    converter_class = (
        ResponsesStreamConverter
        if api_type == Constants.API_RESPONSES
        else ChatStreamConverter
    )
    return converter_class(model=model, on_tool_call=on_tool_call, debug=config.debug)


def _log_tool_call(tool_call: StreamToolCall):
    logger.debug(f"🔧 Streamed tool call {tool_call.name} ({tool_call.id})")


# === Upstream call ===
async def _read_error_text(response: httpx.Response) -> str:
    try:
        await response.aread()
        return response.text
    except httpx.HTTPError as e:
        logger.debug(f"Could not read upstream error body: {e}")
        return ""


def _provider_error(status_code: int, error_text: str) -> AnthropicAPIError:
    logger.error(f"Provider error {status_code}: {error_text[:200]}")
    error_type = (
        Constants.ERROR_RATE_LIMIT if status_code == 429 else Constants.ERROR_API
    )
    return AnthropicAPIError(
        status_code, error_type, f"Provider error: {error_text or f'HTTP {status_code}'}"
    )


async def _deadline_lines(
    converter: BaseStreamConverter, upstream: httpx.Response, deadline: UpstreamDeadline
):
    """Upstream lines until the deadline; on expiry the reply gets a timeout error."""
    try:
        async for line in deadline.lines(upstream):
            yield line
    except asyncio.TimeoutError:
        logger.error(f"Upstream stream exceeded {deadline.seconds}s")
        converter.write_error("Request timed out", Constants.ERROR_TIMEOUT)


async def _relay_stream(
    converter: BaseStreamConverter,
    upstream: httpx.Response,
    deadline: UpstreamDeadline,
    stack: AsyncExitStack,
):
    """Yield converted events, then release the upstream response, client and queue slot."""
    try:
        async for event in converter.convert(_deadline_lines(converter, upstream, deadline)):
            yield event
    finally:
        await stack.aclose()


def _intercepted_response(request: ClaudeMessagesRequest, text: str, stream: bool):
    if stream:
        events = build_canned_stream(text, request.model)

        async def canned_events():
            for event in events:
                yield event

        return StreamingResponse(
            canned_events(), media_type="text/event-stream", headers=SSE_HEADERS
        )
    return JSONResponse(content=build_canned_response(text, request.model).to_dict())


async def handle_messages_request(
    request: ClaudeMessagesRequest, backend: BackendConfig
) -> JSONResponse | StreamingResponse:
    """Serve one /v1/messages call against the backend the descriptor names."""
    try:
        api_type = resolve_api_type(backend)
    except EndpointURLError as e:
        raise AnthropicAPIError(400, Constants.ERROR_INVALID_REQUEST, str(e)) from e

    if backend.model:
        request = request.model_copy(update={"model": backend.model})

    want_stream = should_stream(request, backend, api_type)

    intercepted = interceptor_manager.run(request)
    if intercepted is not None:
        return _intercepted_response(request, intercepted.text, bool(request.stream))

    async with AsyncExitStack() as stack:
        try:
            await stack.enter_async_context(
                request_slot(generate_queue_key(backend.url, backend.key))
            )
            client = await stack.enter_async_context(create_upstream_client())
            deadline = UpstreamDeadline(config.request_timeout)

            body = build_upstream_body(request, backend, api_type, want_stream)
            logger.info(
                f"POST {backend.url} wire={api_type} model={request.model} "
                f"stream={want_stream} tools={len(body.get('tools', []))}"
            )
            upstream = await deadline.run(
                client.send(build_upstream_request(client, backend, body), stream=True)
            )
            stack.push_async_callback(upstream.aclose)

            if upstream.status_code >= 400:
                error_text = await deadline.run(_read_error_text(upstream))
                if (
                    upstream.status_code == 429
                    or want_stream
                    or STREAM_REQUIRED_MARKER not in error_text.lower()
                ):
                    raise _provider_error(upstream.status_code, error_text)

                logger.warning("Upstream requires stream=true, retrying with streaming")
                want_stream = True
                body = build_upstream_body(request, backend, api_type, want_stream)
                upstream = await deadline.run(
                    client.send(build_upstream_request(client, backend, body), stream=True)
                )
                stack.push_async_callback(upstream.aclose)
                if upstream.status_code >= 400:
                    raise _provider_error(
                        upstream.status_code, await deadline.run(_read_error_text(upstream))
                    )

            if want_stream:
                converter = create_stream_converter(api_type, request.model, _log_tool_call)
                return StreamingResponse(
                    _relay_stream(converter, upstream, deadline, stack.pop_all()),
                    media_type="text/event-stream",
                    headers=SSE_HEADERS,
                )

            await deadline.run(upstream.aread())
            anthropic_response = convert_response(upstream.json(), api_type, request.model)
            return JSONResponse(content=anthropic_response.to_dict())

        except AnthropicAPIError:
            raise
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            logger.error(f"Upstream request timed out: {e}")
            raise AnthropicAPIError(504, Constants.ERROR_TIMEOUT, "Request timed out") from e
        except httpx.TransportError as e:
            logger.error(f"Could not reach backend {backend.url}: {e}")
            raise AnthropicAPIError(
                502, Constants.ERROR_API, f"Failed to connect to backend: {e}"
            ) from e
        except Exception as e:
            logger.error(
                f"Internal error handling request: {json.dumps(_extract_error_details(e), indent=2)}"
            )
            raise AnthropicAPIError(
                500, Constants.ERROR_INTERNAL, str(e) or "Internal error"
            ) from e


def handle_count_tokens_request(body: bytes) -> ClaudeTokenCountResponse:
    """Rough token estimate of the system prompt and messages."""
    data = _load_json_object(body)
    try:
        request = ClaudeTokenCountRequest.model_validate(data)
    except ValidationError as e:
        raise AnthropicAPIError(
            400, Constants.ERROR_INVALID_REQUEST, f"Invalid request body: {e.errors()[0]['msg']}"
        ) from e
    return ClaudeTokenCountResponse(
        input_tokens=estimate_tokens(request.system, request.messages)
    )
