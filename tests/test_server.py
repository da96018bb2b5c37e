#!/usr/bin/env python3
"""
End-to-end tests for the FastAPI endpoints with a mocked upstream backend.

Usage:
  python tests/test_server.py                    # Run all tests
  python -m unittest tests.test_server           # Run with unittest module
"""

import asyncio
import json
import os
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

import httpx
from fastapi.testclient import TestClient

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from openai_compat_router.config import config
from openai_compat_router.request_queue import clear_request_queues, get_pending_request_count
from openai_compat_router.server import app
from openai_compat_router.utils import encode_backend_config

CHAT_URL = "https://api.example.com/v1/chat/completions"
RESPONSES_URL = "https://api.example.com/v1/responses"

CHAT_REPLY = {
    "id": "chatcmpl-1",
    "model": "gpt-4o",
    "choices": [
        {"index": 0, "message": {"role": "assistant", "content": "Hi!"}, "finish_reason": "stop"}
    ],
    "usage": {"prompt_tokens": 4, "completion_tokens": 2},
}

CHAT_STREAM = (
    'data: {"model":"gpt-4o","choices":[{"index":0,"delta":{"content":"Hi"}}]}\n\n'
    'data: {"model":"gpt-4o","choices":[{"index":0,"delta":{},"finish_reason":"stop"}]}\n\n'
    "data: [DONE]\n\n"
)


def api_key(**fields) -> str:
    descriptor = {"url": CHAT_URL, "key": "sk-test-key"}
    descriptor.update(fields)
    return encode_backend_config(descriptor)


def message_body(**fields) -> dict:
    body = {
        "model": "claude-3-opus",
        "max_tokens": 100,
        "messages": [{"role": "user", "content": "Hello"}],
    }
    body.update(fields)
    return body


def sse_events(text: str) -> list[tuple[str, dict]]:
    events = []
    for block in text.strip().split("\n\n"):
        lines = block.split("\n")
        events.append((lines[0][len("event: "):], json.loads(lines[1][len("data: "):])))
    return events


class MockBackend:
    """Records upstream requests and answers them from a handler function."""

    def __init__(self, handler):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def body(self, index: int = 0) -> dict:
        return json.loads(self.requests[index].content)


class ServerTestCase(unittest.TestCase):
    def setUp(self):
        clear_request_queues()
        os.environ.pop("OPENAI_COMPAT_FORCE_STREAM", None)
        self.client = TestClient(app)
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)

    def post_messages(self, backend: MockBackend | None, body=None, key=None, **kwargs):
        headers = {"x-api-key": key if key is not None else api_key()}
        if key == "":
            headers = {}
        with patch(
            "openai_compat_router.handler.create_upstream_client",
            side_effect=(backend.client if backend else None),
        ):
            return self.client.post(
                "/v1/messages",
                headers=headers,
                json=body if body is not None else message_body(),
                **kwargs,
            )


class TestInboundValidation(ServerTestCase):
    def test_missing_api_key(self):
        response = self.post_messages(None, key="")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(
            response.json(),
            {
                "type": "error",
                "error": {"type": "authentication_error", "message": "x-api-key is required"},
            },
        )

    def test_malformed_api_key(self):
        response = self.post_messages(None, key="not-a-descriptor")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["type"], "invalid_request_error")
        self.assertIn("Invalid x-api-key format", response.json()["error"]["message"])

    def test_descriptor_without_key(self):
        response = self.post_messages(None, key=encode_backend_config({"url": CHAT_URL}))
        self.assertEqual(response.status_code, 400)

    def test_invalid_endpoint_url(self):
        response = self.post_messages(None, key=api_key(url="https://api.example.com/v1"))
        self.assertEqual(response.status_code, 400)
        self.assertTrue(
            response.json()["error"]["message"].startswith(
                "Invalid endpoint URL: https://api.example.com/v1"
            )
        )

    def test_invalid_json_body(self):
        with patch("openai_compat_router.handler.create_upstream_client"):
            response = self.client.post(
                "/v1/messages",
                headers={"x-api-key": api_key(), "content-type": "application/json"},
                content=b"{not json",
            )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["type"], "invalid_request_error")


class TestMessagesEndpoint(ServerTestCase):
    def test_non_streaming_chat(self):
        """A JSON reply is converted into an Anthropic message."""
        backend = MockBackend(lambda request: httpx.Response(200, json=CHAT_REPLY))
        response = self.post_messages(backend)

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["type"], "message")
        self.assertEqual(data["content"], [{"type": "text", "text": "Hi!"}])
        self.assertEqual(data["stop_reason"], "end_turn")
        self.assertEqual(data["usage"], {"input_tokens": 4, "output_tokens": 2})

        upstream = backend.requests[0]
        self.assertEqual(str(upstream.url), CHAT_URL)
        self.assertEqual(upstream.headers["authorization"], "Bearer sk-test-key")
        self.assertEqual(upstream.headers["content-type"], "application/json")
        self.assertEqual(
            backend.body(),
            {
                "model": "claude-3-opus",
                "messages": [{"role": "user", "content": "Hello"}],
                "max_tokens": 100,
                "stream": False,
            },
        )
        self.assertEqual(get_pending_request_count(), 0)

    def test_streaming_chat(self):
        """A streaming call relays converted SSE events and releases its queue slot."""
        backend = MockBackend(
            lambda request: httpx.Response(
                200, text=CHAT_STREAM, headers={"content-type": "text/event-stream"}
            )
        )
        response = self.post_messages(backend, body=message_body(stream=True))

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/event-stream"))
        self.assertEqual(response.headers["cache-control"], "no-cache")
        events = sse_events(response.text)
        self.assertEqual(
            [name for name, _ in events],
            [
                "message_start",
                "ping",
                "content_block_start",
                "content_block_delta",
                "content_block_stop",
                "message_delta",
                "message_stop",
            ],
        )
        self.assertIs(backend.body()["stream"], True)
        self.assertEqual(get_pending_request_count(), 0)

    def test_force_stream_descriptor(self):
        """forceStream streams even when the caller did not ask to."""
        backend = MockBackend(
            lambda request: httpx.Response(
                200, text=CHAT_STREAM, headers={"content-type": "text/event-stream"}
            )
        )
        response = self.post_messages(backend, key=api_key(forceStream=True))
        self.assertIs(backend.body()["stream"], True)
        self.assertIn("event: message_stop", response.text)

    def test_responses_streams_by_default(self):
        """Responses backends stream unless stream is explicitly false."""
        stream = (
            'data: {"type":"response.output_text.delta","delta":"Yo"}\n\n'
            'data: {"type":"response.completed","response":{"status":"completed"}}\n\n'
        )
        backend = MockBackend(
            lambda request: httpx.Response(
                200, text=stream, headers={"content-type": "text/event-stream"}
            )
        )
        response = self.post_messages(backend, key=api_key(url=RESPONSES_URL))
        self.assertIs(backend.body()["stream"], True)
        self.assertIn("input", backend.body())
        self.assertIn('"text": "Yo"', response.text)

    def test_responses_non_streaming(self):
        backend = MockBackend(
            lambda request: httpx.Response(
                200,
                json={
                    "id": "resp_1",
                    "status": "completed",
                    "output": [{"type": "message", "content": [{"type": "output_text", "text": "R"}]}],
                },
            )
        )
        response = self.post_messages(
            backend, key=api_key(url=RESPONSES_URL), body=message_body(stream=False)
        )
        self.assertEqual(response.json()["content"], [{"type": "text", "text": "R"}])
        self.assertNotIn("max_output_tokens", backend.body())

    def test_model_override_and_custom_headers(self):
        backend = MockBackend(lambda request: httpx.Response(200, json=CHAT_REPLY))
        self.post_messages(
            backend,
            key=api_key(model="gpt-4o-mini", headers={"X-Org": "acme", "authorization": "Token t"}),
        )
        upstream = backend.requests[0]
        self.assertEqual(backend.body()["model"], "gpt-4o-mini")
        self.assertEqual(upstream.headers["x-org"], "acme")
        self.assertEqual(upstream.headers["authorization"], "Token t")

    def test_content_filter(self):
        """filterContent drops lines that mention GitHub URLs."""
        backend = MockBackend(lambda request: httpx.Response(200, json=CHAT_REPLY))
        self.post_messages(
            backend,
            key=api_key(filterContent=True),
            body=message_body(
                messages=[{"role": "user", "content": "see https://github.com/acme/x\nkeep this"}]
            ),
        )
        self.assertEqual(backend.body()["messages"], [{"role": "user", "content": "keep this"}])

    def test_retry_when_stream_required(self):
        """A backend that insists on streaming gets the same call again with stream=true."""

        def handler(request):
            if json.loads(request.content)["stream"]:
                return httpx.Response(
                    200, text=CHAT_STREAM, headers={"content-type": "text/event-stream"}
                )
            return httpx.Response(400, text='{"error":"Stream must be set to true"}')

        backend = MockBackend(handler)
        response = self.post_messages(backend)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(backend.requests), 2)
        self.assertIn("event: message_stop", response.text)


class TestUpstreamErrors(ServerTestCase):
    def test_rate_limited(self):
        backend = MockBackend(lambda request: httpx.Response(429, text="slow down"))
        response = self.post_messages(backend)
        self.assertEqual(response.status_code, 429)
        self.assertEqual(
            response.json(),
            {"type": "error", "error": {"type": "rate_limit_error", "message": "Provider error: slow down"}},
        )
        self.assertEqual(get_pending_request_count(), 0)

    def test_provider_error_status_is_kept(self):
        backend = MockBackend(lambda request: httpx.Response(503, text="overloaded"))
        response = self.post_messages(backend)
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error"]["type"], "api_error")
        self.assertEqual(len(backend.requests), 1)

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        response = self.post_messages(MockBackend(handler))
        self.assertEqual(response.status_code, 504)
        self.assertEqual(
            response.json()["error"], {"type": "timeout_error", "message": "Request timed out"}
        )
        self.assertEqual(get_pending_request_count(), 0)

    def test_body_stalls_past_deadline(self):
        """An upstream that stops sending mid-body is cut off at the request timeout."""
        async def stalled_body():
            yield b'{"id": "chatcmpl-1",'
            await asyncio.sleep(30)

        backend = MockBackend(lambda request: httpx.Response(200, content=stalled_body()))
        with patch.object(config, "request_timeout", 0.2):
            response = self.post_messages(backend, body=message_body(stream=False))
        self.assertEqual(response.status_code, 504)
        self.assertEqual(
            response.json()["error"], {"type": "timeout_error", "message": "Request timed out"}
        )
        self.assertEqual(get_pending_request_count(), 0)

    def test_stream_stalls_past_deadline(self):
        """A stalled stream ends with a timeout error event and a closed message."""
        async def stalled_stream():
            yield (
                b'data: {"model":"gpt-4o","choices":[{"index":0,"delta":{"content":"Hi"}}]}\n\n'
            )
            await asyncio.sleep(30)

        backend = MockBackend(lambda request: httpx.Response(200, content=stalled_stream()))
        with patch.object(config, "request_timeout", 0.5):
            response = self.post_messages(backend, body=message_body(stream=True))
        self.assertEqual(response.status_code, 200)
        events = sse_events(response.text)
        names = [name for name, _ in events]
        self.assertEqual(
            names,
            [
                "message_start",
                "ping",
                "content_block_start",
                "content_block_delta",
                "error",
                "content_block_stop",
                "message_delta",
                "message_stop",
            ],
        )
        self.assertEqual(
            events[4][1]["error"], {"type": "timeout_error", "message": "Request timed out"}
        )
        self.assertEqual(get_pending_request_count(), 0)

    def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        response = self.post_messages(MockBackend(handler))
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["error"]["type"], "api_error")


class TestInterceptedRequests(ServerTestCase):
    def test_warmup_json(self):
        """Warmup requests are answered without calling the backend."""
        backend = MockBackend(lambda request: httpx.Response(500))
        response = self.post_messages(
            backend, body=message_body(messages=[{"role": "user", "content": "Warmup"}])
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["content"], [{"type": "text", "text": "OK"}])
        self.assertEqual(response.json()["usage"]["output_tokens"], 1)
        self.assertEqual(backend.requests, [])

    def test_warmup_stream(self):
        backend = MockBackend(lambda request: httpx.Response(500))
        response = self.post_messages(
            backend,
            body=message_body(stream=True, messages=[{"role": "user", "content": "Warmup"}]),
        )
        events = sse_events(response.text)
        self.assertEqual(events[0][0], "message_start")
        self.assertEqual(events[-1][0], "message_stop")
        self.assertIn(("content_block_delta", {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "OK"}}), events)
        self.assertEqual(backend.requests, [])

    def test_bash_prefix_preflight(self):
        backend = MockBackend(lambda request: httpx.Response(500))
        response = self.post_messages(
            backend,
            body=message_body(
                system="Your task is to process Bash commands and extract their prefix.",
                messages=[{"role": "user", "content": "Command: git status"}],
            ),
        )
        self.assertEqual(response.json()["content"][0]["text"], "none")
        self.assertEqual(backend.requests, [])


class TestAuxiliaryEndpoints(ServerTestCase):
    def test_count_tokens(self):
        response = self.client.post(
            "/v1/messages/count_tokens",
            json={"model": "m", "messages": [{"role": "user", "content": "hello"}]},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"input_tokens": 9})

    def test_count_tokens_invalid_body(self):
        response = self.client.post(
            "/v1/messages/count_tokens",
            content=b"[1, 2]",
            headers={"content-type": "application/json"},
        )
        self.assertEqual(response.status_code, 400)

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertIn("timestamp", response.json())


if __name__ == "__main__":
    unittest.main()
