"""
Upstream HTTP client management.
This module builds the httpx client and the request headers used to call an
OpenAI-compatible backend.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable
from typing import Any, TypeVar

import httpx

from .config import config
from .types import BackendConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


def create_upstream_client() -> httpx.AsyncClient:
    """Create an httpx client for one upstream call.

    httpx applies the timeout to each connect, read and write step; the
    whole call is bounded by UpstreamDeadline. Transport retries only cover
    connection establishment.
    """
    transport = httpx.AsyncHTTPTransport(retries=config.max_retries)
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.request_timeout),
        transport=transport,
    )
    logger.debug(
        f"Create upstream client: timeout={config.request_timeout}s, retries={config.max_retries}"
    )
    return client


def build_upstream_headers(backend: BackendConfig) -> dict[str, str]:
    """Content-Type, then custom headers, then a bearer token unless one was given."""
    headers = {"Content-Type": "application/json"}
    for name, value in (backend.headers or {}).items():
        headers[str(name)] = str(value)

    if not any(name.lower() == "authorization" for name in headers):
        headers["Authorization"] = f"Bearer {backend.key}"
    return headers


def build_upstream_request(
    client: httpx.AsyncClient, backend: BackendConfig, body: dict[str, Any]
) -> httpx.Request:
    return client.build_request(
        "POST", backend.url, json=body, headers=build_upstream_headers(backend)
    )


class UpstreamDeadline:
    """One wall-clock budget shared by every step of an upstream call.

    Each step runs under asyncio.wait_for with whatever time is left, so an
    upstream that trickles bytes still hits the limit.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self._loop = asyncio.get_running_loop()
        self._expires_at = self._loop.time() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._loop.time())

    async def run(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, self.remaining())

    async def lines(self, response: httpx.Response) -> AsyncIterator[str]:
        """Response lines, each read raising asyncio.TimeoutError once time is up."""
        iterator = response.aiter_lines()
        while True:
            try:
                line = await asyncio.wait_for(anext(iterator), self.remaining())
            except StopAsyncIteration:
                return
            yield line
