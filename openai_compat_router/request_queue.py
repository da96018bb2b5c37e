"""
Per-backend request serialization.

Calls that share a queue key (backend URL plus a credential prefix) run one at
a time in arrival order, which keeps providers with strict concurrency limits
from answering 429. Distinct keys run in parallel.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from .types import ModelDefaults

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Tail of each queue: resolved when the most recent call for the key completes
_request_queues: dict[str, asyncio.Future] = {}


def generate_queue_key(backend_url: str, api_key: str) -> str:
    return f"{backend_url}:{api_key[:ModelDefaults.QUEUE_KEY_PREFIX_LENGTH]}"


def _release(key: str, this_request: asyncio.Future, previous: asyncio.Future | None):
    if previous is not None and not previous.done():
        # Cancelled while waiting: hand the slot over only once the predecessor finishes
        previous.add_done_callback(lambda _: _release(key, this_request, None))
        return
    if not this_request.done():
        this_request.set_result(None)
    if _request_queues.get(key) is this_request:
        del _request_queues[key]


@asynccontextmanager
async def request_slot(key: str) -> AsyncIterator[None]:
    """Hold the queue slot for key for the duration of the block.

    Used directly when the slot must outlive a single awaited call, such as a
    streaming reply that is still being relayed after the handler returns.
    """
    loop = asyncio.get_running_loop()
    previous = _request_queues.get(key)
    this_request = loop.create_future()
    _request_queues[key] = this_request

    try:
        if previous is not None:
            logger.debug(f"Request queued behind an in-flight call for {key.rsplit(':', 1)[0]}")
            await asyncio.shield(previous)
        yield
    finally:
        _release(key, this_request, previous)


async def with_request_queue(key: str, fn: Callable[[], Awaitable[T]]) -> T:
    """Run fn once every earlier call for key has completed.

    An earlier call's failure does not affect this one; fn's own result or
    error is returned to the caller.
    """
    async with request_slot(key):
        return await fn()


def clear_request_queues():
    _request_queues.clear()


def get_pending_request_count() -> int:
    """Number of keys with a call in flight."""
    return len(_request_queues)
