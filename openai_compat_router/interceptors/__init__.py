"""
Request interceptors.

An interceptor is a plugin module in this package exposing a
``request_interceptor(request)`` function. It receives the parsed Anthropic
request and returns canned reply text to answer it without contacting the
backend, or None to let it through. Modules may set an integer ``priority``;
lower runs first and the first interceptor that answers wins.
"""

import importlib
import logging
import pkgutil
import sys
from collections.abc import Callable
from typing import NamedTuple

from ..streaming import SSEWriter
from ..types import (
    ClaudeContentBlockText,
    ClaudeMessagesRequest,
    ClaudeMessagesResponse,
    ClaudeUsage,
    Constants,
    generate_message_id,
)

logger = logging.getLogger(__name__)

# Define interceptor specification
request_interceptor_spec = "request_interceptor"
DEFAULT_PRIORITY = 100

RequestInterceptor = Callable[[ClaudeMessagesRequest], str | None]


class InterceptedReply(NamedTuple):
    name: str
    text: str


class InterceptorManager:
    def __init__(self):
        self.interceptors: list[tuple[int, str, RequestInterceptor]] = []

    def load_plugins(self, package):
        """Loads interceptor plugins from the given package."""
        if not hasattr(package, "__path__"):
            logger.warning(f"Package {package.__name__} does not have a __path__.")
            return

        for _, name, _ in pkgutil.iter_modules(package.__path__):
            try:
                module = importlib.import_module(f"{package.__name__}.{name}")
            except ImportError as e:
                logger.error(f"Failed to load interceptor plugin {name}: {e}")
                continue
            self.register_interceptor(module)

    def register_interceptor(self, module):
        """Registers the interceptor a loaded module exposes, once."""
        interceptor = getattr(module, request_interceptor_spec, None)
        if interceptor is None:
            return
        name = module.__name__.rsplit(".", 1)[-1]
        if any(existing == name for _, existing, _ in self.interceptors):
            return
        priority = getattr(module, "priority", DEFAULT_PRIORITY)
        self.interceptors.append((priority, name, interceptor))
        self.interceptors.sort(key=lambda entry: entry[0])
        logger.debug(f"Registered request interceptor {name} (priority {priority})")

    def run(self, request: ClaudeMessagesRequest) -> InterceptedReply | None:
        """Return the first canned reply, or None when no interceptor matches."""
        for _, name, interceptor in self.interceptors:
            text = interceptor(request)
            if text is not None:
                logger.info(f"Request intercepted by {name}, returning canned reply")
                return InterceptedReply(name, text)
        return None


interceptor_manager = InterceptorManager()


def load_all_interceptors():
    """Discover and load every interceptor module in this package."""
    interceptor_manager.load_plugins(sys.modules[__name__])


def build_canned_response(text: str, model: str) -> ClaudeMessagesResponse:
    return ClaudeMessagesResponse(
        id=generate_message_id(),
        model=model or "unknown",
        content=[ClaudeContentBlockText(type="text", text=text)],
        stop_reason=Constants.STOP_END_TURN,
        usage=ClaudeUsage(input_tokens=0, output_tokens=1),
    )


def build_canned_stream(text: str, model: str) -> list[str]:
    """The canned reply as a complete Anthropic event stream."""
    writer = SSEWriter()
    writer.write_message_start(generate_message_id(), model or "unknown")
    writer.write_block_start(0, {"type": "text", "text": ""})
    writer.write_text_delta(0, text)
    writer.write_block_stop(0)
    writer.write_message_delta(Constants.STOP_END_TURN, {"output_tokens": 1})
    writer.write_message_stop()
    writer.close()
    return writer.drain()
