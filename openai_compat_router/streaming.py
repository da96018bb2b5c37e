"""
Anthropic SSE writer and the block-lifecycle engine shared by the streaming converters.
The chat_stream and responses_stream modules feed upstream events into
BaseStreamConverter, which guarantees a well-formed Anthropic event sequence.
"""

import json
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from .types import Constants, generate_message_id
from .utils import safe_json_parse

logger = logging.getLogger(__name__)


def encode_event_data(data: dict[str, Any]) -> str:
    """JSON for a data line. Lone surrogates (half of a pair split across
    upstream chunks) are sent as \\u escapes so the client can rejoin them."""
    text = json.dumps(data, ensure_ascii=False)
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return json.dumps(data)
    return text


def parse_sse_data(line: str) -> str | None:
    """Payload of a `data:` line, or None for any other line."""
    if not line.startswith("data:"):
        return None
    return line[5:].strip()


class SSEWriter:
    """Formats Anthropic SSE events and buffers them for the driving generator."""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.closed = False
        self.events_written = 0
        self._buffer: list[str] = []

    def write_event(self, event: str, data: dict[str, Any]) -> bool:
        """Buffer one event. Returns False once the writer is closed."""
        if self.closed:
            return False

        payload = f"event: {event}\ndata: {encode_event_data(data)}\n\n"
        self._buffer.append(payload)
        self.events_written += 1
        if self.debug:
            logger.debug(f"STREAMING_EVENT: {event} - {payload[:200]!r}")
        else:
            logger.debug(f"STREAMING_EVENT: {event}")
        return True

    def drain(self) -> list[str]:
        """Hand over everything buffered so far."""
        events, self._buffer = self._buffer, []
        return events

    def close(self):
        self.closed = True

    # === Message events ===
    def write_message_start(self, message_id: str, model: str) -> bool:
        return self.write_event(
            Constants.EVENT_MESSAGE_START,
            {
                "type": Constants.EVENT_MESSAGE_START,
                "message": {
                    "id": message_id,
                    "type": "message",
                    "role": Constants.ROLE_ASSISTANT,
                    "content": [],
                    "model": model,
                    "stop_reason": None,
                    "stop_sequence": None,
                    "usage": {"input_tokens": 0, "output_tokens": 0},
                },
            },
        )

    def write_ping(self) -> bool:
        return self.write_event(Constants.EVENT_PING, {"type": Constants.EVENT_PING})

    def write_message_delta(self, stop_reason: str, usage: dict[str, Any]) -> bool:
        return self.write_event(
            Constants.EVENT_MESSAGE_DELTA,
            {
                "type": Constants.EVENT_MESSAGE_DELTA,
                "delta": {"stop_reason": stop_reason, "stop_sequence": None},
                "usage": usage,
            },
        )

    def write_message_stop(self) -> bool:
        return self.write_event(
            Constants.EVENT_MESSAGE_STOP, {"type": Constants.EVENT_MESSAGE_STOP}
        )

    def write_error(self, message: str, error_type: str = Constants.ERROR_API) -> bool:
        return self.write_event(
            Constants.EVENT_ERROR,
            {
                "type": Constants.EVENT_ERROR,
                "error": {"type": error_type, "message": message},
            },
        )

    # === Block events ===
    def write_block_start(self, index: int, content_block: dict[str, Any]) -> bool:
        return self.write_event(
            Constants.EVENT_CONTENT_BLOCK_START,
            {
                "type": Constants.EVENT_CONTENT_BLOCK_START,
                "index": index,
                "content_block": content_block,
            },
        )

    def write_delta(self, index: int, delta: dict[str, Any]) -> bool:
        return self.write_event(
            Constants.EVENT_CONTENT_BLOCK_DELTA,
            {"type": Constants.EVENT_CONTENT_BLOCK_DELTA, "index": index, "delta": delta},
        )

    def write_text_delta(self, index: int, text: str) -> bool:
        return self.write_delta(index, {"type": Constants.DELTA_TEXT, "text": text})

    def write_thinking_delta(self, index: int, thinking: str) -> bool:
        return self.write_delta(
            index, {"type": Constants.DELTA_THINKING, "thinking": thinking}
        )

    def write_signature_delta(self, index: int, signature: str) -> bool:
        return self.write_delta(
            index, {"type": Constants.DELTA_SIGNATURE, "signature": signature}
        )

    def write_input_json_delta(self, index: int, partial_json: str) -> bool:
        return self.write_delta(
            index, {"type": Constants.DELTA_INPUT_JSON, "partial_json": partial_json}
        )

    def write_block_stop(self, index: int) -> bool:
        return self.write_event(
            Constants.EVENT_CONTENT_BLOCK_STOP,
            {"type": Constants.EVENT_CONTENT_BLOCK_STOP, "index": index},
        )


@dataclass
class StreamToolCall:
    """A tool call as it stood when its block was stopped."""

    id: str
    name: str
    input: dict[str, Any]


@dataclass
class ToolCallState:
    id: str
    name: str
    block_index: int
    arguments: str = ""
    placeholder: bool = False
    closed: bool = False


@dataclass
class StreamUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int | None = None

    def to_dict(self) -> dict[str, Any]:
        usage: dict[str, Any] = {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }
        if self.cache_read_input_tokens is not None:
            usage["cache_read_input_tokens"] = self.cache_read_input_tokens
        return usage


@dataclass
class BlockSummary:
    index: int
    type: str
    detail: dict[str, Any] = field(default_factory=dict)


class BaseStreamConverter:
    """Owns the Anthropic block lifecycle for one streaming reply.

    Exactly one block is open at a time. Opening a block closes the open
    one first, block indices strictly increase, and every opened block is
    stopped exactly once before message_stop.
    """

    def __init__(
        self,
        model: str | None = None,
        on_tool_call: Callable[[StreamToolCall], None] | None = None,
        debug: bool = False,
    ):
        self.writer = SSEWriter(debug=debug)
        self.message_id = generate_message_id()
        self.model = model or "unknown"
        self.on_tool_call = on_tool_call
        self.debug = debug

        # Message state
        self.started = False
        self.finished = False
        self.finalized = False
        self.stop_reason: str | None = None
        self.usage = StreamUsage()
        self.lines_received = 0

        # Block state
        self.next_index = 0
        self.current_index = -1
        self.current_type: str | None = None
        self.reasoning_closed = False
        self.tool_calls: dict[int, ToolCallState] = {}
        self.content_blocks: list[BlockSummary] = []
        self.completed_tool_calls: list[StreamToolCall] = []

        # Text accumulated for the open block, frozen on stop
        self.thinking_text = ""
        self.current_text = ""
        self.last_text = ""

    # === Driver hook ===
    def handle_event(self, event: dict[str, Any]):
        raise NotImplementedError

    def handle_done(self):
        """Called for the `data: [DONE]` sentinel."""
        self.finished = True

    def input_complete(self) -> bool:
        """Whether the upstream has sent everything the reply needs."""
        return self.finished

    # === Message state ===
    def update_model(self, model: Any):
        if isinstance(model, str) and model:
            self.model = model

    def update_usage(
        self,
        input_tokens: Any = None,
        output_tokens: Any = None,
        cache_read_input_tokens: Any = None,
    ):
        if isinstance(input_tokens, int):
            self.usage.input_tokens = input_tokens
        if isinstance(output_tokens, int):
            self.usage.output_tokens = output_tokens
        if isinstance(cache_read_input_tokens, int):
            self.usage.cache_read_input_tokens = cache_read_input_tokens

    def set_stop_reason(self, stop_reason: str):
        self.stop_reason = stop_reason

    def ensure_message_started(self) -> bool:
        if self.writer.closed:
            return False
        if not self.started:
            self.started = True
            self.writer.write_message_start(self.message_id, self.model)
            self.writer.write_ping()
        return True

    def finish(self):
        """Close the open block and emit message_delta and message_stop. Idempotent."""
        if self.finalized:
            return
        self.finalized = True
        self.finished = True
        if self.writer.closed:
            return

        self.ensure_message_started()
        self.close_current_block()
        self.writer.write_message_delta(
            self.stop_reason or Constants.STOP_END_TURN, self.usage.to_dict()
        )
        self.writer.write_message_stop()
        self.writer.close()

    # === Block lifecycle ===
    def _open_block(self, block_type: str, content_block: dict[str, Any]) -> int:
        self.ensure_message_started()
        self.close_current_block()

        index = self.next_index
        self.next_index += 1
        self.writer.write_block_start(index, content_block)
        self.current_index = index
        self.current_type = block_type
        self.content_blocks.append(BlockSummary(index=index, type=block_type))
        return index

    def close_current_block(self):
        if self.current_index < 0:
            return

        index, block_type = self.current_index, self.current_type
        self.writer.write_block_stop(index)
        self.current_index = -1
        self.current_type = None

        if block_type == Constants.CONTENT_THINKING:
            self._summary(index).detail["chars"] = len(self.thinking_text)
        elif block_type == Constants.CONTENT_TEXT:
            self.last_text = self.current_text
            self._summary(index).detail["chars"] = len(self.current_text)
            self.current_text = ""
        elif block_type == Constants.CONTENT_TOOL_USE:
            for state in self.tool_calls.values():
                if state.block_index == index:
                    self._complete_tool_call(state)
                    break

    def _summary(self, index: int) -> BlockSummary:
        for summary in reversed(self.content_blocks):
            if summary.index == index:
                return summary
        raise KeyError(index)

    def _complete_tool_call(self, state: ToolCallState):
        state.closed = True
        tool_input = safe_json_parse(state.arguments, None) if state.arguments else {}
        if not isinstance(tool_input, dict):
            logger.warning(
                f"Tool call {state.name} ({state.id}) produced invalid JSON arguments: "
                f"{state.arguments[:200]}"
            )
            tool_input = {}

        tool_call = StreamToolCall(id=state.id, name=state.name, input=tool_input)
        self.completed_tool_calls.append(tool_call)
        self._summary(state.block_index).detail.update(id=state.id, name=state.name)
        if self.on_tool_call is not None:
            self.on_tool_call(tool_call)

    # === Content writing ===
    def write_text_delta(self, text: str):
        if self.writer.closed or not text:
            return
        self.reasoning_closed = True
        if self.current_type != Constants.CONTENT_TEXT:
            self._open_block(Constants.CONTENT_TEXT, {"type": "text", "text": ""})
        self.writer.write_text_delta(self.current_index, text)
        self.current_text += text

    def write_thinking_delta(self, thinking: str):
        # Thinking that arrives after the answer text has begun is dropped
        if self.writer.closed or not thinking or self.reasoning_closed:
            return
        if self.current_type != Constants.CONTENT_THINKING:
            self._open_block(
                Constants.CONTENT_THINKING, {"type": "thinking", "thinking": ""}
            )
        self.writer.write_thinking_delta(self.current_index, thinking)
        self.thinking_text += thinking

    def write_signature_delta(self, signature: str):
        if self.writer.closed or not signature:
            return
        if self.current_type != Constants.CONTENT_THINKING:
            logger.debug("Dropping signature without an open thinking block")
            return
        self.writer.write_signature_delta(self.current_index, signature)
        self.close_current_block()

    def start_tool_block(
        self, tool_key: int, tool_id: str, name: str, placeholder: bool = False
    ) -> int:
        """Open the tool_use block for an upstream tool index, once."""
        state = self.tool_calls.get(tool_key)
        if state is not None:
            return state.block_index
        if self.writer.closed:
            return -1

        index = self._open_block(
            Constants.CONTENT_TOOL_USE,
            {"type": "tool_use", "id": tool_id, "name": name, "input": {}},
        )
        self.tool_calls[tool_key] = ToolCallState(
            id=tool_id, name=name, block_index=index, placeholder=placeholder
        )
        return index

    def update_tool_identity(self, tool_key: int, tool_id: Any, name: Any):
        """Replace placeholder id and name while no arguments have been seen."""
        state = self.tool_calls.get(tool_key)
        if state is None or not state.placeholder or state.arguments:
            return
        if tool_id and name:
            state.id = str(tool_id)
            state.name = str(name)
            state.placeholder = False

    def write_tool_input_delta(self, tool_key: int, partial_json: str):
        if not partial_json:
            return
        state = self.tool_calls.get(tool_key)
        if state is None:
            logger.debug(f"Dropping arguments for unknown tool index {tool_key}")
            return

        state.arguments += partial_json
        if state.closed or self.writer.closed:
            return

        self.writer.write_input_json_delta(state.block_index, partial_json)

    def write_web_search_result(
        self, tool_use_id: str, results: list[dict[str, Any]], query: str = ""
    ):
        """Emit a server_tool_use block and its web_search_tool_result block."""
        if self.writer.closed:
            return
        self._open_block(
            Constants.CONTENT_SERVER_TOOL_USE,
            {
                "type": "server_tool_use",
                "id": tool_use_id,
                "name": "web_search",
                "input": {"query": query},
            },
        )
        self._open_block(
            Constants.CONTENT_WEB_SEARCH_RESULT,
            {"type": "web_search_tool_result", "tool_use_id": tool_use_id, "content": results},
        )
        self.close_current_block()

    def write_error(self, message: str, error_type: str = Constants.ERROR_API):
        self.ensure_message_started()
        self.writer.write_error(message, error_type)

    # === Driving ===
    async def convert(self, lines: AsyncIterator[str]) -> AsyncIterator[str]:
        """Consume upstream SSE lines and yield Anthropic SSE events."""
        try:
            try:
                async for line in lines:
                    self.lines_received += 1
                    data = parse_sse_data(line)
                    if not data:
                        continue
                    if data == "[DONE]":
                        self.handle_done()
                        break

                    event = safe_json_parse(data)
                    if not isinstance(event, dict):
                        logger.debug(f"Skipping non-JSON stream line: {data[:200]}")
                        continue

                    self.handle_event(event)
                    for chunk in self.writer.drain():
                        yield chunk
                    # Finalize on the terminal event, even if the connection stays open
                    if self.writer.closed or self.input_complete():
                        break
            except Exception as e:
                logger.error(f"Upstream stream failed: {type(e).__name__}: {e}")

            self.finish()
            for chunk in self.writer.drain():
                yield chunk
        finally:
            self.writer.close()
            self._log_streaming_completion()

    def _log_streaming_completion(self):
        logger.info(
            f"STREAMING COMPLETE - Model: {self.model}, Lines: {self.lines_received}, "
            f"Events: {self.writer.events_written}, Blocks: {len(self.content_blocks)}, "
            f"Stop reason: {self.stop_reason or Constants.STOP_END_TURN}, "
            f"Usage: {self.usage.input_tokens} in / {self.usage.output_tokens} out, "
            f"Finalized: {self.finalized}"
        )
        for block in self.content_blocks:
            logger.info(f"📋   Block {block.index}: {block.type} {block.detail}")
        for tool_call in self.completed_tool_calls:
            logger.info(
                f"🔧   Tool: {tool_call.name} (id: {tool_call.id}) "
                f"input_keys={list(tool_call.input.keys())}"
            )
