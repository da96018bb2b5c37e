"""
Streaming conversion: OpenAI Responses API events -> Anthropic SSE events.
"""

import logging
from typing import Any

from .converter import map_status_to_stop_reason
from .streaming import BaseStreamConverter
from .types import Constants, generate_tool_call_id
from .utils import dump_json

logger = logging.getLogger(__name__)

# Lifecycle events that carry nothing to forward
_IGNORED_EVENTS = frozenset(
    {
        "response.created",
        "response.in_progress",
        "response.function_call_arguments.done",
        "response.reasoning_summary_text.done",
        "response.reasoning_summary_part.added",
        "response.reasoning_summary_part.done",
    }
)

_COMPLETION_EVENTS = frozenset({"response.completed", "response.done", "done"})


class ResponsesStreamConverter(BaseStreamConverter):
    """Drives the block engine from Responses API stream events.

    Tool blocks are keyed by the event output_index.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.events_received = 0
        self._reasoning_streamed = False

    def handle_event(self, event: dict[str, Any]):
        self.events_received += 1
        if self.finished:
            return

        event_type = event.get("type") or event.get("event") or ""
        response = event.get("response") if isinstance(event.get("response"), dict) else event

        self.update_model(response.get("model"))
        self._update_usage_from(response)
        self.ensure_message_started()

        if event_type in ("error", "response.error") or response.get("error"):
            self.write_error(dump_json(response.get("error") or event.get("error") or {}))
            self.finished = True
            return

        if event_type in _IGNORED_EVENTS:
            return

        if event_type == "response.output_text.delta":
            delta = event.get("delta")
            if isinstance(delta, str) and delta:
                self.write_text_delta(delta)
        elif event_type == "response.output_text.done":
            if self.current_type == Constants.CONTENT_TEXT:
                self.close_current_block()
        elif event_type == "response.output_item.added":
            self._handle_output_item_added(event)
        elif event_type == "response.output_item.done":
            self._handle_output_item_done(event)
        elif event_type == "response.function_call_arguments.delta":
            delta = event.get("delta")
            if isinstance(delta, str):
                self.write_tool_input_delta(self._output_index(event), delta)
        elif event_type == "response.reasoning_summary_text.delta":
            delta = event.get("delta")
            if isinstance(delta, str) and delta:
                self._reasoning_streamed = True
                self.write_thinking_delta(delta)
        elif event_type in _COMPLETION_EVENTS:
            self._handle_completion(response)
        elif event_type == "response.incomplete":
            reason = (response.get("incomplete_details") or {}).get("reason")
            self.set_stop_reason(
                Constants.STOP_MAX_TOKENS
                if reason == "max_output_tokens"
                else Constants.STOP_END_TURN
            )
            self.finished = True
        elif event_type == "response.failed":
            if response.get("error"):
                self.write_error(dump_json(response["error"]))
            self.set_stop_reason(Constants.STOP_END_TURN)
            self.finished = True
        elif response.get("status") == "completed":
            self._handle_completion(response)
        else:
            logger.debug(f"Ignoring Responses stream event: {event_type!r}")

    @staticmethod
    def _output_index(event: dict[str, Any]) -> int:
        index = event.get("output_index")
        return index if isinstance(index, int) else 0

    def _update_usage_from(self, response: dict[str, Any]):
        usage = response.get("usage")
        if isinstance(usage, dict):
            self.update_usage(
                usage.get("input_tokens") or usage.get("prompt_tokens"),
                usage.get("output_tokens") or usage.get("completion_tokens"),
                usage.get("cache_read_input_tokens"),
            )

    def _handle_output_item_added(self, event: dict[str, Any]):
        item = event.get("item")
        if not isinstance(item, dict) or item.get("type") != "function_call":
            # Reasoning blocks open on their first summary delta
            return
        self.start_tool_block(
            self._output_index(event),
            item.get("call_id") or item.get("id") or generate_tool_call_id(),
            item.get("name") or "unknown_function",
        )

    def _handle_output_item_done(self, event: dict[str, Any]):
        item = event.get("item")
        if not isinstance(item, dict):
            return

        if item.get("type") == "function_call":
            output_index = self._output_index(event)
            state = self.tool_calls.get(output_index)
            if state is None:
                return
            arguments = item.get("arguments")
            if isinstance(arguments, str) and arguments.startswith(state.arguments):
                self.write_tool_input_delta(output_index, arguments[len(state.arguments):])
            if not state.closed and self.current_index == state.block_index:
                self.close_current_block()

        elif item.get("type") == "reasoning" and not self._reasoning_streamed:
            summary = item.get("summary")
            for part in summary if isinstance(summary, list) else []:
                if isinstance(part, dict) and part.get("type") == "summary_text" and part.get("text"):
                    self.write_thinking_delta(part["text"])

    def _handle_completion(self, response: dict[str, Any]):
        stop_reason = map_status_to_stop_reason(
            response.get("stop_reason") or response.get("status")
        )
        # A completed response that called tools is a tool_use turn
        if stop_reason == Constants.STOP_END_TURN and self.tool_calls:
            stop_reason = Constants.STOP_TOOL_USE
        self.set_stop_reason(stop_reason)
        self.finished = True
