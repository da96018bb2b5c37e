"""
Streaming conversion: OpenAI Chat Completions chunks -> Anthropic SSE events.
"""

import logging
from typing import Any

from .converter import map_finish_reason_to_stop_reason
from .streaming import BaseStreamConverter
from .types import generate_server_tool_use_id, generate_tool_call_id
from .utils import dump_json

logger = logging.getLogger(__name__)

THINK_OPEN_TAG = "<think>"
THINK_CLOSE_TAG = "</think>"


def _split_partial_tag(text: str, tag: str) -> tuple[str, str]:
    """Split off a trailing fragment of text that could be the start of tag."""
    for size in range(min(len(tag) - 1, len(text)), 0, -1):
        if text.endswith(tag[:size]):
            return text[:-size], text[-size:]
    return text, ""


class ChatStreamConverter(BaseStreamConverter):
    """Drives the block engine from Chat Completions stream chunks.

    Some providers inline reasoning as <think>...</think> inside the content
    stream; the scanner routes it into a thinking block, including tags that
    are split across chunks.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.chunks_received = 0
        self._in_think_tag = False
        self._pending_tag = ""
        self._strip_leading_newlines = False
        self._final_usage_seen = False

    def input_complete(self) -> bool:
        # finish_reason may be followed by a usage-only chunk before [DONE]
        return self.finished and self._final_usage_seen

    def handle_event(self, chunk: dict[str, Any]):
        self.chunks_received += 1

        if chunk.get("error"):
            self.write_error(dump_json(chunk["error"]))
            return

        self.update_model(chunk.get("model"))
        usage = chunk.get("usage")
        has_usage = isinstance(usage, dict)
        if has_usage:
            details = usage.get("prompt_tokens_details")
            cache_read = usage.get("cache_read_input_tokens")
            if cache_read is None and isinstance(details, dict):
                cache_read = details.get("cached_tokens")
            self.update_usage(
                usage.get("prompt_tokens"), usage.get("completion_tokens"), cache_read
            )

        # Providers often send a trailing usage-only chunk after finish_reason
        if self.finished:
            self._final_usage_seen = self._final_usage_seen or has_usage
            return

        self.ensure_message_started()

        choices = chunk.get("choices")
        choice = choices[0] if isinstance(choices, list) and choices else None
        if not isinstance(choice, dict):
            return
        delta = choice.get("delta") if isinstance(choice.get("delta"), dict) else {}

        for field in ("reasoning", "reasoning_content"):
            if isinstance(delta.get(field), str) and delta[field]:
                self.write_thinking_delta(delta[field])

        thinking = delta.get("thinking")
        if isinstance(thinking, dict):
            if thinking.get("signature"):
                self.write_signature_delta(str(thinking["signature"]))
            elif thinking.get("content"):
                self.write_thinking_delta(str(thinking["content"]))

        content = delta.get("content")
        if isinstance(content, str) and content:
            self._process_text_with_think_tags(content)

        annotations = delta.get("annotations")
        if isinstance(annotations, list) and annotations:
            self._process_annotations(annotations)

        tool_calls = delta.get("tool_calls")
        if isinstance(tool_calls, list):
            self._process_tool_calls(tool_calls)

        if choice.get("finish_reason"):
            self._flush_pending_tag()
            self.set_stop_reason(map_finish_reason_to_stop_reason(choice["finish_reason"]))
            self.finished = True
            self._final_usage_seen = has_usage

    def finish(self):
        if not self.finalized:
            self._flush_pending_tag()
        super().finish()

    # === <think> scanner ===
    def _emit(self, text: str):
        if not text:
            return
        if self._in_think_tag:
            self.write_thinking_delta(text)
        else:
            self.write_text_delta(text)

    def _flush_pending_tag(self):
        pending, self._pending_tag = self._pending_tag, ""
        self._emit(pending)

    def _process_text_with_think_tags(self, text: str):
        remaining = self._pending_tag + text
        self._pending_tag = ""

        while remaining:
            if not self._in_think_tag and self._strip_leading_newlines:
                remaining = remaining.lstrip("\r\n")
                if not remaining:
                    return
                self._strip_leading_newlines = False

            tag = THINK_CLOSE_TAG if self._in_think_tag else THINK_OPEN_TAG
            position = remaining.find(tag)
            if position == -1:
                body, self._pending_tag = _split_partial_tag(remaining, tag)
                self._emit(body)
                return

            self._emit(remaining[:position])
            remaining = remaining[position + len(tag):]
            if self._in_think_tag:
                self._in_think_tag = False
                self._strip_leading_newlines = True
            else:
                self._in_think_tag = True

    # === Annotations and tool calls ===
    def _process_annotations(self, annotations: list[Any]):
        results = []
        for annotation in annotations:
            citation = annotation.get("url_citation") if isinstance(annotation, dict) else None
            citation = citation if isinstance(citation, dict) else {}
            results.append(
                {
                    "type": "web_search_result",
                    "title": citation.get("title"),
                    "url": citation.get("url"),
                }
            )
        self.write_web_search_result(generate_server_tool_use_id(), results)

    def _process_tool_calls(self, tool_calls: list[Any]):
        seen: set[int] = set()
        for tool_call in tool_calls:
            if not isinstance(tool_call, dict):
                continue
            tool_index = tool_call.get("index")
            tool_index = tool_index if isinstance(tool_index, int) else 0
            if tool_index in seen:
                continue
            seen.add(tool_index)

            function = tool_call.get("function") if isinstance(tool_call.get("function"), dict) else {}
            tool_id = tool_call.get("id")
            name = function.get("name")

            if tool_index not in self.tool_calls:
                self.start_tool_block(
                    tool_index,
                    tool_id or generate_tool_call_id(),
                    name or f"tool_{tool_index}",
                    placeholder=not (tool_id and name),
                )
            else:
                self.update_tool_identity(tool_index, tool_id, name)

            arguments = function.get("arguments")
            if isinstance(arguments, str) and arguments:
                self.write_tool_input_delta(tool_index, arguments)
