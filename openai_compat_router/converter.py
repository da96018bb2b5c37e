"""
Response conversion: OpenAI Chat Completions / Responses API replies -> Anthropic messages.
Converters never raise on malformed payloads; they return a well-formed
Anthropic message instead.
"""

import logging
import re
from collections.abc import Callable
from typing import Any, NamedTuple

from .content_blocks import function_call_to_tool_use, openai_tool_call_to_tool_use
from .types import (
    ClaudeContentBlockServerToolUse,
    ClaudeContentBlockText,
    ClaudeContentBlockThinking,
    ClaudeContentBlockToolUse,
    ClaudeContentBlockWebSearchToolResult,
    ClaudeMessagesResponse,
    ClaudeUsage,
    ClaudeWebSearchResult,
    Constants,
    generate_message_id,
    generate_server_tool_use_id,
)
from .utils import extract_text_content

logger = logging.getLogger(__name__)

# content_filter has no exact Anthropic equivalent; stop_sequence is the closest
OPENAI_CHAT_STOP_REASON_MAP = {
    "stop": Constants.STOP_END_TURN,
    "length": Constants.STOP_MAX_TOKENS,
    "tool_calls": Constants.STOP_TOOL_USE,
    "content_filter": Constants.STOP_SEQUENCE,
}

OPENAI_RESPONSES_STOP_REASON_MAP = {
    "stop": Constants.STOP_END_TURN,
    "completed": Constants.STOP_END_TURN,
    "complete": Constants.STOP_END_TURN,
    "length": Constants.STOP_MAX_TOKENS,
    "max_tokens": Constants.STOP_MAX_TOKENS,
    "tool_calls": Constants.STOP_TOOL_USE,
    "tool_call": Constants.STOP_TOOL_USE,
    "tool_use": Constants.STOP_TOOL_USE,
}

_THINK_TAG_PATTERN = re.compile(r"^\s*<think>(.*?)</think>[\r\n]*", re.DOTALL)


def map_finish_reason_to_stop_reason(finish_reason: Any) -> str:
    """Map OpenAI Chat finish_reason to Anthropic stop_reason."""
    if not finish_reason:
        return Constants.STOP_END_TURN
    return OPENAI_CHAT_STOP_REASON_MAP.get(str(finish_reason), Constants.STOP_END_TURN)


def map_status_to_stop_reason(status: Any) -> str:
    """Map Responses API status or stop_reason to Anthropic stop_reason."""
    if not status:
        return Constants.STOP_END_TURN
    return OPENAI_RESPONSES_STOP_REASON_MAP.get(
        str(status).lower(), Constants.STOP_END_TURN
    )


def create_anthropic_error_response(message: str) -> ClaudeMessagesResponse:
    """A well-formed Anthropic message carrying an error description."""
    return ClaudeMessagesResponse(
        id=generate_message_id(),
        model="unknown",
        content=[ClaudeContentBlockText(type="text", text=f"Error: {message}")],
        stop_reason=Constants.STOP_END_TURN,
        usage=ClaudeUsage(input_tokens=0, output_tokens=0),
    )


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def _get(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, dict) else None


# === OpenAI Chat -> Anthropic ===
def convert_web_search_annotations(annotations: Any) -> list:
    """url_citation annotations -> server_tool_use + web_search_tool_result pair."""
    if not isinstance(annotations, list) or not annotations:
        return []

    tool_use_id = generate_server_tool_use_id()
    results = []
    for annotation in annotations:
        citation = _get(annotation, "url_citation") or {}
        results.append(
            ClaudeWebSearchResult(url=_get(citation, "url"), title=_get(citation, "title"))
        )
    return [
        ClaudeContentBlockServerToolUse(
            id=tool_use_id, name="web_search", input={"query": ""}
        ),
        ClaudeContentBlockWebSearchToolResult(tool_use_id=tool_use_id, content=results),
    ]


def _extract_chat_thinking(message: dict[str, Any]) -> ClaudeContentBlockThinking | None:
    thinking = message.get("thinking")
    if isinstance(thinking, dict) and thinking.get("content"):
        return ClaudeContentBlockThinking(
            thinking=thinking["content"], signature=thinking.get("signature")
        )

    for field in ("reasoning", "reasoning_content"):
        value = message.get(field)
        if isinstance(value, str) and value:
            return ClaudeContentBlockThinking(thinking=value)
    return None


def split_think_tags(text: str) -> tuple[str | None, str]:
    """Split a leading <think>...</think> section off a text reply."""
    match = _THINK_TAG_PATTERN.match(text)
    if not match:
        return None, text
    return match.group(1), text[match.end():]


def _extract_chat_usage(usage: Any) -> ClaudeUsage:
    if not isinstance(usage, dict):
        return ClaudeUsage(input_tokens=0, output_tokens=0)

    cache_read = usage.get("cache_read_input_tokens")
    details = usage.get("prompt_tokens_details")
    if cache_read is None and isinstance(details, dict):
        cache_read = details.get("cached_tokens")

    return ClaudeUsage(
        input_tokens=_as_int(usage.get("prompt_tokens")),
        output_tokens=_as_int(usage.get("completion_tokens")),
        cache_read_input_tokens=cache_read if isinstance(cache_read, int) else None,
    )


def convert_openai_chat_to_anthropic(
    response: Any, request_model: str | None = None
) -> ClaudeMessagesResponse:
    """Convert a Chat Completions response body to an Anthropic message."""
    if not isinstance(response, dict) or not response:
        return create_anthropic_error_response("Empty response from provider")

    choices = response.get("choices")
    choice = choices[0] if isinstance(choices, list) and choices else None
    if not isinstance(choice, dict):
        return create_anthropic_error_response("No choices in response")

    message = choice.get("message")
    if not isinstance(message, dict):
        return create_anthropic_error_response("No message in response choice")

    content: list = []

    text = extract_text_content(message.get("content"))
    thinking_block = _extract_chat_thinking(message)
    if text and thinking_block is None:
        tagged_thinking, text = split_think_tags(text)
        if tagged_thinking:
            thinking_block = ClaudeContentBlockThinking(thinking=tagged_thinking)
    if thinking_block is not None:
        content.append(thinking_block)

    content.extend(convert_web_search_annotations(message.get("annotations")))

    if text:
        content.append(ClaudeContentBlockText(type="text", text=text))

    tool_calls = message.get("tool_calls")
    if isinstance(tool_calls, list):
        for tool_call in tool_calls:
            if not isinstance(tool_call, dict) or not isinstance(tool_call.get("function"), dict):
                continue
            content.append(openai_tool_call_to_tool_use(tool_call))

    if not content:
        content.append(ClaudeContentBlockText(type="text", text=""))

    stop_reason = map_finish_reason_to_stop_reason(choice.get("finish_reason"))

    anthropic_response = ClaudeMessagesResponse(
        id=response.get("id") or generate_message_id(),
        model=response.get("model") or request_model or "unknown",
        content=content,
        stop_reason=stop_reason,
        usage=_extract_chat_usage(response.get("usage")),
    )
    logger.debug(
        f"Converted chat response: blocks={len(content)}, stop_reason={stop_reason}"
    )
    return anthropic_response


# === OpenAI Responses -> Anthropic ===
def _convert_message_item(item: dict[str, Any]) -> list:
    content = item.get("content")
    if isinstance(content, str):
        return [ClaudeContentBlockText(type="text", text=content)] if content else []

    blocks = []
    for part in content if isinstance(content, list) else []:
        part_type = _get(part, "type")
        if part_type in ("output_text", "text") and _get(part, "text"):
            blocks.append(ClaudeContentBlockText(type="text", text=part["text"]))
        elif part_type == "refusal" and _get(part, "refusal"):
            blocks.append(ClaudeContentBlockText(type="text", text=f"[Refusal] {part['refusal']}"))
    return blocks


def _convert_function_call_item(item: dict[str, Any]) -> list:
    # call_id is what function_call_output items reference on the next turn
    return [
        function_call_to_tool_use(
            item.get("call_id") or item.get("id"),
            item.get("name") or _get(item.get("function"), "name"),
            item.get("arguments"),
        )
    ]


def _convert_reasoning_item(item: dict[str, Any]) -> list:
    summary = item.get("summary")
    if not isinstance(summary, list):
        return []
    text = "\n".join(
        part["text"]
        for part in summary
        if _get(part, "type") in ("summary_text", "output_text") and _get(part, "text")
    )
    return [ClaudeContentBlockThinking(thinking=text)] if text else []


def _convert_text_item(item: dict[str, Any]) -> list:
    text = item.get("text") or item.get("content")
    if isinstance(text, list):
        text = extract_text_content(text)
    return [ClaudeContentBlockText(type="text", text=str(text))] if text else []


def _output_text_value(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("output_text"), str):
        return value["output_text"]
    return None


def _convert_generic_item(item: dict[str, Any]) -> list:
    """Best effort for item shapes no other matcher recognizes."""
    blocks = []

    text = _output_text_value(item.get("output_text"))
    if text:
        blocks.append(ClaudeContentBlockText(type="text", text=text))

    tool_call = item.get("output_tool_call")
    if isinstance(tool_call, dict):
        blocks.append(
            function_call_to_tool_use(
                tool_call.get("id") or tool_call.get("call_id"),
                tool_call.get("name") or _get(tool_call.get("function"), "name") or "tool",
                tool_call.get("arguments") or tool_call.get("function_arguments") or "{}",
            )
        )

    content = item.get("content")
    if isinstance(content, list):
        texts = []
        for part in content:
            if isinstance(part, str):
                texts.append(part)
            elif isinstance(part, dict) and (part.get("text") or part.get("content")):
                texts.append(str(part.get("text") or part.get("content")))
        texts = [t for t in texts if t]
        if texts:
            blocks.append(ClaudeContentBlockText(type="text", text="".join(texts)))

    return blocks


class OutputItemMatcher(NamedTuple):
    name: str
    matches: Callable[[str], bool]
    convert: Callable[[dict[str, Any]], list]


# First match wins. Exact type names come before substring fallbacks.
OUTPUT_ITEM_MATCHERS: tuple[OutputItemMatcher, ...] = (
    OutputItemMatcher("message", lambda t: t == "message", _convert_message_item),
    OutputItemMatcher("function_call", lambda t: t == "function_call", _convert_function_call_item),
    OutputItemMatcher("reasoning", lambda t: t == "reasoning", _convert_reasoning_item),
    OutputItemMatcher("message-like", lambda t: "message" in t, _convert_message_item),
    OutputItemMatcher("function_call-like", lambda t: "function_call" in t, _convert_function_call_item),
    OutputItemMatcher("reasoning-like", lambda t: "reasoning" in t, _convert_reasoning_item),
    OutputItemMatcher("text-like", lambda t: "text" in t, _convert_text_item),
    OutputItemMatcher("tool-like", lambda t: "tool" in t, _convert_function_call_item),
    OutputItemMatcher("generic", lambda t: True, _convert_generic_item),
)


def match_output_item(item: dict[str, Any]) -> OutputItemMatcher:
    item_type = str(item.get("type") or "").lower()
    for matcher in OUTPUT_ITEM_MATCHERS:
        if matcher.matches(item_type):
            return matcher
    return OUTPUT_ITEM_MATCHERS[-1]


def convert_responses_output(output: Any) -> list:
    """Convert a Responses output container (string, list or object) into blocks."""
    if isinstance(output, str):
        return [ClaudeContentBlockText(type="text", text=output)] if output else []

    if isinstance(output, list):
        blocks = []
        for item in output:
            if isinstance(item, str):
                if item:
                    blocks.append(ClaudeContentBlockText(type="text", text=item))
                continue
            if not isinstance(item, dict):
                continue
            matcher = match_output_item(item)
            logger.debug(f"Output item type={item.get('type')!r} handled by {matcher.name}")
            blocks.extend(matcher.convert(item))
        return blocks

    if isinstance(output, dict):
        text = _output_text_value(output)
        if text is None:
            text = _output_text_value(output.get("output_text"))
        return [ClaudeContentBlockText(type="text", text=text)] if text else []

    return []


def _responses_stop_reason(resp: dict[str, Any]) -> str:
    status = resp.get("status")
    if str(status).lower() == "incomplete":
        reason = _get(resp.get("incomplete_details"), "reason")
        if reason == "max_output_tokens":
            return Constants.STOP_MAX_TOKENS
        return Constants.STOP_END_TURN
    return map_status_to_stop_reason(resp.get("stop_reason") or status)


def convert_openai_responses_to_anthropic(
    response: Any, request_model: str | None = None
) -> ClaudeMessagesResponse:
    """Convert a Responses API response body to an Anthropic message."""
    if not isinstance(response, dict) or not response:
        return create_anthropic_error_response("Empty response from provider")

    resp = response.get("response") if isinstance(response.get("response"), dict) else response

    output = None
    for key in ("output", "outputs", "output_text", "output_texts"):
        if resp.get(key) is not None:
            output = resp[key]
            break

    content = convert_responses_output(output)

    for key in ("reasoning", "reasoning_content"):
        value = resp.get(key)
        if isinstance(value, str) and value:
            content.append(ClaudeContentBlockThinking(thinking=value))
            break

    stop_reason = _responses_stop_reason(resp)
    if stop_reason == Constants.STOP_END_TURN and any(
        isinstance(block, ClaudeContentBlockToolUse) for block in content
    ):
        stop_reason = Constants.STOP_TOOL_USE

    if not content:
        content = [ClaudeContentBlockText(type="text", text="")]

    usage = resp.get("usage") if isinstance(resp.get("usage"), dict) else {}
    return ClaudeMessagesResponse(
        id=resp.get("id") or generate_message_id(),
        model=resp.get("model") or response.get("model") or request_model or "unknown",
        content=content,
        stop_reason=stop_reason,
        usage=ClaudeUsage(
            input_tokens=_as_int(usage.get("input_tokens") or usage.get("prompt_tokens")),
            output_tokens=_as_int(usage.get("output_tokens") or usage.get("completion_tokens")),
        ),
    )


def convert_response(
    response: Any, api_type: str, request_model: str | None = None
) -> ClaudeMessagesResponse:
    """Convert with the converter that matches the resolved wire format."""
    if api_type == Constants.API_RESPONSES:
        return convert_openai_responses_to_anthropic(response, request_model)
    return convert_openai_chat_to_anthropic(response, request_model)
