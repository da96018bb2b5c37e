"""
Content block primitives shared by the request and response converters.

Each helper converts one Anthropic content block into its OpenAI Chat or
Responses counterpart, or one OpenAI tool call back into a tool_use block.
"""

import logging
from typing import Any

from openai.types.chat import (
    ChatCompletionContentPartParam,
    ChatCompletionMessageToolCallParam,
    ChatCompletionToolMessageParam,
)

from .types import (
    ClaudeContentBlockImage,
    ClaudeContentBlockText,
    ClaudeContentBlockThinking,
    ClaudeContentBlockToolResult,
    ClaudeContentBlockToolUse,
    Constants,
    generate_tool_use_id,
)
from .utils import parse_tool_arguments

logger = logging.getLogger(__name__)


# === Anthropic -> OpenAI Chat ===
def text_block_to_chat_part(block: ClaudeContentBlockText) -> ChatCompletionContentPartParam:
    return block.to_openai()


def image_block_to_chat_part(
    block: ClaudeContentBlockImage,
) -> ChatCompletionContentPartParam | None:
    part = block.to_openai()
    if part is None:
        logger.warning("Skipping image block with unsupported or empty source")
    return part


def tool_use_to_chat_tool_call(
    block: ClaudeContentBlockToolUse,
) -> ChatCompletionMessageToolCallParam:
    return block.to_openai()


def tool_result_to_chat_message(
    block: ClaudeContentBlockToolResult,
) -> ChatCompletionToolMessageParam:
    message: dict[str, Any] = {
        "role": Constants.ROLE_TOOL,
        "content": block.process_content(),
        "tool_call_id": block.tool_use_id,
    }
    if block.cache_control:
        message["cache_control"] = block.cache_control
    return message


# === Anthropic -> OpenAI Responses ===
def text_to_responses_part(text: str, role: str) -> dict[str, Any]:
    """User text is input_text, assistant text is output_text."""
    part_type = "output_text" if role == Constants.ROLE_ASSISTANT else "input_text"
    return {"type": part_type, "text": text}


def image_block_to_responses_part(block: ClaudeContentBlockImage) -> dict[str, Any] | None:
    url = block.to_image_url()
    if url is None:
        logger.warning("Skipping image block with unsupported or empty source")
        return None
    return {"type": "input_image", "image_url": url}


def thinking_block_to_responses_part(block: ClaudeContentBlockThinking) -> dict[str, Any] | None:
    if not block.thinking:
        return None
    return {"type": "output_text", "text": block.thinking}


def tool_use_to_function_call(block: ClaudeContentBlockToolUse) -> dict[str, Any]:
    tool_call = block.to_openai()
    return {
        "type": "function_call",
        "call_id": block.id,
        "name": block.name,
        "arguments": tool_call["function"]["arguments"],
    }


def tool_result_to_function_call_output(block: ClaudeContentBlockToolResult) -> dict[str, Any]:
    return {
        "type": "function_call_output",
        "call_id": block.tool_use_id,
        "output": block.process_content(),
    }


# === OpenAI -> Anthropic ===
def openai_tool_call_to_tool_use(tool_call: dict[str, Any]) -> ClaudeContentBlockToolUse:
    """Convert a Chat Completions tool call into a tool_use block."""
    function = tool_call.get("function") or {}
    return ClaudeContentBlockToolUse(
        id=tool_call.get("id") or generate_tool_use_id(),
        name=function.get("name") or "",
        input=parse_tool_arguments(function.get("arguments")),
    )


def function_call_to_tool_use(
    call_id: str | None, name: str | None, arguments: Any
) -> ClaudeContentBlockToolUse:
    """Convert a Responses API function call into a tool_use block."""
    return ClaudeContentBlockToolUse(
        id=call_id or generate_tool_use_id(),
        name=name or "",
        input=parse_tool_arguments(arguments),
    )


# === Block extraction ===
def extract_text_from_blocks(blocks: list[Any], separator: str = "\n") -> str:
    return separator.join(
        block.text
        for block in blocks
        if isinstance(block, ClaudeContentBlockText) and block.text
    )


def extract_tool_uses(blocks: list[Any]) -> list[ClaudeContentBlockToolUse]:
    """tool_use blocks that carry an id."""
    return [
        block
        for block in blocks
        if isinstance(block, ClaudeContentBlockToolUse) and block.id
    ]


def extract_tool_results(blocks: list[Any]) -> list[ClaudeContentBlockToolResult]:
    """tool_result blocks that reference a tool_use id."""
    return [
        block
        for block in blocks
        if isinstance(block, ClaudeContentBlockToolResult) and block.tool_use_id
    ]
