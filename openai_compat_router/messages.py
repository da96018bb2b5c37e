"""
Message walkers: Anthropic conversation history -> OpenAI Chat messages or
Responses API input items.
"""

import logging
from typing import Any

from openai.types.chat import (
    ChatCompletionAssistantMessageParam,
    ChatCompletionMessageParam,
    ChatCompletionSystemMessageParam,
    ChatCompletionUserMessageParam,
)

from .content_blocks import (
    extract_text_from_blocks,
    extract_tool_results,
    extract_tool_uses,
    image_block_to_chat_part,
    image_block_to_responses_part,
    text_block_to_chat_part,
    text_to_responses_part,
    thinking_block_to_responses_part,
    tool_result_to_chat_message,
    tool_result_to_function_call_output,
    tool_use_to_chat_tool_call,
    tool_use_to_function_call,
)
from .types import (
    ClaudeContentBlockImage,
    ClaudeContentBlockText,
    ClaudeContentBlockThinking,
    ClaudeMessage,
    ClaudeSystemContent,
    Constants,
)

logger = logging.getLogger(__name__)

_CONVERSATION_ROLES = (Constants.ROLE_USER, Constants.ROLE_ASSISTANT)


def _should_skip(message: ClaudeMessage) -> bool:
    if message.role not in _CONVERSATION_ROLES:
        logger.debug(f"Skipping message with unsupported role: {message.role}")
        return True
    if message.content is None:
        logger.debug(f"Skipping {message.role} message without usable content")
        return True
    return False


def _text_part(block: ClaudeContentBlockText) -> dict[str, Any]:
    part: dict[str, Any] = dict(text_block_to_chat_part(block))
    if block.cache_control:
        part["cache_control"] = block.cache_control
    return part


# === OpenAI Chat ===
def convert_system_to_chat(
    system: str | list[ClaudeSystemContent] | None,
) -> ChatCompletionSystemMessageParam | None:
    """A string stays a string. A block list keeps its parts and cache markers."""
    if not system:
        return None
    if isinstance(system, str):
        return {"role": Constants.ROLE_SYSTEM, "content": system}

    parts = []
    for block in system:
        if block.type != Constants.CONTENT_TEXT or not block.text:
            continue
        part: dict[str, Any] = {"type": "text", "text": block.text}
        if block.cache_control:
            part["cache_control"] = block.cache_control
        parts.append(part)
    if not parts:
        return None
    return {"role": Constants.ROLE_SYSTEM, "content": parts}


def _convert_user_message_to_chat(
    message: ClaudeMessage,
) -> tuple[list[ChatCompletionMessageParam], bool]:
    converted: list[ChatCompletionMessageParam] = []
    has_images = False

    # Tool results must directly follow the assistant turn that issued the calls
    for block in extract_tool_results(message.content):
        converted.append(tool_result_to_chat_message(block))

    parts: list[dict[str, Any]] = []
    for block in message.content:
        if isinstance(block, ClaudeContentBlockText):
            if block.text:
                parts.append(_text_part(block))
        elif isinstance(block, ClaudeContentBlockImage):
            part = image_block_to_chat_part(block)
            if part is not None:
                parts.append(part)
                has_images = True

    if parts:
        user_msg: ChatCompletionUserMessageParam = {"role": Constants.ROLE_USER}
        if len(parts) == 1 and parts[0]["type"] == "text" and "cache_control" not in parts[0]:
            user_msg["content"] = parts[0]["text"]
        else:
            user_msg["content"] = parts
        converted.append(user_msg)

    return converted, has_images


def _convert_assistant_message_to_chat(
    message: ClaudeMessage,
) -> list[ChatCompletionMessageParam]:
    text = extract_text_from_blocks(message.content)
    tool_calls = [tool_use_to_chat_tool_call(b) for b in extract_tool_uses(message.content)]

    if not text and not tool_calls:
        return []

    # OpenAI expects null rather than "" for pure tool-call turns
    assistant_msg: ChatCompletionAssistantMessageParam = {
        "role": Constants.ROLE_ASSISTANT,
        "content": text or None,
    }
    if tool_calls:
        assistant_msg["tool_calls"] = tool_calls
    return [assistant_msg]


def convert_messages_to_chat(
    messages: list[ClaudeMessage] | None,
) -> tuple[list[ChatCompletionMessageParam], bool]:
    """Expand Anthropic messages into Chat Completions messages.

    Returns the converted messages and whether any image was converted.
    """
    converted: list[ChatCompletionMessageParam] = []
    has_images = False

    for message in messages or []:
        if _should_skip(message):
            continue

        if isinstance(message.content, str):
            converted.append({"role": message.role, "content": message.content})
            continue

        if message.role == Constants.ROLE_USER:
            user_messages, user_has_images = _convert_user_message_to_chat(message)
            converted.extend(user_messages)
            has_images = has_images or user_has_images
        else:
            converted.extend(_convert_assistant_message_to_chat(message))

    return converted, has_images


# === OpenAI Responses ===
def convert_system_to_responses(
    system: str | list[ClaudeSystemContent] | None,
) -> dict[str, Any] | None:
    """System prompt as a system-role input item. Block lists are joined with newlines."""
    if not system:
        return None
    if isinstance(system, str):
        text = system
    else:
        text = "\n".join(
            block.text
            for block in system
            if block.type == Constants.CONTENT_TEXT and block.text
        )
    if not text:
        return None
    return {
        "role": Constants.ROLE_SYSTEM,
        "content": [{"type": "input_text", "text": text}],
    }


def _convert_user_message_to_responses(
    message: ClaudeMessage,
) -> tuple[list[dict[str, Any]], bool]:
    items: list[dict[str, Any]] = []
    has_images = False

    for block in extract_tool_results(message.content):
        items.append(tool_result_to_function_call_output(block))

    parts: list[dict[str, Any]] = []
    for block in message.content:
        if isinstance(block, ClaudeContentBlockText):
            if block.text:
                parts.append(text_to_responses_part(block.text, message.role))
        elif isinstance(block, ClaudeContentBlockImage):
            part = image_block_to_responses_part(block)
            if part is not None:
                parts.append(part)
                has_images = True

    if parts:
        items.append({"role": Constants.ROLE_USER, "content": parts})
    return items, has_images


def _convert_assistant_message_to_responses(message: ClaudeMessage) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []

    parts: list[dict[str, Any]] = []
    for block in message.content:
        if isinstance(block, ClaudeContentBlockText):
            if block.text:
                parts.append(text_to_responses_part(block.text, message.role))
        elif isinstance(block, ClaudeContentBlockThinking):
            part = thinking_block_to_responses_part(block)
            if part is not None:
                parts.append(part)

    if parts:
        items.append({"role": Constants.ROLE_ASSISTANT, "content": parts})

    for block in extract_tool_uses(message.content):
        items.append(tool_use_to_function_call(block))
    return items


def convert_messages_to_responses(
    messages: list[ClaudeMessage] | None,
) -> tuple[list[dict[str, Any]], bool]:
    """Expand Anthropic messages into Responses API input items.

    Tool traffic becomes top-level function_call / function_call_output items
    rather than parts of a message.
    """
    items: list[dict[str, Any]] = []
    has_images = False

    for message in messages or []:
        if _should_skip(message):
            continue

        if isinstance(message.content, str):
            if message.content:
                items.append(
                    {
                        "role": message.role,
                        "content": [text_to_responses_part(message.content, message.role)],
                    }
                )
            continue

        if message.role == Constants.ROLE_USER:
            user_items, user_has_images = _convert_user_message_to_responses(message)
            items.extend(user_items)
            has_images = has_images or user_has_images
        else:
            items.extend(_convert_assistant_message_to_responses(message))

    return items, has_images
