"""
Request converters: Anthropic Messages request -> OpenAI Chat Completions or
Responses API request.
"""

import logging
from typing import Any, NamedTuple

from .messages import (
    convert_messages_to_chat,
    convert_messages_to_responses,
    convert_system_to_chat,
    convert_system_to_responses,
)
from .tools import (
    convert_thinking_to_reasoning,
    convert_tool_choice_to_chat,
    convert_tool_choice_to_responses,
    convert_tools_to_chat,
    convert_tools_to_responses,
)
from .types import ClaudeMessagesRequest, Constants

logger = logging.getLogger(__name__)


class ChatConversionResult(NamedTuple):
    request: dict[str, Any]
    has_images: bool
    has_tools: bool


class ResponsesConversionResult(NamedTuple):
    request: dict[str, Any]
    has_images: bool
    has_tools: bool


def convert_anthropic_to_openai_chat(request: ClaudeMessagesRequest) -> ChatConversionResult:
    """Convert an Anthropic request into a Chat Completions request body."""
    messages = []
    system_message = convert_system_to_chat(request.system)
    if system_message is not None:
        messages.append(system_message)

    converted, has_images = convert_messages_to_chat(request.messages)
    messages.extend(converted)

    chat_request: dict[str, Any] = {"model": request.model, "messages": messages}
    if request.max_tokens is not None:
        chat_request["max_tokens"] = request.max_tokens
    if request.stream is not None:
        chat_request["stream"] = request.stream

    tools = convert_tools_to_chat(request.tools)
    if tools:
        chat_request["tools"] = tools
        chat_request["tool_choice"] = convert_tool_choice_to_chat(request.tool_choice)

    reasoning = convert_thinking_to_reasoning(request.thinking)
    if reasoning is not None:
        chat_request["reasoning"] = reasoning

    logger.debug(
        f"🔄 Chat request: model={request.model}, messages={len(messages)}, "
        f"tools={len(tools)}, images={has_images}"
    )
    return ChatConversionResult(chat_request, has_images, bool(tools))


def convert_anthropic_to_openai_responses(
    request: ClaudeMessagesRequest,
) -> ResponsesConversionResult:
    """Convert an Anthropic request into a Responses API request body."""
    items = []
    system_item = convert_system_to_responses(request.system)
    if system_item is not None:
        items.append(system_item)

    converted, has_images = convert_messages_to_responses(request.messages)
    items.extend(converted)

    # max_tokens is not forwarded: many Responses providers reject max_output_tokens
    responses_request: dict[str, Any] = {"model": request.model, "input": items}
    if request.stream is not None:
        responses_request["stream"] = request.stream

    tools = convert_tools_to_responses(request.tools)
    if tools:
        responses_request["tools"] = tools
        responses_request["tool_choice"] = convert_tool_choice_to_responses(
            request.tool_choice
        )

    reasoning = convert_thinking_to_reasoning(request.thinking)
    if reasoning is not None:
        responses_request["reasoning"] = reasoning

    logger.debug(
        f"🔄 Responses request: model={request.model}, items={len(items)}, "
        f"tools={len(tools)}, images={has_images}"
    )
    return ResponsesConversionResult(responses_request, has_images, bool(tools))


def convert_request(request: ClaudeMessagesRequest, api_type: str) -> dict[str, Any]:
    """Convert with the converter that matches the resolved wire format."""
    if api_type == Constants.API_RESPONSES:
        return convert_anthropic_to_openai_responses(request).request
    return convert_anthropic_to_openai_chat(request).request
