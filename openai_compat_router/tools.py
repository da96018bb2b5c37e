"""
Tool definition, tool choice and thinking configuration mapping.
"""

import logging
from typing import Any

from openai.types.chat import ChatCompletionToolParam

from .types import (
    ClaudeThinkingConfigDisabled,
    ClaudeThinkingConfigEnabled,
    ClaudeTool,
    ModelDefaults,
)

logger = logging.getLogger(__name__)


def _tool_parameters(tool: ClaudeTool) -> dict[str, Any]:
    parameters = dict(tool.input_schema or {})
    parameters.setdefault("type", "object")
    parameters.setdefault("properties", {})
    return parameters


def _valid_tools(tools: list[ClaudeTool] | None) -> list[ClaudeTool]:
    valid = []
    for tool in tools or []:
        if not tool.name:
            logger.warning("Dropping tool definition without a name")
            continue
        valid.append(tool)
    return valid


def convert_tools_to_chat(tools: list[ClaudeTool] | None) -> list[ChatCompletionToolParam]:
    """Anthropic tool definitions -> Chat Completions function tools."""
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description or "",
                "parameters": _tool_parameters(tool),
            },
        }
        for tool in _valid_tools(tools)
    ]


def convert_tools_to_responses(tools: list[ClaudeTool] | None) -> list[dict[str, Any]]:
    """Anthropic tool definitions -> flat Responses API function tools."""
    return [
        {
            "type": "function",
            "name": tool.name,
            "description": tool.description or "",
            "parameters": _tool_parameters(tool),
        }
        for tool in _valid_tools(tools)
    ]


def convert_tool_choice_to_chat(tool_choice) -> Any:
    if tool_choice is None:
        return "auto"
    return tool_choice.to_openai()


def convert_tool_choice_to_responses(tool_choice) -> Any:
    if tool_choice is None:
        return "auto"
    return tool_choice.to_openai_responses()


def budget_tokens_to_reasoning_effort(budget_tokens: int | None) -> str:
    """Map a thinking budget onto an OpenAI reasoning effort.

    unset or 0 -> medium, <=5000 -> low, <=10000 -> medium, >10000 -> high
    """
    if not budget_tokens:
        return "medium"
    if budget_tokens > ModelDefaults.REASONING_MEDIUM_MAX_BUDGET:
        return "high"
    if budget_tokens > ModelDefaults.REASONING_LOW_MAX_BUDGET:
        return "medium"
    return "low"


def convert_thinking_to_reasoning(
    thinking: ClaudeThinkingConfigEnabled | ClaudeThinkingConfigDisabled | None,
) -> dict[str, Any] | None:
    if thinking is None:
        return None
    budget = getattr(thinking, "budget_tokens", None)
    return {
        "enabled": thinking.type == "enabled",
        "effort": budget_tokens_to_reasoning_effort(budget),
    }
