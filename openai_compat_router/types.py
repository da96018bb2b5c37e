"""
Pydantic models and type definitions for the OpenAI compatibility router.
This module contains the Anthropic wire models, the backend descriptor, constants
and id generation shared by the converters.
"""

import logging
import time
import uuid
from typing import Annotated, Any, Literal, Union

from openai.types.chat import (
    ChatCompletionContentPartImageParam,
    ChatCompletionContentPartTextParam,
    ChatCompletionMessageToolCallParam,
    ChatCompletionNamedToolChoiceParam,
    ChatCompletionToolChoiceOptionParam,
)
from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    field_validator,
)

logger = logging.getLogger(__name__)


class ModelDefaults:
    """Default values for the router configuration"""

    # Default server settings
    DEFAULT_HOST = "127.0.0.1"
    DEFAULT_PORT = 8082
    DEFAULT_LOG_LEVEL = "WARNING"

    # Upstream call settings
    DEFAULT_REQUEST_TIMEOUT = 600.0
    DEFAULT_MAX_RETRIES = 0

    # Thinking budget thresholds for reasoning effort
    REASONING_LOW_MAX_BUDGET = 5000
    REASONING_MEDIUM_MAX_BUDGET = 10000

    # Queue keys only carry a prefix of the credential
    QUEUE_KEY_PREFIX_LENGTH = 16

    # Rough token estimate: characters per token
    CHARS_PER_TOKEN = 4


class Constants:
    """Constants for better maintainability"""

    ROLE_USER = "user"
    ROLE_ASSISTANT = "assistant"
    ROLE_SYSTEM = "system"
    ROLE_TOOL = "tool"

    CONTENT_TEXT = "text"
    CONTENT_IMAGE = "image"
    CONTENT_TOOL_USE = "tool_use"
    CONTENT_TOOL_RESULT = "tool_result"
    CONTENT_THINKING = "thinking"
    CONTENT_SERVER_TOOL_USE = "server_tool_use"
    CONTENT_WEB_SEARCH_RESULT = "web_search_tool_result"

    TOOL_FUNCTION = "function"

    API_CHAT_COMPLETIONS = "chat_completions"
    API_RESPONSES = "responses"

    STOP_END_TURN = "end_turn"
    STOP_MAX_TOKENS = "max_tokens"
    STOP_TOOL_USE = "tool_use"
    STOP_SEQUENCE = "stop_sequence"

    EVENT_MESSAGE_START = "message_start"
    EVENT_MESSAGE_STOP = "message_stop"
    EVENT_MESSAGE_DELTA = "message_delta"
    EVENT_CONTENT_BLOCK_START = "content_block_start"
    EVENT_CONTENT_BLOCK_STOP = "content_block_stop"
    EVENT_CONTENT_BLOCK_DELTA = "content_block_delta"
    EVENT_ERROR = "error"
    EVENT_PING = "ping"

    DELTA_TEXT = "text_delta"
    DELTA_INPUT_JSON = "input_json_delta"
    DELTA_THINKING = "thinking_delta"
    DELTA_SIGNATURE = "signature_delta"

    ERROR_AUTHENTICATION = "authentication_error"
    ERROR_INVALID_REQUEST = "invalid_request_error"
    ERROR_RATE_LIMIT = "rate_limit_error"
    ERROR_API = "api_error"
    ERROR_TIMEOUT = "timeout_error"
    ERROR_INTERNAL = "internal_error"


def generate_unique_id(prefix: str) -> str:
    """
    Generate a unique ID with specified prefix, timestamp and random suffix.
    Format: <prefix>_<timestamp_ms>_<random_hex>
    """
    timestamp_ms = int(time.time() * 1000)
    random_suffix = uuid.uuid4().hex[:8]
    return f"{prefix}_{timestamp_ms}_{random_suffix}"


def generate_message_id() -> str:
    return generate_unique_id("msg")


def generate_tool_use_id() -> str:
    return generate_unique_id("toolu")


def generate_server_tool_use_id() -> str:
    return generate_unique_id("srvtoolu")


def generate_tool_call_id() -> str:
    return generate_unique_id("call")


# === Tool Choice Classes ===
class ClaudeToolChoiceAuto(BaseModel):
    type: Literal["auto"] = "auto"
    disable_parallel_tool_use: bool | None = None

    def to_openai(self) -> ChatCompletionToolChoiceOptionParam:
        return "auto"

    def to_openai_responses(self) -> Any:
        return "auto"


class ClaudeToolChoiceAny(BaseModel):
    type: Literal["any"] = "any"
    disable_parallel_tool_use: bool | None = None

    def to_openai(self) -> ChatCompletionToolChoiceOptionParam:
        return "required"

    def to_openai_responses(self) -> Any:
        return "required"


class ClaudeToolChoiceTool(BaseModel):
    type: Literal["tool"] = "tool"
    name: str
    disable_parallel_tool_use: bool | None = None

    def to_openai(self) -> ChatCompletionNamedToolChoiceParam:
        return {"type": "function", "function": {"name": self.name}}

    def to_openai_responses(self) -> Any:
        return {"type": "function", "name": self.name}


class ClaudeToolChoiceNone(BaseModel):
    type: Literal["none"] = "none"

    def to_openai(self) -> ChatCompletionToolChoiceOptionParam:
        return "none"

    def to_openai_responses(self) -> Any:
        return "none"


def _tool_choice_tag(value: Any) -> str:
    """Unknown or malformed tool choices fall back to auto."""
    choice_type = (
        value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    )
    if choice_type == "tool":
        name = value.get("name") if isinstance(value, dict) else getattr(value, "name", None)
        return "tool" if name else "auto"
    if choice_type in ("auto", "any", "none"):
        return choice_type
    return "auto"


ClaudeToolChoice = Annotated[
    Union[
        Annotated[ClaudeToolChoiceAuto, Tag("auto")],
        Annotated[ClaudeToolChoiceAny, Tag("any")],
        Annotated[ClaudeToolChoiceTool, Tag("tool")],
        Annotated[ClaudeToolChoiceNone, Tag("none")],
    ],
    Discriminator(_tool_choice_tag),
]


# === Content Block Classes ===
class ClaudeContentBlockText(BaseModel):
    model_config = ConfigDict(
        validate_assignment=False, str_strip_whitespace=False, extra="ignore"
    )

    type: Literal["text"] = "text"
    text: str = ""
    cache_control: dict[str, Any] | None = None

    @field_validator("text", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return "" if v is None else str(v)

    def to_openai(self) -> ChatCompletionContentPartTextParam:
        """Convert Claude text block to OpenAI text format."""
        return {"type": "text", "text": self.text}


class ClaudeImageSource(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = ""
    media_type: str | None = None
    data: str | None = None
    url: str | None = None


class ClaudeContentBlockImage(BaseModel):
    model_config = ConfigDict(
        validate_assignment=False, str_strip_whitespace=False, extra="ignore"
    )

    type: Literal["image"] = "image"
    source: ClaudeImageSource | None = None

    @field_validator("source", mode="before")
    @classmethod
    def drop_malformed_source(cls, v):
        return v if isinstance(v, (dict, ClaudeImageSource)) else None

    def to_image_url(self) -> str | None:
        """Render the image source as a URL, data URI for base64 sources."""
        if self.source is None:
            return None
        if self.source.type == "base64" and self.source.data:
            media_type = self.source.media_type or "image/png"
            return f"data:{media_type};base64,{self.source.data}"
        if self.source.type == "url" and self.source.url:
            return self.source.url
        return None

    def to_openai(self) -> ChatCompletionContentPartImageParam | None:
        """Convert Claude image block to OpenAI image_url format."""
        url = self.to_image_url()
        if url is None:
            return None
        return {"type": "image_url", "image_url": {"url": url}}


class ClaudeContentBlockToolUse(BaseModel):
    model_config = ConfigDict(
        validate_assignment=False, str_strip_whitespace=False, extra="ignore"
    )

    type: Literal["tool_use"] = "tool_use"
    id: str = ""
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", "name", mode="before")
    @classmethod
    def coerce_identifier(cls, v):
        return "" if v is None else str(v)

    @field_validator("input", mode="before")
    @classmethod
    def coerce_input(cls, v):
        return v if isinstance(v, dict) else {}

    def to_openai(self) -> ChatCompletionMessageToolCallParam:
        """Convert Claude tool_use to OpenAI tool_call format."""
        from .utils import dump_json

        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": dump_json(self.input)},
        }


class ClaudeContentBlockToolResult(BaseModel):
    model_config = ConfigDict(
        validate_assignment=False, str_strip_whitespace=False, extra="ignore"
    )

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = ""
    content: str | list[Any] | dict[str, Any] | None = None
    is_error: bool | None = None
    cache_control: dict[str, Any] | None = None

    @field_validator("tool_use_id", mode="before")
    @classmethod
    def coerce_tool_use_id(cls, v):
        return "" if v is None else str(v)

    def process_content(self) -> str:
        """Render tool_result content as the string OpenAI tool outputs expect."""
        from .utils import dump_json

        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list) and all(
            isinstance(item, dict) and item.get("type") == "text"
            for item in self.content
        ):
            return "\n".join(str(item.get("text", "")) for item in self.content)
        return dump_json(self.content)


class ClaudeContentBlockThinking(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    signature: str | None = None

    @field_validator("thinking", mode="before")
    @classmethod
    def coerce_thinking(cls, v):
        return "" if v is None else str(v)


class ClaudeContentBlockServerToolUse(BaseModel):
    type: Literal["server_tool_use"] = "server_tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ClaudeWebSearchResult(BaseModel):
    type: Literal["web_search_result"] = "web_search_result"
    url: str | None = None
    title: str | None = None


class ClaudeContentBlockWebSearchToolResult(BaseModel):
    type: Literal["web_search_tool_result"] = "web_search_tool_result"
    tool_use_id: str
    content: list[ClaudeWebSearchResult] = Field(default_factory=list)


class ClaudeContentBlockUnknown(BaseModel):
    """Any block type the converters do not understand. Kept so parsing never fails."""

    model_config = ConfigDict(extra="allow")

    type: str = "unknown"


KNOWN_CONTENT_BLOCK_TYPES = ("text", "image", "tool_use", "tool_result", "thinking")


def _content_block_tag(value: Any) -> str:
    block_type = (
        value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    )
    if block_type in KNOWN_CONTENT_BLOCK_TYPES:
        return block_type
    return "unknown"


ClaudeContentBlock = Annotated[
    Union[
        Annotated[ClaudeContentBlockText, Tag("text")],
        Annotated[ClaudeContentBlockImage, Tag("image")],
        Annotated[ClaudeContentBlockToolUse, Tag("tool_use")],
        Annotated[ClaudeContentBlockToolResult, Tag("tool_result")],
        Annotated[ClaudeContentBlockThinking, Tag("thinking")],
        Annotated[ClaudeContentBlockUnknown, Tag("unknown")],
    ],
    Discriminator(_content_block_tag),
]

ClaudeResponseContentBlock = (
    ClaudeContentBlockText
    | ClaudeContentBlockToolUse
    | ClaudeContentBlockThinking
    | ClaudeContentBlockServerToolUse
    | ClaudeContentBlockWebSearchToolResult
)


class ClaudeSystemContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = "text"
    text: str = ""
    cache_control: dict[str, Any] | None = None


class ClaudeTool(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    description: str | None = None
    input_schema: dict[str, Any] | None = None


class ClaudeThinkingConfigEnabled(BaseModel):
    type: Literal["enabled"] = "enabled"
    budget_tokens: int | None = None


class ClaudeThinkingConfigDisabled(BaseModel):
    type: Literal["disabled"] = "disabled"


# === Usage and Message Classes ===
class ClaudeUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int | None = None


class ClaudeMessage(BaseModel):
    model_config = ConfigDict(
        validate_assignment=False,
        str_strip_whitespace=False,
        extra="ignore",
    )

    role: str
    content: str | list[ClaudeContentBlock] | None = None

    @field_validator("content", mode="before")
    @classmethod
    def drop_unsupported_content(cls, v):
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, list):
            return [block for block in v if isinstance(block, dict)]
        logger.debug(f"Ignoring message content of type {type(v).__name__}")
        return None


def _normalize_thinking(v: Any) -> Any:
    if isinstance(v, dict):
        if v.get("enabled") is True or v.get("type") == "enabled":
            budget = v.get("budget_tokens")
            return ClaudeThinkingConfigEnabled(
                type="enabled",
                budget_tokens=budget if isinstance(budget, int) else None,
            )
        return ClaudeThinkingConfigDisabled(type="disabled")
    if isinstance(v, (ClaudeThinkingConfigEnabled, ClaudeThinkingConfigDisabled)):
        return v
    return None


class ClaudeMessagesRequest(BaseModel):
    model_config = ConfigDict(
        validate_assignment=False,
        str_strip_whitespace=False,
        extra="ignore",
    )

    model: str = ""
    max_tokens: int | None = None
    messages: list[ClaudeMessage] = Field(default_factory=list)
    system: str | list[ClaudeSystemContent] | None = None
    stop_sequences: list[str] | None = None
    stream: bool | None = None
    temperature: float | None = None
    top_p: float | None = None
    metadata: dict[str, Any] | None = None
    tools: list[ClaudeTool] | None = None
    tool_choice: ClaudeToolChoice | None = None
    thinking: ClaudeThinkingConfigEnabled | ClaudeThinkingConfigDisabled | None = None

    @field_validator("thinking", mode="before")
    @classmethod
    def validate_thinking_field(cls, v):
        return _normalize_thinking(v)

    @field_validator("messages", mode="before")
    @classmethod
    def drop_malformed_messages(cls, v):
        if not isinstance(v, list):
            return []
        return [m for m in v if isinstance(m, dict) and isinstance(m.get("role"), str)]

    @field_validator("tools", mode="before")
    @classmethod
    def drop_malformed_tools(cls, v):
        if not isinstance(v, list):
            return None
        return [
            t
            for t in v
            if isinstance(t, dict)
            and (t.get("name") is None or isinstance(t.get("name"), str))
            and (t.get("input_schema") is None or isinstance(t.get("input_schema"), dict))
        ]

    @field_validator("tool_choice", mode="before")
    @classmethod
    def drop_malformed_tool_choice(cls, v):
        if not isinstance(v, dict):
            return None
        tag = _tool_choice_tag(v)
        return v if v.get("type") == tag else {"type": tag}

    @field_validator("max_tokens", mode="before")
    @classmethod
    def drop_non_integer_max_tokens(cls, v):
        return v if isinstance(v, int) and not isinstance(v, bool) else None

    @field_validator("system", mode="before")
    @classmethod
    def normalize_system(cls, v):
        if isinstance(v, list):
            return [b for b in v if isinstance(b, dict)]
        if v is None or isinstance(v, str):
            return v
        return None

    def extract_system_text(self, separator: str = "\n") -> str:
        """Extract system prompt text from string or block form."""
        if not self.system:
            return ""
        if isinstance(self.system, str):
            return self.system
        return separator.join(block.text for block in self.system if block.text)


class ClaudeMessagesResponse(BaseModel):
    id: str
    type: Literal["message"] = "message"
    role: Literal["assistant"] = "assistant"
    model: str
    content: list[ClaudeResponseContentBlock]
    stop_reason: (
        Literal[
            "end_turn",
            "max_tokens",
            "stop_sequence",
            "tool_use",
            "pause_turn",
            "refusal",
        ]
        | None
    ) = None
    stop_sequence: str | None = None
    usage: ClaudeUsage

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the wire, omitting unset optional block fields."""
        data = self.model_dump()
        data["content"] = [block.model_dump(exclude_none=True) for block in self.content]
        data["usage"] = self.usage.model_dump(exclude_none=True)
        return data


class ClaudeTokenCountRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    model: str | None = None
    messages: Any = None
    system: Any = None


class ClaudeTokenCountResponse(BaseModel):
    input_tokens: int


# === Backend descriptor ===
class BackendConfig(BaseModel):
    """Upstream endpoint descriptor carried base64-encoded in the x-api-key header."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    url: str
    key: str
    model: str | None = None
    headers: dict[str, Any] | None = None
    api_type: str | None = Field(default=None, alias="apiType")
    force_stream: bool = Field(default=False, alias="forceStream")
    filter_content: bool = Field(default=False, alias="filterContent")

    @field_validator("headers", mode="before")
    @classmethod
    def drop_non_mapping_headers(cls, v):
        return v if isinstance(v, dict) else None

    @field_validator("force_stream", "filter_content", mode="before")
    @classmethod
    def coerce_flag(cls, v):
        return bool(v)
