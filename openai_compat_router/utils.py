"""
Utility functions for the openai_compat_router package.
This module contains JSON helpers, backend descriptor encoding and error detail extraction.
"""

import base64
import binascii
import json
import logging
import math
from typing import Any

from pydantic import ValidationError

from .types import BackendConfig, ModelDefaults

logger = logging.getLogger(__name__)


def dump_json(value: Any) -> str:
    """Compact JSON encoding used for tool arguments and tool outputs."""
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        logger.warning(f"Could not JSON encode value of type {type(value).__name__}")
        return "{}"


def safe_json_parse(text: str | None, default: Any = None) -> Any:
    """Parse JSON, returning default instead of raising."""
    if not text:
        return default
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return default


def parse_tool_arguments(arguments: Any) -> dict:
    """Parse tool call arguments into an input object.

    Unparseable strings are preserved as {"text": <raw>} so nothing the model
    produced is lost.
    """
    if isinstance(arguments, dict):
        return arguments
    if not arguments:
        return {}
    parsed = safe_json_parse(arguments)
    if isinstance(parsed, dict):
        return parsed
    logger.warning(f"Failed to parse tool arguments: {str(arguments)[:200]}")
    return {"text": str(arguments)}


def extract_text_content(content: Any, separator: str = "") -> str | None:
    """Extract plain text from a string or a list of text parts."""
    if content is None or content == "":
        return None
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        parts = [p for p in parts if p]
        return separator.join(parts) if parts else None
    return str(content)


def encode_backend_config(config: BackendConfig | dict[str, Any]) -> str:
    """Encode a backend descriptor into the x-api-key header format."""
    if isinstance(config, BackendConfig):
        config = config.model_dump(by_alias=True, exclude_none=True)
    return base64.b64encode(json.dumps(config).encode("utf-8")).decode("ascii")


def decode_backend_config(encoded: str | None) -> BackendConfig | None:
    """Decode the x-api-key header into a BackendConfig.

    Returns None for anything that is not base64 encoded JSON carrying a
    non-empty url and key.
    """
    if not encoded:
        return None
    try:
        raw = base64.b64decode(encoded.strip(), validate=False)
        parsed = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        logger.debug("x-api-key is not a base64 encoded JSON document")
        return None

    if not isinstance(parsed, dict):
        return None
    if not parsed.get("url") or not parsed.get("key"):
        return None
    try:
        return BackendConfig.model_validate(parsed)
    except ValidationError as e:
        logger.debug(f"x-api-key failed validation: {e.error_count()} errors")
        return None


def estimate_tokens(system: Any, messages: Any) -> int:
    """Rough token estimate: one token per four characters of JSON."""
    count = 0
    for value in (system, messages):
        if value:
            serialized = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
            count += math.ceil(len(serialized) / ModelDefaults.CHARS_PER_TOKEN)
    return count


def filter_github_urls(text: str) -> str:
    """Drop lines that mention github.com URLs."""
    return "\n".join(
        line for line in text.split("\n") if "https://github.com/" not in line
    )


def _extract_error_details(e: Exception) -> dict[str, Any]:
    """Extract error details from an exception, ensuring all values are JSON serializable."""
    import traceback

    error_details = {
        "error": str(e),
        "type": type(e).__name__,
        "traceback": traceback.format_exc(),
    }

    for attr in ("status_code", "error_type", "message", "response"):
        try:
            value = getattr(e, attr)
        except (AttributeError, RuntimeError):
            # httpx raises RuntimeError for unset request/response properties
            continue
        if attr == "response" and hasattr(value, "status_code"):
            error_details["status_code"] = value.status_code
        elif isinstance(value, (str, int, float, bool, type(None))):
            error_details[attr] = value
        else:
            error_details[attr] = str(value)

    return error_details
