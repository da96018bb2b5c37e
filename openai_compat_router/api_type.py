"""
Wire API type resolution.

The backend URL is the single source of truth for which OpenAI wire format a
request is converted to. No content sniffing is done.
"""

import os

from .types import BackendConfig, Constants

CHAT_COMPLETIONS_SUFFIX = "/chat/completions"
RESPONSES_SUFFIX = "/responses"

FORCE_STREAM_ENV = "OPENAI_COMPAT_FORCE_STREAM"
_TRUTHY = {"1", "true", "yes"}


class EndpointURLError(ValueError):
    """Raised when a backend URL does not end with a supported endpoint path."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(get_endpoint_url_error(url))


def get_api_type_from_url(url: str | None) -> str | None:
    """Classify a full endpoint URL by its suffix."""
    if not url:
        return None
    if url.endswith(CHAT_COMPLETIONS_SUFFIX):
        return Constants.API_CHAT_COMPLETIONS
    if url.endswith(RESPONSES_SUFFIX):
        return Constants.API_RESPONSES
    return None


def is_valid_endpoint_url(url: str | None) -> bool:
    return get_api_type_from_url(url) is not None


def get_endpoint_url_error(url: str) -> str:
    return (
        f"Invalid endpoint URL: {url}\n\n"
        "Please provide a complete endpoint URL ending with:\n"
        "  - /chat/completions  (e.g., https://api.openai.com/v1/chat/completions)\n"
        "  - /responses         (e.g., https://api.openai.com/v1/responses)"
    )


def should_force_stream() -> bool:
    """Read the force-stream switch from the environment."""
    return os.environ.get(FORCE_STREAM_ENV, "").strip().lower() in _TRUTHY


def resolve_api_type(config: BackendConfig) -> str:
    """Pick the wire format for a backend.

    The URL must carry a recognized suffix. An explicit apiType on the
    descriptor wins when it names one of the two supported formats.
    """
    url_type = get_api_type_from_url(config.url)
    if url_type is None:
        raise EndpointURLError(config.url)
    if config.api_type in (Constants.API_CHAT_COMPLETIONS, Constants.API_RESPONSES):
        return config.api_type
    return url_type
