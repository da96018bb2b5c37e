"""
OpenAI Compat Router - serves the Anthropic Messages API on top of
OpenAI-compatible backends (Chat Completions or Responses API).

The backend is chosen per request by the x-api-key header, which carries a
base64-encoded JSON descriptor of the upstream endpoint.
"""

__version__ = "0.1.0"

# Export main components for easier imports
from .config import Config
from .server import app
from .types import BackendConfig, ClaudeMessagesRequest, ClaudeMessagesResponse

__all__ = [
    "Config",
    "app",
    "BackendConfig",
    "ClaudeMessagesRequest",
    "ClaudeMessagesResponse",
]
