#!/usr/bin/env python3
"""
Tests for wire API type resolution and the force-stream switch.

Usage:
  python -m pytest tests/test_api_type.py
"""

import os
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from openai_compat_router.api_type import (
    FORCE_STREAM_ENV,
    EndpointURLError,
    get_api_type_from_url,
    get_endpoint_url_error,
    is_valid_endpoint_url,
    resolve_api_type,
    should_force_stream,
)
from openai_compat_router.types import BackendConfig


class TestApiTypeFromUrl(unittest.TestCase):
    """The URL suffix decides the wire format."""

    def test_chat_completions_suffix(self):
        """A /chat/completions URL maps to the Chat Completions format."""
        self.assertEqual(
            get_api_type_from_url("https://api.openai.com/v1/chat/completions"),
            "chat_completions",
        )

    def test_responses_suffix(self):
        """A /responses URL maps to the Responses format."""
        self.assertEqual(
            get_api_type_from_url("https://api.openai.com/v1/responses"), "responses"
        )

    def test_unknown_suffix(self):
        """Base URLs and empty values are not classified."""
        for url in ("https://api.openai.com/v1", "https://x/chat/completions/", "", None):
            self.assertIsNone(get_api_type_from_url(url))
            self.assertFalse(is_valid_endpoint_url(url))

    def test_error_message_names_both_suffixes(self):
        """The error text guides the user toward a complete endpoint URL."""
        message = get_endpoint_url_error("https://example.com/v1")
        self.assertIn("https://example.com/v1", message)
        self.assertIn("/chat/completions", message)
        self.assertIn("/responses", message)


class TestResolveApiType(unittest.TestCase):
    """Resolution from a backend descriptor."""

    def test_url_decides_by_default(self):
        """Without an override the URL suffix wins."""
        config = BackendConfig(url="https://x/v1/responses", key="k")
        self.assertEqual(resolve_api_type(config), "responses")

    def test_valid_override(self):
        """An explicit apiType overrides the URL classification."""
        config = BackendConfig(
            url="https://x/v1/responses", key="k", apiType="chat_completions"
        )
        self.assertEqual(resolve_api_type(config), "chat_completions")

    def test_unknown_override_is_ignored(self):
        """An apiType naming neither format falls back to the URL."""
        config = BackendConfig(url="https://x/v1/chat/completions", key="k", apiType="grpc")
        self.assertEqual(resolve_api_type(config), "chat_completions")

    def test_invalid_url_raises(self):
        """A URL without a supported suffix is rejected even with an override."""
        config = BackendConfig(url="https://x/v1", key="k", apiType="responses")
        with self.assertRaises(EndpointURLError) as ctx:
            resolve_api_type(config)
        self.assertEqual(ctx.exception.url, "https://x/v1")


class TestForceStream(unittest.TestCase):
    """The environment switch that forces streaming upstream calls."""

    def test_truthy_values(self):
        """1, true and yes enable forced streaming, case-insensitively."""
        for value in ("1", "true", "TRUE", "yes", " Yes "):
            with patch.dict(os.environ, {FORCE_STREAM_ENV: value}):
                self.assertTrue(should_force_stream(), value)

    def test_other_values(self):
        """Anything else, including an unset variable, leaves it disabled."""
        for value in ("0", "false", "no", "", "on"):
            with patch.dict(os.environ, {FORCE_STREAM_ENV: value}):
                self.assertFalse(should_force_stream(), value)
        with patch.dict(os.environ, {}, clear=True):
            self.assertFalse(should_force_stream())


if __name__ == "__main__":
    unittest.main()
