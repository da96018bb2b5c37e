import os
import sys
import types
import unittest
from unittest.mock import Mock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
from openai_compat_router import interceptors
from openai_compat_router.interceptors import (
    DEFAULT_PRIORITY,
    InterceptorManager,
    build_canned_response,
    build_canned_stream,
    request_interceptor_spec,
)
from openai_compat_router.interceptors import preflight, warmup
from openai_compat_router.types import ClaudeMessagesRequest


def make_module(name, interceptor=None, priority=None):
    module = types.ModuleType(f"plugins.{name}")
    if interceptor is not None:
        setattr(module, request_interceptor_spec, interceptor)
    if priority is not None:
        module.priority = priority
    return module


def make_request(**fields):
    data = {"model": "claude-3-haiku", "max_tokens": 10, "messages": []}
    data.update(fields)
    return ClaudeMessagesRequest.model_validate(data)


class TestInterceptorManager(unittest.TestCase):
    def setUp(self):
        """Set up a new InterceptorManager instance for each test."""
        self.manager = InterceptorManager()

    def test_initialization(self):
        self.assertEqual(self.manager.interceptors, [])

    def test_register_module_without_interceptor(self):
        """Modules that expose nothing are ignored."""
        self.manager.register_interceptor(make_module("empty"))
        self.assertEqual(self.manager.interceptors, [])

    def test_priority_order(self):
        """Lower priority runs first; modules without one get the default."""
        self.manager.register_interceptor(make_module("late", lambda r: None))
        self.manager.register_interceptor(make_module("early", lambda r: None, priority=1))
        self.assertEqual(
            [(p, n) for p, n, _ in self.manager.interceptors],
            [(1, "early"), (DEFAULT_PRIORITY, "late")],
        )

    def test_register_twice(self):
        module = make_module("once", lambda r: None)
        self.manager.register_interceptor(module)
        self.manager.register_interceptor(module)
        self.assertEqual(len(self.manager.interceptors), 1)

    def test_first_answer_wins(self):
        second = Mock(return_value="second")
        self.manager.register_interceptor(make_module("a", lambda r: None, priority=1))
        self.manager.register_interceptor(make_module("b", lambda r: "first", priority=2))
        self.manager.register_interceptor(make_module("c", second, priority=3))

        reply = self.manager.run(make_request())

        self.assertEqual(reply.name, "b")
        self.assertEqual(reply.text, "first")
        second.assert_not_called()

    def test_no_answer(self):
        self.manager.register_interceptor(make_module("a", lambda r: None))
        self.assertIsNone(self.manager.run(make_request()))

    def test_load_plugins_from_package(self):
        """The bundled interceptors are discovered from the package path."""
        self.manager.load_plugins(interceptors)
        names = [n for _, n, _ in self.manager.interceptors]
        self.assertEqual(names, ["warmup", "preflight"])

    def test_load_plugins_without_path(self):
        self.manager.load_plugins(types.ModuleType("not_a_package"))
        self.assertEqual(self.manager.interceptors, [])


class TestWarmupInterceptor(unittest.TestCase):
    def test_matches_string_content(self):
        request = make_request(messages=[{"role": "user", "content": "Warmup"}])
        self.assertEqual(warmup.request_interceptor(request), "OK")

    def test_matches_text_blocks(self):
        request = make_request(
            messages=[{"role": "user", "content": [{"type": "text", "text": "Warmup"}]}]
        )
        self.assertEqual(warmup.request_interceptor(request), "OK")

    def test_only_last_user_message_counts(self):
        request = make_request(
            messages=[
                {"role": "user", "content": "Warmup"},
                {"role": "assistant", "content": "OK"},
                {"role": "user", "content": "Now do real work"},
            ]
        )
        self.assertIsNone(warmup.request_interceptor(request))

    def test_exact_match_only(self):
        request = make_request(messages=[{"role": "user", "content": "Warmup please"}])
        self.assertIsNone(warmup.request_interceptor(request))


class TestPreflightInterceptor(unittest.TestCase):
    SYSTEM = "Your task is to process Bash commands and return the command prefix."

    def test_matches_bash_prefix_call(self):
        request = make_request(
            system=self.SYSTEM, messages=[{"role": "user", "content": "Command: ls"}]
        )
        self.assertEqual(preflight.match_fingerprint(request).name, "bash_extract_prefix")
        self.assertEqual(preflight.request_interceptor(request), "none")

    def test_matches_system_blocks(self):
        request = make_request(system=[{"type": "text", "text": self.SYSTEM}])
        self.assertEqual(preflight.request_interceptor(request), "none")

    def test_requests_with_tools_pass_through(self):
        request = make_request(
            system=self.SYSTEM, tools=[{"name": "Bash", "input_schema": {"type": "object"}}]
        )
        self.assertIsNone(preflight.request_interceptor(request))

    def test_other_system_prompts_pass_through(self):
        self.assertIsNone(preflight.request_interceptor(make_request(system="Be helpful.")))
        self.assertIsNone(preflight.request_interceptor(make_request()))


class TestCannedReplies(unittest.TestCase):
    def test_canned_response(self):
        data = build_canned_response("OK", "claude-3-haiku").to_dict()
        self.assertEqual(data["model"], "claude-3-haiku")
        self.assertEqual(data["content"], [{"type": "text", "text": "OK"}])
        self.assertEqual(data["stop_reason"], "end_turn")
        self.assertEqual(data["usage"], {"input_tokens": 0, "output_tokens": 1})

    def test_canned_stream(self):
        events = [chunk.split("\n")[0][len("event: "):] for chunk in build_canned_stream("OK", "")]
        self.assertEqual(
            events,
            [
                "message_start",
                "content_block_start",
                "content_block_delta",
                "content_block_stop",
                "message_delta",
                "message_stop",
            ],
        )


if __name__ == "__main__":
    unittest.main()
