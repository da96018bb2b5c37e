#!/usr/bin/env python3
"""
Tests for per-backend request serialization.

Usage:
  python -m pytest tests/test_request_queue.py
"""

import asyncio
import sys
import unittest
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from openai_compat_router.request_queue import (
    clear_request_queues,
    generate_queue_key,
    get_pending_request_count,
    request_slot,
    with_request_queue,
)


class TestQueueKey(unittest.TestCase):
    def test_key_uses_credential_prefix(self):
        key = generate_queue_key("https://api.example.com/v1/chat/completions", "sk-" + "x" * 40)
        self.assertEqual(key, "https://api.example.com/v1/chat/completions:sk-" + "x" * 13)

    def test_short_credential(self):
        self.assertEqual(generate_queue_key("u", "abc"), "u:abc")


class TestRequestQueue(unittest.TestCase):
    def setUp(self):
        clear_request_queues()

    def test_same_key_runs_serially(self):
        """Calls sharing a key never overlap and finish in arrival order."""
        log = []

        async def work(name, delay):
            log.append(f"start {name}")
            await asyncio.sleep(delay)
            log.append(f"end {name}")
            return name

        async def main():
            return await asyncio.gather(
                with_request_queue("k", lambda: work("a", 0.05)),
                with_request_queue("k", lambda: work("b", 0.01)),
                with_request_queue("k", lambda: work("c", 0)),
            )

        results = asyncio.run(main())
        self.assertEqual(results, ["a", "b", "c"])
        self.assertEqual(
            log, ["start a", "end a", "start b", "end b", "start c", "end c"]
        )
        self.assertEqual(get_pending_request_count(), 0)

    def test_distinct_keys_run_in_parallel(self):
        """Different keys do not wait for each other."""
        log = []

        async def work(name):
            log.append(f"start {name}")
            await asyncio.sleep(0.02)
            log.append(f"end {name}")

        async def main():
            await asyncio.gather(
                with_request_queue("k1", lambda: work("a")),
                with_request_queue("k2", lambda: work("b")),
            )

        asyncio.run(main())
        self.assertEqual(log[:2], ["start a", "start b"])

    def test_failure_does_not_block_successor(self):
        """A failing call propagates its error and the next call still runs."""

        async def fail():
            raise RuntimeError("boom")

        async def ok():
            return "ok"

        async def main():
            return await asyncio.gather(
                with_request_queue("k", fail),
                with_request_queue("k", ok),
                return_exceptions=True,
            )

        first, second = asyncio.run(main())
        self.assertIsInstance(first, RuntimeError)
        self.assertEqual(second, "ok")
        self.assertEqual(get_pending_request_count(), 0)

    def test_cancelled_waiter_keeps_order(self):
        """Cancelling a queued call does not let the call behind it jump ahead."""
        log = []

        async def main():
            release_first = asyncio.Event()

            async def first():
                async with request_slot("k"):
                    log.append("first")
                    await release_first.wait()
                    log.append("first done")

            async def waiter():
                async with request_slot("k"):
                    log.append("cancelled waiter ran")

            async def third():
                async with request_slot("k"):
                    log.append("third")

            t1 = asyncio.create_task(first())
            await asyncio.sleep(0)
            t2 = asyncio.create_task(waiter())
            await asyncio.sleep(0)
            t3 = asyncio.create_task(third())
            await asyncio.sleep(0)

            t2.cancel()
            await asyncio.sleep(0.01)
            self.assertEqual(log, ["first"])

            release_first.set()
            await asyncio.gather(t1, t3)
            with self.assertRaises(asyncio.CancelledError):
                await t2

        asyncio.run(main())
        self.assertEqual(log, ["first", "first done", "third"])
        self.assertEqual(get_pending_request_count(), 0)

    def test_pending_count(self):
        """A key is pending while its call holds the slot."""

        async def main():
            async with request_slot("k"):
                self.assertEqual(get_pending_request_count(), 1)
            self.assertEqual(get_pending_request_count(), 0)

        asyncio.run(main())


if __name__ == "__main__":
    unittest.main()
