from __future__ import annotations

import unittest
from typing import Any, Dict, List

from smarthire_interview.errors import UpstreamUnavailableError
from smarthire_interview.llm import CompletionBackend, extract_json_object


class _ScriptedBackend(CompletionBackend):
    def __init__(self, replies: List[str]) -> None:
        super().__init__(api_key="sk-test", model="test-model", base_url="https://llm.test/v1")
        self.replies = list(replies)
        self.payloads: List[Dict[str, Any]] = []

    def _chat_completion(self, payload: Dict[str, Any]) -> str:
        self.payloads.append(payload)
        return self.replies.pop(0)


class ExtractJsonObjectTests(unittest.TestCase):
    def test_bare_object(self) -> None:
        self.assertEqual(extract_json_object('{"a": 1}'), {"a": 1})

    def test_fenced_block(self) -> None:
        self.assertEqual(extract_json_object('```json\n{"a": [1, 2]}\n```'), {"a": [1, 2]})

    def test_object_inside_prose_with_braces_in_strings(self) -> None:
        text = 'Sure! {"summary": "uses {curly} braces", "n": 2} Hope this helps.'
        self.assertEqual(extract_json_object(text), {"summary": "uses {curly} braces", "n": 2})

    def test_rejects_arrays_and_empty_text(self) -> None:
        with self.assertRaises(ValueError):
            extract_json_object("[1, 2, 3]")
        with self.assertRaises(ValueError):
            extract_json_object("")
        with self.assertRaises(ValueError):
            extract_json_object("no json at all")


class CompletionBackendTests(unittest.TestCase):
    def test_complete_json_sends_chat_payload(self) -> None:
        backend = _ScriptedBackend(['{"name": "Jane"}'])
        out = backend.complete_json("extract this", max_tokens=200)

        self.assertEqual(out, {"name": "Jane"})
        payload = backend.payloads[0]
        self.assertEqual(payload["model"], "test-model")
        self.assertEqual(payload["max_tokens"], 200)
        self.assertEqual(payload["temperature"], 0.0)
        self.assertEqual(payload["messages"], [{"role": "user", "content": "extract this"}])

    def test_unparsable_reply_is_upstream_failure(self) -> None:
        backend = _ScriptedBackend(["I am not JSON"])
        with self.assertRaises(UpstreamUnavailableError):
            backend.complete_json("extract this")

    def test_missing_key_is_unavailable(self) -> None:
        backend = CompletionBackend(api_key="  ")
        self.assertFalse(backend.available())
        with self.assertRaises(UpstreamUnavailableError):
            backend.complete("hello")

    def test_unreachable_host_is_upstream_failure(self) -> None:
        backend = CompletionBackend(api_key="sk-test", base_url="http://127.0.0.1:9", timeout_seconds=5)
        with self.assertRaises(UpstreamUnavailableError):
            backend.complete("hello")


if __name__ == "__main__":
    unittest.main()
