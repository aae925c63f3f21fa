from __future__ import annotations

import unittest
from typing import Any, Dict, List, Optional

from smarthire_interview.errors import UpstreamUnavailableError
from smarthire_interview.providers import AgentHTTPConfig, HTTPInterviewAgentAdapter, MockInterviewAgentAdapter


class _FakeAdapter(HTTPInterviewAgentAdapter):
    def __init__(self, config: AgentHTTPConfig, scripted_responses: List[Dict[str, Any]]) -> None:
        super().__init__(config)
        self.scripted = list(scripted_responses)
        self.calls: List[Dict[str, Any]] = []

    def _request_json(self, method: str, path: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        self.calls.append({"method": method, "path": path, "payload": payload})
        if not self.scripted:
            raise UpstreamUnavailableError("no scripted response")
        return self.scripted.pop(0)


class AgentHttpAdapterTests(unittest.TestCase):
    def test_dispatch_posts_camel_case_payload(self) -> None:
        adapter = _FakeAdapter(AgentHTTPConfig(base_url="https://agent.test/"), [{"id": "job-9"}])
        out = adapter.dispatch_interview(
            {
                "candidate_id": 42,
                "meeting_link": "https://meet.test/ai-interview/42-abc",
                "callback_url": "https://api.test/api/internal/interview-callback",
            }
        )

        self.assertTrue(out["accepted"])
        self.assertEqual(out["agent_job_id"], "job-9")
        call = adapter.calls[0]
        self.assertEqual(call["method"], "POST")
        self.assertEqual(call["path"], "/api/interviews/start")
        self.assertEqual(
            call["payload"],
            {
                "candidateId": 42,
                "meetingLink": "https://meet.test/ai-interview/42-abc",
                "callbackUrl": "https://api.test/api/internal/interview-callback",
            },
        )

    def test_base_url_is_required(self) -> None:
        with self.assertRaises(ValueError):
            HTTPInterviewAgentAdapter(AgentHTTPConfig(base_url="  "))

    def test_unreachable_agent_is_upstream_failure(self) -> None:
        adapter = HTTPInterviewAgentAdapter(AgentHTTPConfig(base_url="http://127.0.0.1:9", timeout_seconds=5))
        with self.assertRaises(UpstreamUnavailableError):
            adapter.dispatch_interview({"candidate_id": 1, "meeting_link": "x", "callback_url": "y"})


class MockAgentAdapterTests(unittest.TestCase):
    def test_records_dispatches_and_fails_configured_ids(self) -> None:
        agent = MockInterviewAgentAdapter(fail_candidate_ids=[2])
        out = agent.dispatch_interview({"candidate_id": 1, "meeting_link": "m", "callback_url": "c"})
        self.assertTrue(out["accepted"])
        self.assertTrue(out["agent_job_id"].startswith("agent_job_"))
        with self.assertRaises(UpstreamUnavailableError):
            agent.dispatch_interview({"candidate_id": 2})
        self.assertEqual([d["candidate_id"] for d in agent.dispatched], [1])


if __name__ == "__main__":
    unittest.main()
