from __future__ import annotations

import threading
from typing import Any, Dict, List
from uuid import uuid4

from ..errors import UpstreamUnavailableError


class MockInterviewAgentAdapter:
    name = "agent_mock"

    def __init__(self, fail_candidate_ids: List[int] | None = None) -> None:
        self.dispatched: List[Dict[str, Any]] = []
        self.fail_candidate_ids = set(int(x) for x in (fail_candidate_ids or []))
        self._lock = threading.Lock()

    def dispatch_interview(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        candidate_id = int(payload.get("candidate_id") or 0)
        if candidate_id in self.fail_candidate_ids:
            raise UpstreamUnavailableError(f"mock agent rejected candidate {candidate_id}")
        job_ref = f"agent_job_{uuid4().hex[:12]}"
        with self._lock:
            self.dispatched.append({**payload, "agent_job_id": job_ref})
        return {"accepted": True, "agent_job_id": job_ref}
