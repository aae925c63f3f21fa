from __future__ import annotations

from typing import Any, Dict, Protocol


class InterviewAgentAdapter(Protocol):
    name: str

    def dispatch_interview(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Hand one interview to the agent.

        ``payload`` carries ``candidate_id``, ``meeting_link`` and
        ``callback_url``. Raises UpstreamUnavailableError when the agent
        cannot accept it.
        """
        ...
