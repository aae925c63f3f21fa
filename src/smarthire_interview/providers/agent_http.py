from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib import error, request

from ..errors import UpstreamUnavailableError


@dataclass(frozen=True)
class AgentHTTPConfig:
    base_url: str
    api_key: str = ""
    timeout_seconds: int = 30
    dispatch_path: str = "/api/interviews/start"


class HTTPInterviewAgentAdapter:
    """Starts interviews on the external AI interview agent over HTTP."""

    name = "agent_http"

    def __init__(self, config: AgentHTTPConfig) -> None:
        if not config.base_url.strip():
            raise ValueError("SMARTHIRE_AGENT_BASE_URL is required for the HTTP agent adapter")
        self.config = config
        self.base_url = config.base_url.rstrip("/")

    def dispatch_interview(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = {
            "candidateId": payload.get("candidate_id"),
            "meetingLink": payload.get("meeting_link"),
            "callbackUrl": payload.get("callback_url"),
        }
        response = self._request_json("POST", self.config.dispatch_path, body)
        return {
            "accepted": bool(response.get("accepted", True)),
            "agent_job_id": str(response.get("id") or response.get("job_id") or "").strip() or None,
            "raw": response,
        }

    def _request_json(self, method: str, path: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if not path.startswith("/"):
            path = f"/{path}"
        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        body = None
        if payload is not None:
            body = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        req = request.Request(url=url, data=body, method=method, headers=headers)
        try:
            with request.urlopen(req, timeout=self.config.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except error.HTTPError as exc:
            raise UpstreamUnavailableError(f"Interview agent HTTP {exc.code}: {self._read_error_body(exc)}") from exc
        except error.URLError as exc:
            raise UpstreamUnavailableError(f"Interview agent network error: {exc.reason}") from exc
        except OSError as exc:
            raise UpstreamUnavailableError(f"Interview agent request failed: {exc}") from exc

        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise UpstreamUnavailableError("Interview agent returned non-JSON response") from exc
        if not isinstance(parsed, dict):
            raise UpstreamUnavailableError("Interview agent returned invalid payload")
        return parsed

    @staticmethod
    def _read_error_body(exc: error.HTTPError) -> str:
        try:
            raw = exc.read().decode("utf-8")
        except Exception:
            raw = ""
        return raw[:400] if raw else str(exc.reason or "request failed")
