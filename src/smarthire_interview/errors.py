from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

OK = "ok"
NOT_FOUND = "not_found"
CONFLICT = "conflict"
VALIDATION = "validation"
UNAUTHORIZED = "unauthorized"
FORBIDDEN = "forbidden"
UPSTREAM_UNAVAILABLE = "upstream_unavailable"

HTTP_STATUS_BY_OUTCOME: Dict[str, int] = {
    OK: 200,
    NOT_FOUND: 404,
    CONFLICT: 409,
    VALIDATION: 400,
    UNAUTHORIZED: 401,
    FORBIDDEN: 403,
    UPSTREAM_UNAVAILABLE: 502,
}

# Machine-readable codes carried in OperationResult.code and error payloads.
CANDIDATE_NOT_FOUND = "CANDIDATE_NOT_FOUND"
INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
AUTH_REQUIRED = "AUTH_REQUIRED"
ROLE_FORBIDDEN = "ROLE_FORBIDDEN"
SCHEDULING_LINK_INVALID = "SCHEDULING_LINK_INVALID"
SCHEDULING_LINK_EXPIRED = "SCHEDULING_LINK_EXPIRED"
INTERVIEW_DATETIME_INVALID = "INTERVIEW_DATETIME_INVALID"
ALREADY_CLAIMED = "ALREADY_CLAIMED"
CALLBACK_PAYLOAD_INVALID = "CALLBACK_PAYLOAD_INVALID"
RESULTS_CONFLICT = "RESULTS_CONFLICT"
AGENT_DISPATCH_FAILED = "AGENT_DISPATCH_FAILED"
AGENT_DISPATCH_TIMEOUT = "AGENT_DISPATCH_TIMEOUT"
INTERVIEW_TIMED_OUT = "INTERVIEW_TIMED_OUT"
TOKEN_COLLISION = "TOKEN_COLLISION"


class UpstreamUnavailableError(RuntimeError):
    """An external AI backend or agent failed, timed out or is not configured."""


class QuestionGenerationError(ValueError):
    """The AI backend answered, but not with a usable question set."""


@dataclass
class OperationResult:
    outcome: str
    code: str = ""
    message: str = ""
    record: Optional[Dict[str, Any]] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome == OK

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_OUTCOME.get(self.outcome, 500)

    @classmethod
    def success(cls, record: Optional[Dict[str, Any]] = None, **data: Any) -> "OperationResult":
        return cls(outcome=OK, record=record, data=dict(data))

    @classmethod
    def failure(
        cls,
        outcome: str,
        code: str,
        message: str,
        record: Optional[Dict[str, Any]] = None,
    ) -> "OperationResult":
        return cls(outcome=outcome, code=code, message=message, record=record)
