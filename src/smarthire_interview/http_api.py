from __future__ import annotations

import hashlib
import json
import re
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import structlog

from .auth import CallbackKeyVerifier, OperatorAuthService, OperatorPrincipal
from .config import InterviewModuleConfig
from .db import InterviewDatabase
from .errors import OperationResult, QuestionGenerationError, UpstreamUnavailableError
from .extraction import build_resume_extractor
from .llm import CompletionBackend
from .logging import configure_logging
from .matching import build_match_scorer, rank_candidates
from .meeting_links import DeterministicMeetingLinks
from .notifications import OutboxNotificationSender
from .profiles import CandidateProfile, JobRequirements
from .providers import AgentHTTPConfig, HTTPInterviewAgentAdapter, MockInterviewAgentAdapter
from .question_generation import LLMQuestionGenerator
from .scheduler import InterviewScheduler
from .service import InterviewService
from .token_service import SchedulerTokenService

CALLBACK_PATH = "/api/internal/interview-callback"
PUBLIC_SCHEDULE_PATH = "/api/public/schedule-interview"

# User-facing wording for the public scheduling page.
PUBLIC_MESSAGES = {
    "SCHEDULING_LINK_INVALID": "This scheduling link is invalid or has already been used.",
    "SCHEDULING_LINK_EXPIRED": "This scheduling link has expired. Please contact the recruiter for a new one.",
    "INTERVIEW_DATETIME_INVALID": "Please choose a valid date and time in the future.",
    "INVALID_STATUS_TRANSITION": "This interview can no longer be scheduled.",
}

_CANDIDATE_ROUTE = re.compile(r"^/api/candidates/(\d+)/(trigger-interview|resume-reviewed|cancel-interview|interview)$")


def build_services(config: Optional[InterviewModuleConfig] = None) -> Dict[str, Any]:
    config = config or InterviewModuleConfig.from_env()
    db = InterviewDatabase(db_path=config.db_path)
    db.init_schema()

    agent_name = config.agent_provider
    agent_error = ""
    if agent_name == "http":
        try:
            agent = HTTPInterviewAgentAdapter(
                AgentHTTPConfig(
                    base_url=config.agent_base_url,
                    api_key=config.agent_api_key,
                    timeout_seconds=config.dispatch_timeout_seconds,
                )
            )
        except ValueError as exc:
            agent = MockInterviewAgentAdapter()
            agent_name = "mock"
            agent_error = str(exc)
    else:
        agent = MockInterviewAgentAdapter()
        agent_name = "mock"

    own_base_url = f"http://{config.host}:{config.port}"
    interview = InterviewService(
        db=db,
        token_service=SchedulerTokenService(ttl_hours=config.token_ttl_hours),
        notifier=OutboxNotificationSender(db),
        meeting_links=DeterministicMeetingLinks(config.meeting_link_base),
        public_base_url=config.public_base_url or own_base_url,
        allow_resend=config.allow_resend,
    )
    scheduler = InterviewScheduler(
        db=db,
        service=interview,
        agent=agent,
        callback_url=f"{(config.api_base_url or own_base_url).rstrip('/')}{CALLBACK_PATH}",
        interval_seconds=config.scheduler_interval_seconds,
        dispatch_timeout_seconds=config.dispatch_timeout_seconds,
        max_interview_minutes=config.max_interview_minutes,
    )

    llm = CompletionBackend(
        api_key=config.llm_api_key,
        model=config.llm_model,
        base_url=config.llm_base_url,
        timeout_seconds=config.llm_timeout_seconds,
    )

    return {
        "config": config,
        "db": db,
        "auth": OperatorAuthService.from_file(config.operator_tokens_path),
        "callback_keys": CallbackKeyVerifier(config.callback_api_key),
        "agent": agent,
        "agent_name": agent_name,
        "agent_error": agent_error,
        "interview": interview,
        "scheduler": scheduler,
        "llm": llm,
        "extractor": build_resume_extractor(llm),
        "matcher": build_match_scorer(llm),
        "questions": LLMQuestionGenerator(llm),
    }


SERVICES = build_services()


class InterviewRequestHandler(BaseHTTPRequestHandler):
    server_version = "SmartHireInterview/0.1"

    def do_GET(self) -> None:
        parsed = urlparse(self.path)

        if parsed.path == "/health":
            self._json_response(HTTPStatus.OK, {"status": "ok"})
            return

        if parsed.path == "/api":
            self._json_response(
                HTTPStatus.OK,
                {
                    "service": "SmartHire Interview Orchestration",
                    "status": "ok",
                    "endpoints": {
                        "health": "GET /health",
                        "scheduling_details": f"GET {PUBLIC_SCHEDULE_PATH}?token=...",
                        "schedule_interview": f"POST {PUBLIC_SCHEDULE_PATH}",
                        "resume_reviewed": "POST /api/candidates/{id}/resume-reviewed",
                        "trigger_interview": "POST /api/candidates/{id}/trigger-interview",
                        "cancel_interview": "POST /api/candidates/{id}/cancel-interview",
                        "interview_view": "GET /api/candidates/{id}/interview",
                        "interview_callback": f"POST {CALLBACK_PATH}",
                        "scheduler_run": "POST /api/internal/scheduler/run",
                        "extract_resume": "POST /api/ai/extract-resume",
                        "match_candidates": "POST /api/ai/match-candidates",
                        "interview_questions": "POST /api/ai/interview-questions",
                    },
                    "agent": SERVICES.get("agent_name"),
                    "agent_error": SERVICES.get("agent_error") or None,
                    "ai_backend_available": SERVICES["llm"].available(),
                    "scheduler_running": SERVICES["scheduler"].running,
                },
            )
            return

        if parsed.path == PUBLIC_SCHEDULE_PATH:
            params = parse_qs(parsed.query or "")
            token = (params.get("token") or [""])[0]
            result = SERVICES["interview"].get_scheduling_details(token)
            status, out = self._public_response(result)
            self._json_response(status, out)
            return

        m = _CANDIDATE_ROUTE.match(parsed.path)
        if m and m.group(2) == "interview":
            principal, denied = self._authorize_operator()
            if denied:
                self._json_response(*denied)
                return
            result = SERVICES["interview"].get_interview_view(int(m.group(1)), principal)
            self._json_response(*self._result_response(result))
            return

        self._json_response(HTTPStatus.NOT_FOUND, self._error("ROUTE_NOT_FOUND", "route not found"))

    def do_POST(self) -> None:
        parsed = urlparse(self.path)
        payload = self._read_json_body()
        if isinstance(payload, dict) and payload.get("_error"):
            self._json_response(HTTPStatus.BAD_REQUEST, self._error("REQUEST_BODY_INVALID", payload["_error"]))
            return

        if parsed.path == PUBLIC_SCHEDULE_PATH:
            self._json_response(*self._post_schedule_interview(payload or {}))
            return

        if parsed.path == CALLBACK_PATH:
            denied = self._authorize_machine()
            if denied:
                self._json_response(*denied)
                return
            self._json_response(*self._post_interview_callback(payload or {}))
            return

        if parsed.path == "/api/internal/scheduler/run":
            denied = self._authorize_machine()
            if denied:
                self._json_response(*denied)
                return
            summary = SERVICES["scheduler"].run_once()
            self._json_response(HTTPStatus.OK, {"success": True, **summary})
            return

        m = _CANDIDATE_ROUTE.match(parsed.path)
        if m and m.group(2) != "interview":
            principal, denied = self._authorize_operator()
            if denied:
                self._json_response(*denied)
                return
            candidate_id = int(m.group(1))
            action = m.group(2)
            self._run_idempotent(
                route=parsed.path,
                payload=(payload or {}),
                callback=lambda: self._post_candidate_action(action, candidate_id, principal, payload or {}),
            )
            return

        if parsed.path.startswith("/api/ai/"):
            _, denied = self._authorize_operator()
            if denied:
                self._json_response(*denied)
                return
            if parsed.path == "/api/ai/extract-resume":
                self._json_response(*self._post_extract_resume(payload or {}))
                return
            if parsed.path == "/api/ai/match-candidates":
                self._json_response(*self._post_match_candidates(payload or {}))
                return
            if parsed.path == "/api/ai/interview-questions":
                self._json_response(*self._post_interview_questions(payload or {}))
                return

        self._json_response(HTTPStatus.NOT_FOUND, self._error("ROUTE_NOT_FOUND", "route not found"))

    def _post_schedule_interview(self, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        token = str(body.get("token") or "").strip()
        requested = body.get("datetime") or body.get("interview_datetime")
        if not token:
            return HTTPStatus.BAD_REQUEST, self._error("SCHEDULING_TOKEN_REQUIRED", "Scheduling token is required.")
        if not requested:
            return HTTPStatus.BAD_REQUEST, self._error(
                "INTERVIEW_DATETIME_INVALID",
                PUBLIC_MESSAGES["INTERVIEW_DATETIME_INVALID"],
            )
        try:
            result = SERVICES["interview"].schedule_interview(token, str(requested))
        except Exception as exc:
            structlog.get_logger(__name__).exception("http.schedule_failed", error=str(exc))
            return HTTPStatus.INTERNAL_SERVER_ERROR, self._error(
                "SERVER_ERROR",
                "We could not schedule your interview right now. Please try again later.",
            )
        if not result.ok:
            return self._public_response(result)
        return HTTPStatus.OK, {
            "success": True,
            "meeting_link": result.data.get("meeting_link"),
            "interview_datetime": result.data.get("interview_datetime"),
        }

    def _post_candidate_action(
        self,
        action: str,
        candidate_id: int,
        principal: Optional[OperatorPrincipal],
        body: Dict[str, Any],
    ) -> Tuple[int, Dict[str, Any]]:
        service: InterviewService = SERVICES["interview"]
        if action == "trigger-interview":
            result = service.trigger_interview(candidate_id, principal)
        elif action == "resume-reviewed":
            result = service.mark_resume_reviewed(candidate_id, principal)
        else:
            result = service.cancel_interview(candidate_id, principal, reason=str(body.get("reason") or "").strip())
        return self._result_response(result)

    def _post_interview_callback(self, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        candidate_id = self._safe_int(self._pick(body, "candidate_id", "candidateId"), None)
        if candidate_id is None:
            return HTTPStatus.BAD_REQUEST, self._error("CANDIDATE_ID_REQUIRED", "candidate_id is required")
        result = SERVICES["interview"].record_interview_results(
            candidate_id,
            self._pick(body, "transcript_url", "transcriptUrl"),
            self._pick(body, "report_url", "reportUrl"),
        )
        return self._result_response(result)

    def _post_extract_resume(self, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        text = str(self._pick(body, "resume_text", "text") or "").strip()
        if not text:
            return HTTPStatus.BAD_REQUEST, self._error("RESUME_TEXT_REQUIRED", "resume_text is required")
        extractor = SERVICES["extractor"]
        profile = extractor.extract(text)
        return HTTPStatus.OK, {"success": True, "method": extractor.method, "candidate": profile.to_dict()}

    def _post_match_candidates(self, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        job, job_error = self._job_from_body(body)
        if job_error:
            return job_error
        raw_candidates = body.get("candidates")
        if not isinstance(raw_candidates, list) or not raw_candidates:
            return HTTPStatus.BAD_REQUEST, self._error("CANDIDATES_REQUIRED", "candidates must be a non-empty array")

        candidates: List[Tuple[Optional[int], CandidateProfile]] = []
        for item in raw_candidates:
            if not isinstance(item, dict):
                continue
            profile_data = item.get("profile") if isinstance(item.get("profile"), dict) else item
            candidates.append((self._safe_int(item.get("id"), None), CandidateProfile.from_dict(profile_data)))
        results = rank_candidates(SERVICES["matcher"], candidates, job)  # type: ignore[arg-type]
        return HTTPStatus.OK, {"success": True, "job_title": job.title, "items": [r.to_dict() for r in results]}  # type: ignore[union-attr]

    def _post_interview_questions(self, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        job, job_error = self._job_from_body(body)
        if job_error:
            return job_error
        candidate = body.get("candidate")
        if not isinstance(candidate, dict):
            return HTTPStatus.BAD_REQUEST, self._error("CANDIDATE_REQUIRED", "candidate must be an object")
        try:
            questions = SERVICES["questions"].generate(CandidateProfile.from_dict(candidate), job)
        except UpstreamUnavailableError as exc:
            return HTTPStatus.BAD_GATEWAY, self._error("AI_SERVICE_UNAVAILABLE", str(exc))
        except QuestionGenerationError as exc:
            return HTTPStatus.BAD_GATEWAY, self._error("QUESTION_GENERATION_FAILED", str(exc))
        return HTTPStatus.OK, {"success": True, "questions": questions.to_dict()}

    def _job_from_body(
        self,
        body: Dict[str, Any],
    ) -> Tuple[Optional[JobRequirements], Optional[Tuple[int, Dict[str, Any]]]]:
        job_id = self._safe_int(body.get("job_id"), None)
        if job_id is not None:
            job = SERVICES["db"].get_job(job_id)
            if not job:
                return None, (HTTPStatus.NOT_FOUND, self._error("JOB_NOT_FOUND", f"job {job_id} not found"))
            return JobRequirements.from_dict(job), None
        if isinstance(body.get("job"), dict):
            return JobRequirements.from_dict(body["job"]), None
        return None, (HTTPStatus.BAD_REQUEST, self._error("JOB_REQUIRED", "job or job_id is required"))

    def _authorize_operator(self) -> Tuple[Optional[OperatorPrincipal], Optional[Tuple[int, Dict[str, Any]]]]:
        decision = SERVICES["auth"].authorize_request(authorization_header=str(self.headers.get("Authorization") or ""))
        if decision.allowed:
            return decision.principal, None
        code = str(decision.error or "auth_required").upper()
        return None, (decision.status_code, self._error(code, str(decision.error or "unauthorized")))

    def _authorize_machine(self) -> Optional[Tuple[int, Dict[str, Any]]]:
        verifier: CallbackKeyVerifier = SERVICES["callback_keys"]
        if not verifier.configured:
            return HTTPStatus.SERVICE_UNAVAILABLE, self._error("CALLBACK_KEY_NOT_CONFIGURED", "callback API key is not configured")
        if not verifier.verify(self.headers.get("X-API-Key")):
            structlog.get_logger(__name__).warning("http.callback_key_rejected", path=self.path)
            return HTTPStatus.UNAUTHORIZED, self._error("INVALID_API_KEY", "invalid API key")
        return None

    def _run_idempotent(
        self,
        route: str,
        payload: Dict[str, Any],
        callback: Callable[[], Tuple[int, Dict[str, Any]]],
    ) -> None:
        key = str(self.headers.get("Idempotency-Key") or "").strip()
        if not key:
            status, out = callback()
            self._json_response(status, out)
            return

        payload_hash = self._payload_hash(payload)
        existing = SERVICES["db"].get_idempotency_record(route=route, key=key)
        if existing:
            if str(existing.get("payload_hash")) != payload_hash:
                self._json_response(
                    HTTPStatus.CONFLICT,
                    self._error("IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD", "idempotency key reuse with different payload"),
                )
                return
            self._json_response(int(existing.get("status_code") or HTTPStatus.OK), existing.get("response_json") or {})
            return

        status, out = callback()
        if int(status) < 500:
            SERVICES["db"].put_idempotency_record(
                route=route,
                key=key,
                payload_hash=payload_hash,
                status_code=int(status),
                response=out,
            )
        self._json_response(status, out)

    @staticmethod
    def _result_response(result: OperationResult) -> Tuple[int, Dict[str, Any]]:
        if result.ok:
            return HTTPStatus.OK, {"success": True, "record": result.record, **result.data}
        return result.http_status, {
            "success": False,
            "error": result.message,
            "code": result.code,
            "details": {"outcome": result.outcome},
        }

    @staticmethod
    def _public_response(result: OperationResult) -> Tuple[int, Dict[str, Any]]:
        if result.ok:
            return HTTPStatus.OK, {"success": True, **result.data}
        return result.http_status, {
            "success": False,
            "error": PUBLIC_MESSAGES.get(result.code, result.message),
            "code": result.code,
        }

    def _read_json_body(self) -> Dict[str, Any]:
        length = self.headers.get("Content-Length")
        if not length:
            return {}
        try:
            size = int(length)
        except ValueError:
            return {"_error": "invalid content-length"}
        raw = self.rfile.read(size)
        if not raw:
            return {}
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {"_error": "invalid json body"}
        if not isinstance(payload, dict):
            return {"_error": "payload must be object"}
        return payload

    @staticmethod
    def _pick(body: Dict[str, Any], *keys: str) -> Any:
        for key in keys:
            if body.get(key) is not None:
                return body[key]
        return None

    @staticmethod
    def _safe_int(value: Any, default: Optional[int]) -> Optional[int]:
        try:
            if value is None or isinstance(value, bool):
                return default
            return int(value)
        except (TypeError, ValueError):
            return default

    @staticmethod
    def _payload_hash(payload: Dict[str, Any]) -> str:
        raw = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    @staticmethod
    def _error(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {
            "success": False,
            "error": message,
            "code": code,
            "details": details or {},
        }

    def _json_response(self, status: int, payload: Dict[str, Any]) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(int(status))
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        structlog.get_logger(__name__).debug("http.request", client=self.address_string(), line=format % args)


def run_server() -> None:
    config = SERVICES["config"]
    configure_logging(config.log_level, config.log_format)
    logger = structlog.get_logger(__name__)
    scheduler: InterviewScheduler = SERVICES["scheduler"]
    if config.scheduler_enabled:
        scheduler.start()
    server = ThreadingHTTPServer((config.host, config.port), InterviewRequestHandler)
    logger.info("http.listening", host=config.host, port=config.port, agent=SERVICES["agent_name"])
    try:
        server.serve_forever()
    finally:
        scheduler.stop()
        server.server_close()


if __name__ == "__main__":
    run_server()
