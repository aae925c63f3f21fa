from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple, Union

import structlog

from . import errors
from .auth import OperatorPrincipal
from .db import InterviewDatabase, parse_iso, to_utc_iso
from .errors import OperationResult
from .meeting_links import MeetingLinkProvisioner
from .notifications import NotificationSender
from .states import (
    CANCELLED,
    COMPLETED,
    IN_PROGRESS,
    INTERVIEW_REQUESTED,
    RESUME_REVIEWED,
    SCHEDULED,
    can_apply,
    target_status,
)
from .token_service import SchedulerTokenService

UTC = timezone.utc

# Columns never returned outside the service.
PRIVATE_FIELDS = ("scheduler_token_hash",)


class InterviewService:
    """Interview lifecycle operations.

    Every status change is a single compare-and-set write through
    ``InterviewDatabase.conditional_transition``; a lost race is reported as
    a conflict rather than retried. Notification failures are logged and
    never change the outcome of the operation that triggered them.
    """

    def __init__(
        self,
        db: InterviewDatabase,
        token_service: SchedulerTokenService,
        notifier: NotificationSender,
        meeting_links: MeetingLinkProvisioner,
        public_base_url: str = "",
        allow_resend: bool = True,
        max_token_attempts: int = 3,
    ) -> None:
        self.db = db
        self.token_service = token_service
        self.notifier = notifier
        self.meeting_links = meeting_links
        self.public_base_url = public_base_url.rstrip("/")
        self.allow_resend = bool(allow_resend)
        self.max_token_attempts = max(1, int(max_token_attempts))
        self._logger = structlog.get_logger(__name__)

    # operator actions

    def mark_resume_reviewed(self, candidate_id: int, principal: Optional[OperatorPrincipal]) -> OperationResult:
        record, failure = self._load_for_operator(candidate_id, principal)
        if failure:
            return failure
        if not can_apply("review_resume", record["interview_status"]):
            return self._invalid_transition(record, "review_resume")

        ok = self.db.conditional_transition(candidate_id, record["interview_status"], RESUME_REVIEWED)
        if not ok:
            return self._lost_race(candidate_id, "review_resume")
        self.db.insert_event(candidate_id, "resume_reviewed", "operator", {"user_id": principal.user_id})  # type: ignore[union-attr]
        return OperationResult.success(record=self._view(self.db.get_record(candidate_id)))

    def trigger_interview(
        self,
        candidate_id: int,
        principal: Optional[OperatorPrincipal],
        now: Optional[datetime] = None,
    ) -> OperationResult:
        record, failure = self._load_for_operator(candidate_id, principal)
        if failure:
            return failure

        current = record["interview_status"]
        if current == RESUME_REVIEWED:
            event = "trigger"
        elif current == INTERVIEW_REQUESTED and self.allow_resend:
            event = "resend"
        else:
            return self._invalid_transition(record, "trigger")
        new_status = target_status(event, current)

        ref_now = self._now(now)
        # A re-send must replace exactly the token that was read; a concurrent re-send loses.
        require = {"scheduler_token_hash": record.get("scheduler_token_hash")} if event == "resend" else None
        issued = None
        for attempt in range(1, self.max_token_attempts + 1):
            issued = self.token_service.issue(now=ref_now)
            try:
                ok = self.db.conditional_transition(
                    candidate_id,
                    current,
                    new_status,
                    fields={
                        "scheduler_token_hash": issued.token_hash,
                        "scheduler_token_expires_at": to_utc_iso(issued.expires_at),
                        "last_error_code": None,
                        "last_error_message": None,
                    },
                    require=require,
                )
            except sqlite3.IntegrityError:
                self._logger.warning("interview.token_collision", candidate_id=candidate_id, attempt=attempt)
                continue
            break
        else:
            return OperationResult.failure(
                errors.CONFLICT,
                errors.TOKEN_COLLISION,
                "Could not issue a unique scheduling token",
            )

        if not ok:
            return self._lost_race(candidate_id, event)

        link = self.scheduling_link(issued.token)
        updated = self.db.get_record(candidate_id) or record
        self.db.insert_event(
            candidate_id,
            "interview_requested",
            "operator",
            {"user_id": principal.user_id, "resend": event == "resend"},  # type: ignore[union-attr]
        )
        self._logger.info("interview.triggered", candidate_id=candidate_id, resend=event == "resend")
        self._notify("send_scheduling_invite", updated, link)
        return OperationResult.success(
            record=self._view(updated),
            scheduling_link=link,
            token_expires_at=to_utc_iso(issued.expires_at),
        )

    def cancel_interview(
        self,
        candidate_id: int,
        principal: Optional[OperatorPrincipal],
        reason: str = "",
    ) -> OperationResult:
        record, failure = self._load_for_operator(candidate_id, principal)
        if failure:
            return failure
        current = record["interview_status"]
        if not can_apply("cancel", current):
            return self._invalid_transition(record, "cancel")

        ok = self.db.conditional_transition(
            candidate_id,
            current,
            CANCELLED,
            fields={"scheduler_token_hash": None, "scheduler_token_expires_at": None},
        )
        if not ok:
            return self._lost_race(candidate_id, "cancel")
        self.db.insert_event(
            candidate_id,
            "cancelled",
            "operator",
            {"user_id": principal.user_id, "previous_status": current, "reason": reason},  # type: ignore[union-attr]
        )
        self._logger.info("interview.cancelled", candidate_id=candidate_id, previous_status=current)
        return OperationResult.success(record=self._view(self.db.get_record(candidate_id)))

    def get_interview_view(self, candidate_id: int, principal: Optional[OperatorPrincipal]) -> OperationResult:
        record, failure = self._load_for_operator(candidate_id, principal)
        if failure:
            return failure
        return OperationResult.success(record=self._view(record), events=self.db.list_events(candidate_id))

    # public scheduling

    def scheduling_link(self, token: str) -> str:
        return f"{self.public_base_url}/interview/schedule?token={token}"

    def get_scheduling_details(self, token: str, now: Optional[datetime] = None) -> OperationResult:
        record, failure = self._resolve_token(token, self._now(now))
        if failure:
            return failure
        return OperationResult.success(
            candidate_name=record.get("candidate_name"),
            job_title=record.get("job_title"),
            token_expires_at=record.get("scheduler_token_expires_at"),
        )

    def schedule_interview(
        self,
        token: str,
        requested_datetime: Union[str, datetime, None],
        now: Optional[datetime] = None,
    ) -> OperationResult:
        ref_now = self._now(now)
        record, failure = self._resolve_token(token, ref_now)
        if failure:
            return failure

        slot = self._parse_slot(requested_datetime)
        if slot is None:
            return OperationResult.failure(
                errors.VALIDATION,
                errors.INTERVIEW_DATETIME_INVALID,
                "Interview date and time could not be understood",
            )
        if slot <= ref_now:
            return OperationResult.failure(
                errors.VALIDATION,
                errors.INTERVIEW_DATETIME_INVALID,
                "Interview must be scheduled in the future",
            )

        candidate_id = int(record["id"])
        meeting_link = self.meeting_links.provision(record, slot)
        slot_iso = to_utc_iso(slot)
        ok = self.db.conditional_transition(
            candidate_id,
            INTERVIEW_REQUESTED,
            target_status("schedule", record["interview_status"]),
            fields={
                "interview_datetime": slot_iso,
                "meeting_link": meeting_link,
                "scheduler_token_hash": None,
                "scheduler_token_expires_at": None,
            },
            require={"scheduler_token_hash": record["scheduler_token_hash"]},
        )
        if not ok:
            # Consumed by a concurrent submission of the same link.
            self._logger.info("interview.schedule_conflict", candidate_id=candidate_id)
            return self._invalid_link()

        updated = self.db.get_record(candidate_id) or record
        self.db.insert_event(candidate_id, "scheduled", "candidate", {"interview_datetime": slot_iso})
        self._logger.info("interview.scheduled", candidate_id=candidate_id, interview_datetime=slot_iso)
        self._notify("send_schedule_confirmation", updated)
        return OperationResult.success(
            record=self._view(updated),
            meeting_link=meeting_link,
            interview_datetime=slot_iso,
        )

    # scheduler

    def claim_interview(self, candidate_id: int, now: Optional[datetime] = None) -> OperationResult:
        ok = self.db.conditional_transition(
            candidate_id,
            SCHEDULED,
            IN_PROGRESS,
            fields={
                "claimed_at": to_utc_iso(self._now(now)),
                "last_error_code": None,
                "last_error_message": None,
            },
        )
        if not ok:
            return OperationResult.failure(
                errors.CONFLICT,
                errors.ALREADY_CLAIMED,
                "Interview is no longer waiting to start",
            )
        record = self.db.get_record(candidate_id)
        self.db.insert_event(candidate_id, "claimed", "scheduler")
        return OperationResult.success(record=self._view(record))

    def record_dispatch(self, candidate_id: int, response: Dict[str, Any]) -> None:
        self.db.insert_event(candidate_id, "dispatched", "scheduler", {"agent_job_id": response.get("agent_job_id")})

    def record_dispatch_failure(self, candidate_id: int, code: str, message: str) -> bool:
        ok = self.db.conditional_transition(
            candidate_id,
            IN_PROGRESS,
            IN_PROGRESS,
            fields={"last_error_code": code, "last_error_message": message[:500]},
        )
        self.db.insert_event(candidate_id, "dispatch_failed", "scheduler", {"code": code, "message": message[:500]})
        return ok

    def fail_stuck_interview(self, candidate_id: int, now: Optional[datetime] = None) -> OperationResult:
        record = self.db.get_record(candidate_id)
        if not record:
            return self._not_found(candidate_id)
        if not can_apply("time_out", record["interview_status"]):
            return self._invalid_transition(record, "time_out")
        ok = self.db.conditional_transition(
            candidate_id,
            IN_PROGRESS,
            target_status("time_out", record["interview_status"]),
            fields={
                "last_error_code": errors.INTERVIEW_TIMED_OUT,
                "last_error_message": f"No results received since {record.get('claimed_at')}",
            },
            require={"claimed_at": record.get("claimed_at")},
        )
        if not ok:
            return self._lost_race(candidate_id, "time_out")
        self.db.insert_event(
            candidate_id,
            "timed_out",
            "scheduler",
            {"claimed_at": record.get("claimed_at"), "at": to_utc_iso(self._now(now))},
        )
        self._logger.warning("interview.timed_out", candidate_id=candidate_id, claimed_at=record.get("claimed_at"))
        return OperationResult.success(record=self._view(self.db.get_record(candidate_id)))

    # agent callback

    def record_interview_results(
        self,
        candidate_id: int,
        transcript_url: Optional[str],
        report_url: Optional[str],
        now: Optional[datetime] = None,
    ) -> OperationResult:
        transcript = str(transcript_url or "").strip()
        report = str(report_url or "").strip()
        record = self.db.get_record(candidate_id)
        if not record:
            return self._not_found(candidate_id)

        current = record["interview_status"]
        if current == COMPLETED:
            same_transcript = not transcript or transcript == record.get("transcript_url")
            same_report = not report or report == record.get("report_url")
            if same_transcript and same_report:
                self._logger.info("interview.callback_replayed", candidate_id=candidate_id)
                return OperationResult.success(record=self._view(record), updated=False)
            return OperationResult.failure(
                errors.CONFLICT,
                errors.RESULTS_CONFLICT,
                "Interview already completed with different results",
                record=self._view(record),
            )
        if current != IN_PROGRESS:
            return self._invalid_transition(record, "complete")
        if not transcript or not report:
            return OperationResult.failure(
                errors.VALIDATION,
                errors.CALLBACK_PAYLOAD_INVALID,
                "transcript_url and report_url are required",
            )

        ok = self.db.conditional_transition(
            candidate_id,
            IN_PROGRESS,
            target_status("complete", current),
            fields={
                "transcript_url": transcript,
                "report_url": report,
                "completed_at": to_utc_iso(self._now(now)),
                "last_error_code": None,
                "last_error_message": None,
            },
        )
        if not ok:
            # A concurrent identical callback may have won; re-evaluate against the stored row.
            return self.record_interview_results(candidate_id, transcript, report, now=now)

        updated = self.db.get_record(candidate_id) or record
        self.db.insert_event(candidate_id, "completed", "agent", {"transcript_url": transcript, "report_url": report})
        self._logger.info("interview.completed", candidate_id=candidate_id)
        self._notify("send_results_notice", updated)
        return OperationResult.success(record=self._view(updated), updated=True)

    # helpers

    def _load_for_operator(
        self,
        candidate_id: int,
        principal: Optional[OperatorPrincipal],
    ) -> Tuple[Dict[str, Any], Optional[OperationResult]]:
        if principal is None:
            return {}, OperationResult.failure(errors.UNAUTHORIZED, errors.AUTH_REQUIRED, "Authentication required")
        record = self.db.get_record(candidate_id)
        if not record:
            return {}, self._not_found(candidate_id)
        if not principal.can_manage_org(record.get("org_id")):
            self._logger.warning(
                "interview.operator_forbidden",
                candidate_id=candidate_id,
                user_id=principal.user_id,
                role=principal.role,
            )
            return record, OperationResult.failure(
                errors.FORBIDDEN,
                errors.ROLE_FORBIDDEN,
                "Operator may not manage candidates of this organization",
            )
        return record, None

    def _resolve_token(self, token: str, now: datetime) -> Tuple[Dict[str, Any], Optional[OperationResult]]:
        text = str(token or "").strip()
        if not text:
            return {}, self._invalid_link()
        record = self.db.get_record_by_token_hash(self.token_service.token_hash(text))
        if not record:
            return {}, self._invalid_link()
        if self.token_service.is_expired(parse_iso(record.get("scheduler_token_expires_at")), now):
            return record, OperationResult.failure(
                errors.NOT_FOUND,
                errors.SCHEDULING_LINK_EXPIRED,
                "This scheduling link has expired",
            )
        if record.get("interview_status") != INTERVIEW_REQUESTED:
            return record, self._invalid_transition(record, "schedule")
        return record, None

    @staticmethod
    def _parse_slot(value: Union[str, datetime, None]) -> Optional[datetime]:
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=UTC)
        return parse_iso(value) if isinstance(value, str) else None

    def _notify(self, method: str, *args: Any) -> None:
        sender: Callable[..., None] = getattr(self.notifier, method)
        try:
            sender(*args)
        except Exception as exc:
            candidate = args[0] if args else {}
            self._logger.error(
                "notification.failed",
                kind=method,
                candidate_id=candidate.get("id") if isinstance(candidate, dict) else None,
                error=str(exc),
            )

    def _lost_race(self, candidate_id: int, event: str) -> OperationResult:
        current = self.db.get_record(candidate_id)
        self._logger.info(
            "interview.transition_conflict",
            candidate_id=candidate_id,
            event=event,
            status=(current or {}).get("interview_status"),
        )
        return OperationResult.failure(
            errors.CONFLICT,
            errors.INVALID_STATUS_TRANSITION,
            f"Interview changed concurrently; '{event}' was not applied",
            record=self._view(current),
        )

    def _invalid_transition(self, record: Dict[str, Any], event: str) -> OperationResult:
        return OperationResult.failure(
            errors.CONFLICT,
            errors.INVALID_STATUS_TRANSITION,
            f"Cannot {event.replace('_', ' ')} an interview in status '{record.get('interview_status')}'",
            record=self._view(record),
        )

    @staticmethod
    def _invalid_link() -> OperationResult:
        return OperationResult.failure(
            errors.NOT_FOUND,
            errors.SCHEDULING_LINK_INVALID,
            "This scheduling link is invalid or has already been used",
        )

    @staticmethod
    def _not_found(candidate_id: int) -> OperationResult:
        return OperationResult.failure(errors.NOT_FOUND, errors.CANDIDATE_NOT_FOUND, f"Candidate {candidate_id} not found")

    @staticmethod
    def _view(record: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if record is None:
            return None
        return {k: v for k, v in record.items() if k not in PRIVATE_FIELDS}

    @staticmethod
    def _now(now: Optional[datetime]) -> datetime:
        if now is None:
            return datetime.now(UTC)
        return now if now.tzinfo else now.replace(tzinfo=UTC)


def stuck_cutoff(now: datetime, max_interview_minutes: int) -> datetime:
    return now - timedelta(minutes=max(1, int(max_interview_minutes)))
