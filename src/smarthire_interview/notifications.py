from __future__ import annotations

from typing import Any, Dict, Protocol

import structlog

from .db import InterviewDatabase


class NotificationSender(Protocol):
    def send_scheduling_invite(self, candidate: Dict[str, Any], link: str) -> None:
        ...

    def send_schedule_confirmation(self, candidate: Dict[str, Any]) -> None:
        ...

    def send_results_notice(self, candidate: Dict[str, Any]) -> None:
        ...


class OutboxNotificationSender:
    """Writes outgoing messages to the notifications table.

    Delivery (SMTP, a transactional mail API) is expected to drain the table;
    this class only renders and records the messages.
    """

    def __init__(self, db: InterviewDatabase, hr_recipient: str = "hr") -> None:
        self.db = db
        self.hr_recipient = hr_recipient
        self._logger = structlog.get_logger(__name__)

    def send_scheduling_invite(self, candidate: Dict[str, Any], link: str) -> None:
        name = str(candidate.get("candidate_name") or "Candidate")
        job_title = str(candidate.get("job_title") or "the position you applied for")
        body = (
            f"Dear {name},\n\n"
            f"You have been selected for an AI-powered interview for {job_title}.\n\n"
            f"Please use the link below to schedule your interview:\n{link}\n\n"
            "Best regards,\nSmartHire Team"
        )
        self._record(candidate, kind="scheduling_invite", recipient=self._candidate_email(candidate),
                     subject=f"Interview Scheduling for {name}", body=body)

    def send_schedule_confirmation(self, candidate: Dict[str, Any]) -> None:
        name = str(candidate.get("candidate_name") or "Candidate")
        body = (
            f"Dear {name},\n\n"
            f"Your AI interview is scheduled for {candidate.get('interview_datetime')} (UTC).\n"
            f"Join here: {candidate.get('meeting_link')}\n\n"
            "Best regards,\nSmartHire Team"
        )
        self._record(candidate, kind="schedule_confirmation", recipient=self._candidate_email(candidate),
                     subject=f"Interview Confirmed for {name}", body=body)

    def send_results_notice(self, candidate: Dict[str, Any]) -> None:
        name = str(candidate.get("candidate_name") or "Candidate")
        links = (
            f"Interview Transcript: {candidate.get('transcript_url')}\n"
            f"AI Analysis Report: {candidate.get('report_url')}\n"
        )
        self._record(
            candidate,
            kind="results_notice",
            recipient=self._candidate_email(candidate),
            subject=f"Interview Results for {name}",
            body=f"Dear {name},\n\nYour AI-powered interview has been completed.\n\n{links}\nBest regards,\nSmartHire Team",
        )
        self._record(
            candidate,
            kind="results_notice_hr",
            recipient=self.hr_recipient,
            subject=f"AI Interview Results Ready for {name}",
            body=f"The AI interview for candidate {name} has been completed.\n\n{links}",
        )

    def _record(self, candidate: Dict[str, Any], *, kind: str, recipient: str, subject: str, body: str) -> None:
        notification_id = self.db.insert_notification(
            candidate_id=int(candidate["id"]),
            kind=kind,
            recipient=recipient,
            subject=subject,
            body=body,
        )
        self._logger.info(
            "notification.queued",
            notification_id=notification_id,
            candidate_id=candidate.get("id"),
            kind=kind,
            recipient=recipient,
        )

    @staticmethod
    def _candidate_email(candidate: Dict[str, Any]) -> str:
        return str(candidate.get("email") or "").strip() or f"candidate-{candidate.get('id')}@unknown.local"
