from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from . import errors
from .db import InterviewDatabase
from .providers.base import InterviewAgentAdapter
from .service import InterviewService, stuck_cutoff

UTC = timezone.utc


class InterviewScheduler:
    """Periodically starts interviews whose slot has arrived.

    Each sweep claims ready records one by one with a compare-and-set write and
    dispatches only the ones it claimed, so two schedulers sharing a database
    never start the same interview twice. A second sweep that overlaps a
    running one in the same process returns ``{"skipped": True}``.
    """

    def __init__(
        self,
        db: InterviewDatabase,
        service: InterviewService,
        agent: InterviewAgentAdapter,
        *,
        callback_url: str,
        interval_seconds: int = 60,
        dispatch_timeout_seconds: int = 30,
        max_interview_minutes: int = 180,
        batch_limit: int = 100,
        max_workers: int = 4,
    ) -> None:
        self.db = db
        self.service = service
        self.agent = agent
        self.callback_url = callback_url
        self.interval_seconds = max(1, int(interval_seconds))
        self.dispatch_timeout_seconds = max(1, int(dispatch_timeout_seconds))
        self.max_interview_minutes = max(1, int(max_interview_minutes))
        self.batch_limit = max(1, int(batch_limit))
        self.max_workers = max(1, int(max_workers))
        self._sweep_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._logger = structlog.get_logger(__name__)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="interview-scheduler")
        self._thread.start()
        self._logger.info("scheduler.started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        self._logger.info("scheduler.stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception as exc:
                self._logger.exception("scheduler.sweep_failed", error=str(exc))
            self._stop.wait(self.interval_seconds)

    def run_once(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        if not self._sweep_lock.acquire(blocking=False):
            self._logger.info("scheduler.sweep_skipped")
            return {"skipped": True}
        try:
            return self._sweep(now or datetime.now(UTC))
        finally:
            self._sweep_lock.release()

    def _sweep(self, now: datetime) -> Dict[str, Any]:
        summary = {
            "skipped": False,
            "ready": 0,
            "claimed": 0,
            "dispatched": 0,
            "claim_conflicts": 0,
            "dispatch_failures": 0,
            "timed_out": 0,
            "errors": 0,
        }

        ready = self.db.list_ready(now, limit=self.batch_limit)
        summary["ready"] = len(ready)
        for record in ready:
            candidate_id = int(record["id"])
            try:
                claim = self.service.claim_interview(candidate_id, now=now)
                if not claim.ok:
                    summary["claim_conflicts"] += 1
                    self._logger.info("scheduler.claim_conflict", candidate_id=candidate_id, code=claim.code)
                    continue
                summary["claimed"] += 1
                if self._dispatch(claim.record or record):
                    summary["dispatched"] += 1
                else:
                    summary["dispatch_failures"] += 1
            except Exception as exc:
                summary["errors"] += 1
                self._logger.exception("scheduler.candidate_failed", candidate_id=candidate_id, error=str(exc))

        for record in self.db.list_stuck(stuck_cutoff(now, self.max_interview_minutes), limit=self.batch_limit):
            candidate_id = int(record["id"])
            try:
                if self.service.fail_stuck_interview(candidate_id, now=now).ok:
                    summary["timed_out"] += 1
            except Exception as exc:
                summary["errors"] += 1
                self._logger.exception("scheduler.reconcile_failed", candidate_id=candidate_id, error=str(exc))

        if summary["ready"] or summary["timed_out"] or summary["errors"]:
            self._logger.info("scheduler.sweep_finished", **summary)
        return summary

    def _dispatch(self, record: Dict[str, Any]) -> bool:
        candidate_id = int(record["id"])
        payload = {
            "candidate_id": candidate_id,
            "meeting_link": record.get("meeting_link"),
            "callback_url": self.callback_url,
        }
        future = self._pool().submit(self.agent.dispatch_interview, payload)
        try:
            response = future.result(timeout=self.dispatch_timeout_seconds)
        except FutureTimeoutError:
            # A dispatch still queued behind a slow one must never reach the agent.
            cancelled = future.cancel()
            self._logger.warning(
                "scheduler.dispatch_timeout",
                candidate_id=candidate_id,
                timeout_seconds=self.dispatch_timeout_seconds,
                cancelled=cancelled,
            )
            self.service.record_dispatch_failure(
                candidate_id,
                errors.AGENT_DISPATCH_TIMEOUT,
                (
                    f"Dispatch was not started within {self.dispatch_timeout_seconds}s and was withdrawn"
                    if cancelled
                    else f"Interview agent did not answer within {self.dispatch_timeout_seconds}s"
                ),
            )
            return False
        except Exception as exc:
            self._logger.warning("scheduler.dispatch_failed", candidate_id=candidate_id, error=str(exc))
            self.service.record_dispatch_failure(candidate_id, errors.AGENT_DISPATCH_FAILED, str(exc))
            return False

        self.service.record_dispatch(candidate_id, response or {})
        self._logger.info("scheduler.dispatched", candidate_id=candidate_id, agent_job_id=(response or {}).get("agent_job_id"))
        return True

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="interview-dispatch")
        return self._executor
