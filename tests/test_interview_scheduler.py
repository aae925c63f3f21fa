from __future__ import annotations

import threading
import time
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any, Dict, List

from smarthire_interview import errors
from smarthire_interview.db import InterviewDatabase, to_utc_iso
from smarthire_interview.meeting_links import DeterministicMeetingLinks
from smarthire_interview.providers import MockInterviewAgentAdapter
from smarthire_interview.scheduler import InterviewScheduler
from smarthire_interview.service import InterviewService
from smarthire_interview.states import FAILED, IN_PROGRESS, SCHEDULED
from smarthire_interview.token_service import SchedulerTokenService

UTC = timezone.utc
CALLBACK_URL = "http://localhost:8090/api/internal/interview-callback"


class SilentNotifier:
    def send_scheduling_invite(self, candidate: Dict[str, Any], link: str) -> None:
        return None

    def send_schedule_confirmation(self, candidate: Dict[str, Any]) -> None:
        return None

    def send_results_notice(self, candidate: Dict[str, Any]) -> None:
        return None


class SlowAgent:
    name = "slow"

    def __init__(self, delay_seconds: float) -> None:
        self.delay_seconds = delay_seconds
        self.calls: List[Dict[str, Any]] = []

    def dispatch_interview(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(payload)
        time.sleep(self.delay_seconds)
        return {"accepted": True}


class InterviewSchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = TemporaryDirectory()
        self.db = InterviewDatabase(db_path=str(Path(self.tmp.name) / "interview.sqlite3"))
        self.db.init_schema()
        self.service = InterviewService(
            db=self.db,
            token_service=SchedulerTokenService(),
            notifier=SilentNotifier(),
            meeting_links=DeterministicMeetingLinks("https://meet.test"),
        )
        self.job_id = self.db.insert_job(org_id="org-1", title="QA Engineer")
        self.slot = datetime(2030, 5, 10, 10, 0, tzinfo=UTC)
        self.schedulers: List[InterviewScheduler] = []

    def tearDown(self) -> None:
        for scheduler in self.schedulers:
            scheduler.stop()
        self.tmp.cleanup()

    def _scheduled_candidate(self, name: str = "Jane Doe", slot: datetime | None = None) -> int:
        candidate_id = self.db.insert_candidate(job_id=self.job_id, candidate_name=name, interview_status=SCHEDULED)
        self.db.conditional_transition(
            candidate_id,
            SCHEDULED,
            SCHEDULED,
            fields={
                "interview_datetime": to_utc_iso(slot or self.slot),
                "meeting_link": f"https://meet.test/ai-interview/{candidate_id}",
            },
        )
        return candidate_id

    def _scheduler(self, agent: Any, **kwargs: Any) -> InterviewScheduler:
        scheduler = InterviewScheduler(
            db=self.db,
            service=self.service,
            agent=agent,
            callback_url=CALLBACK_URL,
            **kwargs,
        )
        self.schedulers.append(scheduler)
        return scheduler

    def test_sweep_claims_and_dispatches_ready_interviews(self) -> None:
        ready_id = self._scheduled_candidate()
        future_id = self._scheduled_candidate("John Roe", slot=self.slot + timedelta(hours=2))
        agent = MockInterviewAgentAdapter()

        summary = self._scheduler(agent).run_once(now=self.slot + timedelta(minutes=1))

        self.assertEqual(summary["claimed"], 1)
        self.assertEqual(summary["dispatched"], 1)
        self.assertEqual(len(agent.dispatched), 1)
        self.assertEqual(agent.dispatched[0]["candidate_id"], ready_id)
        self.assertEqual(agent.dispatched[0]["meeting_link"], f"https://meet.test/ai-interview/{ready_id}")
        self.assertEqual(agent.dispatched[0]["callback_url"], CALLBACK_URL)

        ready = self.db.get_record(ready_id)
        waiting = self.db.get_record(future_id)
        assert ready is not None and waiting is not None
        self.assertEqual(ready["interview_status"], IN_PROGRESS)
        self.assertIsNotNone(ready["claimed_at"])
        self.assertEqual(waiting["interview_status"], SCHEDULED)

    def test_concurrent_schedulers_dispatch_exactly_once(self) -> None:
        candidate_id = self._scheduled_candidate()
        agent = MockInterviewAgentAdapter()
        schedulers = [self._scheduler(agent) for _ in range(4)]
        barrier = threading.Barrier(len(schedulers))
        now = self.slot + timedelta(minutes=1)

        def sweep(scheduler: InterviewScheduler) -> None:
            barrier.wait()
            scheduler.run_once(now=now)

        threads = [threading.Thread(target=sweep, args=(s,)) for s in schedulers]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        self.assertEqual([d["candidate_id"] for d in agent.dispatched], [candidate_id])
        events = [e["event_type"] for e in self.db.list_events(candidate_id)]
        self.assertEqual(events.count("claimed"), 1)

    def test_overlapping_sweep_is_skipped(self) -> None:
        scheduler = self._scheduler(MockInterviewAgentAdapter())
        scheduler._sweep_lock.acquire()
        try:
            self.assertEqual(scheduler.run_once(), {"skipped": True})
        finally:
            scheduler._sweep_lock.release()
        self.assertFalse(scheduler.run_once(now=self.slot)["skipped"])

    def test_dispatch_failure_keeps_claim_and_continues(self) -> None:
        failing_id = self._scheduled_candidate("Fail Case")
        ok_id = self._scheduled_candidate("Good Case")
        agent = MockInterviewAgentAdapter(fail_candidate_ids=[failing_id])

        summary = self._scheduler(agent).run_once(now=self.slot)

        self.assertEqual(summary["claimed"], 2)
        self.assertEqual(summary["dispatch_failures"], 1)
        self.assertEqual(summary["dispatched"], 1)
        failing = self.db.get_record(failing_id)
        assert failing is not None
        self.assertEqual(failing["interview_status"], IN_PROGRESS)
        self.assertEqual(failing["last_error_code"], errors.AGENT_DISPATCH_FAILED)
        self.assertEqual([d["candidate_id"] for d in agent.dispatched], [ok_id])

    def test_dispatch_timeout_is_recorded(self) -> None:
        candidate_id = self._scheduled_candidate()
        agent = SlowAgent(delay_seconds=2.0)

        started = time.monotonic()
        summary = self._scheduler(agent, dispatch_timeout_seconds=1).run_once(now=self.slot)
        elapsed = time.monotonic() - started

        self.assertLess(elapsed, 1.9)
        self.assertEqual(summary["dispatch_failures"], 1)
        record = self.db.get_record(candidate_id)
        assert record is not None
        self.assertEqual(record["interview_status"], IN_PROGRESS)
        self.assertEqual(record["last_error_code"], errors.AGENT_DISPATCH_TIMEOUT)

    def test_queued_dispatch_is_withdrawn_after_timeout(self) -> None:
        first_id = self._scheduled_candidate("First Slot")
        second_id = self._scheduled_candidate("Second Slot")
        agent = SlowAgent(delay_seconds=2.5)

        summary = self._scheduler(agent, dispatch_timeout_seconds=1, max_workers=1).run_once(now=self.slot)
        self.assertEqual(summary["dispatch_failures"], 2)

        # Let the first, already running dispatch finish and the worker go idle.
        time.sleep(2.5)
        self.assertEqual([c["candidate_id"] for c in agent.calls], [first_id])
        second = self.db.get_record(second_id)
        assert second is not None
        self.assertEqual(second["interview_status"], IN_PROGRESS)
        self.assertEqual(second["last_error_code"], errors.AGENT_DISPATCH_TIMEOUT)
        self.assertIn("withdrawn", second["last_error_message"])

    def test_stuck_interviews_are_failed_after_max_duration(self) -> None:
        candidate_id = self._scheduled_candidate()
        scheduler = self._scheduler(MockInterviewAgentAdapter(), max_interview_minutes=60)
        scheduler.run_once(now=self.slot)

        early = scheduler.run_once(now=self.slot + timedelta(minutes=30))
        self.assertEqual(early["timed_out"], 0)

        late = scheduler.run_once(now=self.slot + timedelta(minutes=61))
        self.assertEqual(late["timed_out"], 1)
        record = self.db.get_record(candidate_id)
        assert record is not None
        self.assertEqual(record["interview_status"], FAILED)
        self.assertEqual(record["last_error_code"], errors.INTERVIEW_TIMED_OUT)

    def test_start_and_stop_background_loop(self) -> None:
        candidate_id = self._scheduled_candidate(slot=datetime.now(UTC) - timedelta(minutes=1))
        agent = MockInterviewAgentAdapter()
        scheduler = self._scheduler(agent, interval_seconds=1)

        scheduler.start()
        deadline = time.monotonic() + 5
        while not agent.dispatched and time.monotonic() < deadline:
            time.sleep(0.05)
        scheduler.stop()

        self.assertFalse(scheduler.running)
        self.assertEqual([d["candidate_id"] for d in agent.dispatched], [candidate_id])


if __name__ == "__main__":
    unittest.main()
