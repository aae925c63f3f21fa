from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .states import APPLIED, IN_PROGRESS, SCHEDULED

UTC = timezone.utc

# Columns a state transition is allowed to write besides interview_status.
TRANSITION_FIELDS = frozenset(
    {
        "interview_datetime",
        "meeting_link",
        "scheduler_token_hash",
        "scheduler_token_expires_at",
        "transcript_url",
        "report_url",
        "claimed_at",
        "completed_at",
        "last_error_code",
        "last_error_message",
    }
)

_JSON_FIELDS = ("payload", "response_json", "required_skills")


def utc_now_iso() -> str:
    return to_utc_iso(datetime.now(UTC))


def to_utc_iso(value: datetime) -> str:
    """Serialize a datetime as second-precision UTC ISO-8601.

    Every timestamp column uses this exact shape so that string comparison in
    SQL orders the same way as the datetimes do.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).replace(microsecond=0).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


class InterviewDatabase:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def init_schema(self) -> None:
        schema = """
        CREATE TABLE IF NOT EXISTS jobs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            org_id TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            required_skills TEXT NOT NULL DEFAULT '[]',
            experience_required TEXT,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS candidates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_id INTEGER NOT NULL REFERENCES jobs(id),
            candidate_name TEXT NOT NULL,
            email TEXT,
            interview_status TEXT NOT NULL DEFAULT 'applied',
            interview_datetime TEXT,
            meeting_link TEXT,
            scheduler_token_hash TEXT UNIQUE,
            scheduler_token_expires_at TEXT,
            transcript_url TEXT,
            report_url TEXT,
            claimed_at TEXT,
            completed_at TEXT,
            last_error_code TEXT,
            last_error_message TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_candidates_status_datetime
            ON candidates(interview_status, interview_datetime);
        CREATE INDEX IF NOT EXISTS idx_candidates_job
            ON candidates(job_id);

        CREATE TABLE IF NOT EXISTS interview_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            candidate_id INTEGER NOT NULL,
            event_type TEXT NOT NULL,
            source TEXT NOT NULL,
            payload TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_interview_events_candidate
            ON interview_events(candidate_id);

        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            candidate_id INTEGER NOT NULL,
            kind TEXT NOT NULL,
            recipient TEXT NOT NULL,
            subject TEXT NOT NULL,
            body TEXT NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS idempotency_keys (
            route TEXT NOT NULL,
            idempotency_key TEXT NOT NULL,
            payload_hash TEXT NOT NULL,
            status_code INTEGER NOT NULL,
            response_json TEXT NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY(route, idempotency_key)
        );
        """
        with self.transaction() as conn:
            conn.executescript(schema)

    def insert_job(
        self,
        *,
        org_id: str,
        title: str,
        description: str = "",
        required_skills: Optional[Sequence[str]] = None,
        experience_required: Optional[str] = None,
    ) -> int:
        with self.transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO jobs (org_id, title, description, required_skills, experience_required, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    str(org_id),
                    title,
                    description or "",
                    json.dumps(list(required_skills or [])),
                    experience_required,
                    utc_now_iso(),
                ),
            )
            return int(cur.lastrowid)

    def get_job(self, job_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_dict(row) if row else None

    def insert_candidate(
        self,
        *,
        job_id: int,
        candidate_name: str,
        email: Optional[str] = None,
        interview_status: str = APPLIED,
    ) -> int:
        now_iso = utc_now_iso()
        with self.transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO candidates (job_id, candidate_name, email, interview_status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (job_id, candidate_name, email, interview_status, now_iso, now_iso),
            )
            return int(cur.lastrowid)

    def get_record(self, candidate_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                f"{self._record_select()} WHERE c.id = ?",
                (candidate_id,),
            ).fetchone()
        return self._row_to_dict(row) if row else None

    def get_record_by_token_hash(self, token_hash: str) -> Optional[Dict[str, Any]]:
        if not token_hash:
            return None
        with self._lock:
            row = self._conn.execute(
                f"{self._record_select()} WHERE c.scheduler_token_hash = ?",
                (token_hash,),
            ).fetchone()
        return self._row_to_dict(row) if row else None

    def list_ready(self, now: datetime, limit: int = 100) -> List[Dict[str, Any]]:
        """Scheduled interviews whose start time is at or before ``now``."""
        safe_limit = max(1, min(limit, 1000))
        with self._lock:
            rows = self._conn.execute(
                f"""
                {self._record_select()}
                WHERE c.interview_status = ?
                  AND c.interview_datetime IS NOT NULL
                  AND c.interview_datetime <= ?
                ORDER BY c.interview_datetime ASC, c.id ASC
                LIMIT ?
                """,
                (SCHEDULED, to_utc_iso(now), safe_limit),
            ).fetchall()
        return [self._row_to_dict(row) for row in rows]

    def list_stuck(self, claimed_before: datetime, limit: int = 100) -> List[Dict[str, Any]]:
        """In-progress interviews claimed at or before ``claimed_before``."""
        safe_limit = max(1, min(limit, 1000))
        with self._lock:
            rows = self._conn.execute(
                f"""
                {self._record_select()}
                WHERE c.interview_status = ?
                  AND c.claimed_at IS NOT NULL
                  AND c.claimed_at <= ?
                ORDER BY c.claimed_at ASC, c.id ASC
                LIMIT ?
                """,
                (IN_PROGRESS, to_utc_iso(claimed_before), safe_limit),
            ).fetchall()
        return [self._row_to_dict(row) for row in rows]

    def conditional_transition(
        self,
        candidate_id: int,
        expected_status: str,
        new_status: str,
        fields: Optional[Dict[str, Any]] = None,
        require: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Compare-and-set the interview status of one candidate.

        The row is only written when its current status equals
        ``expected_status`` and every column in ``require`` holds the given
        value (``None`` meaning SQL NULL). Returns False on a mismatch; the
        caller decides whether that is a conflict or an idempotent replay.
        """
        updates = dict(fields or {})
        unknown = [key for key in list(updates) + list(require or {}) if key not in TRANSITION_FIELDS]
        if unknown:
            raise ValueError(f"unsupported transition fields: {', '.join(sorted(unknown))}")

        updates["interview_status"] = new_status
        updates["updated_at"] = utc_now_iso()
        keys = sorted(updates.keys())
        set_sql = ", ".join([f"{k} = ?" for k in keys])
        values: List[Any] = [updates[k] for k in keys]

        where_sql = "id = ? AND interview_status = ?"
        where_values: List[Any] = [candidate_id, expected_status]
        for key in sorted((require or {}).keys()):
            value = (require or {})[key]
            if value is None:
                where_sql += f" AND {key} IS NULL"
            else:
                where_sql += f" AND {key} = ?"
                where_values.append(value)

        with self.transaction() as conn:
            cur = conn.execute(
                f"UPDATE candidates SET {set_sql} WHERE {where_sql}",
                (*values, *where_values),
            )
            return cur.rowcount == 1

    def insert_event(
        self,
        candidate_id: int,
        event_type: str,
        source: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> int:
        with self.transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO interview_events (candidate_id, event_type, source, payload, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (candidate_id, event_type, source, json.dumps(payload or {}), utc_now_iso()),
            )
            return int(cur.lastrowid)

    def list_events(self, candidate_id: int) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM interview_events WHERE candidate_id = ? ORDER BY id ASC",
                (candidate_id,),
            ).fetchall()
        return [self._row_to_dict(row) for row in rows]

    def insert_notification(
        self,
        *,
        candidate_id: int,
        kind: str,
        recipient: str,
        subject: str,
        body: str,
    ) -> int:
        with self.transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO notifications (candidate_id, kind, recipient, subject, body, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (candidate_id, kind, recipient, subject, body, utc_now_iso()),
            )
            return int(cur.lastrowid)

    def list_notifications(self, candidate_id: Optional[int] = None, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        params: List[Any] = []
        where: List[str] = []
        if candidate_id is not None:
            where.append("candidate_id = ?")
            params.append(candidate_id)
        if kind:
            where.append("kind = ?")
            params.append(kind)
        where_sql = ("WHERE " + " AND ".join(where)) if where else ""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM notifications {where_sql} ORDER BY id ASC",
                tuple(params),
            ).fetchall()
        return [self._row_to_dict(row) for row in rows]

    def get_idempotency_record(self, route: str, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT route, idempotency_key, payload_hash, status_code, response_json, created_at
                FROM idempotency_keys
                WHERE route = ? AND idempotency_key = ?
                """,
                (route, key),
            ).fetchone()
        return self._row_to_dict(row) if row else None

    def put_idempotency_record(
        self,
        route: str,
        key: str,
        payload_hash: str,
        status_code: int,
        response: Dict[str, Any],
    ) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO idempotency_keys (
                    route, idempotency_key, payload_hash, status_code, response_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (route, key, payload_hash, status_code, json.dumps(response), utc_now_iso()),
            )

    @staticmethod
    def _record_select() -> str:
        return """
            SELECT
                c.*,
                j.org_id AS org_id,
                j.title AS job_title,
                j.description AS job_description,
                j.required_skills AS required_skills,
                j.experience_required AS experience_required
            FROM candidates c
            LEFT JOIN jobs j ON j.id = c.job_id
        """

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        item = dict(row)
        for field in _JSON_FIELDS:
            if field in item and item[field]:
                try:
                    item[field] = json.loads(item[field])
                except json.JSONDecodeError:
                    pass
        return item
