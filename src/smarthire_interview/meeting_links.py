from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any, Dict, Protocol

from .db import to_utc_iso


class MeetingLinkProvisioner(Protocol):
    def provision(self, candidate: Dict[str, Any], interview_datetime: datetime) -> str:
        ...


class DeterministicMeetingLinks:
    """Builds the room URL from the candidate id and the booked slot.

    The same candidate and slot always map to the same link.
    """

    def __init__(self, base_url: str) -> None:
        self.base_url = str(base_url or "").rstrip("/") or "https://meet.smarthire.local"

    def provision(self, candidate: Dict[str, Any], interview_datetime: datetime) -> str:
        candidate_id = int(candidate["id"])
        seed = f"{candidate_id}:{to_utc_iso(interview_datetime)}"
        room = hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]
        return f"{self.base_url}/ai-interview/{candidate_id}-{room}"
