"""Interview lifecycle states and the transitions allowed between them."""

from __future__ import annotations

from typing import Dict, FrozenSet, Tuple

APPLIED = "applied"
RESUME_REVIEWED = "resume_reviewed"
INTERVIEW_REQUESTED = "interview_requested"
SCHEDULED = "scheduled"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

ALL_STATUSES: Tuple[str, ...] = (
    APPLIED,
    RESUME_REVIEWED,
    INTERVIEW_REQUESTED,
    SCHEDULED,
    IN_PROGRESS,
    COMPLETED,
    FAILED,
    CANCELLED,
)
TERMINAL_STATUSES: FrozenSet[str] = frozenset({COMPLETED, FAILED, CANCELLED})
NON_TERMINAL_STATUSES: FrozenSet[str] = frozenset(s for s in ALL_STATUSES if s not in TERMINAL_STATUSES)

# event -> (allowed source statuses, target status)
TRANSITIONS: Dict[str, Tuple[FrozenSet[str], str]] = {
    "review_resume": (frozenset({APPLIED}), RESUME_REVIEWED),
    "trigger": (frozenset({RESUME_REVIEWED}), INTERVIEW_REQUESTED),
    "resend": (frozenset({INTERVIEW_REQUESTED}), INTERVIEW_REQUESTED),
    "schedule": (frozenset({INTERVIEW_REQUESTED}), SCHEDULED),
    "claim": (frozenset({SCHEDULED}), IN_PROGRESS),
    "complete": (frozenset({IN_PROGRESS}), COMPLETED),
    "time_out": (frozenset({IN_PROGRESS}), FAILED),
    "cancel": (NON_TERMINAL_STATUSES, CANCELLED),
}


class InvalidTransitionError(ValueError):
    def __init__(self, event: str, current: str) -> None:
        super().__init__(f"cannot apply '{event}' to an interview in status '{current}'")
        self.event = event
        self.current = current


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_apply(event: str, current: str) -> bool:
    sources, _ = TRANSITIONS[event]
    return current in sources


def target_status(event: str, current: str) -> str:
    """Return the status ``event`` leads to from ``current``.

    Raises InvalidTransitionError when ``current`` is not a declared source
    status for the event.
    """
    sources, target = TRANSITIONS[event]
    if current not in sources:
        raise InvalidTransitionError(event, current)
    return target
