"""Interview orchestration for SmartHire: triggering, scheduling, running and collecting AI interviews."""

from .config import InterviewModuleConfig
from .scheduler import InterviewScheduler
from .service import InterviewService

__all__ = ["InterviewModuleConfig", "InterviewScheduler", "InterviewService"]
