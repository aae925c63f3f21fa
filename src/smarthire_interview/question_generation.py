from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog

from .errors import QuestionGenerationError, UpstreamUnavailableError
from .llm import CompletionBackend, extract_json_object
from .profiles import CandidateProfile, InterviewQuestions, JobRequirements

CATEGORIES = ("technical", "behavioral", "job_specific")
# Older replies label the third category "scenario_based".
CATEGORY_ALIASES = {"job_specific": ("job_specific", "scenario_based", "jobSpecific")}
MAX_QUESTIONS_PER_CATEGORY = 5


class LLMQuestionGenerator:
    """Builds tailored interview questions from a candidate profile and a job.

    There is no offline fallback here: an unreachable backend raises
    ``UpstreamUnavailableError`` and an unusable reply raises
    ``QuestionGenerationError``, so callers can tell the two apart.
    """

    def __init__(self, backend: Optional[CompletionBackend]) -> None:
        self.backend = backend
        self._logger = structlog.get_logger(__name__)

    def available(self) -> bool:
        return self.backend is not None and self.backend.available()

    def generate(self, profile: CandidateProfile, job: JobRequirements) -> InterviewQuestions:
        if not self.available():
            raise UpstreamUnavailableError("AI completion backend is not configured")
        reply = self.backend.complete(self._prompt(profile, job))  # type: ignore[union-attr]
        try:
            data = extract_json_object(reply)
        except ValueError as exc:
            self._logger.warning("questions.unparsable_reply", job_title=job.title, preview=reply[:200])
            raise QuestionGenerationError(f"AI reply is not a JSON object: {exc}") from exc

        by_category: Dict[str, List[str]] = {}
        for category in CATEGORIES:
            questions = self._questions_for(data, category)
            if not questions:
                self._logger.warning("questions.empty_category", category=category, job_title=job.title)
                raise QuestionGenerationError(f"AI reply has no {category} questions")
            by_category[category] = questions[:MAX_QUESTIONS_PER_CATEGORY]

        return InterviewQuestions(
            technical=by_category["technical"],
            behavioral=by_category["behavioral"],
            job_specific=by_category["job_specific"],
        )

    @staticmethod
    def _questions_for(data: Dict[str, Any], category: str) -> List[str]:
        for key in CATEGORY_ALIASES.get(category, (category,)):
            raw = data.get(key)
            if raw is None:
                continue
            if not isinstance(raw, list):
                raise QuestionGenerationError(f"AI reply field {key!r} is not a list")
            out: List[str] = []
            for item in raw:
                if isinstance(item, dict):
                    item = item.get("question") or item.get("text")
                text = str(item or "").strip()
                if text:
                    out.append(text)
            return out
        return []

    @staticmethod
    def _prompt(profile: CandidateProfile, job: JobRequirements) -> str:
        history = "\n".join(
            f"- {e.position} at {e.company} ({e.duration})\n  {e.description}" for e in profile.experience
        )
        return (
            "Generate interview questions for the candidate below. Respond with JSON only: "
            '{"technical": [str], "behavioral": [str], "job_specific": [str]}. '
            "Use 3-5 technical questions on the required skills, 3-5 behavioral questions and "
            "2-3 scenario questions specific to this job.\n\n"
            f"CANDIDATE:\nName: {profile.name}\nSummary: {profile.summary}\n"
            f"Skills: {', '.join(profile.skills)}\nExperience: {profile.total_experience}\n"
            f"Work History:\n{history}\n\n"
            f"JOB:\nTitle: {job.title}\nRequired Skills: {', '.join(job.required_skills)}\n"
            f"Description: {job.description}"
        )
