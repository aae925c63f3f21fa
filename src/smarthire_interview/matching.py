from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional, Protocol, Tuple

import structlog

from .errors import UpstreamUnavailableError
from .llm import CompletionBackend
from .profiles import NOT_SPECIFIED, CandidateProfile, JobRequirements, MatchResult, dedupe_casefold

WEIGHTS = {"skills": 0.6, "experience": 0.25, "description": 0.15}
# Skills component when the job lists no required skills.
NO_REQUIRED_SKILLS_SCORE = 0.6

_YEARS_PATTERN = re.compile(r"\b(\d{1,2})\b")


class MatchScorer(Protocol):
    method: str

    def score(self, profile: CandidateProfile, job: JobRequirements, candidate_id: Optional[int] = None) -> MatchResult:
        ...


class HeuristicMatchScorer:
    """Keyword-overlap scoring used when no AI backend is reachable."""

    method = "heuristic"

    def score(self, profile: CandidateProfile, job: JobRequirements, candidate_id: Optional[int] = None) -> MatchResult:
        candidate_skills = {s.casefold() for s in profile.skills}
        required = dedupe_casefold([s for s in job.required_skills if s])

        if not required:
            skills_match = NO_REQUIRED_SKILLS_SCORE
            matched: List[str] = []
            missing: List[str] = []
        else:
            matched = [s for s in required if s.casefold() in candidate_skills]
            missing = [s for s in required if s.casefold() not in candidate_skills]
            skills_match = len(matched) / len(required)

        candidate_years = years_from_text(profile.total_experience)
        required_years = years_from_text(job.experience_required)
        experience_match = self._experience_match(candidate_years, required_years)

        description_match = self._description_match(profile.skills, job.description)

        raw = (
            WEIGHTS["skills"] * skills_match
            + WEIGHTS["experience"] * experience_match
            + WEIGHTS["description"] * description_match
        )
        percentage = clamp_percentage(raw * 100)

        strengths: List[str] = []
        gaps: List[str] = []
        if matched:
            strengths.append("Has required skills: " + ", ".join(matched))
        if missing:
            gaps.append("Missing required skills: " + ", ".join(missing[:5]))
        if required_years:
            if candidate_years >= required_years:
                strengths.append(f"Meets experience requirement ({candidate_years} of {required_years} years)")
            else:
                gaps.append(f"Has {candidate_years} years of experience; role asks for {required_years}")
        if description_match >= 0.5:
            strengths.append("Skill set overlaps strongly with the job description")
        elif job.description and profile.skills and description_match == 0:
            gaps.append("None of the listed skills appear in the job description")

        return MatchResult(
            candidate_name=profile.name,
            candidate_email=profile.email if profile.email != NOT_SPECIFIED else "",
            match_percentage=percentage,
            strengths=strengths,
            areas_for_improvement=gaps,
            candidate_id=candidate_id,
            method=self.method,
        )

    @staticmethod
    def _experience_match(candidate_years: int, required_years: int) -> float:
        if required_years <= 0:
            return 1.0
        return min(1.0, candidate_years / required_years)

    @staticmethod
    def _description_match(skills: List[str], description: str) -> float:
        if not skills or not description:
            return 0.0
        text = description.casefold()
        mentioned = [s for s in skills if s.casefold() in text]
        return len(mentioned) / len(skills)


class LLMMatchScorer:
    method = "llm"

    def __init__(self, backend: CompletionBackend, fallback: Optional[MatchScorer] = None) -> None:
        self.backend = backend
        self.fallback = fallback or HeuristicMatchScorer()
        self._logger = structlog.get_logger(__name__)

    def score(self, profile: CandidateProfile, job: JobRequirements, candidate_id: Optional[int] = None) -> MatchResult:
        try:
            data = self.backend.complete_json(self._prompt(profile, job))
            percentage = _coerce_percentage(data.get("match_percentage"))
        except (UpstreamUnavailableError, ValueError) as exc:
            self._logger.warning("matching.fallback", reason=str(exc), candidate_id=candidate_id)
            return self.fallback.score(profile, job, candidate_id=candidate_id)

        return MatchResult(
            candidate_name=str(data.get("candidate_name") or profile.name),
            candidate_email=str(data.get("candidate_email") or (profile.email if profile.email != NOT_SPECIFIED else "")),
            match_percentage=percentage,
            strengths=_described_list(data.get("strengths")),
            areas_for_improvement=_described_list(data.get("areas_for_improvement")),
            candidate_id=candidate_id,
            method=self.method,
        )

    @staticmethod
    def _prompt(profile: CandidateProfile, job: JobRequirements) -> str:
        history = "\n".join(
            f"- {e.position} at {e.company} ({e.duration})\n  {e.description}" for e in profile.experience
        )
        return (
            "Compare the candidate with the job posting and respond with JSON only: "
            '{"candidate_name": str, "candidate_email": str, "match_percentage": number 0-100, '
            '"strengths": [str], "areas_for_improvement": [str]}.\n\n'
            f"CANDIDATE:\nName: {profile.name}\nEmail: {profile.email}\nSummary: {profile.summary}\n"
            f"Skills: {', '.join(profile.skills)}\nExperience: {profile.total_experience}\n"
            f"Work History:\n{history}\n\n"
            f"JOB:\nTitle: {job.title}\nRequired Skills: {', '.join(job.required_skills)}\n"
            f"Description: {job.description}\nExperience Required: {job.experience_required}\n"
            f"Additional Notes: {job.notes}"
        )


def build_match_scorer(backend: Optional[CompletionBackend]) -> MatchScorer:
    if backend is not None and backend.available():
        return LLMMatchScorer(backend)
    return HeuristicMatchScorer()


def rank_candidates(
    scorer: MatchScorer,
    candidates: Iterable[Tuple[Optional[int], CandidateProfile]],
    job: JobRequirements,
) -> List[MatchResult]:
    results = [scorer.score(profile, job, candidate_id=cid) for cid, profile in candidates]
    results.sort(key=lambda r: r.match_percentage, reverse=True)
    return results


def years_from_text(value: Any) -> int:
    match = _YEARS_PATTERN.search(str(value or ""))
    return int(match.group(1)) if match else 0


def clamp_percentage(value: float) -> float:
    return round(max(0.0, min(100.0, float(value))), 1)


def _coerce_percentage(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        raise ValueError("match_percentage missing")
    try:
        return clamp_percentage(float(value))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"match_percentage is not numeric: {value!r}") from exc


def _described_list(value: Any) -> List[str]:
    # Accepts both a bare list and the {"description": [...]} wrapper.
    if isinstance(value, dict):
        value = value.get("description")
    if not isinstance(value, list):
        return []
    return [str(x).strip() for x in value if str(x or "").strip()]

