from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

UNKNOWN_NAME = "Unknown"
NOT_SPECIFIED = "Not specified"
NO_DESCRIPTION = "No description available"
NO_EXPERIENCE = "0 years total"
FALLBACK_SUMMARY = "Extracted using fallback method due to AI service unavailability."


@dataclass
class ExperienceEntry:
    company: str
    position: str
    duration: str
    description: str = NO_DESCRIPTION
    start_year: Optional[int] = None
    end_year: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExperienceEntry":
        return cls(
            company=_text(data.get("company")) or NOT_SPECIFIED,
            position=_text(data.get("position")) or NOT_SPECIFIED,
            duration=_text(data.get("duration")) or NOT_SPECIFIED,
            description=_text(data.get("description")) or NO_DESCRIPTION,
            start_year=_year(data.get("start_year")),
            end_year=_year(data.get("end_year")),
        )


@dataclass
class CandidateProfile:
    name: str = UNKNOWN_NAME
    email: str = NOT_SPECIFIED
    portfolio_links: List[str] = field(default_factory=list)
    skills: List[str] = field(default_factory=list)
    experience: List[ExperienceEntry] = field(default_factory=list)
    total_experience: str = NO_EXPERIENCE
    summary: str = FALLBACK_SUMMARY

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateProfile":
        links = data.get("portfolio_links", data.get("portfolio_link"))
        experience_raw = data.get("experience") if isinstance(data.get("experience"), list) else []
        return cls(
            name=_text(data.get("name")) or UNKNOWN_NAME,
            email=_text(data.get("email")) or NOT_SPECIFIED,
            portfolio_links=_str_list(links),
            skills=dedupe_casefold(_str_list(data.get("skills"))),
            experience=[ExperienceEntry.from_dict(x) for x in experience_raw if isinstance(x, dict)],
            total_experience=_text(data.get("total_experience")) or NO_EXPERIENCE,
            summary=_text(data.get("summary")) or FALLBACK_SUMMARY,
        )


@dataclass
class JobRequirements:
    title: str
    description: str = ""
    required_skills: List[str] = field(default_factory=list)
    experience_required: str = ""
    notes: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobRequirements":
        return cls(
            title=_text(data.get("title") or data.get("job_title")) or "Open Role",
            description=_text(data.get("description") or data.get("job_description")),
            required_skills=_str_list(data.get("required_skills", data.get("skills"))),
            experience_required=_text(data.get("experience_required") or data.get("experience")),
            notes=_text(data.get("notes") or data.get("note")),
        )


@dataclass
class MatchResult:
    candidate_name: str
    candidate_email: str
    match_percentage: float
    strengths: List[str] = field(default_factory=list)
    areas_for_improvement: List[str] = field(default_factory=list)
    candidate_id: Optional[int] = None
    method: str = "heuristic"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InterviewQuestions:
    technical: List[str]
    behavioral: List[str]
    job_specific: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def dedupe_casefold(items: List[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for item in items:
        key = item.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    out: List[str] = []
    for item in value:
        token = _text(item)
        if token:
            out.append(token)
    return out


def _year(value: Any) -> Optional[int]:
    try:
        year = int(value)
    except (TypeError, ValueError):
        return None
    return year if 1900 <= year <= 2100 else None
