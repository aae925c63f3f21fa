"""Resume text -> structured candidate profile.

Two implementations share the ``ResumeExtractor`` protocol: an AI-backed one
and a deterministic heuristic one that needs no external service. The AI
extractor hands over to the heuristic one whenever the backend fails, so
callers always receive a ``CandidateProfile`` of the same shape.
"""

from __future__ import annotations

import re
from typing import List, Optional, Protocol, Tuple

import structlog

from .errors import UpstreamUnavailableError
from .llm import CompletionBackend
from .profiles import (
    FALLBACK_SUMMARY,
    NO_DESCRIPTION,
    NO_EXPERIENCE,
    NOT_SPECIFIED,
    UNKNOWN_NAME,
    CandidateProfile,
    ExperienceEntry,
    dedupe_casefold,
)

SKILL_VOCABULARY: Tuple[str, ...] = (
    "Python",
    "Java",
    "JavaScript",
    "TypeScript",
    "Golang",
    "Rust",
    "Ruby",
    "PHP",
    "Kotlin",
    "Swift",
    "Scala",
    "C++",
    "C#",
    "SQL",
    "PostgreSQL",
    "MySQL",
    "MongoDB",
    "Redis",
    "GraphQL",
    "React",
    "Angular",
    "Vue",
    "Node.js",
    "Express",
    "Django",
    "Flask",
    "FastAPI",
    "Spring",
    ".NET",
    "HTML",
    "CSS",
    "AWS",
    "Azure",
    "GCP",
    "Docker",
    "Kubernetes",
    "Terraform",
    "Linux",
    "Git",
    "CI/CD",
    "REST",
    "Microservices",
    "Kafka",
    "Spark",
    "Hadoop",
    "Pandas",
    "NumPy",
    "TensorFlow",
    "PyTorch",
    "Machine Learning",
    "Deep Learning",
    "NLP",
    "Data Analysis",
    "Tableau",
    "Power BI",
    "Excel",
    "Agile",
    "Scrum",
    "Jira",
    "Figma",
    "Project Management",
    "Communication",
    "Leadership",
)

_NAME_WORD = r"[A-Z](?=[A-Za-z'\-]*[a-z])[A-Za-z'\-]+"
NAME_PATTERN = re.compile(rf"^{_NAME_WORD}(?:\s+(?:{_NAME_WORD}|[A-Z]\.)){{1,3}}$")
EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
URL_PATTERN = re.compile(r"https?://[^\s,;()<>]+", re.IGNORECASE)
BARE_PROFILE_PATTERN = re.compile(
    r"(?<![\w/.])(?:www\.)?(?:github\.com|gitlab\.com|linkedin\.com)/[^\s,;()<>]+",
    re.IGNORECASE,
)
EXPERIENCE_LINE_PATTERN = re.compile(
    r"^\s*(?P<position>[^|]+?)\s*\|\s*(?P<company>[^|]+?)\s*\|\s*(?P<duration>[^|]+?)\s*$"
)
YEARS_MENTION_PATTERN = re.compile(r"\b(\d{1,2})\s*\+?\s*(?:years?|yrs?)\b", re.IGNORECASE)
YEAR_PATTERN = re.compile(r"\b(19\d{2}|20\d{2})\b")
DURATION_HINT_PATTERN = re.compile(r"\d|present|current", re.IGNORECASE)
SUMMARY_HEADING_PATTERN = re.compile(
    r"^\s*(?:(?:professional|career|executive|personal)\s+)?(?:summary|profile|overview)\s*(?::\s*(?P<rest>.*))?$",
    re.IGNORECASE,
)
_BULLET_PREFIX = re.compile(r"^[\-•*–]\s*")


class ResumeExtractor(Protocol):
    method: str

    def extract(self, resume_text: str) -> CandidateProfile:
        ...


class HeuristicResumeExtractor:
    method = "heuristic"

    def __init__(self, skill_vocabulary: Optional[Tuple[str, ...]] = None) -> None:
        self.skill_vocabulary = skill_vocabulary or SKILL_VOCABULARY

    def extract(self, resume_text: str) -> CandidateProfile:
        text = str(resume_text or "")
        lines = [line.rstrip() for line in text.splitlines()]
        return CandidateProfile(
            name=self._extract_name(lines),
            email=self._extract_email(text),
            portfolio_links=self._extract_links(text),
            skills=self._extract_skills(text),
            experience=self._extract_experience(lines),
            total_experience=self._extract_total_experience(text),
            summary=self._extract_summary(lines),
        )

    @staticmethod
    def _extract_name(lines: List[str]) -> str:
        for line in lines:
            candidate = line.strip()
            if candidate and NAME_PATTERN.match(candidate):
                return candidate
        return UNKNOWN_NAME

    @staticmethod
    def _extract_email(text: str) -> str:
        match = EMAIL_PATTERN.search(text)
        return match.group(0) if match else NOT_SPECIFIED

    @staticmethod
    def _extract_links(text: str) -> List[str]:
        found: List[str] = []
        for match in URL_PATTERN.finditer(text):
            found.append(match.group(0).rstrip("."))
        for match in BARE_PROFILE_PATTERN.finditer(text):
            link = match.group(0).rstrip(".")
            if not any(link.lower() in existing.lower() for existing in found):
                found.append(f"https://{link}")
        return dedupe_casefold(found)

    def _extract_skills(self, text: str) -> List[str]:
        lowered = text.lower()
        found = [skill for skill in self.skill_vocabulary if skill.lower() in lowered]
        return dedupe_casefold(found)

    @staticmethod
    def _extract_experience(lines: List[str]) -> List[ExperienceEntry]:
        entries: List[ExperienceEntry] = []
        idx = 0
        while idx < len(lines):
            match = EXPERIENCE_LINE_PATTERN.match(lines[idx])
            # Contact lines are pipe-separated too; an entry's last column names a period.
            if not match or not DURATION_HINT_PATTERN.search(match.group("duration")):
                idx += 1
                continue
            description_lines: List[str] = []
            idx += 1
            while idx < len(lines):
                line = lines[idx].strip()
                if not line or EXPERIENCE_LINE_PATTERN.match(line):
                    break
                description_lines.append(_BULLET_PREFIX.sub("", line))
                idx += 1

            duration = match.group("duration").strip()
            start_year, end_year = _years_from_duration(duration)
            entries.append(
                ExperienceEntry(
                    company=match.group("company").strip() or NOT_SPECIFIED,
                    position=match.group("position").strip() or NOT_SPECIFIED,
                    duration=duration or NOT_SPECIFIED,
                    description=" ".join(description_lines) or NO_DESCRIPTION,
                    start_year=start_year,
                    end_year=end_year,
                )
            )
        return entries

    @staticmethod
    def _extract_total_experience(text: str) -> str:
        years = [int(value) for value in YEARS_MENTION_PATTERN.findall(text)]
        if not years:
            return NO_EXPERIENCE
        return f"{max(years)} years total"

    @staticmethod
    def _extract_summary(lines: List[str]) -> str:
        for idx, line in enumerate(lines):
            match = SUMMARY_HEADING_PATTERN.match(line)
            if not match:
                continue
            inline = (match.group("rest") or "").strip()
            if inline:
                return inline
            paragraph: List[str] = []
            for follow in lines[idx + 1 :]:
                stripped = follow.strip()
                if not stripped:
                    if paragraph:
                        break
                    continue
                paragraph.append(stripped)
            if paragraph:
                return " ".join(paragraph)
        return FALLBACK_SUMMARY


class LLMResumeExtractor:
    method = "llm"

    def __init__(self, backend: CompletionBackend, fallback: Optional[ResumeExtractor] = None) -> None:
        self.backend = backend
        self.fallback = fallback or HeuristicResumeExtractor()
        self._logger = structlog.get_logger(__name__)

    def extract(self, resume_text: str) -> CandidateProfile:
        try:
            data = self.backend.complete_json(self._prompt(resume_text), max_tokens=2000)
        except UpstreamUnavailableError as exc:
            self._logger.warning("extraction.fallback", reason=str(exc))
            return self.fallback.extract(resume_text)
        return CandidateProfile.from_dict(data)

    @staticmethod
    def _prompt(resume_text: str) -> str:
        return (
            "Extract the candidate profile from the resume below. Respond with JSON only, using keys: "
            "name, email, portfolio_links (array of URLs), skills (array), experience (array of objects with "
            "company, position, duration, start_year, end_year, description), total_experience "
            "(e.g. '4 years total'), summary.\n\n"
            f"RESUME TEXT:\n{resume_text}"
        )


def build_resume_extractor(backend: Optional[CompletionBackend]) -> ResumeExtractor:
    if backend is not None and backend.available():
        return LLMResumeExtractor(backend)
    return HeuristicResumeExtractor()


def _years_from_duration(duration: str) -> Tuple[Optional[int], Optional[int]]:
    years = [int(y) for y in YEAR_PATTERN.findall(duration)]
    if not years:
        return None, None
    start = years[0]
    end = years[1] if len(years) > 1 else None
    if end is None and not re.search(r"present|current|now", duration, re.IGNORECASE):
        end = start
    return start, end
