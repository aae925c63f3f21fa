from __future__ import annotations

import unittest
from typing import Any, Dict, Optional

from smarthire_interview.errors import UpstreamUnavailableError
from smarthire_interview.extraction import (
    HeuristicResumeExtractor,
    LLMResumeExtractor,
    build_resume_extractor,
)
from smarthire_interview.llm import CompletionBackend
from smarthire_interview.profiles import FALLBACK_SUMMARY, NO_DESCRIPTION, NO_EXPERIENCE, NOT_SPECIFIED, UNKNOWN_NAME

RESUME = """Jane Doe
jane.doe@example.com | github.com/janedoe | https://janedoe.dev

PROFESSIONAL SUMMARY
Backend engineer focused on data platforms.
Enjoys mentoring teams.

EXPERIENCE
Senior Engineer | Acme Corp | 2019 - Present
- Built Python and Kafka pipelines on AWS
- Led migration to Kubernetes
Engineer | Beta LLC | 2016 - 2019

Skills: python, PostgreSQL, Docker, docker, React
Total: 5 years of backend work, 3 years leading teams.
"""


class StubBackend:
    def __init__(self, reply: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts = []

    def available(self) -> bool:
        return True

    def complete_json(self, prompt: str, **kwargs: Any) -> Dict[str, Any]:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return dict(self.reply or {})


class HeuristicResumeExtractorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.profile = HeuristicResumeExtractor().extract(RESUME)

    def test_name_and_contacts(self) -> None:
        self.assertEqual(self.profile.name, "Jane Doe")
        self.assertEqual(self.profile.email, "jane.doe@example.com")
        self.assertIn("https://janedoe.dev", self.profile.portfolio_links)
        self.assertIn("https://github.com/janedoe", self.profile.portfolio_links)

    def test_skills_are_vocabulary_matches_without_duplicates(self) -> None:
        skills = self.profile.skills
        for expected in ("Python", "PostgreSQL", "Docker", "React", "Kafka", "AWS", "Kubernetes"):
            self.assertIn(expected, skills)
        self.assertEqual(len(skills), len({s.casefold() for s in skills}))

    def test_experience_entries(self) -> None:
        self.assertEqual(len(self.profile.experience), 2)
        current, previous = self.profile.experience
        self.assertEqual(current.position, "Senior Engineer")
        self.assertEqual(current.company, "Acme Corp")
        self.assertEqual(current.start_year, 2019)
        self.assertIsNone(current.end_year)
        self.assertIn("Kafka pipelines", current.description)
        self.assertEqual(previous.description, NO_DESCRIPTION)
        self.assertEqual((previous.start_year, previous.end_year), (2016, 2019))

    def test_total_experience_uses_largest_mention(self) -> None:
        self.assertEqual(self.profile.total_experience, "5 years total")

    def test_years_mention_ignores_longer_numbers(self) -> None:
        text = "Acme was founded 2019 years after nothing in particular.\nServed 100 years of archives.\n4 years of Python."
        self.assertEqual(HeuristicResumeExtractor().extract(text).total_experience, "4 years total")
        self.assertEqual(HeuristicResumeExtractor().extract("2019 years").total_experience, NO_EXPERIENCE)

    def test_summary_paragraph_after_heading(self) -> None:
        self.assertEqual(
            self.profile.summary,
            "Backend engineer focused on data platforms. Enjoys mentoring teams.",
        )

    def test_placeholders_for_missing_sections(self) -> None:
        profile = HeuristicResumeExtractor().extract("worked on things\nno contact details here")
        self.assertEqual(profile.name, UNKNOWN_NAME)
        self.assertEqual(profile.email, NOT_SPECIFIED)
        self.assertEqual(profile.total_experience, NO_EXPERIENCE)
        self.assertEqual(profile.summary, FALLBACK_SUMMARY)
        self.assertEqual(profile.experience, [])

    def test_empty_text_never_raises(self) -> None:
        profile = HeuristicResumeExtractor().extract("")
        self.assertEqual(profile.name, UNKNOWN_NAME)


class LLMResumeExtractorTests(unittest.TestCase):
    def test_uses_backend_reply(self) -> None:
        backend = StubBackend(
            reply={
                "name": "Ana Silva",
                "email": "ana@example.com",
                "skills": ["Go", "go", "SQL"],
                "experience": [{"company": "Foo", "position": "Dev", "duration": "2y"}],
                "total_experience": "2 years total",
            }
        )
        profile = LLMResumeExtractor(backend).extract("resume text")  # type: ignore[arg-type]
        self.assertEqual(profile.name, "Ana Silva")
        self.assertEqual(profile.skills, ["Go", "SQL"])
        self.assertEqual(profile.experience[0].description, NO_DESCRIPTION)
        self.assertIn("resume text", backend.prompts[0])

    def test_falls_back_when_backend_unavailable(self) -> None:
        backend = StubBackend(error=UpstreamUnavailableError("timeout"))
        profile = LLMResumeExtractor(backend).extract(RESUME)  # type: ignore[arg-type]
        self.assertEqual(profile.name, "Jane Doe")
        self.assertEqual(profile.total_experience, "5 years total")

    def test_builder_selects_by_availability(self) -> None:
        self.assertIsInstance(build_resume_extractor(CompletionBackend(api_key="")), HeuristicResumeExtractor)
        self.assertIsInstance(build_resume_extractor(None), HeuristicResumeExtractor)
        self.assertIsInstance(build_resume_extractor(CompletionBackend(api_key="sk-test")), LLMResumeExtractor)


if __name__ == "__main__":
    unittest.main()
