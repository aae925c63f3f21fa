from __future__ import annotations

import json
import unittest
from typing import Any, List, Optional

from smarthire_interview.errors import QuestionGenerationError, UpstreamUnavailableError
from smarthire_interview.llm import CompletionBackend
from smarthire_interview.profiles import CandidateProfile, JobRequirements
from smarthire_interview.question_generation import LLMQuestionGenerator


class TextBackend:
    def __init__(self, reply: str = "", error: Optional[Exception] = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: List[str] = []

    def available(self) -> bool:
        return True

    def complete(self, prompt: str, **kwargs: Any) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


class InterviewQuestionGenerationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.profile = CandidateProfile.from_dict(
            {"name": "Jane Doe", "skills": ["Python", "SQL"], "total_experience": "4 years total"}
        )
        self.job = JobRequirements(
            title="Data Engineer",
            description="Own the ingestion pipelines.",
            required_skills=["Python", "Airflow"],
        )

    def test_generates_three_categories(self) -> None:
        reply = json.dumps(
            {
                "technical": ["How do you tune a slow SQL query?", "Explain Python generators."],
                "behavioral": ["Tell us about a conflict you resolved."],
                "job_specific": ["A nightly ingestion job fails halfway; what do you do?"],
            }
        )
        backend = TextBackend(reply=f"Here you go:\n```json\n{reply}\n```")
        questions = LLMQuestionGenerator(backend).generate(self.profile, self.job)  # type: ignore[arg-type]

        self.assertEqual(len(questions.technical), 2)
        self.assertEqual(questions.behavioral, ["Tell us about a conflict you resolved."])
        self.assertEqual(len(questions.job_specific), 1)
        self.assertIn("Data Engineer", backend.prompts[0])
        self.assertIn("Airflow", backend.prompts[0])

    def test_accepts_scenario_based_label(self) -> None:
        reply = json.dumps(
            {
                "technical": ["Q1"],
                "behavioral": ["Q2"],
                "scenario_based": [{"question": "Q3"}],
            }
        )
        questions = LLMQuestionGenerator(TextBackend(reply=reply)).generate(self.profile, self.job)  # type: ignore[arg-type]
        self.assertEqual(questions.job_specific, ["Q3"])

    def test_unconfigured_backend_is_upstream_failure(self) -> None:
        with self.assertRaises(UpstreamUnavailableError):
            LLMQuestionGenerator(CompletionBackend(api_key="")).generate(self.profile, self.job)
        with self.assertRaises(UpstreamUnavailableError):
            LLMQuestionGenerator(None).generate(self.profile, self.job)

    def test_backend_error_propagates_as_upstream_failure(self) -> None:
        backend = TextBackend(error=UpstreamUnavailableError("timed out"))
        with self.assertRaises(UpstreamUnavailableError):
            LLMQuestionGenerator(backend).generate(self.profile, self.job)  # type: ignore[arg-type]

    def test_malformed_reply_is_generation_error(self) -> None:
        backend = TextBackend(reply="Sorry, I cannot help with that.")
        with self.assertRaises(QuestionGenerationError):
            LLMQuestionGenerator(backend).generate(self.profile, self.job)  # type: ignore[arg-type]

    def test_empty_category_is_generation_error(self) -> None:
        reply = json.dumps({"technical": ["Q1"], "behavioral": [], "job_specific": ["Q3"]})
        with self.assertRaises(QuestionGenerationError):
            LLMQuestionGenerator(TextBackend(reply=reply)).generate(self.profile, self.job)  # type: ignore[arg-type]

    def test_non_list_category_is_generation_error(self) -> None:
        reply = json.dumps({"technical": "Q1", "behavioral": ["Q2"], "job_specific": ["Q3"]})
        with self.assertRaises(QuestionGenerationError):
            LLMQuestionGenerator(TextBackend(reply=reply)).generate(self.profile, self.job)  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
