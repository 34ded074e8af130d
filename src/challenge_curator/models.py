"""Executable data contracts for Challenge Curator.

The generation pipeline deals with two kinds of rules:

1. Prompt-level expectations (the model is *asked* for a challenge shape).
2. Runtime contracts (what callers, persistence and the UI actually receive).

The Pydantic models below are the runtime side. They are deliberately lenient
about content quality (short titles, thin descriptions) because that is scored
by `challenge_curator.validator` as confidence, not rejected outright. They are
strict about shape: unknown keys are refused and `difficulty` is an enum.

JSON field names are camelCase (`starterCode`, `testCases`, ...). Other
components key on those names, so Python attributes are snake_case with a camel
alias generator and every dump for the outside world uses `by_alias=True`.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


REQUIRED_FIELDS: tuple[str, ...] = (
    "title",
    "language",
    "difficulty",
    "description",
    "starterCode",
    "solution",
    "testCases",
)

SUPPORTED_LANGUAGES: tuple[str, ...] = (
    "JavaScript",
    "TypeScript",
    "Python",
    "Java",
    "Go",
    "C++",
    "C#",
    "Rust",
    "Ruby",
)


class StrictModel(BaseModel):
    """Shared strict behavior for all contracts.

    `extra="forbid"` keeps prompt drift from widening the schema silently.
    `populate_by_name=True` lets Python code build models with snake_case names
    while JSON payloads keep their camelCase keys.
    """

    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Difficulty(str, Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    EXPERT = "Expert"


class ChallengeSource(str, Enum):
    """Provenance of a returned challenge.

    `FALLBACK_CACHED` marks a fallback pick served again from the TTL cache.
    """

    AI = "ai"
    FALLBACK = "fallback"
    FALLBACK_CACHED = "fallback_cached"
    EMERGENCY_FALLBACK = "emergency_fallback"


def stringify_expected(value: Any) -> str:
    """Render a test-case expectation as a string.

    Strings pass through untouched; everything else becomes compact JSON so
    `[0, 1]` turns into `"[0,1]"` and `True` into `"true"`.
    """
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TestCase(StrictModel):
    """One executable example: named arguments and the expected output."""

    __test__ = False  # not a pytest test class

    input: dict[str, Any] = Field(default_factory=dict)
    expected: str = ""

    @field_validator("expected", mode="before")
    @classmethod
    def coerce_expected(cls, value: Any) -> str:
        return stringify_expected(value)


class ChallengeMetadata(StrictModel):
    """Provenance annotations attached by the pipeline, never by the model."""

    source: ChallengeSource
    timestamp: datetime = Field(default_factory=_utcnow)
    generation_attempts: int = Field(default=0, ge=0)
    parsing_method: str = "unknown"
    fallback_reason: str | None = None
    model: str | None = None
    consecutive_failures: int | None = None


class Challenge(StrictModel):
    """The canonical coding-exercise record produced by the pipeline."""

    title: str
    language: str
    difficulty: Difficulty
    description: str
    starter_code: str
    solution: str
    test_cases: list[TestCase] = Field(default_factory=list)
    metadata: ChallengeMetadata

    def content_payload(self) -> dict[str, Any]:
        """JSON view of the challenge fields without metadata."""
        return self.model_dump(mode="json", by_alias=True, exclude={"metadata"})


class ChallengeFilters(StrictModel):
    """Caller constraints for one generation request.

    Front-ends send `level` where the pipeline speaks of `difficulty`, and
    either a single `language` or a `languages` list. Both are folded here,
    once, so the rest of the pipeline only sees `difficulty` and `languages`.
    Unknown UI keys are ignored rather than rejected.
    """

    model_config = ConfigDict(extra="ignore")

    difficulty: str | None = None
    languages: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def fold_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        folded = dict(data)

        level = folded.pop("level", None)
        if level is not None and not folded.get("difficulty"):
            folded["difficulty"] = level

        language = folded.pop("language", None)
        languages = folded.get("languages")
        if isinstance(languages, str):
            languages = [languages]
        if language:
            languages = [language, *(languages or [])]
        if languages is not None:
            folded["languages"] = languages

        topics = folded.get("topics")
        if isinstance(topics, str):
            folded["topics"] = [topics]
        return folded

    @property
    def language(self) -> str | None:
        """First requested language, if any."""
        return self.languages[0] if self.languages else None

    def prompt_payload(self) -> dict[str, Any]:
        """Constraints as sent to the model, with the product defaults applied."""
        payload: dict[str, Any] = {
            "language": self.language or "JavaScript",
            "difficulty": self.difficulty or Difficulty.INTERMEDIATE.value,
        }
        if len(self.languages) > 1:
            payload["languages"] = self.languages
        if self.topics:
            payload["topics"] = self.topics
        return payload


class ChallengeRequest(StrictModel):
    """Inbound body of `POST /api/getQuestion`; unrelated UI keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    filters: ChallengeFilters = Field(default_factory=ChallengeFilters)


class QuestionResponse(Challenge):
    """A finalized challenge plus the content hash it is stored under."""

    question_id: str


class AnswerRequest(StrictModel):
    """Inputs required to generate a reference solution for a challenge.

    Callers usually post the whole challenge back; fields not needed for the
    prompt (solution, metadata, questionId) are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    language: str = Field(min_length=1)
    difficulty: str = Field(min_length=1)
    starter_code: str | None = None
    test_cases: list[dict[str, Any]] = Field(default_factory=list)


class AnswerResult(StrictModel):
    """Generated solution keyed by `solutionCode`."""

    solution_code: str = Field(min_length=1)
    language: str
    difficulty: str
    model: str | None = None
    generated_at: datetime = Field(default_factory=_utcnow)


class ReviewRequest(StrictModel):
    """A submitted solution to review against the reference solution."""

    model_config = ConfigDict(extra="ignore")

    user_code: str = Field(min_length=1)
    solution_code: str = Field(min_length=1)
    language: str = Field(min_length=1)
    tests_passed: bool = False
    challenge_title: str | None = None


class CodeReview(StrictModel):
    """Score (1-10) plus one strength and one improvement.

    `error` is set when the review is the offline one served because the
    backend could not produce a usable review.
    """

    score: int = Field(ge=1, le=10)
    strength: str = Field(min_length=1)
    improvement: str = Field(min_length=1)
    model: str | None = None
    error: str | None = None
