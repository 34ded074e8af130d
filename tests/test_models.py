from __future__ import annotations

import pytest
from pydantic import ValidationError

from challenge_curator.models import (
    AnswerRequest,
    Challenge,
    ChallengeFilters,
    ChallengeRequest,
    ChallengeSource,
    TestCase,
    stringify_expected,
)


def make_challenge_payload(**overrides: object) -> dict:
    payload = {
        "title": "Two Sum",
        "language": "JavaScript",
        "difficulty": "Beginner",
        "description": "Return the indices of the two numbers that add up to target.",
        "starterCode": "function twoSum(nums, target) {\n}",
        "solution": "function twoSum(nums, target) {\n  return [0, 1];\n}",
        "testCases": [{"input": {"nums": [2, 7], "target": 9}, "expected": [0, 1]}],
        "metadata": {"source": "ai", "generationAttempts": 1, "parsingMethod": "direct"},
    }
    payload.update(overrides)
    return payload


def test_stringify_expected_renders_compact_json() -> None:
    assert stringify_expected([0, 1]) == "[0,1]"
    assert stringify_expected(True) == "true"
    assert stringify_expected(5) == "5"
    assert stringify_expected({"a": 1}) == '{"a":1}'
    assert stringify_expected("already") == "already"


def test_test_case_coerces_expected_to_string() -> None:
    case = TestCase.model_validate({"input": {"n": 3}, "expected": [0, 1]})
    assert case.expected == "[0,1]"


def test_challenge_accepts_camel_case_and_dumps_by_alias() -> None:
    challenge = Challenge.model_validate(make_challenge_payload())

    assert challenge.starter_code.startswith("function twoSum")
    assert challenge.metadata.source is ChallengeSource.AI

    dumped = challenge.model_dump(mode="json", by_alias=True)
    assert "starterCode" in dumped
    assert dumped["testCases"][0]["expected"] == "[0,1]"
    assert dumped["metadata"]["parsingMethod"] == "direct"
    assert dumped["metadata"]["generationAttempts"] == 1


def test_challenge_rejects_unknown_keys() -> None:
    with pytest.raises(ValidationError):
        Challenge.model_validate(make_challenge_payload(hints=["think about hashing"]))


def test_challenge_rejects_unknown_difficulty() -> None:
    with pytest.raises(ValidationError):
        Challenge.model_validate(make_challenge_payload(difficulty="Impossible"))


def test_content_payload_excludes_metadata() -> None:
    challenge = Challenge.model_validate(make_challenge_payload())
    payload = challenge.content_payload()
    assert "metadata" not in payload
    assert payload["title"] == "Two Sum"


def test_filters_fold_level_and_single_language() -> None:
    filters = ChallengeFilters.model_validate({"level": "Advanced", "language": "Python", "topics": "graphs"})

    assert filters.difficulty == "Advanced"
    assert filters.languages == ["Python"]
    assert filters.language == "Python"
    assert filters.topics == ["graphs"]


def test_filters_prefer_explicit_difficulty_over_level() -> None:
    filters = ChallengeFilters.model_validate({"level": "Beginner", "difficulty": "Expert"})
    assert filters.difficulty == "Expert"


def test_filters_prompt_payload_applies_defaults() -> None:
    assert ChallengeFilters().prompt_payload() == {"language": "JavaScript", "difficulty": "Intermediate"}

    payload = ChallengeFilters(languages=["Go", "Rust"], topics=["concurrency"]).prompt_payload()
    assert payload["language"] == "Go"
    assert payload["languages"] == ["Go", "Rust"]
    assert payload["topics"] == ["concurrency"]


def test_filters_ignore_unrelated_ui_keys() -> None:
    request = ChallengeRequest.model_validate({"filters": {"level": "Beginner", "theme": "dark"}, "page": 2})
    assert request.filters.difficulty == "Beginner"


def test_answer_request_ignores_extra_challenge_fields() -> None:
    request = AnswerRequest.model_validate(
        {
            "title": "Two Sum",
            "description": "Find two indices.",
            "language": "JavaScript",
            "difficulty": "Beginner",
            "starterCode": "function twoSum() {}",
            "solution": "ignored",
            "questionId": "abc",
        }
    )
    assert request.starter_code == "function twoSum() {}"


def test_answer_request_requires_title() -> None:
    with pytest.raises(ValidationError):
        AnswerRequest.model_validate(
            {"title": "", "description": "d", "language": "Python", "difficulty": "Beginner"}
        )
