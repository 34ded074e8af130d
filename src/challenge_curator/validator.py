"""Confidence-scored schema checks for parsed challenge objects.

`validate` never raises; defects lower a confidence score that starts at 1.0
and the object is accepted when the score stays at or above the threshold.
`normalize_types` and `apply_defaults` are the repair pass the pipeline runs
once before giving up on a parsed object.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from .models import REQUIRED_FIELDS, SUPPORTED_LANGUAGES, Difficulty, stringify_expected


DEFAULT_CONFIDENCE_THRESHOLD = 0.6

MISSING_FIELD_PENALTY = 0.1
WRONG_TYPE_PENALTY = 0.1
BAD_DIFFICULTY_PENALTY = 0.1
TEST_CASES_TYPE_PENALTY = 0.2
TEST_CASE_DEFECT_PENALTY = 0.05
SHORT_FIELD_PENALTY = 0.05

MIN_RESPONSE_LENGTH = 50

_STRING_FIELDS = ("title", "language", "description", "starterCode", "solution")
_MIN_LENGTHS = {"title": 3, "description": 20, "starterCode": 10, "solution": 20}
_DIFFICULTIES = tuple(member.value for member in Difficulty)
_DIFFICULTY_ALIASES = {
    "easy": Difficulty.BEGINNER.value,
    "medium": Difficulty.INTERMEDIATE.value,
    "hard": Difficulty.ADVANCED.value,
    **{value.lower(): value for value in _DIFFICULTIES},
}
_LANGUAGE_ALIASES = {language.lower(): language for language in SUPPORTED_LANGUAGES}

DEFAULTS: dict[str, Any] = {
    "title": "Coding Challenge",
    "language": "JavaScript",
    "difficulty": Difficulty.INTERMEDIATE.value,
    "description": "Complete the coding challenge.",
    "starterCode": "// Write your solution here",
    "solution": "// Solution not provided",
}

_TRUNCATION_PATTERNS = (
    re.compile(r"\.\.\.$"),
    re.compile(r'[^"}\]]$'),
)
_UNESCAPED_QUOTE_RE = re.compile(r'(?<!\\)(?:\\\\)*"')


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    confidence: float
    issues: list[str] = field(default_factory=list)


def _finish(confidence: float, issues: list[str], threshold: float) -> ValidationResult:
    confidence = round(min(1.0, max(0.0, confidence)), 4)
    return ValidationResult(is_valid=confidence >= threshold, confidence=confidence, issues=issues)


def validate(data: Any, threshold: float = DEFAULT_CONFIDENCE_THRESHOLD) -> ValidationResult:
    """Score a parsed object against the challenge shape."""
    if not isinstance(data, dict):
        return ValidationResult(is_valid=False, confidence=0.0, issues=["Data is not an object"])

    issues: list[str] = []
    confidence = 1.0

    missing = [name for name in REQUIRED_FIELDS if data.get(name) is None]
    if missing:
        issues.append(f"Missing required fields: {', '.join(missing)}")
        confidence -= MISSING_FIELD_PENALTY * len(missing)

    for name in _STRING_FIELDS:
        value = data.get(name)
        if value is not None and not isinstance(value, str):
            issues.append(f"{name} must be a string")
            confidence -= WRONG_TYPE_PENALTY

    difficulty = data.get("difficulty")
    if difficulty is not None and difficulty not in _DIFFICULTIES:
        issues.append(f"difficulty must be one of: {', '.join(_DIFFICULTIES)}")
        confidence -= BAD_DIFFICULTY_PENALTY

    test_cases = data.get("testCases")
    if test_cases is not None and not isinstance(test_cases, list):
        issues.append("testCases must be an array")
        confidence -= TEST_CASES_TYPE_PENALTY
    elif test_cases:
        for index, case in enumerate(test_cases):
            if not isinstance(case, dict):
                issues.append(f"Test case {index} must be an object")
                confidence -= TEST_CASE_DEFECT_PENALTY
                continue
            if "input" not in case:
                issues.append(f"Test case {index} missing input field")
                confidence -= TEST_CASE_DEFECT_PENALTY
            if "expected" not in case:
                issues.append(f"Test case {index} missing expected field")
                confidence -= TEST_CASE_DEFECT_PENALTY

    for name, minimum in _MIN_LENGTHS.items():
        value = data.get(name)
        if isinstance(value, str) and value and len(value) < minimum:
            issues.append(f"{name} too short")
            confidence -= SHORT_FIELD_PENALTY

    return _finish(confidence, issues, threshold)


def validate_response(raw: Any) -> ValidationResult:
    """Heuristic completeness check on raw text, before any parsing.

    A score of 0 means there is nothing worth parsing. Truncation signals and
    brace imbalance only lower the score.
    """
    if not isinstance(raw, str) or not raw:
        return ValidationResult(is_valid=False, confidence=0.0, issues=["Response is empty or not a string"])
    if len(raw) < MIN_RESPONSE_LENGTH:
        return ValidationResult(
            is_valid=False,
            confidence=0.0,
            issues=["Response too short to contain valid challenge"],
        )
    if "{" not in raw or "}" not in raw:
        return ValidationResult(is_valid=False, confidence=0.1, issues=["Response lacks basic JSON structure"])

    issues: list[str] = []
    confidence = 1.0
    balance = raw.count("{") - raw.count("}")
    if balance > 0:
        issues.append("Response appears truncated (unmatched opening braces)")
        confidence = max(0.3, confidence - 0.4)
    elif balance < 0:
        issues.append("Response has extra closing braces")
        confidence = max(0.5, confidence - 0.2)

    stripped = raw.strip()
    unterminated = len(_UNESCAPED_QUOTE_RE.findall(stripped)) % 2 == 1
    if unterminated or any(pattern.search(stripped) for pattern in _TRUNCATION_PATTERNS):
        issues.append("Response appears to be truncated")
        confidence = max(0.2, confidence - 0.3)

    return _finish(confidence, issues, 0.5)


# ---------------------------------------------------------------------
# Repair pass
# ---------------------------------------------------------------------


def _as_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _normalize_test_case(case: Any) -> dict[str, Any]:
    if not isinstance(case, dict):
        return {"input": {}, "expected": ""}
    raw_input = case.get("input")
    if isinstance(raw_input, dict):
        case_input = raw_input
    elif raw_input is None:
        case_input = {}
    else:
        case_input = {"value": raw_input}
    expected = case.get("expected")
    return {"input": case_input, "expected": "" if expected is None else stringify_expected(expected)}


def normalize_types(data: Any) -> dict[str, Any]:
    """Coerce field types toward the challenge shape; returns a new dict."""
    if not isinstance(data, dict):
        return {}
    normalized = dict(data)

    for name in _STRING_FIELDS + ("difficulty",):
        value = normalized.get(name)
        if value is not None and not isinstance(value, str):
            normalized[name] = _as_text(value)

    difficulty = normalized.get("difficulty")
    if isinstance(difficulty, str):
        normalized["difficulty"] = _DIFFICULTY_ALIASES.get(difficulty.strip().lower(), difficulty)

    language = normalized.get("language")
    if isinstance(language, str):
        normalized["language"] = _LANGUAGE_ALIASES.get(language.strip().lower(), language)

    test_cases = normalized.get("testCases")
    if isinstance(test_cases, str):
        try:
            test_cases = json.loads(test_cases)
        except ValueError:
            test_cases = []
    if isinstance(test_cases, dict):
        test_cases = [test_cases]
    if test_cases is not None and not isinstance(test_cases, list):
        test_cases = []
    if test_cases is not None:
        normalized["testCases"] = [_normalize_test_case(case) for case in test_cases]

    return normalized


def apply_defaults(data: Any) -> dict[str, Any]:
    """Fill missing or empty fields; an unknown difficulty becomes Intermediate."""
    with_defaults = dict(data) if isinstance(data, dict) else {}
    for name, default in DEFAULTS.items():
        if not with_defaults.get(name):
            with_defaults[name] = default
    if with_defaults["difficulty"] not in _DIFFICULTIES:
        with_defaults["difficulty"] = DEFAULTS["difficulty"]
    if not isinstance(with_defaults.get("testCases"), list):
        with_defaults["testCases"] = []
    return with_defaults
