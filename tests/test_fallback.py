from __future__ import annotations

import copy
import random

from challenge_curator.cache import FallbackCache
from challenge_curator.fallback import NO_MATCH_REASON, FallbackProvider, emergency_fallback_challenge
from challenge_curator.fallback_table import FALLBACK_CHALLENGES
from challenge_curator.models import ChallengeFilters, ChallengeSource


def make_provider(table: dict | None = None, **kwargs: object) -> FallbackProvider:
    return FallbackProvider(table, rng=random.Random(3), **kwargs)  # type: ignore[arg-type]


def template(title: str) -> dict:
    return copy.deepcopy(FALLBACK_CHALLENGES["JavaScript"]["Beginner"][0]) | {"title": title}


def test_fallback_matches_requested_language_and_difficulty() -> None:
    provider = make_provider()
    challenge = provider.get_fallback_challenge(
        ChallengeFilters(languages=["Python"], difficulty="Intermediate"),
        reason="AI generation failed: boom",
        generation_attempts=4,
        consecutive_failures=2,
    )

    assert challenge.language == "Python"
    assert challenge.difficulty == "Intermediate"
    assert challenge.title in {"List Average", "Count Vowels"}
    assert challenge.metadata.source is ChallengeSource.FALLBACK
    assert challenge.metadata.parsing_method == "fallback"
    assert challenge.metadata.fallback_reason == "AI generation failed: boom"
    assert challenge.metadata.generation_attempts == 4
    assert challenge.metadata.consecutive_failures == 2


def test_language_match_is_case_insensitive() -> None:
    challenge = make_provider().get_fallback_challenge(ChallengeFilters(languages=["pYtHoN"], difficulty="beginner"))
    assert challenge.language == "Python"
    assert challenge.difficulty == "Beginner"


def test_unknown_language_uses_javascript() -> None:
    challenge = make_provider().get_fallback_challenge(ChallengeFilters(languages=["Rust"], difficulty="Advanced"))
    assert challenge.language == "JavaScript"
    assert challenge.title in {"Binary Search", "Fibonacci Sequence"}


def test_unknown_difficulty_uses_first_bucket() -> None:
    challenge = make_provider().get_fallback_challenge(ChallengeFilters(languages=["Java"], difficulty="Expert"))
    assert challenge.language == "Java"
    assert challenge.difficulty == "Beginner"
    assert challenge.title == "Simple Calculator"


def test_defaults_without_filters() -> None:
    challenge = make_provider().get_fallback_challenge()
    assert challenge.language == "JavaScript"
    assert challenge.difficulty == "Intermediate"


def test_empty_bucket_falls_back_to_javascript_beginner() -> None:
    table = {"JavaScript": {"Beginner": [template("Only One")]}, "Go": {"Advanced": []}}
    challenge = make_provider(table).get_fallback_challenge(ChallengeFilters(languages=["Go"], difficulty="Advanced"))

    assert challenge.title == "Only One"
    assert challenge.language == "JavaScript"
    assert challenge.metadata.fallback_reason == NO_MATCH_REASON


def test_recent_titles_are_not_repeated_within_window() -> None:
    provider = make_provider()
    filters = ChallengeFilters(languages=["JavaScript"], difficulty="Beginner")
    titles = [provider.get_fallback_challenge(filters).title for _ in range(3)]

    assert sorted(titles) == ["Check Even Number", "String Length", "Sum Two Numbers"]
    assert provider.recent_titles == titles


def test_exhausted_bucket_resets_recent_window() -> None:
    table = {"JavaScript": {"Beginner": [template("First"), template("Second")]}}
    provider = make_provider(table)
    filters = ChallengeFilters(languages=["JavaScript"], difficulty="Beginner")

    served = [provider.get_fallback_challenge(filters).title for _ in range(3)]

    assert sorted(served[:2]) == ["First", "Second"]
    assert served[2] in {"First", "Second"}
    assert provider.recent_titles == [served[2]]


def test_empty_table_returns_emergency_challenge() -> None:
    challenge = make_provider({}).get_fallback_challenge(generation_attempts=3)

    assert challenge.title == "Simple Addition"
    assert challenge.metadata.source is ChallengeSource.EMERGENCY_FALLBACK
    assert challenge.metadata.parsing_method == "emergency"
    assert challenge.metadata.generation_attempts == 3
    assert challenge.metadata.fallback_reason.startswith("Fallback system error")


def test_invalid_template_returns_emergency_challenge() -> None:
    table = {"JavaScript": {"Beginner": [{"title": "x"}]}}
    challenge = make_provider(table).get_fallback_challenge(ChallengeFilters(difficulty="Beginner"))

    assert challenge.metadata.source is ChallengeSource.EMERGENCY_FALLBACK


def test_served_challenge_does_not_alias_table() -> None:
    table = {"JavaScript": {"Beginner": [template("Mutable")]}}
    provider = make_provider(table)
    challenge = provider.get_fallback_challenge(ChallengeFilters(difficulty="Beginner"))
    challenge.test_cases.clear()

    assert table["JavaScript"]["Beginner"][0]["testCases"]


def test_emergency_challenge_is_valid() -> None:
    challenge = emergency_fallback_challenge("circuit_open", consecutive_failures=6)
    assert challenge.language == "JavaScript"
    assert challenge.difficulty == "Beginner"
    assert challenge.test_cases
    assert challenge.metadata.fallback_reason == "circuit_open"
    assert challenge.metadata.consecutive_failures == 6


def test_catalogue_queries_and_stats() -> None:
    provider = make_provider()

    assert provider.get_available_languages() == ["JavaScript", "Python", "Java"]
    assert provider.get_available_difficulties("python") == ["Beginner", "Intermediate", "Advanced"]
    assert provider.get_available_difficulties("Cobol") == []

    stats = provider.get_fallback_stats()
    assert stats["totalChallenges"] == 15
    assert stats["byLanguage"] == {"JavaScript": 8, "Python": 5, "Java": 2}
    assert stats["byDifficulty"] == {"Beginner": 6, "Intermediate": 6, "Advanced": 3}
    assert stats["recentTitles"] == []


def test_cached_pick_is_reused_with_current_reason() -> None:
    provider = make_provider(cache=FallbackCache(ttl=600))
    filters = ChallengeFilters(languages=["Python"], difficulty="Advanced")

    first = provider.get_fallback_challenge(filters, reason="circuit_open")
    second = provider.get_fallback_challenge(filters, reason="AI generation failed: boom", generation_attempts=4)

    assert first.metadata.source is ChallengeSource.FALLBACK
    assert second.metadata.source is ChallengeSource.FALLBACK_CACHED
    assert second.title == first.title
    assert second.metadata.fallback_reason == "AI generation failed: boom"
    assert second.metadata.generation_attempts == 4
    assert provider.recent_titles == [first.title]
    assert provider.get_fallback_stats()["cache"]["hits"] == 1


def test_default_bucket_substitution_is_not_cached() -> None:
    table = {"JavaScript": {"Beginner": [template("Only One")]}, "Go": {"Advanced": []}}
    cache = FallbackCache(ttl=600)
    provider = make_provider(table, cache=cache)

    provider.get_fallback_challenge(ChallengeFilters(languages=["Go"], difficulty="Advanced"))

    assert len(cache) == 0
