"""Offline results used when generation fails.

`FallbackProvider.get_fallback_challenge` always returns a `Challenge`: a
table entry when one fits, otherwise the hardcoded emergency challenge.
`offline_code_review` is the review counterpart.
"""

from __future__ import annotations

import copy
import logging
import random
import threading
from collections import deque
from typing import Any

from .cache import FallbackCache
from .fallback_table import EMERGENCY_CHALLENGE, FALLBACK_CHALLENGES, FallbackTable
from .models import Challenge, ChallengeFilters, ChallengeMetadata, ChallengeSource, CodeReview, Difficulty
from .validator import validate


DEFAULT_LANGUAGE = "JavaScript"
DEFAULT_REASON = "AI generation failed"
NO_MATCH_REASON = "No challenges available for requested language/difficulty"
REVIEW_UNAVAILABLE = "AI review temporarily unavailable"


def emergency_fallback_challenge(
    reason: str = "Fallback system error",
    *,
    generation_attempts: int = 0,
    consecutive_failures: int | None = None,
) -> Challenge:
    """The last-resort challenge; built from constants only."""
    return Challenge.model_validate(
        {
            **copy.deepcopy(EMERGENCY_CHALLENGE),
            "metadata": {
                "source": ChallengeSource.EMERGENCY_FALLBACK,
                "generationAttempts": generation_attempts,
                "parsingMethod": "emergency",
                "fallbackReason": reason,
                "consecutiveFailures": consecutive_failures,
            },
        }
    )


def offline_code_review(tests_passed: bool, *, error: str | None = None) -> CodeReview:
    """Canned review used without a working backend; depends only on the test outcome."""
    if tests_passed:
        return CodeReview(
            score=7,
            strength="Your solution passes all test cases!",
            improvement="Consider exploring edge cases and optimizing your solution.",
            error=error,
        )
    return CodeReview(
        score=4,
        strength="Keep trying! Practice makes perfect.",
        improvement="Review the test failures and try to fix the issues.",
        error=error,
    )


class FallbackProvider:
    """Picks a curated challenge, avoiding recently served titles.

    With a `cache`, the pick for a language/difficulty bucket is reused until
    it expires and is then stamped `fallback_cached`.
    """

    def __init__(
        self,
        table: FallbackTable | None = None,
        *,
        window_size: int = 5,
        confidence_threshold: float = 0.6,
        cache: FallbackCache | None = None,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.table = FALLBACK_CHALLENGES if table is None else table
        self.confidence_threshold = confidence_threshold
        self.cache = cache
        self._rng = rng or random.Random()
        self._recent: deque[str] = deque(maxlen=window_size)
        self._lock = threading.Lock()
        self.logger = logger or logging.getLogger("challenge_curator.fallback")

    @property
    def recent_titles(self) -> list[str]:
        with self._lock:
            return list(self._recent)

    def get_available_languages(self) -> list[str]:
        return list(self.table)

    def get_available_difficulties(self, language: str) -> list[str]:
        resolved = self._match_language(language)
        return list(self.table[resolved]) if resolved else []

    def get_fallback_stats(self) -> dict[str, Any]:
        by_language: dict[str, int] = {}
        by_difficulty: dict[str, int] = {}
        for language, buckets in self.table.items():
            by_language[language] = 0
            for difficulty, templates in buckets.items():
                by_language[language] += len(templates)
                by_difficulty[difficulty] = by_difficulty.get(difficulty, 0) + len(templates)
        return {
            "totalChallenges": sum(by_language.values()),
            "byLanguage": by_language,
            "byDifficulty": by_difficulty,
            "recentTitles": self.recent_titles,
            "cache": self.cache.stats() if self.cache is not None else None,
        }

    def get_fallback_challenge(
        self,
        filters: ChallengeFilters | None = None,
        *,
        reason: str = DEFAULT_REASON,
        generation_attempts: int = 0,
        consecutive_failures: int | None = None,
    ) -> Challenge:
        filters = filters or ChallengeFilters()
        try:
            return self._select(
                filters,
                reason=reason,
                generation_attempts=generation_attempts,
                consecutive_failures=consecutive_failures,
            )
        except Exception as err:
            self.logger.error(
                "fallback_failed",
                extra={"error": str(err), "filters": filters.model_dump(mode="json")},
            )
            return emergency_fallback_challenge(
                f"Fallback system error: {err}",
                generation_attempts=generation_attempts,
                consecutive_failures=consecutive_failures,
            )

    # -------------------------
    # Selection
    # -------------------------

    def _match_language(self, language: str | None) -> str | None:
        if not language:
            return None
        wanted = language.strip().lower()
        return next((name for name in self.table if name.lower() == wanted), None)

    def _resolve(self, filters: ChallengeFilters) -> tuple[str, str]:
        language = next(
            (match for match in map(self._match_language, filters.languages) if match),
            None,
        )
        if language is None:
            language = DEFAULT_LANGUAGE if DEFAULT_LANGUAGE in self.table else next(iter(self.table))

        buckets = self.table[language]
        wanted = (filters.difficulty or Difficulty.INTERMEDIATE.value).strip().lower()
        difficulty = next((name for name in buckets if name.lower() == wanted), None)
        if difficulty is None:
            difficulty = next(iter(buckets), Difficulty.BEGINNER.value)
        return language, difficulty

    def _select(
        self,
        filters: ChallengeFilters,
        *,
        reason: str,
        generation_attempts: int,
        consecutive_failures: int | None,
    ) -> Challenge:
        if not self.table:
            raise ValueError("fallback table is empty")

        language, difficulty = self._resolve(filters)
        bucket = self.table[language].get(difficulty) or []
        cache_key: str | None = None
        if not bucket:
            language, difficulty = DEFAULT_LANGUAGE, Difficulty.BEGINNER.value
            bucket = self.table[language][difficulty]
            reason = NO_MATCH_REASON
            if not bucket:
                raise ValueError(f"no templates for {language}/{difficulty}")
        elif self.cache is not None:
            cache_key = FallbackCache.key(language, difficulty)
            cached = self.cache.get(cache_key)
            if cached is not None:
                return self._from_cache(cached, reason, generation_attempts, consecutive_failures)

        with self._lock:
            candidates = [template for template in bucket if template.get("title") not in self._recent]
            if not candidates:
                self._recent.clear()
                candidates = list(bucket)
            template = self._rng.choice(candidates)
            self._recent.append(template["title"])

        data = {**copy.deepcopy(template), "language": language, "difficulty": difficulty}
        check = validate(data, self.confidence_threshold)
        if not check.is_valid:
            raise ValueError(f"invalid fallback template {template.get('title')!r}: {'; '.join(check.issues)}")

        self.logger.info(
            "fallback_selected",
            extra={"title": data["title"], "language": language, "difficulty": difficulty, "reason": reason},
        )
        challenge = Challenge.model_validate(
            {
                **data,
                "metadata": {
                    "source": ChallengeSource.FALLBACK,
                    "generationAttempts": generation_attempts,
                    "parsingMethod": "fallback",
                    "fallbackReason": reason,
                    "consecutiveFailures": consecutive_failures,
                },
            }
        )
        if self.cache is not None and cache_key is not None:
            self.cache.set(cache_key, challenge)
        return challenge

    def _from_cache(
        self,
        cached: Challenge,
        reason: str,
        generation_attempts: int,
        consecutive_failures: int | None,
    ) -> Challenge:
        self.logger.info(
            "fallback_cache_hit",
            extra={"title": cached.title, "language": cached.language, "reason": reason},
        )
        metadata = ChallengeMetadata(
            source=ChallengeSource.FALLBACK_CACHED,
            generation_attempts=generation_attempts,
            parsing_method="fallback",
            fallback_reason=reason,
            consecutive_failures=consecutive_failures,
        )
        return cached.model_copy(update={"metadata": metadata}, deep=True)
