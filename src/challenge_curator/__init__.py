"""Resilient AI coding-challenge generation for Challenge Curator."""

from .config import CuratorConfig
from .fallback import FallbackProvider
from .llm_client import GeminiLLMClient, LLMClientError
from .models import (
    AnswerRequest,
    AnswerResult,
    Challenge,
    ChallengeFilters,
    ChallengeSource,
    CodeReview,
    ReviewRequest,
    TestCase,
)
from .pipeline import AnswerGenerationError, ChallengePipeline

__all__ = [
    "Challenge",
    "ChallengeFilters",
    "ChallengeSource",
    "TestCase",
    "AnswerRequest",
    "AnswerResult",
    "ReviewRequest",
    "CodeReview",
    "CuratorConfig",
    "FallbackProvider",
    "GeminiLLMClient",
    "LLMClientError",
    "ChallengePipeline",
    "AnswerGenerationError",
]
