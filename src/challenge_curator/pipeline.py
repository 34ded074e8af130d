"""
Generation orchestrator for coding challenges, reference answers and reviews.

This module wires together:
1) System prompts read once from prompts/ and identified by a short hash.
2) LLM invocation through a provider-agnostic client interface, bounded by a
   per-call timeout.
3) Response processing: sanitize -> progressive parse -> validate/repair.
4) Retries across a prioritized model list behind the shared circuit breaker.
5) The offline fallback table (and canned review) when generation does not
   succeed.

Engineering goals:
- Always answer: `generate_challenge` returns a validated `Challenge` and
  `generate_review` a `CodeReview` on every path, stamped with where they
  came from.
- Fail fast when the backend is known to be unhealthy (consecutive-failure
  short-circuit and open breaker both skip the model calls).
- Observability: structured logs with request_id, model, attempt, stage and
  prompt hashes; raw output only as truncated previews.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import re
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Any, Protocol, TypeVar
from uuid import uuid4

from pydantic import ValidationError

from .cache import FallbackCache
from .config import CuratorConfig
from .fallback import REVIEW_UNAVAILABLE, FallbackProvider, emergency_fallback_challenge, offline_code_review
from .llm_client import (
    ANSWER_RESPONSE_SCHEMA,
    CHALLENGE_RESPONSE_SCHEMA,
    REVIEW_RESPONSE_SCHEMA,
    LLMClientError,
    LLMNetworkError,
    LLMTimeoutError,
)
from .memory import MemoryMonitor, ResponseTooLargeError, check_response_size
from .models import (
    REQUIRED_FIELDS,
    AnswerRequest,
    AnswerResult,
    Challenge,
    ChallengeFilters,
    ChallengeSource,
    CodeReview,
    ReviewRequest,
)
from .processing import ResponseProcessor, ResponseValidationError
from .recorder import ErrorRecorder
from .retry import CircuitBreaker, CircuitOpenError, RetryConfig, RetryController, RetryExhaustedError


T = TypeVar("T")


# ---------------------------------------------------------------------
# LLM client interface
# ---------------------------------------------------------------------


class LLMClient(Protocol):
    """Minimal interface expected by the pipeline for LLM calls."""

    def generate(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        response_schema: dict[str, Any] | None = None,
        temperature: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Return model text output for a single call."""


# ---------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------


class AnswerGenerationError(RuntimeError):
    """Raised when no model produced a usable reference solution."""

    def __init__(self, *, attempts: int, last_error: str, timed_out: bool = False) -> None:
        super().__init__(
            f"Answer generation failed after {attempts} attempts. Last error: {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error
        self.timed_out = timed_out


# ---------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------


ANSWER_KEYS = ("solutionCode",)
REVIEW_KEYS = ("score", "strength", "improvement")

_CODE_FENCE_RE = re.compile(r"^```[A-Za-z0-9_+#-]*[ \t]*\n?|\n?```\s*$")


def _sha12(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]


def _truncate(text: str, max_len: int = 2000) -> str:
    return text if len(text) <= max_len else (text[:max_len] + "...[truncated]")


def _json_dumps(payload: dict[str, Any]) -> str:
    """Compact JSON for user prompts; non-ASCII text is kept as-is."""
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def _strip_code_fences(code: str) -> str:
    return _CODE_FENCE_RE.sub("", code.strip()).strip()


def _review_score(value: Any, default: int) -> int:
    """Round half up and clamp to 1..10; missing, zero or non-numeric scores use `default`."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = 0.0
    if not number or math.isnan(number):
        number = default
    return max(1, min(10, math.floor(number + 0.5)))


# ---------------------------------------------------------------------
# Main pipeline
# ---------------------------------------------------------------------


class ChallengePipeline:
    """Resilient challenge generation with model failover and offline fallback."""

    def __init__(
        self,
        *,
        llm_client: LLMClient | None,
        config: CuratorConfig | None = None,
        retry_controller: RetryController | None = None,
        fallback_provider: FallbackProvider | None = None,
        recorder: ErrorRecorder | None = None,
        memory_monitor: MemoryMonitor | None = None,
        repo_root: Path | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
        max_output_preview_chars: int = 2000,
    ) -> None:
        self.llm_client = llm_client
        self.config = config or CuratorConfig()
        self.repo_root = repo_root or Path(__file__).resolve().parents[2]
        self.logger = logger or logging.getLogger("challenge_curator.pipeline")
        self.max_output_preview_chars = max_output_preview_chars

        self.retry_controller = retry_controller or RetryController(
            breaker=CircuitBreaker(
                failure_threshold=self.config.circuit_breaker_threshold,
                recovery_timeout=self.config.circuit_breaker_timeout,
                clock=clock,
            ),
            default_config=self._retry_config(self.config.max_retries),
        )
        self.fallback_provider = fallback_provider or FallbackProvider(
            window_size=self.config.recent_window_size,
            confidence_threshold=self.config.confidence_threshold,
            cache=(
                FallbackCache(ttl=self.config.fallback_cache_ttl, clock=clock)
                if self.config.fallback_cache_ttl > 0
                else None
            ),
        )
        self.recorder = recorder or ErrorRecorder()
        self.memory_monitor = memory_monitor or MemoryMonitor()

        active_recorder = self.recorder if self.config.enable_error_logging else None
        self._active_recorder = active_recorder
        self.challenge_processor = ResponseProcessor(
            confidence_threshold=self.config.confidence_threshold,
            progressive_parsing=self.config.enable_progressive_parsing,
            recorder=active_recorder,
            memory_monitor=self.memory_monitor,
        )
        self.answer_processor = ResponseProcessor(
            progressive_parsing=self.config.enable_progressive_parsing,
            required_keys=ANSWER_KEYS,
            recorder=active_recorder,
        )
        self.review_processor = ResponseProcessor(
            progressive_parsing=self.config.enable_progressive_parsing,
            required_keys=REVIEW_KEYS,
            recorder=active_recorder,
        )

        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self._prompt_cache: dict[str, str] = {}

    # -------------------------
    # Public API
    # -------------------------

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def generate_challenge(self, filters: ChallengeFilters | Mapping[str, Any] | None = None) -> Challenge:
        """Return a validated challenge; never raises."""
        request_id = str(uuid4())
        normalized = self._coerce_filters(filters, request_id)
        try:
            return self._generate(normalized, request_id)
        except Exception as err:
            self.logger.exception(
                "generation_unexpected_error",
                extra={"request_id": request_id, "error": str(err)},
            )
            try:
                return self.fallback_provider.get_fallback_challenge(
                    normalized,
                    reason=f"Unexpected error: {err}",
                    consecutive_failures=self.consecutive_failures,
                )
            except Exception:
                return emergency_fallback_challenge(f"Unexpected error: {err}")

    def generate_answer(self, request: AnswerRequest) -> AnswerResult:
        """Generate a reference solution or raise `AnswerGenerationError`."""
        request_id = str(uuid4())
        if self.llm_client is None:
            raise AnswerGenerationError(attempts=0, last_error="AI service not configured")

        system_prompt = self._system_prompt("answer_generator.txt")
        user_prompt = _json_dumps(request.model_dump(mode="json", by_alias=True, exclude_none=True))
        self.logger.info(
            "answer_start",
            extra={
                "request_id": request_id,
                "title": request.title,
                "language": request.language,
                "difficulty": request.difficulty,
                "system_prompt_hash": _sha12(system_prompt),
            },
        )

        def run(model: str, attempt_no: int) -> str:
            raw = self._call_model(
                model=model,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                response_schema=ANSWER_RESPONSE_SCHEMA,
                temperature=0.7,
                request_id=request_id,
                attempt=attempt_no,
                target="answer",
            )
            result = self.answer_processor.process(
                raw, context={"request_id": request_id, "model": model, "attempt": attempt_no}
            )
            if not result.success or result.data is None:
                raise result.to_exception()
            code = result.data.get("solutionCode")
            if not isinstance(code, str) or not _strip_code_fences(code):
                raise ResponseValidationError("Generated solution is empty or in the wrong format")
            return _strip_code_fences(code)

        solution_code, model, calls, last_error = self._try_models(
            "answer", request_id, self.config.answer_models, run
        )
        if solution_code is None:
            raise AnswerGenerationError(
                attempts=calls,
                last_error=str(last_error) if last_error else "no answer models configured",
                timed_out=isinstance(last_error, LLMTimeoutError),
            )

        self.logger.info(
            "answer_success",
            extra={"request_id": request_id, "model": model, "calls": calls},
        )
        return AnswerResult(
            solution_code=solution_code,
            language=request.language,
            difficulty=request.difficulty,
            model=model,
        )

    def generate_review(self, request: ReviewRequest) -> CodeReview:
        """Review submitted code against the reference solution; never raises.

        Without a backend, or when no model yields a usable review, the canned
        review for the test outcome is returned (with `error` set in the latter
        case).
        """
        request_id = str(uuid4())
        if self.llm_client is None:
            return offline_code_review(request.tests_passed)

        default_score = 7 if request.tests_passed else 4
        try:
            system_prompt = self._system_prompt("code_reviewer.txt")
            user_prompt = _json_dumps(
                {
                    "challengeTitle": request.challenge_title or "Coding Challenge",
                    "language": request.language,
                    "testsPassed": request.tests_passed,
                    "userCode": request.user_code,
                    "solutionCode": request.solution_code,
                }
            )

            def run(model: str, attempt_no: int) -> CodeReview:
                raw = self._call_model(
                    model=model,
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    response_schema=REVIEW_RESPONSE_SCHEMA,
                    temperature=None,
                    request_id=request_id,
                    attempt=attempt_no,
                    target="review",
                )
                result = self.review_processor.process(
                    raw, context={"request_id": request_id, "model": model, "attempt": attempt_no}
                )
                if not result.success or result.data is None:
                    raise result.to_exception()
                try:
                    return CodeReview(
                        score=_review_score(result.data.get("score"), default_score),
                        strength=result.data.get("strength"),
                        improvement=result.data.get("improvement"),
                        model=model,
                    )
                except ValidationError as err:
                    raise ResponseValidationError(f"Review contract violation: {err}") from err

            review, model, calls, last_error = self._try_models(
                "review", request_id, self.config.answer_models, run
            )
        except Exception as err:
            self.logger.exception("review_unexpected_error", extra={"request_id": request_id, "error": str(err)})
            return offline_code_review(request.tests_passed, error=REVIEW_UNAVAILABLE)

        if review is None:
            self.logger.warning(
                "review_fallback",
                extra={"request_id": request_id, "calls": calls, "error": str(last_error)},
            )
            return offline_code_review(request.tests_passed, error=REVIEW_UNAVAILABLE)

        self.logger.info(
            "review_success",
            extra={"request_id": request_id, "model": model, "calls": calls, "score": review.score},
        )
        return review

    def service_health(self) -> dict[str, Any]:
        with self._lock:
            failures = self._consecutive_failures
        degraded = failures >= self.config.fallback_threshold
        return {
            "status": "degraded" if degraded else "healthy",
            "consecutiveFailures": failures,
            "fallbackThreshold": self.config.fallback_threshold,
            "circuitBreaker": self.retry_controller.breaker.status().as_dict(),
            "memory": self.memory_monitor.stats(),
            "config": self.config.summary(),
            "models": list(self.config.models),
            "answerModels": list(self.config.answer_models),
            "apiKeyConfigured": self.llm_client is not None,
            "fallback": self.fallback_provider.get_fallback_stats(),
        }

    def reset(self) -> None:
        """Clear the failure counter and the breaker."""
        with self._lock:
            self._consecutive_failures = 0
        self.retry_controller.breaker.reset()

    # -------------------------
    # Core execution
    # -------------------------

    def _generate(self, filters: ChallengeFilters, request_id: str) -> Challenge:
        filters_preview = filters.model_dump(mode="json")

        if self.llm_client is None:
            return self._fallback(filters, request_id, reason="AI service not configured", calls=0)

        skip_reason = self._preflight_skip_reason()
        if skip_reason is not None:
            self.logger.warning(
                "generation_short_circuit",
                extra={"request_id": request_id, "reason": skip_reason, "filters": filters_preview},
            )
            return self._fallback(filters, request_id, reason=skip_reason, calls=0)

        system_prompt = self._system_prompt("challenge_generator.txt")
        user_prompt = _json_dumps(filters.prompt_payload())
        self.logger.info(
            "generation_start",
            extra={
                "request_id": request_id,
                "models": list(self.config.models),
                "per_model_attempts": self.config.per_model_attempts,
                "system_prompt_hash": _sha12(system_prompt),
                "filters": filters_preview,
            },
        )

        def run(model: str, attempt_no: int) -> Challenge:
            return self._attempt_challenge(
                model=model,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                request_id=request_id,
                attempt=attempt_no,
            )

        challenge, model, calls, last_error = self._try_models(
            "challenge", request_id, self.config.models, run
        )

        if challenge is not None:
            self._register_success()
            self.logger.info(
                "generation_success",
                extra={
                    "request_id": request_id,
                    "model": model,
                    "calls": calls,
                    "parsing_method": challenge.metadata.parsing_method,
                },
            )
            metadata = challenge.metadata.model_copy(update={"generation_attempts": calls})
            return challenge.model_copy(update={"metadata": metadata})

        failures = self._register_failure()
        if isinstance(last_error, CircuitOpenError):
            reason = "circuit_open"
        else:
            reason = f"AI generation failed: {last_error}" if last_error else "AI generation failed"
        self.logger.warning(
            "generation_failed",
            extra={
                "request_id": request_id,
                "calls": calls,
                "consecutive_failures": failures,
                "error": str(last_error),
                "filters": filters_preview,
            },
        )
        return self._fallback(filters, request_id, reason=reason, calls=calls)

    def _try_models(
        self,
        target: str,
        request_id: str,
        models: Sequence[str],
        run: Callable[[str, int], T],
    ) -> tuple[T | None, str | None, int, BaseException | None]:
        """Try each model in order with its own retry budget.

        Returns `(value, model, calls, last_error)`; `value` and `model` are
        None when every model failed. An open breaker stops the loop.
        """
        calls = 0
        last_error: BaseException | None = None

        for model in models:

            def attempt(attempt_no: int, model: str = model) -> T:
                nonlocal calls
                calls += 1
                return run(model, attempt_no)

            try:
                value = self.retry_controller.retry_with_backoff(
                    attempt, self._retry_config(self.config.per_model_attempts)
                )
            except CircuitOpenError as err:
                last_error = err
                self._log_model_failure(target, request_id, model, err)
                break
            except RetryExhaustedError as err:
                last_error = err.last_error
                self._log_model_failure(target, request_id, model, err.last_error)
                continue
            return value, model, calls, None

        return None, None, calls, last_error

    def _attempt_challenge(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        request_id: str,
        attempt: int,
    ) -> Challenge:
        raw_output = self._call_model(
            model=model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            response_schema=CHALLENGE_RESPONSE_SCHEMA,
            temperature=0.7,
            request_id=request_id,
            attempt=attempt,
            target="challenge",
        )

        try:
            check_response_size(raw_output, self.config.max_response_size)
        except ResponseTooLargeError as err:
            if self._active_recorder is not None:
                self._active_recorder.record_validation_error(
                    str(err), request_id=request_id, model=model, attempt=attempt
                )
            raise ResponseValidationError(str(err)) from err

        result = self.challenge_processor.process(
            raw_output, context={"request_id": request_id, "model": model, "attempt": attempt}
        )
        if not result.success or result.data is None:
            raise result.to_exception()

        try:
            return Challenge.model_validate(
                {
                    **{name: result.data[name] for name in REQUIRED_FIELDS},
                    "metadata": {
                        "source": ChallengeSource.AI,
                        "generationAttempts": attempt,
                        "parsingMethod": result.parsing_method,
                        "model": model,
                    },
                }
            )
        except ValidationError as err:
            raise ResponseValidationError(f"Challenge contract violation: {err}") from err

    def _call_model(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        response_schema: dict[str, Any],
        temperature: float | None,
        request_id: str,
        attempt: int,
        target: str,
    ) -> str:
        """One bounded backend call; failures are recorded, then re-raised."""
        assert self.llm_client is not None
        client = self.llm_client
        metadata = {
            "request_id": request_id,
            "target": target,
            "model": model,
            "attempt": attempt,
            "system_prompt_hash": _sha12(system_prompt),
            "json_only": True,
        }

        def call() -> str:
            return client.generate(
                model=model,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                response_schema=response_schema,
                temperature=temperature,
                metadata=metadata,
            )

        recorder = self._active_recorder
        try:
            raw_output = self._with_timeout(call, model)
        except LLMTimeoutError as err:
            if recorder is not None:
                recorder.record_timeout(str(err), model=model, request_id=request_id, attempt=attempt)
            raise
        except LLMNetworkError as err:
            if recorder is not None:
                recorder.record_network_error(str(err), model=model, request_id=request_id, attempt=attempt)
            raise
        except Exception as err:
            if recorder is not None:
                recorder.record_api_error(str(err), model=model, request_id=request_id, attempt=attempt)
            raise

        if not isinstance(raw_output, str):
            raise LLMClientError(f"Model {model} returned {type(raw_output).__name__}, expected text")

        self.logger.info(
            "pipeline_response",
            extra={
                "request_id": request_id,
                "target": target,
                "model": model,
                "attempt": attempt,
                "response_length": len(raw_output),
                "raw_output_preview": _truncate(raw_output, self.max_output_preview_chars),
            },
        )
        return raw_output

    def _with_timeout(self, call: Callable[[], str], model: str) -> str:
        timeout = self.config.api_timeout
        if not timeout or timeout <= 0:
            return call()

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="curator-llm")
        future = executor.submit(call)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as err:
            future.cancel()
            raise LLMTimeoutError(f"Model {model} timed out after {timeout}s") from err
        finally:
            # The worker is abandoned, not joined; a hung call cannot block the request.
            executor.shutdown(wait=False)

    # -------------------------
    # Failure bookkeeping
    # -------------------------

    def _preflight_skip_reason(self) -> str | None:
        """Reason to skip the models entirely; the counter only drops via success or `reset()`."""
        failures = self.consecutive_failures
        if failures >= self.config.fallback_threshold:
            return f"Skipped AI generation after {failures} consecutive failures"
        if self.retry_controller.breaker.is_open():
            return "circuit_open"
        return None

    def _register_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0

    def _register_failure(self) -> int:
        with self._lock:
            self._consecutive_failures += 1
            return self._consecutive_failures

    def _fallback(self, filters: ChallengeFilters, request_id: str, *, reason: str, calls: int) -> Challenge:
        failures = self.consecutive_failures
        if self.config.enable_fallback:
            challenge = self.fallback_provider.get_fallback_challenge(
                filters,
                reason=reason,
                generation_attempts=calls,
                consecutive_failures=failures,
            )
        else:
            challenge = emergency_fallback_challenge(
                reason, generation_attempts=calls, consecutive_failures=failures
            )
        self.logger.info(
            "generation_fallback",
            extra={
                "request_id": request_id,
                "source": challenge.metadata.source.value,
                "reason": reason,
                "title": challenge.title,
            },
        )
        return challenge

    def _log_model_failure(self, target: str, request_id: str, model: str, error: BaseException) -> None:
        self.logger.warning(
            "generation_model_failed",
            extra={
                "request_id": request_id,
                "target": target,
                "model": model,
                "error_kind": type(error).__name__,
                "error": str(error),
            },
        )

    # -------------------------
    # Inputs / prompts
    # -------------------------

    def _retry_config(self, max_attempts: int) -> RetryConfig:
        return RetryConfig(
            max_attempts=max_attempts if self.config.enable_retry else 1,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
            backoff_multiplier=self.config.retry_backoff_multiplier,
            jitter=self.config.retry_jitter,
        )

    def _coerce_filters(
        self, filters: ChallengeFilters | Mapping[str, Any] | None, request_id: str
    ) -> ChallengeFilters:
        if isinstance(filters, ChallengeFilters):
            return filters
        try:
            return ChallengeFilters.model_validate(dict(filters or {}))
        except (ValidationError, TypeError, ValueError) as err:
            self.logger.warning(
                "generation_filters_invalid",
                extra={"request_id": request_id, "error": str(err)},
            )
            return ChallengeFilters()

    def _system_prompt(self, filename: str) -> str:
        return "\n\n".join([self._load_prompt(filename), self._load_prompt("json_rules.txt")])

    def _load_prompt(self, filename: str) -> str:
        """Load one prompt file from prompts/ (cached)."""
        if filename in self._prompt_cache:
            return self._prompt_cache[filename]

        path = self.repo_root / "prompts" / filename
        if not path.exists():
            raise FileNotFoundError(f"Missing prompt file: {path}")

        content = path.read_text(encoding="utf-8").strip()
        self._prompt_cache[filename] = content
        return content
