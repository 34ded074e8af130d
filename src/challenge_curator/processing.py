"""
Raw model text -> validated challenge dict.

`ResponseProcessor.process` runs the stages in order and reports the first
one that failed instead of raising:

1) response_check  - reject empty or too-short text outright
2) sanitize        - strip fences, mojibake and typographic characters
3) parse           - progressive parsing (or plain `json.loads`)
4) validate        - score, then normalize + defaults, then re-score

`ResponseParsingError` and `ResponseValidationError` are the exception forms
of a failed result; the orchestrator raises them at the retry boundary so the
retry controller can classify the failure.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass, field
from typing import Any, Literal

from .memory import MemoryMonitor
from .models import REQUIRED_FIELDS
from .parser import ParseResult, direct_parse, parse
from .recorder import ErrorRecorder
from .sanitizer import sanitize
from .validator import DEFAULT_CONFIDENCE_THRESHOLD, apply_defaults, normalize_types, validate, validate_response


Stage = Literal["response_check", "sanitize", "parse", "validate", "complete"]


class ResponseParsingError(ValueError):
    """Model text could not be turned into a JSON object."""


class ResponseValidationError(ValueError):
    """A parsed object failed schema validation, even after repair."""

    def __init__(self, message: str, *, issues: list[str] | None = None, confidence: float | None = None) -> None:
        super().__init__(message)
        self.issues = issues or []
        self.confidence = confidence


@dataclass(frozen=True)
class ProcessingResult:
    success: bool
    stage: Stage
    data: dict[str, Any] | None = None
    error: str | None = None
    parsing_method: str = "failed"
    confidence: float = 0.0
    issues: list[str] = field(default_factory=list)

    def to_exception(self) -> ValueError:
        """Exception form of a failed result, classified by stage."""
        if self.stage == "validate":
            return ResponseValidationError(
                f"Schema validation failed: {self.error}",
                issues=self.issues,
                confidence=self.confidence,
            )
        return ResponseParsingError(f"Response parse failed at {self.stage}: {self.error}")


class ResponseProcessor:
    """Sanitize, parse and validate one model response."""

    def __init__(
        self,
        *,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        progressive_parsing: bool = True,
        required_keys: Collection[str] = REQUIRED_FIELDS,
        recorder: ErrorRecorder | None = None,
        memory_monitor: MemoryMonitor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.confidence_threshold = confidence_threshold
        self.progressive_parsing = progressive_parsing
        self.required_keys = tuple(required_keys)
        self.challenge_shape = self.required_keys == REQUIRED_FIELDS
        self.recorder = recorder
        self.memory_monitor = memory_monitor
        self.logger = logger or logging.getLogger("challenge_curator.processing")

    def process(self, raw: str, *, context: dict[str, Any] | None = None) -> ProcessingResult:
        context = context or {}
        if self.memory_monitor is not None:
            self.memory_monitor.relieve_pressure()

        check = validate_response(raw) if self.challenge_shape else None
        if check is not None and check.confidence == 0.0:
            return self._fail("response_check", "Invalid response format", raw, context, issues=check.issues)

        cleaned = sanitize(raw)
        if not cleaned:
            return self._fail("sanitize", "Sanitization produced empty result", raw, context)

        parsed = self._parse(cleaned)
        if not parsed.success or parsed.data is None:
            return self._fail("parse", parsed.error or "parse failed", raw, context, method=parsed.method)

        if not self.challenge_shape:
            # Non-challenge payloads (answers) are only shape-checked by the parser.
            return self._succeed(parsed.data, parsed.method, 1.0, [], context)

        first = validate(parsed.data, self.confidence_threshold)
        candidate = apply_defaults(normalize_types(parsed.data))
        final = validate(candidate, self.confidence_threshold)
        if not first.is_valid:
            self.logger.info(
                "processing_repair_pass",
                extra={
                    **context,
                    "confidence_before": first.confidence,
                    "confidence_after": final.confidence,
                    "issues": first.issues,
                },
            )
        if not final.is_valid:
            return self._fail(
                "validate",
                "; ".join(final.issues) or "validation failed",
                raw,
                context,
                method=parsed.method,
                issues=first.issues + final.issues,
                confidence=final.confidence,
                data=parsed.data,
            )

        return self._succeed(candidate, parsed.method, final.confidence, first.issues, context)

    def _parse(self, cleaned: str) -> ParseResult:
        if self.progressive_parsing:
            return parse(cleaned, required_keys=self.required_keys)
        value = direct_parse(cleaned)
        if isinstance(value, dict):
            return ParseResult(success=True, data=value, method="direct")
        return ParseResult(success=False, data=None, method="failed", error="Response is not a JSON object")

    def _succeed(
        self,
        data: dict[str, Any],
        method: str,
        confidence: float,
        issues: list[str],
        context: dict[str, Any],
    ) -> ProcessingResult:
        if self.recorder is not None:
            self.recorder.record_success(parsing_method=method, **context)
        return ProcessingResult(
            success=True,
            stage="complete",
            data=data,
            parsing_method=method,
            confidence=confidence,
            issues=issues,
        )

    def _fail(
        self,
        stage: Stage,
        error: str,
        raw: Any,
        context: dict[str, Any],
        *,
        method: str = "failed",
        issues: list[str] | None = None,
        confidence: float = 0.0,
        data: Any = None,
    ) -> ProcessingResult:
        self.logger.warning(
            "processing_failed",
            extra={**context, "stage": stage, "parsing_method": method, "error": error},
        )
        if self.recorder is not None:
            if stage == "validate":
                self.recorder.record_validation_error(
                    error, issues=issues, confidence=confidence, data=data, **context
                )
            else:
                self.recorder.record_parsing_error(
                    error,
                    parsing_method=method,
                    raw_response=raw if isinstance(raw, str) else None,
                    stage=stage,
                    **context,
                )
        return ProcessingResult(
            success=False,
            stage=stage,
            error=error,
            parsing_method=method,
            confidence=confidence,
            issues=issues or [],
        )
