"""In-process error and success tracking for the generation pipeline.

Records go into a bounded ring buffer (newest last) and are also emitted
through `logging`. Nothing here raises to the caller: recording is
observational and a broken record must never fail a request.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


MAX_RECORDS = 1000
RAW_SNIPPET_CHARS = 1000
DATA_SNIPPET_CHARS = 500
DEFAULT_WINDOW_SECONDS = 3600.0
DEFAULT_ALERT_THRESHOLD = 5


class ErrorKind(str, Enum):
    PARSING = "parsing"
    API = "api"
    VALIDATION = "validation"
    NETWORK = "network"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class ErrorRecord:
    timestamp: float
    error_type: ErrorKind
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def parsing_method(self) -> str | None:
        method = self.context.get("parsing_method")
        return method if isinstance(method, str) else None

    def as_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "errorType": self.error_type.value,
            "message": self.message,
            "context": self.context,
        }


def _snippet(value: Any, limit: int) -> str | None:
    if value is None:
        return None
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    return text[:limit]


class ErrorRecorder:
    """Bounded log of recent failures with windowed statistics."""

    def __init__(
        self,
        *,
        max_records: int = MAX_RECORDS,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self._records: deque[ErrorRecord] = deque(maxlen=max_records)
        self._successes: deque[tuple[float, str]] = deque(maxlen=max_records)
        self._lock = threading.Lock()
        self._clock = clock
        self.logger = logger or logging.getLogger("challenge_curator.recorder")

    # -------------------------
    # Recording
    # -------------------------

    def _record(self, kind: ErrorKind, message: str, context: dict[str, Any]) -> None:
        try:
            record = ErrorRecord(
                timestamp=self._clock(),
                error_type=kind,
                message=str(message),
                context={key: value for key, value in context.items() if value is not None},
            )
            with self._lock:
                self._records.append(record)
            self.logger.warning(
                "pipeline_error_recorded",
                extra={"error_type": kind.value, "error": record.message, **record.context},
            )
        except Exception:
            self.logger.exception("error_record_failed", extra={"error_type": kind.value})

    def record_parsing_error(
        self,
        message: str,
        *,
        parsing_method: str | None = None,
        raw_response: str | None = None,
        **context: Any,
    ) -> None:
        self._record(
            ErrorKind.PARSING,
            message,
            {
                **context,
                "parsing_method": parsing_method or "unknown",
                "response_length": len(raw_response) if isinstance(raw_response, str) else None,
                "raw_response": _snippet(raw_response, RAW_SNIPPET_CHARS),
            },
        )

    def record_api_error(self, message: str, *, model: str | None = None, **context: Any) -> None:
        self._record(ErrorKind.API, message, {**context, "model": model})

    def record_validation_error(
        self,
        message: str,
        *,
        issues: list[str] | None = None,
        confidence: float | None = None,
        data: Any = None,
        **context: Any,
    ) -> None:
        self._record(
            ErrorKind.VALIDATION,
            message,
            {
                **context,
                "issues": list(issues) if issues else None,
                "confidence": confidence,
                "data": _snippet(data, DATA_SNIPPET_CHARS),
            },
        )

    def record_network_error(self, message: str, *, model: str | None = None, **context: Any) -> None:
        self._record(ErrorKind.NETWORK, message, {**context, "model": model})

    def record_timeout(self, message: str, *, model: str | None = None, **context: Any) -> None:
        self._record(ErrorKind.TIMEOUT, message, {**context, "model": model})

    def record_success(self, *, parsing_method: str | None = None, **context: Any) -> None:
        try:
            method = parsing_method or "unknown"
            with self._lock:
                self._successes.append((self._clock(), method))
            self.logger.info("pipeline_success_recorded", extra={"parsing_method": method, **context})
        except Exception:
            self.logger.exception("success_record_failed")

    # -------------------------
    # Queries
    # -------------------------

    def get_stats(self, window_seconds: float = DEFAULT_WINDOW_SECONDS) -> dict[str, Any]:
        """Counts inside the trailing window, by type and by parsing method."""
        try:
            cutoff = self._clock() - window_seconds
            with self._lock:
                errors = [record for record in self._records if record.timestamp >= cutoff]
                successes = sum(1 for stamp, _ in self._successes if stamp >= cutoff)

            by_type = Counter(record.error_type.value for record in errors)
            by_method = Counter(record.parsing_method for record in errors if record.parsing_method)
            attempts = len(errors) + successes
            return {
                "total": len(errors),
                "by_type": dict(by_type),
                "by_method": dict(by_method),
                "successes": successes,
                "success_rate": round(successes / attempts, 4) if attempts else None,
                "window_seconds": window_seconds,
            }
        except Exception:
            self.logger.exception("error_stats_failed")
            return {
                "total": 0,
                "by_type": {},
                "by_method": {},
                "successes": 0,
                "success_rate": None,
                "window_seconds": window_seconds,
            }

    def exceeds_threshold(
        self,
        threshold: int = DEFAULT_ALERT_THRESHOLD,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ) -> bool:
        return self.get_stats(window_seconds)["total"] > threshold

    def recent_errors(self, count: int = 10) -> list[ErrorRecord]:
        with self._lock:
            records = list(self._records)
        return records[-count:] if count > 0 else []

    def check_and_alert(
        self,
        threshold: int = DEFAULT_ALERT_THRESHOLD,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ) -> bool:
        """Log `error_rate_alert` and return True when the threshold is exceeded."""
        stats = self.get_stats(window_seconds)
        if stats["total"] <= threshold:
            return False
        self.logger.warning(
            "error_rate_alert",
            extra={
                "total_errors": stats["total"],
                "threshold": threshold,
                "errors_by_type": stats["by_type"],
                "errors_by_method": stats["by_method"],
            },
        )
        return True

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._successes.clear()
