"""Runtime configuration for the curator service.

All knobs come from `CURATOR_*` environment variables with the defaults below.
`CuratorConfig()` gives the defaults directly, which is what tests use.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any


LOG_LEVELS = ("error", "warn", "warning", "info", "debug")

DEFAULT_MODELS: tuple[str, ...] = ("gemini-2.5-pro", "gemini-2.5-flash")
DEFAULT_ANSWER_MODELS: tuple[str, ...] = ("gemini-2.5-flash", "gemini-2.5-pro")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"true", "1", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as err:
        raise ValueError(f"{name} must be an integer") from err


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as err:
        raise ValueError(f"{name} must be numeric") from err


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    items = tuple(item.strip() for item in raw.split(",") if item.strip())
    return items or default


def _log_level(raw: str | None) -> str:
    level = (raw or "info").strip().lower()
    return level if level in LOG_LEVELS else "info"


@dataclass(slots=True)
class CuratorConfig:
    """Tunables for retries, fallback, size limits and feature flags.

    Durations are seconds. Environment variables (used by `from_env`) are the
    upper-cased field names prefixed with `CURATOR_`, except the breaker knobs
    (`CURATOR_BREAKER_THRESHOLD`, `CURATOR_BREAKER_TIMEOUT`), `environment`
    (`CURATOR_ENV`) and the log level, which also honours a plain `LOG_LEVEL`.

    `rate_limit_requests=0` turns rate limiting off; `fallback_cache_ttl=0`
    turns the fallback cache off.
    """

    max_retries: int = 3
    per_model_attempts: int = 2
    retry_base_delay: float = 1.0
    retry_max_delay: float = 5.0
    retry_backoff_multiplier: float = 1.5
    retry_jitter: bool = True
    api_timeout: float = 30.0

    enable_fallback: bool = True
    enable_retry: bool = True
    enable_progressive_parsing: bool = True
    enable_error_logging: bool = True

    fallback_threshold: int = 2
    recent_window_size: int = 5
    fallback_cache_ttl: float = 600.0

    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: float = 30.0

    max_response_size: int = 1024 * 1024
    confidence_threshold: float = 0.6

    rate_limit_requests: int = 60
    rate_limit_window: float = 60.0

    models: tuple[str, ...] = field(default=DEFAULT_MODELS)
    answer_models: tuple[str, ...] = field(default=DEFAULT_ANSWER_MODELS)
    log_level: str = "info"
    environment: str = "development"

    def __post_init__(self) -> None:
        if self.per_model_attempts < 1:
            raise ValueError("per_model_attempts must be >= 1")
        if self.fallback_threshold < 1:
            raise ValueError("fallback_threshold must be >= 1")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within [0, 1]")
        if not self.models:
            raise ValueError("at least one generation model is required")
        if self.rate_limit_requests < 0 or self.rate_limit_window <= 0:
            raise ValueError("rate limit must be non-negative over a positive window")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> CuratorConfig:
        """Build a configuration from environment variables."""
        return cls(
            max_retries=_env_int("CURATOR_MAX_RETRIES", 3),
            per_model_attempts=_env_int("CURATOR_PER_MODEL_ATTEMPTS", 2),
            retry_base_delay=_env_float("CURATOR_RETRY_BASE_DELAY", 1.0),
            retry_max_delay=_env_float("CURATOR_RETRY_MAX_DELAY", 5.0),
            retry_backoff_multiplier=_env_float("CURATOR_RETRY_BACKOFF_MULTIPLIER", 1.5),
            retry_jitter=_env_bool("CURATOR_RETRY_JITTER", True),
            api_timeout=_env_float("CURATOR_API_TIMEOUT", 30.0),
            enable_fallback=_env_bool("CURATOR_ENABLE_FALLBACK", True),
            enable_retry=_env_bool("CURATOR_ENABLE_RETRY", True),
            enable_progressive_parsing=_env_bool("CURATOR_ENABLE_PROGRESSIVE_PARSING", True),
            enable_error_logging=_env_bool("CURATOR_ENABLE_ERROR_LOGGING", True),
            fallback_threshold=_env_int("CURATOR_FALLBACK_THRESHOLD", 2),
            recent_window_size=_env_int("CURATOR_RECENT_WINDOW", 5),
            fallback_cache_ttl=_env_float("CURATOR_FALLBACK_CACHE_TTL", 600.0),
            circuit_breaker_threshold=_env_int("CURATOR_BREAKER_THRESHOLD", 5),
            circuit_breaker_timeout=_env_float("CURATOR_BREAKER_TIMEOUT", 30.0),
            max_response_size=_env_int("CURATOR_MAX_RESPONSE_SIZE", 1024 * 1024),
            confidence_threshold=_env_float("CURATOR_CONFIDENCE_THRESHOLD", 0.6),
            rate_limit_requests=_env_int("CURATOR_RATE_LIMIT_REQUESTS", 60),
            rate_limit_window=_env_float("CURATOR_RATE_LIMIT_WINDOW", 60.0),
            models=_env_list("CURATOR_MODELS", DEFAULT_MODELS),
            answer_models=_env_list("CURATOR_ANSWER_MODELS", DEFAULT_ANSWER_MODELS),
            log_level=_log_level(os.getenv("CURATOR_LOG_LEVEL") or os.getenv("LOG_LEVEL")),
            environment=(os.getenv("CURATOR_ENV") or "development").strip().lower(),
        )

    def summary(self) -> dict[str, Any]:
        """Feature and limit view exposed by the health endpoint."""
        return {
            "environment": self.environment,
            "log_level": self.log_level,
            "features": {
                "fallback": self.enable_fallback,
                "retry": self.enable_retry,
                "progressive_parsing": self.enable_progressive_parsing,
                "error_logging": self.enable_error_logging,
            },
            "limits": {
                "max_retries": self.max_retries,
                "per_model_attempts": self.per_model_attempts,
                "api_timeout": self.api_timeout,
                "max_response_size": self.max_response_size,
                "fallback_threshold": self.fallback_threshold,
                "fallback_cache_ttl": self.fallback_cache_ttl,
                "circuit_breaker_threshold": self.circuit_breaker_threshold,
                "circuit_breaker_timeout": self.circuit_breaker_timeout,
                "rate_limit_requests": self.rate_limit_requests,
                "rate_limit_window": self.rate_limit_window,
            },
        }
