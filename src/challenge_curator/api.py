"""HTTP API surface for Challenge Curator."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from pydantic import ValidationError

from .config import CuratorConfig
from .llm_client import GeminiLLMClient, LLMClientError
from .models import (
    AnswerRequest,
    AnswerResult,
    ChallengeFilters,
    ChallengeRequest,
    CodeReview,
    QuestionResponse,
    ReviewRequest,
)
from .pipeline import AnswerGenerationError, ChallengePipeline
from .ratelimit import RateLimiter
from .store import ChallengeStore, InMemoryChallengeStore, content_hash


logger = logging.getLogger("challenge_curator.api")

app = FastAPI(title="Challenge Curator", version="0.1.0")

_UNSAFE_HEADER_CHARS_RE = re.compile(r"[^\x20-\x7e]+")


def _header_value(text: str, max_len: int = 200) -> str:
    return _UNSAFE_HEADER_CHARS_RE.sub(" ", text).strip()[:max_len]


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")


@lru_cache(maxsize=1)
def get_config() -> CuratorConfig:
    return CuratorConfig.from_env()


@lru_cache(maxsize=1)
def get_pipeline() -> ChallengePipeline:
    """Create and cache one pipeline instance for the process lifetime.

    Without an API key the service still runs and serves fallback challenges.
    """
    try:
        client: GeminiLLMClient | None = GeminiLLMClient.from_env()
    except ValueError as err:
        logger.warning("llm_client_unavailable", extra={"error": str(err)})
        client = None
    return ChallengePipeline(llm_client=client, config=get_config())


@lru_cache(maxsize=1)
def get_store() -> ChallengeStore:
    return InMemoryChallengeStore()


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    config = get_config()
    return RateLimiter(max_requests=config.rate_limit_requests, window_seconds=config.rate_limit_window)


def require_development(pipeline: ChallengePipeline = Depends(get_pipeline)) -> ChallengePipeline:
    """Hide operator routes in production."""
    if pipeline.config.is_production:
        raise HTTPException(status_code=404, detail="Not found")
    return pipeline


def enforce_rate_limit(
    request: Request,
    response: Response,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> None:
    if not limiter.enabled:
        return
    client_ip = request.client.host if request.client else "unknown"
    decision = limiter.check(client_ip)
    if not decision.allowed:
        retry_after = decision.retry_after(limiter.clock())
        logger.warning("rate_limit_exceeded", extra={"client_ip": client_ip, "retry_after": retry_after})
        raise HTTPException(
            status_code=429,
            detail={"error": "Rate limit exceeded", "retryAfter": retry_after, "remaining": 0},
            headers={"Retry-After": str(retry_after)},
        )
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    response.headers["X-RateLimit-Reset"] = _iso(decision.reset_at)


async def read_question_payload(request: Request) -> Any:
    """Raw JSON body, or None when it is empty or not JSON at all."""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError as err:
        logger.warning("question_body_invalid", extra={"error": str(err)})
        return None


@app.get("/healthz")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health")
def health(pipeline: ChallengePipeline = Depends(get_pipeline)) -> dict[str, Any]:
    return pipeline.service_health()


@app.get("/metrics")
def metrics(pipeline: ChallengePipeline = Depends(get_pipeline)) -> dict[str, Any]:
    recorder = pipeline.recorder
    return {
        "errors": recorder.get_stats(),
        "recentErrors": [record.as_dict() for record in recorder.recent_errors(10)],
        "alert": recorder.check_and_alert(),
        "circuitBreaker": pipeline.retry_controller.breaker.status().as_dict(),
        "consecutiveFailures": pipeline.consecutive_failures,
    }


@app.get("/config")
def show_config(pipeline: ChallengePipeline = Depends(require_development)) -> dict[str, Any]:
    provider = pipeline.fallback_provider
    return {
        "configuration": pipeline.config.summary(),
        "environment": {
            "name": pipeline.config.environment,
            "apiKeyConfigured": pipeline.llm_client is not None,
            "models": list(pipeline.config.models),
            "answerModels": list(pipeline.config.answer_models),
        },
        "fallbackCatalogue": {
            language: provider.get_available_difficulties(language)
            for language in provider.get_available_languages()
        },
    }


@app.get("/cache/stats")
def cache_stats(pipeline: ChallengePipeline = Depends(require_development)) -> dict[str, Any]:
    cache = pipeline.fallback_provider.cache
    return {
        "enabled": cache is not None,
        "fallback": cache.stats() if cache is not None else None,
        "timestamp": _iso(datetime.now(timezone.utc).timestamp()),
    }


@app.post("/cache/clear")
def cache_clear(pipeline: ChallengePipeline = Depends(require_development)) -> dict[str, Any]:
    cache = pipeline.fallback_provider.cache
    removed = cache.clear() if cache is not None else 0
    logger.info("fallback_cache_cleared", extra={"removed": removed})
    return {"message": "Cache cleared successfully", "removed": removed}


@app.post(
    "/api/getQuestion",
    response_model=QuestionResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
def get_question(
    response: Response,
    payload: Any = Depends(read_question_payload),
    pipeline: ChallengePipeline = Depends(get_pipeline),
    store: ChallengeStore = Depends(get_store),
) -> QuestionResponse:
    try:
        filters = ChallengeRequest.model_validate(payload or {}).filters
    except ValidationError as err:
        logger.warning("question_filters_invalid", extra={"error": str(err)})
        filters = ChallengeFilters()

    challenge = pipeline.generate_challenge(filters)
    question_id = content_hash(challenge)

    try:
        created = store.upsert(question_id, challenge)
        logger.info("question_stored", extra={"question_id": question_id, "is_new": created})
    except Exception as err:
        logger.exception("question_store_failed", extra={"question_id": question_id, "error": str(err)})

    response.headers["X-Challenge-Source"] = challenge.metadata.source.value
    if challenge.metadata.fallback_reason:
        response.headers["X-Fallback-Reason"] = _header_value(challenge.metadata.fallback_reason)

    return QuestionResponse.model_validate({**challenge.model_dump(), "question_id": question_id})


@app.post("/api/generateAnswer", response_model=AnswerResult)
def generate_answer(
    request: AnswerRequest,
    pipeline: ChallengePipeline = Depends(get_pipeline),
) -> AnswerResult:
    try:
        return pipeline.generate_answer(request)
    except AnswerGenerationError as err:
        raise HTTPException(status_code=504 if err.timed_out else 502, detail=str(err)) from err
    except LLMClientError as err:
        raise HTTPException(status_code=502, detail=str(err)) from err


@app.post("/api/reviewCode", response_model=CodeReview, response_model_exclude_none=True)
def review_code(
    request: ReviewRequest,
    pipeline: ChallengePipeline = Depends(get_pipeline),
) -> CodeReview:
    return pipeline.generate_review(request)
