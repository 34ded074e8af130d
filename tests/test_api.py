from __future__ import annotations

import json
import random
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from challenge_curator.api import app, get_pipeline, get_rate_limiter, get_store
from challenge_curator.cache import FallbackCache
from challenge_curator.config import CuratorConfig
from challenge_curator.fallback import FallbackProvider
from challenge_curator.llm_client import LLMTimeoutError
from challenge_curator.models import Challenge
from challenge_curator.pipeline import ChallengePipeline
from challenge_curator.ratelimit import RateLimiter
from challenge_curator.store import InMemoryChallengeStore, content_hash


class QueueClient:
    def __init__(self, outputs: list[str | Exception]) -> None:
        self.outputs = list(outputs)
        self.models: list[str] = []

    def generate(self, *, model: str, **_: Any) -> str:
        self.models.append(model)
        output = self.outputs.pop(0) if self.outputs else RuntimeError("No stub output left")
        if isinstance(output, Exception):
            raise output
        return output


class BrokenStore:
    def upsert(self, key: str, challenge: Challenge) -> bool:
        raise RuntimeError("database unavailable")


def challenge_json() -> str:
    return json.dumps(
        {
            "title": "FizzBuzz",
            "language": "Python",
            "difficulty": "Beginner",
            "description": "Return Fizz, Buzz or FizzBuzz for multiples of 3, 5 or both.",
            "starterCode": "def fizzbuzz(n):\n    pass",
            "solution": "def fizzbuzz(n):\n    return 'FizzBuzz' if n % 15 == 0 else str(n)",
            "testCases": [{"input": {"n": 15}, "expected": "FizzBuzz"}],
        }
    )


def build_pipeline(
    client: QueueClient | None, *, cache: FallbackCache | None = None, **config_overrides: Any
) -> ChallengePipeline:
    config = CuratorConfig(
        api_timeout=0, retry_base_delay=0.0, retry_max_delay=0.0, retry_jitter=False, **config_overrides
    )
    return ChallengePipeline(
        llm_client=client,
        config=config,
        fallback_provider=FallbackProvider(rng=random.Random(0), cache=cache),
        repo_root=Path(__file__).resolve().parents[1],
    )


@pytest.fixture()
def store() -> InMemoryChallengeStore:
    return InMemoryChallengeStore()


@pytest.fixture()
def make_client(store: InMemoryChallengeStore) -> Iterator[Any]:
    def factory(
        pipeline: ChallengePipeline, challenge_store: Any = None, limiter: RateLimiter | None = None
    ) -> TestClient:
        app.dependency_overrides[get_pipeline] = lambda: pipeline
        app.dependency_overrides[get_store] = lambda: challenge_store or store
        app.dependency_overrides[get_rate_limiter] = lambda: limiter or RateLimiter(max_requests=0)
        return TestClient(app)

    yield factory
    app.dependency_overrides.clear()


def test_healthz() -> None:
    assert TestClient(app).get("/healthz").json() == {"status": "ok"}


def test_get_question_returns_ai_challenge(make_client: Any, store: InMemoryChallengeStore) -> None:
    client = make_client(build_pipeline(QueueClient([challenge_json()])))

    response = client.post("/api/getQuestion", json={"filters": {"level": "Beginner", "language": "Python"}})

    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "FizzBuzz"
    assert body["starterCode"].startswith("def fizzbuzz")
    assert body["metadata"]["source"] == "ai"
    assert body["metadata"]["parsingMethod"] == "direct"
    assert response.headers["X-Challenge-Source"] == "ai"
    assert "X-Fallback-Reason" not in response.headers

    assert len(store) == 1
    stored = store.get(body["questionId"])
    assert stored is not None and stored["title"] == "FizzBuzz"


def test_same_challenge_is_stored_once(make_client: Any, store: InMemoryChallengeStore) -> None:
    client = make_client(build_pipeline(QueueClient([challenge_json(), challenge_json()])))

    first = client.post("/api/getQuestion", json={}).json()
    second = client.post("/api/getQuestion", json={}).json()

    assert first["questionId"] == second["questionId"]
    assert len(store) == 1


def test_get_question_without_backend_serves_fallback(make_client: Any) -> None:
    client = make_client(build_pipeline(None))

    response = client.post("/api/getQuestion")

    assert response.status_code == 200
    assert response.json()["metadata"]["source"] == "fallback"
    assert response.headers["X-Challenge-Source"] == "fallback"
    assert response.headers["X-Fallback-Reason"] == "AI service not configured"


def test_get_question_tolerates_bad_filters(make_client: Any) -> None:
    client = make_client(build_pipeline(None))

    response = client.post("/api/getQuestion", json={"filters": {"languages": 5}, "theme": "dark"})

    assert response.status_code == 200
    assert response.json()["language"] == "JavaScript"


def test_get_question_survives_store_failure(make_client: Any) -> None:
    client = make_client(build_pipeline(None), BrokenStore())

    response = client.post("/api/getQuestion", json={})

    assert response.status_code == 200
    body = response.json()
    assert body["questionId"] == content_hash(Challenge.model_validate({k: v for k, v in body.items() if k != "questionId"}))


def test_generate_answer_success(make_client: Any) -> None:
    client = make_client(build_pipeline(QueueClient([json.dumps({"solutionCode": "def f():\n    return 1"})])))

    response = client.post(
        "/api/generateAnswer",
        json={"title": "F", "description": "Return one.", "language": "Python", "difficulty": "Beginner"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["solutionCode"] == "def f():\n    return 1"
    assert body["model"] == "gemini-2.5-flash"


def test_generate_answer_timeout_maps_to_504(make_client: Any) -> None:
    client = make_client(build_pipeline(QueueClient([LLMTimeoutError("slow")] * 4)))

    response = client.post(
        "/api/generateAnswer",
        json={"title": "F", "description": "Return one.", "language": "Python", "difficulty": "Beginner"},
    )

    assert response.status_code == 504


def test_generate_answer_failure_maps_to_502(make_client: Any) -> None:
    client = make_client(build_pipeline(QueueClient(["nope"] * 4)))

    response = client.post(
        "/api/generateAnswer",
        json={"title": "F", "description": "Return one.", "language": "Python", "difficulty": "Beginner"},
    )

    assert response.status_code == 502
    assert "Answer generation failed" in response.json()["detail"]


def test_generate_answer_validates_body(make_client: Any) -> None:
    client = make_client(build_pipeline(None))
    response = client.post("/api/generateAnswer", json={"title": "F"})
    assert response.status_code == 422


def test_health_and_metrics(make_client: Any) -> None:
    client = make_client(build_pipeline(QueueClient(["garbage output that is clearly not a JSON document at all"] * 4)))
    client.post("/api/getQuestion", json={})

    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["consecutiveFailures"] == 1

    metrics = client.get("/metrics").json()
    assert metrics["errors"]["total"] == 4
    assert metrics["errors"]["by_type"] == {"parsing": 4}
    assert len(metrics["recentErrors"]) == 4
    assert metrics["recentErrors"][0]["errorType"] == "parsing"
    assert metrics["alert"] is False
    assert metrics["circuitBreaker"]["failureCount"] == 4
    assert metrics["consecutiveFailures"] == 1


@pytest.mark.parametrize("body", ["[1, 2, 3]", '"python"', "{not json", "null"])
def test_get_question_treats_unusable_body_as_no_filters(make_client: Any, body: str) -> None:
    client = make_client(build_pipeline(None))

    response = client.post("/api/getQuestion", content=body, headers={"Content-Type": "application/json"})

    assert response.status_code == 200
    assert response.json()["language"] == "JavaScript"
    assert response.json()["metadata"]["source"] == "fallback"


class SteppingClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_get_question_is_rate_limited_per_client(make_client: Any) -> None:
    clock = SteppingClock()
    limiter = RateLimiter(max_requests=2, window_seconds=60.0, clock=clock)
    client = make_client(build_pipeline(None), limiter=limiter)

    first = client.post("/api/getQuestion", json={})
    second = client.post("/api/getQuestion", json={})
    blocked = client.post("/api/getQuestion", json={})

    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert second.headers["X-RateLimit-Remaining"] == "0"
    assert first.headers["X-RateLimit-Reset"].endswith("Z")
    assert blocked.status_code == 429
    assert blocked.headers["Retry-After"] == "60"
    assert blocked.json()["detail"] == {"error": "Rate limit exceeded", "retryAfter": 60, "remaining": 0}

    clock.now += 60
    assert client.post("/api/getQuestion", json={}).status_code == 200


def review_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "userCode": "def f():\n    return 1",
        "solutionCode": "def f():\n    return 1",
        "language": "Python",
        "testsPassed": True,
        "challengeTitle": "One",
    }
    body.update(overrides)
    return body


def test_review_code_success(make_client: Any) -> None:
    review = {"score": 9, "strength": "Minimal and correct.", "improvement": "Name the function clearly."}
    client = make_client(build_pipeline(QueueClient([json.dumps(review)])))

    response = client.post("/api/reviewCode", json=review_body())

    assert response.status_code == 200
    assert response.json() == {**review, "model": "gemini-2.5-flash"}


def test_review_code_without_backend_is_offline_review(make_client: Any) -> None:
    client = make_client(build_pipeline(None))

    response = client.post("/api/reviewCode", json=review_body(testsPassed=False))

    assert response.status_code == 200
    assert response.json() == {
        "score": 4,
        "strength": "Keep trying! Practice makes perfect.",
        "improvement": "Review the test failures and try to fix the issues.",
    }


def test_review_code_backend_failure_reports_error(make_client: Any) -> None:
    client = make_client(build_pipeline(QueueClient(["nope"] * 4)))

    body = client.post("/api/reviewCode", json=review_body()).json()

    assert body["score"] == 7
    assert body["error"] == "AI review temporarily unavailable"


def test_review_code_requires_code_and_language(make_client: Any) -> None:
    client = make_client(build_pipeline(None))
    response = client.post("/api/reviewCode", json={"userCode": "x", "language": "Python"})
    assert response.status_code == 422


def test_config_endpoint_lists_settings_and_catalogue(make_client: Any) -> None:
    client = make_client(build_pipeline(None))

    body = client.get("/config").json()

    assert body["configuration"]["environment"] == "development"
    assert body["environment"]["apiKeyConfigured"] is False
    assert body["fallbackCatalogue"]["Python"] == ["Beginner", "Intermediate", "Advanced"]
    assert body["fallbackCatalogue"]["Java"] == ["Beginner", "Intermediate"]


def test_cache_stats_and_clear(make_client: Any) -> None:
    client = make_client(build_pipeline(None, cache=FallbackCache(ttl=600)))
    client.post("/api/getQuestion", json={"filters": {"language": "Python", "level": "Beginner"}})
    cached = client.post("/api/getQuestion", json={"filters": {"language": "Python", "level": "Beginner"}})

    assert cached.headers["X-Challenge-Source"] == "fallback_cached"
    stats = client.get("/cache/stats").json()
    assert stats["enabled"] is True
    assert stats["fallback"]["keys"] == ["Python-Beginner"]
    assert stats["fallback"]["hits"] == 1

    assert client.post("/cache/clear").json()["removed"] == 1
    assert client.get("/cache/stats").json()["fallback"]["size"] == 0


def test_cache_stats_without_cache(make_client: Any) -> None:
    client = make_client(build_pipeline(None))
    assert client.get("/cache/stats").json()["enabled"] is False
    assert client.post("/cache/clear").json()["removed"] == 0


@pytest.mark.parametrize(("method", "path"), [("get", "/config"), ("get", "/cache/stats"), ("post", "/cache/clear")])
def test_operator_routes_are_hidden_in_production(make_client: Any, method: str, path: str) -> None:
    client = make_client(build_pipeline(None, environment="production"))
    assert getattr(client, method)(path).status_code == 404
