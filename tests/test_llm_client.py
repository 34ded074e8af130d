from __future__ import annotations

import io
import json
from typing import Any
from urllib.error import HTTPError, URLError

import pytest

from challenge_curator import llm_client
from challenge_curator.llm_client import (
    ANSWER_RESPONSE_SCHEMA,
    GeminiLLMClient,
    LLMClientError,
    LLMNetworkError,
    LLMRateLimitError,
    LLMTimeoutError,
)


class FakeResponse(io.BytesIO):
    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def gemini_payload(*texts: str) -> bytes:
    return json.dumps({"candidates": [{"content": {"parts": [{"text": text} for text in texts]}}]}).encode()


@pytest.fixture()
def captured(monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
    state: dict[str, Any] = {"response": gemini_payload('{"solutionCode": ', '"x"}')}

    def fake_urlopen(request: Any, timeout: float) -> FakeResponse:
        state["request"] = request
        state["timeout"] = timeout
        outcome = state["response"]
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(outcome)

    monkeypatch.setattr(llm_client, "urlopen", fake_urlopen)
    return state


def test_generate_builds_request_with_schema(captured: dict[str, Any]) -> None:
    client = GeminiLLMClient(api_key="k", timeout_seconds=12, max_output_tokens=256)

    text = client.generate(
        model="models/gemini-2.5-flash",
        system_prompt="sys",
        user_prompt="user",
        response_schema=ANSWER_RESPONSE_SCHEMA,
        temperature=0.7,
    )

    assert text == '{"solutionCode": "x"}'
    request = captured["request"]
    assert request.full_url == (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent"
    )
    assert request.get_header("X-goog-api-key") == "k"
    assert captured["timeout"] == 12

    body = json.loads(request.data)
    assert body["systemInstruction"]["parts"][0]["text"] == "sys"
    assert body["generationConfig"] == {
        "temperature": 0.7,
        "maxOutputTokens": 256,
        "responseMimeType": "application/json",
        "responseSchema": ANSWER_RESPONSE_SCHEMA,
    }


def http_error(code: int, body: str) -> HTTPError:
    return HTTPError("https://example.invalid", code, "error", {}, io.BytesIO(body.encode()))  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("outcome", "expected"),
    [
        (http_error(429, "slow down"), LLMRateLimitError),
        (http_error(400, '{"status": "RESOURCE_EXHAUSTED"}'), LLMRateLimitError),
        (http_error(500, "internal"), LLMClientError),
        (URLError(TimeoutError("timed out")), LLMTimeoutError),
        (URLError("connection refused"), LLMNetworkError),
        (TimeoutError("read timed out"), LLMTimeoutError),
    ],
)
def test_generate_maps_transport_errors(captured: dict[str, Any], outcome: Exception, expected: type) -> None:
    captured["response"] = outcome
    with pytest.raises(expected):
        GeminiLLMClient(api_key="k").generate(model="m", system_prompt="", user_prompt="u")


def test_generate_rejects_empty_candidates(captured: dict[str, Any]) -> None:
    captured["response"] = json.dumps({"candidates": []}).encode()
    with pytest.raises(LLMClientError, match="did not include text"):
        GeminiLLMClient(api_key="k").generate(model="m", system_prompt="", user_prompt="u")


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    with pytest.raises(ValueError):
        GeminiLLMClient.from_env()

    monkeypatch.setenv("GOOGLE_API_KEY", "g")
    monkeypatch.setenv("GEMINI_TIMEOUT_SECONDS", "7")
    client = GeminiLLMClient.from_env()
    assert client.api_key == "g"
    assert client.timeout_seconds == 7.0
