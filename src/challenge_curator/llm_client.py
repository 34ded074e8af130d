"""Gemini backend for challenge and answer generation.

`GeminiLLMClient` satisfies the `LLMClient` protocol in `pipeline.py`. The
response schemas below are sent as structured-output hints only: Gemini may
still return prose, fences or broken JSON, and everything it returns goes
through the processing stages.

Transport failures are mapped onto a small exception hierarchy so the retry
controller can classify them by type:

    LLMClientError
    ├── LLMRateLimitError   HTTP 429 / RESOURCE_EXHAUSTED
    └── LLMNetworkError     host unreachable, connection reset
        └── LLMTimeoutError no answer within `timeout_seconds`
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen


DEFAULT_API_BASE = "https://generativelanguage.googleapis.com"
DEFAULT_API_VERSION = "v1beta"
JSON_MIME_TYPE = "application/json"

CHALLENGE_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "title": {"type": "STRING"},
        "language": {"type": "STRING"},
        "difficulty": {"type": "STRING"},
        "description": {"type": "STRING"},
        "starterCode": {"type": "STRING"},
        "solution": {"type": "STRING"},
        "testCases": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "input": {
                        "type": "OBJECT",
                        "properties": {
                            "a": {"type": "NUMBER"},
                            "b": {"type": "NUMBER"},
                            "nums": {"type": "ARRAY", "items": {"type": "NUMBER"}},
                            "target": {"type": "NUMBER"},
                            "str": {"type": "STRING"},
                            "n": {"type": "NUMBER"},
                        },
                    },
                    "expected": {"type": "STRING"},
                },
                "required": ["input", "expected"],
            },
        },
    },
    "required": ["title", "language", "difficulty", "description", "starterCode", "solution", "testCases"],
}

ANSWER_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {"solutionCode": {"type": "STRING"}},
    "required": ["solutionCode"],
}

REVIEW_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "score": {"type": "NUMBER"},
        "strength": {"type": "STRING"},
        "improvement": {"type": "STRING"},
    },
    "required": ["score", "strength", "improvement"],
}


class LLMClientError(RuntimeError):
    """Base error for a failed backend call."""


class LLMRateLimitError(LLMClientError):
    pass


class LLMNetworkError(LLMClientError):
    pass


class LLMTimeoutError(LLMNetworkError):
    pass


def _is_timeout(err: BaseException) -> bool:
    reason = getattr(err, "reason", err)
    return isinstance(reason, TimeoutError) or "timed out" in str(reason).lower()


def _env_number(name: str, default: str, cast: type) -> Any:
    raw = os.getenv(name, default)
    if raw in (None, ""):
        return None
    try:
        return cast(raw)
    except ValueError as err:
        kind = "an integer" if cast is int else "numeric"
        raise ValueError(f"{name} must be {kind}") from err


@dataclass(slots=True)
class GeminiLLMClient:
    """`generateContent` over plain HTTPS; the model is chosen per call.

    `from_env` reads `GEMINI_API_KEY` (or `GOOGLE_API_KEY`),
    `GEMINI_API_VERSION`, `GEMINI_API_BASE`, `GEMINI_TIMEOUT_SECONDS` and
    `GEMINI_MAX_OUTPUT_TOKENS`.
    """

    api_key: str
    api_version: str = DEFAULT_API_VERSION
    api_base: str = DEFAULT_API_BASE
    timeout_seconds: float = 30.0
    max_output_tokens: int | None = None

    @classmethod
    def from_env(cls) -> GeminiLLMClient:
        api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise ValueError("No Gemini credentials: set GEMINI_API_KEY or GOOGLE_API_KEY.")

        return cls(
            api_key=api_key,
            api_version=os.getenv("GEMINI_API_VERSION", DEFAULT_API_VERSION),
            api_base=os.getenv("GEMINI_API_BASE", DEFAULT_API_BASE),
            timeout_seconds=_env_number("GEMINI_TIMEOUT_SECONDS", "30", float),
            max_output_tokens=_env_number("GEMINI_MAX_OUTPUT_TOKENS", "", int),
        )

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
        """Run one completion and return the text of the first candidate.

        `metadata` carries tracing fields for the caller's logs; it is not
        forwarded to Gemini.
        """
        body = self._build_payload(system_prompt, user_prompt, response_schema, temperature)
        response_json = self._post(self._endpoint(model), body)

        text = self._extract_text(response_json)
        if not text:
            raise LLMClientError(f"Gemini response did not include text: {response_json}")
        return text

    # -------------------------
    # Request / response plumbing
    # -------------------------

    def _build_payload(
        self,
        system_prompt: str,
        user_prompt: str,
        response_schema: dict[str, Any] | None,
        temperature: float | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": user_prompt}]}]}
        if system_prompt.strip():
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        options = {
            "temperature": temperature,
            "maxOutputTokens": self.max_output_tokens,
        }
        if response_schema is not None:
            options["responseMimeType"] = JSON_MIME_TYPE
            options["responseSchema"] = response_schema
        generation_config = {key: value for key, value in options.items() if value is not None}
        if generation_config:
            payload["generationConfig"] = generation_config
        return payload

    def _endpoint(self, model: str) -> str:
        model_id = model.removeprefix("models/")
        return f"{self.api_base.rstrip('/')}/{self.api_version}/models/{model_id}:generateContent"

    def _post(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        request = Request(
            url,
            data=json.dumps(payload, ensure_ascii=True).encode("utf-8"),
            method="POST",
            headers={"Content-Type": JSON_MIME_TYPE, "x-goog-api-key": self.api_key},
        )
        timeout_message = f"Gemini request timed out after {self.timeout_seconds}s"

        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as err:
            details = err.read().decode("utf-8", errors="replace")
            if err.code == 429 or "RESOURCE_EXHAUSTED" in details:
                raise LLMRateLimitError(f"Gemini rate limit (HTTP {err.code}): {details}") from err
            raise LLMClientError(f"Gemini HTTP {err.code}: {details}") from err
        except URLError as err:
            if _is_timeout(err):
                raise LLMTimeoutError(timeout_message) from err
            raise LLMNetworkError(f"Gemini network error: {err.reason}") from err
        except TimeoutError as err:
            raise LLMTimeoutError(timeout_message) from err

        try:
            decoded = json.loads(raw)
        except ValueError as err:
            raise LLMClientError("Gemini returned a body that is not JSON") from err
        if not isinstance(decoded, dict):
            raise LLMClientError("Gemini returned an unexpected JSON document")
        return decoded

    @staticmethod
    def _extract_text(response_json: dict[str, Any]) -> str:
        """Joined text parts of the first candidate that has any."""
        for candidate in response_json.get("candidates") or []:
            content = candidate.get("content") if isinstance(candidate, dict) else None
            parts = content.get("parts") if isinstance(content, dict) else None
            chunks = [
                part["text"]
                for part in parts or []
                if isinstance(part, dict) and isinstance(part.get("text"), str)
            ]
            if chunks:
                return "".join(chunks).strip()
        return ""
