"""Persistence interface for finalized challenges.

Challenges are keyed by a content hash so storing the same challenge twice is
a no-op. Only the upsert seam lives here; a database-backed store implements
`ChallengeStore` outside this package.
"""

from __future__ import annotations

import hashlib
import json
import threading
from typing import Any, Protocol

from .models import Challenge


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def content_hash(challenge: Challenge) -> str:
    """SHA-256 over the identifying fields; the solution contributes its own hash."""
    payload = challenge.content_payload()
    identity = {
        "title": payload["title"],
        "language": payload["language"],
        "difficulty": payload["difficulty"],
        "description": payload["description"],
        "starterCode": payload["starterCode"],
        "testCases": payload["testCases"],
        "solutionHash": _sha256(payload["solution"]),
    }
    return _sha256(json.dumps(identity, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


class ChallengeStore(Protocol):
    """Minimal persistence seam used by the HTTP layer."""

    def upsert(self, key: str, challenge: Challenge) -> bool:
        """Store `challenge` under `key` unless the key exists; True when newly created."""


class InMemoryChallengeStore:
    """Process-local store, used by default and in tests."""

    def __init__(self) -> None:
        self._items: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def upsert(self, key: str, challenge: Challenge) -> bool:
        with self._lock:
            if key in self._items:
                return False
            self._items[key] = challenge.model_dump(mode="json", by_alias=True)
            return True

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            item = self._items.get(key)
            return dict(item) if item is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
