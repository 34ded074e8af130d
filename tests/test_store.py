from __future__ import annotations

from challenge_curator.fallback import emergency_fallback_challenge
from challenge_curator.models import ChallengeSource
from challenge_curator.store import InMemoryChallengeStore, content_hash


def test_content_hash_ignores_metadata() -> None:
    first = emergency_fallback_challenge("one", generation_attempts=1)
    second = emergency_fallback_challenge("two", generation_attempts=5)
    assert content_hash(first) == content_hash(second)
    assert len(content_hash(first)) == 64


def test_content_hash_changes_with_solution() -> None:
    challenge = emergency_fallback_challenge()
    changed = challenge.model_copy(update={"solution": "function add(a, b) { return b + a; }"})
    assert content_hash(challenge) != content_hash(changed)


def test_upsert_keeps_first_record_for_existing_key() -> None:
    store = InMemoryChallengeStore()
    challenge = emergency_fallback_challenge("first")
    key = content_hash(challenge)

    assert store.upsert(key, challenge) is True
    stored_before = store.get(key)

    again = challenge.model_copy(
        update={"metadata": challenge.metadata.model_copy(update={"fallback_reason": "second"})}
    )
    assert store.upsert(key, again) is False

    stored = store.get(key)
    assert stored == stored_before
    assert stored is not None
    assert stored["metadata"]["fallbackReason"] == "first"
    assert stored["metadata"]["source"] == ChallengeSource.EMERGENCY_FALLBACK.value
    assert len(store) == 1
    assert store.get("missing") is None
