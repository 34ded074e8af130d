from __future__ import annotations

from challenge_curator.ratelimit import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_window_admits_up_to_limit() -> None:
    clock = FakeClock()
    limiter = RateLimiter(max_requests=3, window_seconds=10, clock=clock)

    decisions = [limiter.check("1.2.3.4") for _ in range(4)]

    assert [decision.allowed for decision in decisions] == [True, True, True, False]
    assert [decision.remaining for decision in decisions] == [2, 1, 0, 0]
    assert decisions[-1].reset_at == 1010.0
    assert decisions[-1].retry_after(clock.now) == 10


def test_clients_are_limited_independently() -> None:
    limiter = RateLimiter(max_requests=1, window_seconds=10, clock=FakeClock())

    assert limiter.check("a").allowed
    assert not limiter.check("a").allowed
    assert limiter.check("b").allowed


def test_oldest_call_leaving_window_frees_a_slot() -> None:
    clock = FakeClock()
    limiter = RateLimiter(max_requests=2, window_seconds=10, clock=clock)
    limiter.check("a")
    clock.now += 4
    limiter.check("a")

    clock.now += 6
    assert limiter.check("a").allowed
    assert not limiter.check("a").allowed


def test_rejected_calls_are_not_recorded() -> None:
    clock = FakeClock()
    limiter = RateLimiter(max_requests=1, window_seconds=10, clock=clock)
    limiter.check("a")
    for _ in range(5):
        clock.now += 1
        limiter.check("a")

    clock.now += 5
    assert limiter.check("a").allowed


def test_idle_clients_are_forgotten_past_tracking_cap() -> None:
    clock = FakeClock()
    limiter = RateLimiter(max_requests=5, window_seconds=10, max_tracked_clients=2, clock=clock)
    limiter.check("a")
    limiter.check("b")
    clock.now += 11
    limiter.check("c")
    limiter.check("d")

    assert limiter.check("a").remaining == 4


def test_zero_limit_disables_limiting() -> None:
    limiter = RateLimiter(max_requests=0, clock=FakeClock())
    assert not limiter.enabled
    assert all(limiter.check("a").allowed for _ in range(100))
