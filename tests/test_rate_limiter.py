from __future__ import annotations

import pytest

from mini_claw.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_first_request_is_allowed_and_starts_cooldown() -> None:
    clock = FakeClock()
    limiter = RateLimiter(cooldown_seconds=5.0, clock=clock)

    assert limiter.check(1).allowed is True

    clock.now += 2.0
    decision = limiter.check(1)
    assert decision.allowed is False
    assert decision.retry_after == pytest.approx(3.0)


def test_denied_request_does_not_extend_cooldown() -> None:
    clock = FakeClock()
    limiter = RateLimiter(cooldown_seconds=5.0, clock=clock)
    limiter.check("chat")

    clock.now += 4.0
    assert limiter.check("chat").allowed is False
    clock.now += 1.0
    assert limiter.check("chat").allowed is True


def test_keys_are_limited_independently() -> None:
    clock = FakeClock()
    limiter = RateLimiter(cooldown_seconds=5.0, clock=clock)

    assert limiter.check(1).allowed is True
    assert limiter.check(2).allowed is True
    assert limiter.check(1).allowed is False


def test_zero_cooldown_disables_limiting() -> None:
    limiter = RateLimiter(cooldown_seconds=0.0, clock=FakeClock())

    assert all(limiter.check(1).allowed for _ in range(3))


def test_reset_forgets_recent_requests() -> None:
    limiter = RateLimiter(cooldown_seconds=5.0, clock=FakeClock())
    limiter.check(1)
    limiter.reset()

    assert limiter.check(1).allowed is True
