"""Tests for the sliding-window rate limiter and cancellation token."""

import pytest

from services.rate_limit import CancellationToken, SlidingWindowRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestSlidingWindowRateLimiter:
    def test_allows_up_to_max_calls_without_waiting(self, clock):
        limiter = SlidingWindowRateLimiter(3, 60, clock=clock, sleep=clock.sleep)
        assert [limiter.acquire() for _ in range(3)] == [0.0, 0.0, 0.0]
        assert clock.sleeps == []

    def test_waits_for_oldest_call_to_expire(self, clock):
        limiter = SlidingWindowRateLimiter(2, 60, clock=clock, sleep=clock.sleep)
        limiter.acquire()
        clock.now = 10.0
        limiter.acquire()
        clock.now = 20.0

        waited = limiter.acquire()
        assert waited == 40.0
        assert clock.now == 60.0

    def test_window_slides(self, clock):
        limiter = SlidingWindowRateLimiter(1, 5, clock=clock, sleep=clock.sleep)
        limiter.acquire()
        clock.now = 5.0
        assert limiter.acquire() == 0.0

    def test_rejects_zero_budget(self):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(0, 60)


class TestCancellationToken:
    def test_starts_uncancelled(self):
        assert not CancellationToken().cancelled

    def test_cancel_is_sticky(self):
        token = CancellationToken()
        token.cancel()
        token.cancel()
        assert token.cancelled
