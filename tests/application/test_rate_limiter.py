"""Tests for the token bucket rate limiter."""

import pytest

from stageforge.application.rate_limiter import TokenBucket
from stageforge.domain.cancellation import CancellationToken
from stageforge.domain.exceptions import OperationCancelled


class FakeTime:
    """Clock and sleep that advance together."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestTokenBucket:
    def test_rejects_invalid_rate(self):
        with pytest.raises(ValueError):
            TokenBucket(0)
        with pytest.raises(ValueError):
            TokenBucket(60, capacity=0.5)

    def test_rate_per_second(self):
        assert TokenBucket(120).rate_per_second == 2.0

    def test_first_acquire_is_immediate(self):
        fake = FakeTime()
        bucket = TokenBucket(60, clock=fake.clock, sleep=fake.sleep)
        assert bucket.acquire() == 0.0
        assert fake.sleeps == []

    def test_second_acquire_waits_for_refill(self):
        fake = FakeTime()
        bucket = TokenBucket(60, clock=fake.clock, sleep=fake.sleep)
        bucket.acquire()
        waited = bucket.acquire()
        assert waited == pytest.approx(1.0)
        assert fake.now == pytest.approx(1.0)

    def test_never_exceeds_ceiling(self):
        fake = FakeTime()
        bucket = TokenBucket(30, clock=fake.clock, sleep=fake.sleep)
        for _ in range(5):
            bucket.acquire()
        # 5 requests at 30/min need 4 refills of 2s each
        assert fake.now == pytest.approx(8.0)

    def test_capacity_allows_burst(self):
        fake = FakeTime()
        bucket = TokenBucket(60, capacity=3, clock=fake.clock, sleep=fake.sleep)
        assert [bucket.try_acquire() for _ in range(4)] == [True, True, True, False]

    def test_refill_is_capped(self):
        fake = FakeTime()
        bucket = TokenBucket(60, capacity=2, clock=fake.clock, sleep=fake.sleep)
        bucket.try_acquire()
        bucket.try_acquire()
        fake.now += 100.0
        assert [bucket.try_acquire() for _ in range(3)] == [True, True, False]

    def test_cancelled_wait(self):
        bucket = TokenBucket(1)  # One token per minute
        bucket.acquire()
        token = CancellationToken()
        token.cancel("shutdown")
        with pytest.raises(OperationCancelled, match="shutdown"):
            bucket.acquire(token)
