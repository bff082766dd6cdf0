"""
Tests for rate_limit.py - shared token bucket.

A fake clock/sleep pair makes waits deterministic: sleeping advances the
clock instead of blocking.
"""
from __future__ import annotations

import threading
from typing import List

import pytest

from universal_edgar.errors import DeadlineExceeded
from universal_edgar.rate_limit import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_limiter(clock: FakeClock, **kwargs) -> RateLimiter:
    return RateLimiter("test", clock=clock.time, sleep=clock.sleep, **kwargs)


# =============================================================================
# Token Bucket
# =============================================================================


class TestRateLimiter:

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            RateLimiter("bad", calls_per_second=0)

    def test_first_call_is_immediate(self, clock: FakeClock):
        limiter = make_limiter(clock, calls_per_second=10.0)
        limiter.acquire()
        assert clock.sleeps == []
        assert limiter.total_acquired == 1

    def test_paces_to_rate(self, clock: FakeClock):
        limiter = make_limiter(clock, calls_per_second=10.0)
        for _ in range(5):
            limiter.acquire()
        # Four waits of a tenth of a second after the first token
        assert clock.now == pytest.approx(0.4)
        assert limiter.total_acquired == 5

    def test_burst(self, clock: FakeClock):
        limiter = make_limiter(clock, calls_per_second=1.0, burst_size=3)
        for _ in range(3):
            limiter.acquire()
        assert clock.sleeps == []

    def test_timeout_raises_deadline_exceeded(self, clock: FakeClock):
        limiter = make_limiter(clock, calls_per_second=0.1)
        limiter.acquire()
        with pytest.raises(DeadlineExceeded) as exc_info:
            limiter.acquire(timeout=1.0)
        assert exc_info.value.details == {"limiter": "test"}
        assert clock.sleeps == []

    def test_status(self, clock: FakeClock):
        limiter = make_limiter(clock, calls_per_second=5.0)
        limiter.acquire()
        status = limiter.status()
        assert status["name"] == "test"
        assert status["total_acquired"] == 1
        assert status["tokens_available"] == pytest.approx(0.0)


class TestConcurrentAcquire:

    def test_every_thread_gets_one_token(self):
        limiter = RateLimiter("threads", calls_per_second=1000.0, burst_size=1)
        threads = [threading.Thread(target=limiter.acquire) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert limiter.total_acquired == 20
