from __future__ import annotations

import logging

import pytest

from availability_engine.utils.throttling import RateLimiter


class _FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.asyncio
async def test_min_interval_spaces_consecutive_calls():
    fake = _FakeTime()
    limiter = RateLimiter(min_interval=1.0, max_per_minute=100, clock=fake.clock, sleep=fake.sleep)

    await limiter.acquire()
    fake.now += 0.25
    await limiter.acquire()

    assert fake.sleeps == [pytest.approx(0.75)]


@pytest.mark.asyncio
async def test_per_minute_ceiling_waits_for_the_window():
    fake = _FakeTime()
    limiter = RateLimiter(min_interval=0.0, max_per_minute=2, clock=fake.clock, sleep=fake.sleep)

    await limiter.acquire()
    await limiter.acquire()
    fake.now += 10
    await limiter.acquire()

    assert fake.sleeps == [pytest.approx(50.0)]


def test_low_remote_budget_is_logged(caplog: pytest.LogCaptureFixture):
    limiter = RateLimiter()
    with caplog.at_level(logging.WARNING, logger="availability_engine.utils.throttling"):
        limiter.update_from_headers({"X-RateLimit-5min-Remaining": "4"})
        limiter.update_from_headers({"X-RateLimit-5min-Remaining": "garbage"})

    assert limiter.remote_remaining == 4
    assert "running low" in caplog.text
