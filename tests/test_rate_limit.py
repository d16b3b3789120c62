from __future__ import annotations

import threading
from typing import List

import pytest

from thistracker.rate_limit import SlidingWindowRateLimiter


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_calls_within_budget_do_not_wait() -> None:
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(3, 60, clock=clock, sleep=clock.sleep)

    waits = [limiter.acquire() for _ in range(3)]

    assert waits == [0.0, 0.0, 0.0]
    assert clock.sleeps == []
    assert limiter.in_window == 3


def test_exhausted_budget_delays_instead_of_failing() -> None:
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(2, 10, clock=clock, sleep=clock.sleep)

    limiter.acquire()
    clock.now = 4.0
    limiter.acquire()
    waited = limiter.acquire()

    assert waited == pytest.approx(6.0)
    assert clock.now == pytest.approx(10.0)
    assert limiter.in_window == 2


def test_window_slides_as_old_calls_expire() -> None:
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(1, 5, clock=clock, sleep=clock.sleep)

    limiter.acquire()
    clock.now = 5.0

    assert limiter.acquire() == 0.0
    assert clock.sleeps == []


@pytest.mark.parametrize("max_requests, window", [(0, 60), (1, 0)])
def test_invalid_budget_is_rejected(max_requests: int, window: float) -> None:
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(max_requests, window)


def test_limiter_is_shared_safely_between_threads() -> None:
    limiter = SlidingWindowRateLimiter(100, 60)

    threads = [threading.Thread(target=limiter.acquire) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert limiter.in_window == 20
