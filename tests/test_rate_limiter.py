# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import threading

import pytest

from group_billing.limits.rate_limiter import GroupRateLimiter


def test_admits_up_to_limit_per_window(clock):
    limiter = GroupRateLimiter(1.0, clock=clock)

    assert [limiter.admit(1, 3) for _ in range(4)] == [True, True, True, False]
    assert limiter.usage(1) == 3


def test_window_slides(clock):
    limiter = GroupRateLimiter(1.0, clock=clock)
    assert limiter.admit(1, 2)
    clock.advance(0.6)
    assert limiter.admit(1, 2)
    assert not limiter.admit(1, 2)

    # first admission leaves the window, second is still inside
    clock.advance(0.5)
    assert limiter.admit(1, 2)
    assert not limiter.admit(1, 2)


def test_denied_calls_are_not_recorded(clock):
    limiter = GroupRateLimiter(1.0, clock=clock)
    assert limiter.admit(1, 1)
    for _ in range(10):
        assert not limiter.admit(1, 1)
        clock.advance(0.05)

    clock.advance(0.6)
    assert limiter.admit(1, 1)


def test_zero_limit_is_unlimited(clock):
    limiter = GroupRateLimiter(1.0, clock=clock)

    assert all(limiter.admit(1, 0) for _ in range(100))
    assert limiter.usage(1) == 0


def test_groups_are_independent(clock):
    limiter = GroupRateLimiter(1.0, clock=clock)
    assert limiter.admit(1, 1)
    assert not limiter.admit(1, 1)
    assert limiter.admit(2, 1)


def test_reset(clock):
    limiter = GroupRateLimiter(1.0, clock=clock)
    limiter.admit(1, 1)
    limiter.admit(2, 1)

    limiter.reset(1)
    assert limiter.admit(1, 1)
    assert not limiter.admit(2, 1)

    limiter.reset()
    assert limiter.usage(1) == 0
    assert limiter.usage(2) == 0


def test_window_must_be_positive():
    with pytest.raises(ValueError):
        GroupRateLimiter(0)


def test_concurrent_admissions_respect_limit(clock):
    limiter = GroupRateLimiter(1.0, clock=clock)
    results = []
    results_lock = threading.Lock()

    def worker():
        for _ in range(50):
            admitted = limiter.admit(7, 25)
            with results_lock:
                results.append(admitted)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 25
    assert limiter.usage(7) == 25
