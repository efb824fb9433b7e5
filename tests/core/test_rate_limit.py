import pytest

from src.helly.core.rate_limit import SlidingWindowRateLimiter


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_rejects_after_max_hits_and_recovers_after_window():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(window_sec=30, max_per_window=3, clock=clock)

    for second in range(3):
        clock.now = float(second)
        assert limiter.check_and_consume(1).allowed is True

    clock.now = 3.0
    blocked = limiter.check_and_consume(1)
    assert blocked.allowed is False
    assert blocked.retry_after_sec == 27

    clock.now = 30.0
    assert limiter.check_and_consume(1).allowed is True


def test_keys_are_independent():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(window_sec=10, max_per_window=1, clock=clock)

    assert limiter.check_and_consume("a").allowed is True
    assert limiter.check_and_consume("b").allowed is True
    assert limiter.check_and_consume("a").allowed is False


def test_retry_after_is_at_least_one_second():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(window_sec=10, max_per_window=1, clock=clock)
    limiter.check_and_consume(1)

    clock.now = 9.7
    assert limiter.check_and_consume(1).retry_after_sec == 1


def test_rejected_hits_do_not_extend_the_window():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(window_sec=10, max_per_window=1, clock=clock)
    limiter.check_and_consume(1)
    for second in range(1, 10):
        clock.now = float(second)
        assert limiter.check_and_consume(1).allowed is False

    clock.now = 10.0
    assert limiter.check_and_consume(1).allowed is True


def test_sweep_and_reset():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(window_sec=5, max_per_window=2, clock=clock)
    limiter.check_and_consume(1)
    limiter.check_and_consume(2)
    assert limiter.tracked_keys() == 2

    clock.now = 6.0
    assert limiter.sweep() == 2
    assert limiter.tracked_keys() == 0

    limiter.check_and_consume(3)
    limiter.reset(3)
    assert limiter.tracked_keys() == 0


def test_idle_keys_are_swept_during_normal_traffic():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(window_sec=5, max_per_window=2, clock=clock)
    for user_id in range(50):
        limiter.check_and_consume(user_id)
    assert limiter.tracked_keys() == 50

    clock.now = 4.0
    limiter.check_and_consume(50)
    assert limiter.tracked_keys() == 51

    clock.now = 6.0
    limiter.check_and_consume(99)
    assert limiter.tracked_keys() == 2

    clock.now = 12.0
    limiter.check_and_consume(99)
    assert limiter.tracked_keys() == 1


@pytest.mark.parametrize("kwargs",[{"window_sec": 0}, {"max_per_window": 0}])
def test_invalid_limits_raise(kwargs):
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(**kwargs)
