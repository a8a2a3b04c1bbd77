"""
Unit tests for the CRM rate limiter.

Run: pytest tests/unit/test_rate_limiter.py -v
"""

from services.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0
        self.slept = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.slept.append(seconds)
        self.now += seconds


class TestRateLimiter:
    """Tests for RateLimiter.acquire()"""

    def test_calls_under_limit_do_not_wait(self):
        clock = FakeClock()
        limiter = RateLimiter(max_calls=3, window_seconds=60, clock=clock, sleep=clock.sleep)

        waits = [limiter.acquire() for _ in range(3)]

        assert waits == [0.0, 0.0, 0.0]
        assert clock.slept == []

    def test_call_over_limit_waits_for_window_plus_buffer(self):
        # Arrange
        clock = FakeClock()
        limiter = RateLimiter(max_calls=2, window_seconds=60, buffer_seconds=1, clock=clock, sleep=clock.sleep)
        limiter.acquire()
        clock.now += 20
        limiter.acquire()

        # Act
        waited = limiter.acquire()

        # Assert
        assert waited == 41
        assert clock.slept == [41]
        assert limiter.calls_in_window == 1

    def test_window_resets_after_elapsed(self):
        clock = FakeClock()
        limiter = RateLimiter(max_calls=1, window_seconds=60, clock=clock, sleep=clock.sleep)
        limiter.acquire()

        clock.now += 61
        waited = limiter.acquire()

        assert waited == 0.0
        assert clock.slept == []

    def test_no_more_than_max_calls_per_window(self):
        """Across many calls, each window never exceeds max_calls."""
        clock = FakeClock()
        limiter = RateLimiter(max_calls=55, window_seconds=60, buffer_seconds=1, clock=clock, sleep=clock.sleep)

        for _ in range(200):
            limiter.acquire()

        assert len(clock.slept) == 3

    def test_reset(self):
        clock = FakeClock()
        limiter = RateLimiter(max_calls=1, clock=clock, sleep=clock.sleep)
        limiter.acquire()

        limiter.reset()

        assert limiter.acquire() == 0.0
