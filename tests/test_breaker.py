"""Tests for the primary backend circuit breaker."""

from kairo.memory.breaker import BreakerState, CircuitBreaker


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def closed_breaker(clock=None, **kwargs) -> CircuitBreaker:
    breaker = CircuitBreaker(clock=clock or FakeClock(), **kwargs)
    breaker.record_success()
    return breaker


class TestCircuitBreaker:
    def test_starts_half_open(self):
        breaker = CircuitBreaker()
        assert breaker.state is BreakerState.HALF_OPEN
        assert breaker.needs_probe()
        assert breaker.allows_request()

    def test_success_closes(self):
        breaker = closed_breaker()
        assert breaker.state is BreakerState.CLOSED
        assert not breaker.needs_probe()
        assert breaker.failures == 0

    def test_single_failure_stays_closed(self):
        breaker = closed_breaker()
        breaker.record_failure()
        assert breaker.state is BreakerState.CLOSED
        assert breaker.allows_request()

    def test_threshold_failures_open(self):
        breaker = closed_breaker(failure_threshold=3)
        for _ in range(3):
            breaker.record_failure()
        assert breaker.state is BreakerState.OPEN
        assert not breaker.allows_request()

    def test_success_resets_failure_count(self):
        breaker = closed_breaker(failure_threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state is BreakerState.CLOSED
        assert breaker.failures == 1

    def test_failure_while_half_open_opens(self):
        breaker = CircuitBreaker(clock=FakeClock())
        breaker.record_failure()
        assert breaker.state is BreakerState.OPEN

    def test_trip_opens_immediately(self):
        breaker = closed_breaker()
        breaker.trip()
        assert breaker.state is BreakerState.OPEN
        assert breaker.failures == 1

    def test_reset_timeout_half_opens(self):
        clock = FakeClock()
        breaker = closed_breaker(clock=clock, reset_timeout=30)
        breaker.trip()

        clock.now += 29
        assert breaker.state is BreakerState.OPEN

        clock.now += 1
        assert breaker.state is BreakerState.HALF_OPEN
        assert breaker.needs_probe()

    def test_failed_reprobe_reopens_with_fresh_timer(self):
        clock = FakeClock()
        breaker = closed_breaker(clock=clock, reset_timeout=30)
        breaker.trip()
        clock.now += 30
        assert breaker.needs_probe()

        breaker.trip()
        clock.now += 10
        assert breaker.state is BreakerState.OPEN
