from screenshoter.breaker import CircuitBreaker, CircuitBreakerState


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _breaker(clock, threshold=5, reset_ms=60_000):
    state = CircuitBreakerState(failure_threshold=threshold, reset_timeout_ms=reset_ms)
    return CircuitBreaker(state, clock=clock)


def test_opens_only_when_threshold_is_exceeded():
    breaker = _breaker(FakeClock())

    for _ in range(5):
        breaker.observe(success=False)
    assert not breaker.should_block()

    breaker.observe(success=False)
    assert breaker.state.is_open
    assert breaker.should_block()


def test_success_interrupts_the_streak():
    breaker = _breaker(FakeClock())

    for _ in range(5):
        breaker.observe(success=False)
    breaker.observe(success=True)
    for _ in range(5):
        breaker.observe(success=False)

    assert breaker.state.consecutive_failures == 5
    assert not breaker.should_block()


def test_stays_open_for_the_whole_cooldown():
    clock = FakeClock(1_000)
    breaker = _breaker(clock, threshold=1, reset_ms=60_000)
    breaker.observe(success=False)
    breaker.observe(success=False)

    clock.now = 1_000 + 59_999
    assert breaker.should_block()

    clock.now = 1_000 + 60_000
    assert not breaker.should_block()
    assert not breaker.state.is_open
    assert breaker.state.consecutive_failures == 0


def test_success_does_not_close_an_open_breaker():
    clock = FakeClock()
    breaker = _breaker(clock, threshold=1)
    breaker.observe(success=False)
    breaker.observe(success=False)

    breaker.observe(success=True)

    assert breaker.state.consecutive_failures == 0
    assert breaker.should_block()


def test_states_are_independent_per_job():
    clock = FakeClock()
    first = _breaker(clock, threshold=1)
    second = _breaker(clock, threshold=1)

    first.observe(success=False)
    first.observe(success=False)

    assert first.should_block()
    assert not second.should_block()
    assert second.state.consecutive_failures == 0
