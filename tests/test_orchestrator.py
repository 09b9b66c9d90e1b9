from __future__ import annotations

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from conftest import FakeSessions
from screenshoter.artifacts import ArtifactPipeline
from screenshoter.breaker import CircuitBreaker, CircuitBreakerState
from screenshoter.orchestrator import CaptureOrchestrator, ServiceUnavailableError, WorkQueue
from storage.base import StorageError

URLS = [f"https://site{i}.example.com/" for i in range(1, 6)]


def _orchestrator(config, sessions, storage, reporter, sleep, rand=lambda: 0.0):
    breaker = CircuitBreaker(CircuitBreakerState(
        failure_threshold=config.circuit_failure_threshold,
        reset_timeout_ms=config.circuit_reset_timeout_ms,
    ))
    orchestrator = CaptureOrchestrator(
        job_id="job-1",
        config=config,
        sessions=sessions,
        breaker=breaker,
        pipeline=ArtifactPipeline(storage, "job-1", clock=lambda: 1700000000000),
        reporter=reporter,
        sleep=sleep,
        rand=rand,
    )
    return orchestrator, breaker


def test_work_queue_requeues_at_tail():
    queue = WorkQueue(["a", "b"], initial_timeout_ms=10)
    first = queue.pop()
    queue.requeue(first)

    assert [queue.pop().url, queue.pop().url] == ["b", "a"]
    assert not queue


@pytest.mark.asyncio()
async def test_failing_targets_are_abandoned_and_others_captured(run_config, storage, reporter, sleep):
    sessions = FakeSessions({URLS[1]: 500, URLS[3]: 500})
    orchestrator, _ = _orchestrator(run_config, sessions, storage, reporter, sleep)

    artifacts = await orchestrator.run(URLS)

    assert [artifact.name for artifact in artifacts] == [
        "1_site1-example-com_1700000000000.png",
        "2_site3-example-com_1700000000000.png",
        "3_site5-example-com_1700000000000.png",
    ]
    assert reporter.progress == [1, 2, 3]
    assert sessions.attempts_of(URLS[1]) == [1_000, 2_000, 4_000]
    assert sessions.attempts_of(URLS[3]) == [1_000, 2_000, 4_000]
    assert len(sessions.navigations) == 3 + 2 * run_config.max_attempts
    assert all(page.closed for page in sessions.pages)


@pytest.mark.asyncio()
async def test_requeued_target_moves_to_tail(run_config, storage, reporter, sleep):
    sessions = FakeSessions({URLS[0]: [500]})
    orchestrator, _ = _orchestrator(run_config, sessions, storage, reporter, sleep)

    await orchestrator.run(URLS[:3])

    assert [url for url, _ in sessions.navigations] == [URLS[0], URLS[1], URLS[2], URLS[0]]


@pytest.mark.asyncio()
async def test_timeout_grows_with_each_requeue(run_config, storage, reporter, sleep):
    timeout = PlaywrightTimeoutError("Timeout 1000ms exceeded.")
    sessions = FakeSessions({URLS[0]: [timeout, timeout]})
    orchestrator, _ = _orchestrator(run_config, sessions, storage, reporter, sleep)

    artifacts = await orchestrator.run(URLS[:1])

    assert sessions.attempts_of(URLS[0]) == [1_000, 2_000, 4_000]
    assert len(artifacts) == 1
    assert sessions.recycles == 0


@pytest.mark.asyncio()
async def test_breaker_aborts_before_next_navigation(run_config, storage, reporter, sleep):
    urls = URLS[:3]
    sessions = FakeSessions({url: PlaywrightTimeoutError("Timeout exceeded") for url in urls})
    orchestrator, breaker = _orchestrator(run_config, sessions, storage, reporter, sleep)

    with pytest.raises(ServiceUnavailableError):
        await orchestrator.run(urls)

    assert len(sessions.navigations) == 6
    assert breaker.state.is_open
    assert all(page.closed for page in sessions.pages)


@pytest.mark.asyncio()
async def test_success_resets_failure_streak(run_config, storage, reporter, sleep):
    sessions = FakeSessions({URLS[0]: [503, 503]})
    orchestrator, breaker = _orchestrator(run_config, sessions, storage, reporter, sleep)

    await orchestrator.run(URLS[:1])

    assert breaker.state.consecutive_failures == 0
    assert not breaker.state.is_open


@pytest.mark.asyncio()
async def test_fatal_error_recycles_session(run_config, storage, reporter, sleep):
    sessions = FakeSessions({URLS[0]: [PlaywrightError("Protocol error (Page.navigate): Target closed.")]})
    orchestrator, _ = _orchestrator(run_config, sessions, storage, reporter, sleep)

    artifacts = await orchestrator.run(URLS[:2])

    assert sessions.recycles == 1
    assert len(artifacts) == 2


@pytest.mark.asyncio()
async def test_politeness_delay_after_each_success(storage, reporter, sleep, run_config):
    config = run_config.model_copy(update={"base_delay_ms": 2_000, "jitter_ms": 3_000})
    sessions = FakeSessions({URLS[1]: 404})
    orchestrator, _ = _orchestrator(config, sessions, storage, reporter, sleep, rand=lambda: 0.5)

    await orchestrator.run(URLS[:2])

    assert sleep.calls == [3.5]


class _BrokenStorage:
    name = "broken"

    async def put(self, key, data, content_type):
        raise StorageError(f"Failed to upload {key}")


@pytest.mark.asyncio()
async def test_storage_failure_escapes_loop(run_config, reporter, sleep):
    sessions = FakeSessions()
    orchestrator, _ = _orchestrator(run_config, sessions, _BrokenStorage(), reporter, sleep)

    with pytest.raises(StorageError):
        await orchestrator.run(URLS)

    assert len(sessions.navigations) == 1
    assert reporter.progress == []
    assert sessions.pages[0].closed


@pytest.mark.asyncio()
async def test_empty_input_produces_nothing(run_config, storage, reporter, sleep):
    orchestrator, _ = _orchestrator(run_config, FakeSessions(), storage, reporter, sleep)

    assert await orchestrator.run([]) == []
    assert reporter.events == []


@pytest.mark.asyncio()
async def test_timeout_follows_power_of_fractional_multiplier(run_config, storage, reporter, sleep):
    config = run_config.model_copy(update={
        "max_attempts": 5,
        "initial_timeout_ms": 1_001,
        "timeout_multiplier": 1.5,
    })
    sessions = FakeSessions({URLS[0]: 500})
    orchestrator, _ = _orchestrator(config, sessions, storage, reporter, sleep)

    assert await orchestrator.run(URLS[:1]) == []

    timeouts = sessions.attempts_of(URLS[0])
    assert timeouts == [round(1_001 * 1.5 ** k) for k in range(5)]
    assert timeouts == [1_001, 1_502, 2_252, 3_378, 5_068]
    assert all(isinstance(timeout, int) and timeout > 0 for timeout in timeouts)
