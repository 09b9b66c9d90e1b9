import asyncio
import random
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Iterable, List

from playwright.async_api import Error as PlaywrightError

from common.config import RunConfig
from common.logger import get_logger
from screenshoter.artifacts import ArtifactPipeline
from screenshoter.breaker import CircuitBreaker
from screenshoter.playwrt import (
    NavigationError,
    RenderSessionManager,
    is_fatal_error,
    validate_response,
)
from screenshoter.progress import ProgressReporter
from storage.base import StoredArtifact

# Failures that stay within one target and drive the retry policy.
CAPTURE_ERRORS = (PlaywrightError, NavigationError)


class ServiceUnavailableError(Exception):
    """Raised when the circuit breaker aborts the remaining captures."""


@dataclass
class CaptureItem:
    url: str
    attempts: int
    timeout_ms: int


class WorkQueue:
    """FIFO of pending captures; a failed item goes back to the tail."""

    def __init__(self, urls: Iterable[str], initial_timeout_ms: int) -> None:
        self._items: Deque[CaptureItem] = deque(
            CaptureItem(url=url, attempts=0, timeout_ms=initial_timeout_ms)
            for url in urls
        )

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def pop(self) -> CaptureItem:
        return self._items.popleft()

    def requeue(self, item: CaptureItem) -> None:
        self._items.append(item)


class CaptureOrchestrator:
    def __init__(
            self,
            job_id: str,
            config: RunConfig,
            sessions: RenderSessionManager,
            breaker: CircuitBreaker,
            pipeline: ArtifactPipeline,
            reporter: ProgressReporter,
            sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
            rand: Callable[[], float] = random.random,
    ) -> None:
        self._logger = get_logger(__name__)
        self._job_id = job_id
        self._config = config
        self._sessions = sessions
        self._breaker = breaker
        self._pipeline = pipeline
        self._reporter = reporter
        self._sleep = sleep
        self._rand = rand

    async def run(self, urls: Iterable[str]) -> List[StoredArtifact]:
        """Capture every url, returning the stored images of those that succeeded.

        Targets that exhaust their attempts are dropped and only logged.
        Storage faults propagate. ``ServiceUnavailableError`` is raised as soon
        as the circuit breaker is open at the start of an iteration.
        """
        queue = WorkQueue(urls, self._config.initial_timeout_ms)
        artifacts: List[StoredArtifact] = []

        while queue:
            if self._breaker.should_block():
                self._logger.error(
                    "Job %s aborted, %d targets left in the queue", self._job_id, len(queue)
                )
                raise ServiceUnavailableError("Service unavailable due to recent errors")

            item = queue.pop()
            page = None
            try:
                self._logger.info(
                    "Processing %s (attempt %d/%d)",
                    item.url, item.attempts + 1, self._config.max_attempts,
                )
                try:
                    page = await self._sessions.new_page()
                    response = await self._sessions.navigate(page, item.url, item.timeout_ms)
                    validate_response(response)
                    image = await self._sessions.capture(page)
                except CAPTURE_ERRORS as exc:
                    await self._handle_failure(item, queue, exc)
                    continue

                artifact = await self._pipeline.store(image, item.url, len(artifacts) + 1)
                artifacts.append(artifact)
                await self._reporter.on_progress(self._job_id, len(artifacts))

                self._breaker.observe(success=True)
                item.timeout_ms = self._config.initial_timeout_ms
                await self._politeness_delay()
            finally:
                if page is not None:
                    await self._sessions.close_page(page)

        return artifacts

    async def _handle_failure(self, item: CaptureItem, queue: WorkQueue, exc: Exception) -> None:
        item.attempts += 1
        self._logger.warning(
            "Attempt %d failed for %s: %s", item.attempts, item.url, exc
        )

        if item.attempts < self._config.max_attempts:
            item.timeout_ms = round(
                self._config.initial_timeout_ms * self._config.timeout_multiplier ** item.attempts
            )
            queue.requeue(item)
            self._logger.info("Requeued: %s (new timeout: %dms)", item.url, item.timeout_ms)
        else:
            self._logger.error("Max attempts reached for: %s", item.url)

        self._breaker.observe(success=False)

        if is_fatal_error(exc):
            await self._sessions.recycle()

    async def _politeness_delay(self) -> None:
        delay_ms = self._config.base_delay_ms + self._rand() * self._config.jitter_ms
        await self._sleep(delay_ms / 1000)
