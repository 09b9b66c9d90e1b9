import asyncio
import random
from typing import Awaitable, Callable, Iterable

from common.config import RunConfig
from common.logger import get_logger
from common.urls import is_valid_url
from rabbit.models import JobStatus
from screenshoter.artifacts import ArtifactPipeline
from screenshoter.breaker import CircuitBreaker, CircuitBreakerState
from screenshoter.orchestrator import CaptureOrchestrator
from screenshoter.playwrt import RenderSessionManager
from screenshoter.progress import ProgressReporter
from storage.base import ObjectStorage, StoredArtifact

_logger = get_logger(__name__)


async def run_capture_job(
        job_id: str,
        raw_urls: Iterable[str],
        config: RunConfig,
        sessions: RenderSessionManager,
        storage: ObjectStorage,
        reporter: ProgressReporter,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
) -> StoredArtifact:
    """Capture all valid urls of a job and store them as one zip archive.

    The job ends either ``completed`` with the archive key, or ``failed``
    with nothing bundled, in which case the fault is re-raised.
    """
    urls = [url for url in raw_urls if is_valid_url(url)]

    breaker = CircuitBreaker(CircuitBreakerState(
        failure_threshold=config.circuit_failure_threshold,
        reset_timeout_ms=config.circuit_reset_timeout_ms,
    ))
    pipeline = ArtifactPipeline(storage, job_id)

    try:
        await reporter.on_started(job_id, len(urls))
        _logger.info("Job %s started with %d valid urls", job_id, len(urls))

        async with sessions:
            orchestrator = CaptureOrchestrator(
                job_id=job_id,
                config=config,
                sessions=sessions,
                breaker=breaker,
                pipeline=pipeline,
                reporter=reporter,
                sleep=sleep,
                rand=rand,
            )
            artifacts = await orchestrator.run(urls)

        archive = await pipeline.bundle(artifacts)
    except Exception as exc:
        _logger.exception("Job %s failed", job_id)
        try:
            await reporter.on_terminal(
                job_id, JobStatus.FAILED, detail=f"{type(exc).__name__}: {exc}"
            )
        except Exception:
            _logger.exception("Failed to report the failure of job %s", job_id)
        raise

    _logger.info("Job %s completed: %d of %d urls captured", job_id, len(artifacts), len(urls))
    await reporter.on_terminal(job_id, JobStatus.COMPLETED, archive.key)
    return archive
