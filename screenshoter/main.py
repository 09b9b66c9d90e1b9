import asyncio
import signal
import sys
from typing import Optional

from aio_pika.abc import AbstractIncomingMessage
from pydantic import ValidationError

from common.config import RunConfig
from common.logger import get_logger
from rabbit.broker import RabbitMQClient, QUEUE_CAPTURE_JOBS
from rabbit.models import CaptureJob
from screenshoter.playwrt import RenderSessionManager
from screenshoter.progress import BrokerProgressReporter
from screenshoter.runner import run_capture_job
from storage.base import ObjectStorage
from storage.factory import create_storage


class ScreenshotService:
    def __init__(
            self,
            config: Optional[RunConfig] = None,
            storage: Optional[ObjectStorage] = None,
    ) -> None:
        self._logger = get_logger(__name__)
        self._config = config or RunConfig.from_env()
        self._storage = storage
        self._rabbit: Optional[RabbitMQClient] = None

    async def start(self) -> None:
        if self._storage is None:
            self._storage = create_storage()

        self._rabbit = await RabbitMQClient.wait_for_broker()
        await self._rabbit.declare_all_queues()
        await self._rabbit.consume(QUEUE_CAPTURE_JOBS, self._process_job)

        self._logger.info(
            "Successfully connected to RabbitMQ, storing artifacts in '%s'", self._storage.name
        )

    async def stop(self) -> None:
        if self._rabbit:
            await self._rabbit.disconnect()

        self._logger.info("Successfully disconnected from RabbitMQ")

    async def _process_job(self, message: AbstractIncomingMessage) -> None:
        async with message.process(requeue=False):
            try:
                data = RabbitMQClient.parse_message(message)
                job = CaptureJob(**data)
            except (ValueError, ValidationError):
                self._logger.exception("Exception during broker message processing")
                return

            await self._handle_job(job)

    async def _handle_job(self, job: CaptureJob) -> None:
        reporter = BrokerProgressReporter(self._rabbit)

        try:
            archive = await run_capture_job(
                job_id=job.job_id,
                raw_urls=job.urls,
                config=self._config,
                sessions=RenderSessionManager(),
                storage=self._storage,
                reporter=reporter,
            )
        except Exception as exc:
            # The job record is already marked failed, the message is acked.
            self._logger.error("Job %s failed: %s: %s", job.job_id, type(exc).__name__, exc)
            return

        self._logger.info("Job %s archive is available at key %s", job.job_id, archive.key)

    async def __aenter__(self) -> "ScreenshotService":
        await self.start()
        return self

    async def __aexit__(self, *_) -> None:
        await self.stop()


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
        return

    # Windows has no loop signal handlers
    def handler(signum, frame):
        loop.call_soon_threadsafe(stop_event.set)

    signal.signal(signal.SIGINT, handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, handler)


async def entrypoint() -> None:
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    async with ScreenshotService():
        await stop_event.wait()


if __name__ == "__main__":
    asyncio.run(entrypoint())
