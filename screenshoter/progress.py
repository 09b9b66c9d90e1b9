from datetime import datetime, timezone
from typing import Optional, Protocol

from common.logger import get_logger
from rabbit.broker import RabbitMQClient
from rabbit.models import JobStatus


class ProgressReporter(Protocol):
    async def on_started(self, job_id: str, urls_count: int) -> None: ...

    async def on_progress(self, job_id: str, completed: int) -> None: ...

    async def on_terminal(
            self,
            job_id: str,
            status: JobStatus,
            s3_key: Optional[str] = None,
            detail: Optional[str] = None,
    ) -> None: ...


class BrokerProgressReporter:
    """Publishes job progress to the status queue read by the producer."""

    def __init__(self, rabbit: RabbitMQClient) -> None:
        self._logger = get_logger(__name__)
        self._rabbit = rabbit

    async def on_started(self, job_id: str, urls_count: int) -> None:
        await self._rabbit.publish_status(
            job_id,
            JobStatus.PROCESSING,
            urls_count=urls_count,
            completed=0,
        )

    async def on_progress(self, job_id: str, completed: int) -> None:
        await self._rabbit.publish_status(job_id, JobStatus.PROCESSING, completed=completed)

    async def on_terminal(
            self,
            job_id: str,
            status: JobStatus,
            s3_key: Optional[str] = None,
            detail: Optional[str] = None,
    ) -> None:
        await self._rabbit.publish_status(
            job_id,
            status,
            s3_key=s3_key,
            detail=detail,
            processed_at=datetime.now(timezone.utc),
        )
        self._logger.info("Job %s finished with status %s", job_id, status.value)
