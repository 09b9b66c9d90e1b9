import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from common.logger import get_logger
from producer.models import JobRecord
from rabbit.models import JobStatus, StatusUpdate

_UPDATABLE_FIELDS = ("status", "urls_count", "completed", "s3_key", "processed_at")


class JobStore:
    """In-process registry of capture jobs, keyed by job id."""

    def __init__(self) -> None:
        self._logger = get_logger(__name__)
        self._jobs: Dict[str, JobRecord] = {}

    def create(self, urls_count: int, status: JobStatus = JobStatus.PENDING) -> JobRecord:
        record = JobRecord(
            id=str(uuid.uuid4()),
            status=status,
            urls_count=urls_count,
            processed_at=datetime.now(timezone.utc),
        )
        self._jobs[record.id] = record
        return record

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def update(self, job_id: str, **fields: Any) -> JobRecord:
        record = self._jobs.get(job_id)
        if record is None:
            raise KeyError(job_id)

        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        updated = record.model_copy(update=fields)
        self._jobs[job_id] = updated
        return updated

    def apply(self, update: StatusUpdate) -> Optional[JobRecord]:
        if update.job_id not in self._jobs:
            self._logger.warning("Status update for unknown job %s ignored", update.job_id)
            return None

        fields = update.model_dump(include=set(_UPDATABLE_FIELDS), exclude_none=True)
        return self.update(update.job_id, **fields)

    def find_by_key(self, s3_key: str) -> Optional[JobRecord]:
        return next((job for job in self._jobs.values() if job.s3_key == s3_key), None)

    def list_all(self) -> List[JobRecord]:
        return sorted(self._jobs.values(), key=lambda job: job.processed_at, reverse=True)
