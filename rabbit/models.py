from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CaptureJob(BaseModel):
    job_id: str
    urls: List[str]


class StatusUpdate(BaseModel):
    job_id: str
    status: JobStatus
    urls_count: Optional[int] = None
    completed: Optional[int] = None
    s3_key: Optional[str] = None
    processed_at: Optional[datetime] = None
    detail: Optional[str] = None
