from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from rabbit.models import JobStatus


class JobRecord(BaseModel):
    id: str
    status: JobStatus = JobStatus.PENDING
    urls_count: int = 0
    completed: int = 0
    s3_key: Optional[str] = None
    processed_at: datetime


class SignedUrlResponse(BaseModel):
    url: str = Field(
        examples=["https://s3.timeweb.cloud/screenshots/archives/3f1c..._1729180000000.zip?X-Amz-Expires=3600"]
    )


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
