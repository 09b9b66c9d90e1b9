from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from aio_pika.abc import AbstractIncomingMessage
from fastapi import FastAPI, File, HTTPException, UploadFile
from pydantic import ValidationError

from common.config import SIGNED_URL_TTL
from common.logger import get_logger
from producer.jobs import JobStore
from producer.models import ErrorResponse, HealthResponse, JobRecord, SignedUrlResponse
from producer.spreadsheet import SpreadsheetError, read_urls
from rabbit.broker import QUEUE_CAPTURE_JOBS, QUEUE_STATUS_UPDATES, RabbitMQClient
from rabbit.models import CaptureJob, JobStatus, StatusUpdate
from storage.base import ObjectStorage, StorageError
from storage.factory import create_storage

_STATUS_PREFETCH = 10


class Server:
    def __init__(
            self,
            storage: Optional[ObjectStorage] = None,
            jobs: Optional[JobStore] = None,
    ) -> None:
        self._logger = get_logger(__name__)
        self._storage = storage
        self._jobs = jobs if jobs is not None else JobStore()
        self._rabbit: Optional[RabbitMQClient] = None

        self.app = FastAPI(title="Bulk screenshoter", lifespan=self._lifespan)

        self.register_routes()

    @property
    def jobs(self) -> JobStore:
        return self._jobs

    def _get_storage(self) -> ObjectStorage:
        if self._storage is None:
            self._storage = create_storage()
        return self._storage

    @asynccontextmanager
    async def _lifespan(self, _app: FastAPI) -> AsyncIterator[None]:
        await self._on_startup()
        try:
            yield
        finally:
            await self._on_shutdown()

    async def _on_startup(self) -> None:
        self._rabbit = await RabbitMQClient.wait_for_broker(prefetch_count=_STATUS_PREFETCH)
        await self._rabbit.declare_all_queues()

        await self._rabbit.consume(QUEUE_STATUS_UPDATES, self._handle_status_update)

        self._logger.info("Successfully connected to RabbitMQ")

    async def _on_shutdown(self) -> None:
        if self._rabbit:
            await self._rabbit.disconnect()

        self._logger.info("Successfully disconnected from RabbitMQ")

    async def _handle_status_update(self, message: AbstractIncomingMessage) -> None:
        async with message.process():
            try:
                update = StatusUpdate(**RabbitMQClient.parse_message(message))
            except (ValueError, ValidationError):
                self._logger.exception("Exception during processing of a message from a broker")
                return

            self._jobs.apply(update)
            if update.detail:
                self._logger.warning("Job %s reported: %s", update.job_id, update.detail)
            self._logger.info(
                "Received a status update for the job %s: %s", update.job_id, update.status.value
            )

    def register_routes(self) -> None:
        @self.app.post(
            "/tasks/upload",
            status_code=201,
            response_model=JobRecord,
            responses={
                400: {"model": ErrorResponse},
                503: {"model": ErrorResponse},
            },
            summary="Upload an .xlsx file with urls to capture",
            tags=["Tasks"],
        )
        async def upload(file: UploadFile = File(...)) -> JobRecord:
            if self._rabbit is None:
                self._logger.error("The message broker is not initialized")
                raise HTTPException(status_code=503, detail="Message broker unavailable")

            try:
                urls = read_urls(await file.read())
            except SpreadsheetError as e:
                self._logger.warning("Rejected upload %s: %s", file.filename, e)
                raise HTTPException(status_code=400, detail=str(e))

            record = self._jobs.create(urls_count=len(urls))
            job = CaptureJob(job_id=record.id, urls=urls)

            try:
                await self._rabbit.publish(QUEUE_CAPTURE_JOBS, job.model_dump(mode="json"))
            except Exception:
                self._logger.exception(
                    "Exception during an attempt to post a message to the broker's channel %s",
                    QUEUE_CAPTURE_JOBS,
                )
                self._jobs.update(record.id, status=JobStatus.FAILED)
                raise HTTPException(status_code=503, detail="Message broker unavailable")

            self._logger.info("Job %s created successfully; urls: %d", record.id, len(urls))
            return record

        @self.app.get(
            "/tasks",
            response_model=List[JobRecord],
            summary="List all capture jobs, newest first",
            tags=["Tasks"],
        )
        async def list_tasks() -> List[JobRecord]:
            return self._jobs.list_all()

        @self.app.get(
            "/tasks/{key:path}",
            response_model=SignedUrlResponse,
            responses={
                404: {"model": ErrorResponse},
                502: {"model": ErrorResponse},
            },
            summary="Get a signed download url of a job archive",
            tags=["Tasks"],
        )
        async def get_file(key: str) -> SignedUrlResponse:
            if self._jobs.find_by_key(key) is None:
                self._logger.warning("No job references archive %s", key)
                raise HTTPException(status_code=404, detail="File not found")

            try:
                url = await self._get_storage().signed_url(key, SIGNED_URL_TTL)
            except StorageError as e:
                self._logger.exception("Failed to sign a download url for %s", key)
                raise HTTPException(status_code=502, detail=str(e))

            return SignedUrlResponse(url=url)

        @self.app.get("/health", response_model=HealthResponse, tags=["Health"])
        async def health() -> HealthResponse:
            return HealthResponse()
