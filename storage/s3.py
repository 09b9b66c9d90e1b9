import asyncio
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from common import config
from common.logger import get_logger
from storage.base import ObjectStorage, StorageError, StoredArtifact


def _build_client() -> Any:
    return boto3.client(
        "s3",
        endpoint_url=config.S3_ENDPOINT,
        region_name=config.S3_REGION,
        aws_access_key_id=config.S3_ACCESS_KEY,
        aws_secret_access_key=config.S3_SECRET_KEY,
        config=Config(
            s3={"addressing_style": "path"},
            connect_timeout=3,
            read_timeout=10,
            retries={"max_attempts": 3, "mode": "standard"},
        ),
    )


class S3ObjectStorage(ObjectStorage):
    """Durable storage in an S3-compatible bucket.

    boto3 is blocking, every call is moved to a worker thread so the event
    loop keeps serving the broker while an upload is in flight.
    """

    name = "s3"

    def __init__(self, bucket: str = config.S3_BUCKET, client: Optional[Any] = None) -> None:
        if not bucket:
            raise ValueError("S3 bucket name is not configured")

        self._logger = get_logger(__name__)
        self._bucket = bucket
        self._client = client if client is not None else _build_client()

    async def put(self, key: str, data: bytes, content_type: str) -> StoredArtifact:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            self._logger.error("S3 upload of %s failed: %s", key, e)
            raise StorageError(f"Failed to upload {key} to S3") from e

        self._logger.info("Uploaded %s to S3 (%d bytes)", key, len(data))
        return StoredArtifact(key=key, content_type=content_type, size_bytes=len(data))

    async def get(self, key: str) -> bytes:
        try:
            return await asyncio.to_thread(self._read_object, key)
        except (BotoCoreError, ClientError) as e:
            self._logger.error("S3 download of %s failed: %s", key, e)
            raise StorageError(f"Failed to download {key} from S3") from e

    async def signed_url(self, key: str, ttl_seconds: int = config.SIGNED_URL_TTL) -> str:
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to sign a download url for {key}") from e

    def _read_object(self, key: str) -> bytes:
        response = self._client.get_object(Bucket=self._bucket, Key=key)
        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()
