import asyncio
import io
import time
import uuid
import zipfile
from typing import Callable, Sequence

from common.logger import get_logger
from common.urls import build_capture_filename
from storage.base import ObjectStorage, StoredArtifact

IMAGE_CONTENT_TYPE = "image/png"
ARCHIVE_CONTENT_TYPE = "application/zip"

_COMPRESS_LEVEL = 9


def _now_ms() -> int:
    return int(time.time() * 1000)


class ArtifactPipeline:
    """Stores captured images of one job and bundles them into a zip archive."""

    def __init__(
            self,
            storage: ObjectStorage,
            job_id: str,
            clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._logger = get_logger(__name__)
        self._storage = storage
        self._job_id = job_id
        self._clock = clock

    async def store(self, image: bytes, url: str, index: int) -> StoredArtifact:
        filename = build_capture_filename(url, index, self._clock())
        artifact = await self._storage.put(
            f"captures/{self._job_id}/{filename}",
            image,
            IMAGE_CONTENT_TYPE,
        )

        self._logger.info("Screenshot of %s stored with key: %s", url, artifact.key)
        return artifact

    async def bundle(self, artifacts: Sequence[StoredArtifact]) -> StoredArtifact:
        """Zip every stored image and store the archive.

        Any object that cannot be fetched back fails the whole bundle; a
        partial archive is never stored.
        """
        buffer = io.BytesIO()

        with zipfile.ZipFile(
                buffer,
                mode="w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=_COMPRESS_LEVEL,
        ) as archive:
            for artifact in artifacts:
                data = await self._storage.get(artifact.key)
                await asyncio.to_thread(archive.writestr, artifact.name, data)

        archive_bytes = buffer.getvalue()
        archive_key = f"archives/{uuid.uuid4()}_{self._clock()}.zip"

        stored = await self._storage.put(archive_key, archive_bytes, ARCHIVE_CONTENT_TYPE)
        self._logger.info(
            "Archive %s stored: %d entries, %d bytes",
            stored.key, len(artifacts), stored.size_bytes,
        )
        return stored
