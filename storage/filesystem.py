import asyncio
import time
from pathlib import Path, PurePosixPath
from typing import Union

from common.config import SIGNED_URL_TTL, STORAGE_DIR
from common.logger import get_logger
from storage.base import ObjectStorage, StorageError, StoredArtifact


class LocalObjectStorage(ObjectStorage):
    """Objects kept as files below a base directory, for single-host runs."""

    name = "local"

    def __init__(self, base_dir: Union[str, Path] = STORAGE_DIR) -> None:
        self._logger = get_logger(__name__)
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)

    async def put(self, key: str, data: bytes, content_type: str) -> StoredArtifact:
        path = self._build_path(key)
        await asyncio.to_thread(self._write_file, path, data, key)

        self._logger.debug("Stored %s (%d bytes) at %s", key, len(data), path)
        return StoredArtifact(key=key, content_type=content_type, size_bytes=len(data))

    async def get(self, key: str) -> bytes:
        path = self._build_path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise StorageError(f"Object {key}: error read file {path}: {e}") from e

    async def signed_url(self, key: str, ttl_seconds: int = SIGNED_URL_TTL) -> str:
        path = self._build_path(key)
        if not path.exists():
            raise StorageError(f"Object {key} does not exist")

        expires = int(time.time()) + ttl_seconds
        return f"{path.resolve().as_uri()}?expires={expires}"

    def _build_path(self, key: str) -> Path:
        parts = [part for part in PurePosixPath(key).parts if part not in ("", ".", "..", "/")]
        if not parts:
            raise StorageError(f"Invalid object key: {key!r}")
        return self._base_dir.joinpath(*parts)

    @staticmethod
    def _write_file(path: Path, data: bytes, key: str) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            tmp_path.replace(path)

        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Object {key}: error write file {path}: {e}") from e
