from typing import Optional

from common import config
from storage.base import ObjectStorage
from storage.filesystem import LocalObjectStorage
from storage.s3 import S3ObjectStorage


def create_storage(backend: Optional[str] = None) -> ObjectStorage:
    backend = (backend or config.STORAGE_BACKEND).lower()

    if backend == LocalObjectStorage.name:
        return LocalObjectStorage(config.STORAGE_DIR)
    if backend == S3ObjectStorage.name:
        return S3ObjectStorage(config.S3_BUCKET)

    raise ValueError(f"Unknown storage backend: {backend!r}")
