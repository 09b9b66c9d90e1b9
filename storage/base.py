from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict

from common.config import SIGNED_URL_TTL


class StorageError(Exception):
    """Object storage could not complete a read or a write."""


class StoredArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    content_type: str
    size_bytes: int

    @property
    def name(self) -> str:
        return self.key.rsplit("/", 1)[-1]


class ObjectStorage(ABC):
    name: str

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> StoredArtifact:
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    async def signed_url(self, key: str, ttl_seconds: int = SIGNED_URL_TTL) -> str:
        raise NotImplementedError
