from abc import ABC, abstractmethod

from app.core.config import get_settings

IMAGE_URL_PREFIX = "/generated-images"


class StorageBackend(ABC):
    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        """Store bytes under key; return path or URI."""
        ...

    @abstractmethod
    def public_url(self, key: str) -> str:
        """URL clients use to fetch the stored file."""
        ...


def get_storage() -> StorageBackend:
    settings = get_settings()
    if settings.storage_backend == "gcs":
        from app.storage.gcs import GCSStorage
        return GCSStorage()
    from app.storage.local import LocalStorage
    return LocalStorage()
