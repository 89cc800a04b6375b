from pathlib import Path

from app.core.config import get_settings
from app.storage.base import IMAGE_URL_PREFIX, StorageBackend


class LocalStorage(StorageBackend):
    """Files under STORAGE_LOCAL_PATH, served by the API's static mount."""

    def __init__(self) -> None:
        settings = get_settings()
        self.root = Path(settings.storage_local_path)
        self.root.mkdir(parents=True, exist_ok=True)
        self.base_url = settings.public_base_url

    async def put(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return str(path)

    def public_url(self, key: str) -> str:
        return f"{self.base_url}{IMAGE_URL_PREFIX}/{key}"
