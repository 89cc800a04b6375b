from google.cloud import storage

from app.core.config import get_settings
from app.storage.base import StorageBackend


class GCSStorage(StorageBackend):
    def __init__(self) -> None:
        settings = get_settings()
        self.bucket_name = settings.gcs_bucket_name or "imagegen-generated-images"
        self._client = storage.Client()
        self._bucket = self._client.bucket(self.bucket_name)

    async def put(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        blob = self._bucket.blob(key)
        blob.upload_from_string(data, content_type=content_type)
        return f"gs://{self.bucket_name}/{key}"

    def public_url(self, key: str) -> str:
        # bucket is expected to grant allUsers read on generated images
        return f"https://storage.googleapis.com/{self.bucket_name}/{key}"
