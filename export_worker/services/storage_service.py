import asyncio
import shutil
from datetime import timedelta
from pathlib import Path

from export_worker.config import get_settings

settings = get_settings()


class LocalStorageService:
    """Local file storage for development without GCS.

    Each bucket is a directory under ``local_storage_path``.
    """

    def __init__(self, bucket_name: str, base_path: str | None = None) -> None:
        self.bucket_name = bucket_name
        self.base_path = Path(base_path or settings.local_storage_path) / bucket_name
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, storage_key: str) -> Path:
        full_path = self.base_path / storage_key
        full_path.parent.mkdir(parents=True, exist_ok=True)
        return full_path

    async def read_text(self, storage_key: str) -> str:
        """Read a stored text document. Raises FileNotFoundError if absent."""
        return self._get_full_path(storage_key).read_text(encoding="utf-8")

    async def write_text(self, storage_key: str, text: str, content_type: str = "application/json") -> None:
        self._get_full_path(storage_key).write_text(text, encoding="utf-8")

    async def upload_file(self, local_path: str | Path, storage_key: str, content_type: str | None = None) -> None:
        shutil.copy(str(local_path), str(self._get_full_path(storage_key)))

    async def generate_download_url(self, storage_key: str, expires_minutes: int = 60) -> str:
        """Local files never expire; the URL is a plain file URI."""
        return self._get_full_path(storage_key).resolve().as_uri()

    def file_exists(self, storage_key: str) -> bool:
        return (self.base_path / storage_key).exists()


class GCSStorageService:
    """Google Cloud Storage bucket for production.

    The client library is synchronous, so calls run in a worker thread to keep
    the event loop free for other jobs.
    """

    def __init__(self, bucket_name: str) -> None:
        from google.cloud import storage

        self.bucket_name = bucket_name
        self._storage = storage
        self._client: storage.Client | None = None
        self._bucket: storage.Bucket | None = None

    @property
    def client(self):
        if self._client is None:
            if settings.gcs_project_id:
                self._client = self._storage.Client(project=settings.gcs_project_id)
            else:
                self._client = self._storage.Client()
        return self._client

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = self.client.bucket(self.bucket_name)
        return self._bucket

    async def read_text(self, storage_key: str) -> str:
        """Read a stored text document. Raises google.api_core NotFound if absent."""
        blob = self.bucket.blob(storage_key)
        return await asyncio.to_thread(blob.download_as_text)

    async def write_text(self, storage_key: str, text: str, content_type: str = "application/json") -> None:
        blob = self.bucket.blob(storage_key)
        await asyncio.to_thread(blob.upload_from_string, text, content_type=content_type)

    async def upload_file(self, local_path: str | Path, storage_key: str, content_type: str | None = None) -> None:
        blob = self.bucket.blob(storage_key)
        await asyncio.to_thread(blob.upload_from_filename, str(local_path), content_type=content_type)

    async def generate_download_url(self, storage_key: str, expires_minutes: int = 60) -> str:
        """Generate a V4 signed GET URL."""
        blob = self.bucket.blob(storage_key)
        return await asyncio.to_thread(
            blob.generate_signed_url,
            version="v4",
            expiration=timedelta(minutes=expires_minutes),
            method="GET",
        )

    def file_exists(self, storage_key: str) -> bool:
        return self.bucket.blob(storage_key).exists()


# Use LocalStorageService or GCSStorageService based on config
StorageService = LocalStorageService if settings.use_local_storage else GCSStorageService


def get_input_storage() -> StorageService:
    """Bucket holding one timeline.json per job."""
    return StorageService(settings.input_bucket_name)


def get_output_storage() -> StorageService:
    """Bucket receiving rendered videos."""
    return StorageService(settings.output_bucket_name)
