"""Storage provider contract shared by the SFTP and S3 backends."""

from abc import ABC, abstractmethod
from typing import Dict, Iterator, List

from core.errors import BlobNotFound
from core.models import StorageBlob


class StorageProvider(ABC):
    """Blob storage addressed by slash-separated paths.

    ``name`` is the ``storageProvider`` value file records carry for blobs
    held by this backend.
    """

    name = "unknown"

    @abstractmethod
    def list(self, prefix: str, limit: int, offset: int = 0) -> List[Dict]:
        """Return up to ``limit`` entries directly under ``prefix``.

        Each entry is a dict with ``name``, ``size`` and ``last_modified``.
        Raises ``ListingError`` when the prefix cannot be listed.
        """

    @abstractmethod
    def download(self, path: str) -> bytes:
        """Fetch a blob. Raises ``BlobNotFound`` when it does not exist."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove a blob. Raises ``StorageError`` on failure."""

    @abstractmethod
    def list_tree(self, prefix: str) -> Iterator[StorageBlob]:
        """Yield every blob below ``prefix``, recursing into sub-folders."""

    def exists(self, path: str) -> bool:
        """Authoritative existence probe.

        Returns False only when the blob is missing; any other failure
        propagates as ``StorageError``.
        """
        try:
            self.download(path)
        except BlobNotFound:
            return False
        return True

    def is_configured(self) -> bool:
        """Cheap local check that the backend has somewhere to connect to."""
        return True

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def get_storage_provider(name=None, settings=None) -> StorageProvider:
    """Build the configured storage backend."""
    if settings is None:
        from config.settings import settings
    name = (name or settings.STORAGE_PROVIDER).lower()

    if name == "sftp":
        from integrations.sftp_client import SFTPStorage

        return SFTPStorage(
            host=settings.SFTP_HOST,
            port=settings.SFTP_PORT,
            username=settings.SFTP_USERNAME,
            password=settings.SFTP_PASSWORD,
            root=settings.SFTP_ROOT,
            timeout=settings.STORAGE_TIMEOUT_SECONDS,
        )
    if name == "s3":
        from integrations.s3_client import S3Storage

        return S3Storage(
            bucket=settings.S3_BUCKET,
            region=settings.S3_REGION,
            endpoint_url=settings.S3_ENDPOINT_URL,
            access_key_id=settings.S3_ACCESS_KEY_ID,
            secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            timeout=settings.STORAGE_TIMEOUT_SECONDS,
        )

    raise ValueError(f"Unknown storage provider: {name}")
