"""Attachment storage.

Two backends share the ``FileStore`` protocol:
- LocalFileStore: files under the uploads directory
- MinioFileStore: S3-compatible object storage for on-premises deployments

Stored names are ``<epoch-millis>-<sanitized name>``; there is no content
dedup here (intake is deduplicated by message id).

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging
import mimetypes
import tempfile
import time
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Protocol

from minio import Minio
from minio.error import S3Error
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from bilags.shared.config import Settings
from bilags.shared.errors import FileStoreError

logger = logging.getLogger(__name__)


def stored_name(safe_name: str, now: float | None = None) -> str:
    return f"{int((now or time.time()) * 1000)}-{Path(safe_name).name}"


def _content_type(filename: str) -> str:
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or "application/octet-stream"


class FileStore(Protocol):
    """Where attachments live between intake and (re-)extraction."""

    def save(self, data: bytes, safe_name: str, content_type: str | None = None) -> str: ...

    def read(self, stored_as: str) -> bytes: ...

    def local_path(self, stored_as: str) -> AbstractContextManager[Path]: ...


class LocalFileStore:
    """Stores attachments in a local directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _resolve(self, stored_as: str) -> Path:
        return self.root / Path(stored_as).name

    def save(self, data: bytes, safe_name: str, content_type: str | None = None) -> str:
        """Write bytes and return the stored name.

        Raises:
            FileStoreError: If the file cannot be written
        """
        base = Path(stored_name(safe_name))
        name = base.name
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            # Same name within the same millisecond
            counter = 1
            while self._resolve(name).exists():
                name = f"{base.stem}-{counter}{base.suffix}"
                counter += 1
            self._resolve(name).write_bytes(data)
        except OSError as e:
            logger.error(f"Failed to store {safe_name}: {e}")
            raise FileStoreError(f"Cannot write {name}: {e}") from e
        logger.debug(f"Stored {name} ({len(data)} bytes)")
        return name

    def read(self, stored_as: str) -> bytes:
        try:
            return self._resolve(stored_as).read_bytes()
        except OSError as e:
            raise FileStoreError(f"Cannot read {stored_as}: {e}") from e

    @contextmanager
    def local_path(self, stored_as: str) -> Iterator[Path]:
        """Yield the on-disk path of a stored file."""
        path = self._resolve(stored_as)
        if not path.exists():
            raise FileStoreError(f"Stored file missing: {stored_as}")
        yield path


class MinioFileStore:
    """Stores attachments in an S3-compatible bucket.

    Provides document storage with data sovereignty support
    through on-premises MinIO deployment.
    """

    def __init__(self, settings: Settings, client: Minio | None = None) -> None:
        """Initialize object storage.

        Args:
            settings: Application settings with storage configuration
            client: Optional preconfigured MinIO client
        """
        self.settings = settings
        self.bucket = settings.storage_bucket
        self._client = client
        self._bucket_ready = False

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Raises:
            FileStoreError: If storage credentials are not configured
        """
        if self._client is None:
            if not (self.settings.storage_access_key and self.settings.storage_secret_key):
                raise FileStoreError(
                    "Storage credentials not configured. "
                    "Set APP_STORAGE_ACCESS_KEY and APP_STORAGE_SECRET_KEY."
                )
            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")
        return self._client

    def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        client = self._get_client()
        if not client.bucket_exists(bucket_name=self.bucket):
            client.make_bucket(bucket_name=self.bucket)
            logger.info(f"Created bucket: {self.bucket}")
        self._bucket_ready = True

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _put(self, name: str, data: bytes, content_type: str) -> None:
        self._ensure_bucket()
        self._get_client().put_object(
            bucket_name=self.bucket,
            object_name=name,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )

    def save(self, data: bytes, safe_name: str, content_type: str | None = None) -> str:
        """Upload bytes and return the object name.

        Raises:
            FileStoreError: If the upload fails after retries
        """
        name = stored_name(safe_name)
        try:
            self._put(name, data, content_type or _content_type(safe_name))
        except S3Error as e:
            logger.error(f"S3 error uploading {name}: {e}")
            raise FileStoreError(f"S3 error: {e.code} - {e.message}") from e
        logger.info(f"Uploaded {name} to {self.bucket} ({len(data)} bytes)")
        return name

    def read(self, stored_as: str) -> bytes:
        response = None
        try:
            response = self._get_client().get_object(
                bucket_name=self.bucket, object_name=stored_as
            )
            return response.read()
        except S3Error as e:
            raise FileStoreError(f"S3 error: {e.code} - {e.message}") from e
        finally:
            if response is not None:
                response.close()
                response.release_conn()

    @contextmanager
    def local_path(self, stored_as: str) -> Iterator[Path]:
        """Download an object to a temporary file that keeps its suffix."""
        data = self.read(stored_as)
        with tempfile.TemporaryDirectory(prefix="bilags-") as tmp:
            path = Path(tmp) / Path(stored_as).name
            path.write_bytes(data)
            yield path


def create_file_store(settings: Settings) -> FileStore:
    """Object storage when enabled, else the local uploads directory."""
    if settings.storage_enabled:
        logger.info(f"Using object storage bucket: {settings.storage_bucket}")
        return MinioFileStore(settings)
    logger.info(f"Using local uploads directory: {settings.upload_dir}")
    return LocalFileStore(settings.upload_dir)
