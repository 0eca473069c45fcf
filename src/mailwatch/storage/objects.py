"""Object storage abstraction with local filesystem and GCS backends.

Keys are plain relative paths (``root/debug/abc123_msg.json``); callers own the
key layout. Both the cursor store and the artifact sink sit on top of an
:class:`ObjectStore`.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from google.cloud import storage as gcs

    from mailwatch.config import MailwatchConfig

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    """Protocol for key/value object storage backends."""

    async def exists(self, key: str) -> bool:
        """Return True if an object is stored under *key*."""
        ...

    async def read(self, key: str) -> bytes:
        """Return the object stored under *key*.

        Raises:
            ObjectNotFoundError: If nothing is stored under *key*
        """
        ...

    async def write(self, key: str, data: bytes, *, content_type: str = "application/json") -> None:
        """Store *data* under *key*, replacing any previous object."""
        ...


class ObjectNotFoundError(Exception):
    """Raised when an object cannot be found in storage."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Object not found: {key}")


class LocalObjectStore:
    """Filesystem-backed object store.

    Args:
        base_dir: Root directory; keys resolve beneath it.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir).resolve()

    def _key_to_path(self, key: str) -> Path:
        """Convert a key to a filesystem path.

        Raises:
            ValueError: If the key is empty or escapes ``base_dir``
        """
        if not key or key.endswith("/"):
            raise ValueError(f"Invalid object key: {key!r}")

        resolved_path = (self.base_dir / key).resolve()
        try:
            resolved_path.relative_to(self.base_dir)
        except ValueError as e:
            msg = f"Path traversal attempt detected: {key}"
            raise ValueError(msg) from e

        return resolved_path

    async def exists(self, key: str) -> bool:
        try:
            return self._key_to_path(key).is_file()
        except ValueError:
            return False

    async def read(self, key: str) -> bytes:
        file_path = self._key_to_path(key)
        if not file_path.is_file():
            raise ObjectNotFoundError(key)
        return file_path.read_bytes()

    async def write(self, key: str, data: bytes, *, content_type: str = "application/json") -> None:
        file_path = self._key_to_path(key)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so a reader never sees a half-written cursor.
        tmp_path = file_path.with_name(f".{file_path.name}.tmp")
        tmp_path.write_bytes(data)
        tmp_path.replace(file_path)


class GCSObjectStore:
    """Google Cloud Storage backed object store.

    The google-cloud-storage client is blocking, so every call is pushed onto
    a worker thread.

    Args:
        bucket_name: Target bucket
        client: Optional pre-built ``storage.Client`` (defaults to ambient credentials)
    """

    def __init__(self, bucket_name: str, client: gcs.Client | None = None):
        if not bucket_name:
            raise ValueError("GCS bucket name must be provided")
        if client is None:
            from google.cloud import storage

            client = storage.Client()
        self._bucket = client.bucket(bucket_name)
        self.bucket_name = bucket_name

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._bucket.blob(key).exists)

    async def read(self, key: str) -> bytes:
        from google.api_core.exceptions import NotFound

        try:
            return await asyncio.to_thread(self._bucket.blob(key).download_as_bytes)
        except NotFound as exc:
            raise ObjectNotFoundError(key) from exc

    async def write(self, key: str, data: bytes, *, content_type: str = "application/json") -> None:
        blob = self._bucket.blob(key)
        await asyncio.to_thread(
            blob.upload_from_string,
            data,
            content_type=content_type,
            # Small JSON documents: single-request uploads, no checksum round trip.
            checksum=None,
        )


def build_object_store(config: MailwatchConfig) -> ObjectStore:
    """Construct the configured storage backend."""
    if config.storage_backend == "gcs":
        logger.info("Using GCS object store: bucket=%s", config.gcs_bucket)
        return GCSObjectStore(config.gcs_bucket or "")
    logger.info("Using local object store: dir=%s", config.storage_dir)
    return LocalObjectStore(config.storage_dir)
