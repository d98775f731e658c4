"""Attachment storage backends.

Two implementations of one contract, picked once at import time:

  - ``S3ObjectStorage``  when S3_ENDPOINT, S3_ACCESS_KEY_ID,
    S3_SECRET_ACCESS_KEY and S3_BUCKET are all set (AWS S3, Cloudflare R2,
    MinIO, ...).  Downloads are presigned URLs.
  - ``LocalFileStorage`` otherwise.  Files live under UPLOAD_DIR and are
    served back through ``/v1/files/{key}``.

Report code only ever talks to the ``StorageBackend`` Protocol.
Backend failures surface as ``StorageBackendError``.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
import time
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable
from urllib.parse import quote
from uuid import UUID

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import SETTINGS
from app.core.errors import StorageBackendError, ValidationError
from app.core.metrics import STORAGE_OPERATIONS

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9]")


@runtime_checkable
class StorageBackend(Protocol):
    async def upload(
        self,
        data: bytes,
        key: str,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Store ``data`` under ``key``.  Returns the key."""
        ...

    async def download(self, key: str) -> str:
        """Return a URL (or app-relative path) the client can fetch."""
        ...

    async def delete(self, key: str) -> None: ...

    def is_configured(self) -> bool: ...


def generate_key(org_id: UUID, original_name: str) -> str:
    """Build a collision-resistant key scoped under the organization id.

    Format: ``{org_id}/{timestamp_ms}-{16 hex}-{safe_name}{ext}``
    """
    name = PurePosixPath(original_name.replace("\\", "/")).name
    ext = PurePosixPath(name).suffix
    stem = name[: -len(ext)] if ext else name
    safe_name = _UNSAFE_CHARS.sub("_", stem) or "file"
    safe_ext = ext if re.fullmatch(r"\.[a-zA-Z0-9]+", ext or "") else ""
    return f"{org_id}/{int(time.time() * 1000)}-{secrets.token_hex(8)}-{safe_name}{safe_ext}"


class LocalFileStorage:
    """Filesystem backend for development and tests."""

    def __init__(self, base_path: str | Path | None = None) -> None:
        self.base_path = Path(base_path or SETTINGS.upload_dir).resolve()

    def path_for(self, key: str) -> Path:
        """Resolve ``key`` inside the upload directory.

        Raises ValidationError for keys that would escape it.
        """
        full = (self.base_path / key).resolve()
        if not full.is_relative_to(self.base_path):
            raise ValidationError("Invalid file key", field="key")
        return full

    async def upload(
        self,
        data: bytes,
        key: str,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(_write_file, path, data)
        except OSError as exc:
            STORAGE_OPERATIONS.labels(operation="upload", result="error").inc()
            logger.error("Local upload failed key=%s error=%s", key, exc)
            raise StorageBackendError("File upload failed") from exc
        STORAGE_OPERATIONS.labels(operation="upload", result="ok").inc()
        logger.info(
            "File stored backend=local key=%s bytes=%d type=%s",
            key,
            len(data),
            content_type,
        )
        return key

    async def download(self, key: str) -> str:
        self.path_for(key)
        return f"/v1/files/{quote(key)}"

    async def delete(self, key: str) -> None:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            STORAGE_OPERATIONS.labels(operation="delete", result="error").inc()
            raise StorageBackendError("File delete failed") from exc
        STORAGE_OPERATIONS.labels(operation="delete", result="ok").inc()
        logger.info("File deleted backend=local key=%s", key)

    def is_configured(self) -> bool:
        return True


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


class S3ObjectStorage:
    """S3-compatible object storage via boto3.

    boto3 is synchronous, so every call runs in a worker thread.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        access_key_id: str,
        secret_access_key: str,
        bucket: str,
        region: str = "auto",
        url_ttl_seconds: int = 3600,
        client=None,
    ) -> None:
        self.bucket = bucket
        self.url_ttl_seconds = url_ttl_seconds
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
            config=Config(signature_version="s3v4", retries={"max_attempts": 3}),
        )

    async def upload(
        self,
        data: bytes,
        key: str,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=dict(metadata or {}),
            )
        except (BotoCoreError, ClientError) as exc:
            STORAGE_OPERATIONS.labels(operation="upload", result="error").inc()
            logger.error("Object upload failed key=%s error=%s", key, exc)
            raise StorageBackendError("File upload failed") from exc
        STORAGE_OPERATIONS.labels(operation="upload", result="ok").inc()
        logger.info(
            "File stored backend=s3 bucket=%s key=%s bytes=%d",
            self.bucket,
            key,
            len(data),
        )
        return key

    async def download(self, key: str) -> str:
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.url_ttl_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            STORAGE_OPERATIONS.labels(operation="download", result="error").inc()
            raise StorageBackendError("Could not create download link") from exc

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(
                self._client.delete_object, Bucket=self.bucket, Key=key
            )
        except (BotoCoreError, ClientError) as exc:
            STORAGE_OPERATIONS.labels(operation="delete", result="error").inc()
            raise StorageBackendError("File delete failed") from exc
        STORAGE_OPERATIONS.labels(operation="delete", result="ok").inc()
        logger.info("File deleted backend=s3 bucket=%s key=%s", self.bucket, key)

    def is_configured(self) -> bool:
        return bool(self.bucket)


def get_storage() -> StorageBackend:
    """Pick the backend from configuration."""
    if SETTINGS.object_storage_configured:
        logger.info("Using S3-compatible storage bucket=%s", SETTINGS.s3_bucket)
        return S3ObjectStorage(
            endpoint=SETTINGS.s3_endpoint,  # type: ignore[arg-type]
            access_key_id=SETTINGS.s3_access_key_id,  # type: ignore[arg-type]
            secret_access_key=SETTINGS.s3_secret_access_key,  # type: ignore[arg-type]
            bucket=SETTINGS.s3_bucket,  # type: ignore[arg-type]
            region=SETTINGS.s3_region,
            url_ttl_seconds=SETTINGS.download_url_ttl_seconds,
        )
    return LocalFileStorage()


# Module-level singleton; tests swap it for a LocalFileStorage on tmp_path.
storage_backend: StorageBackend = get_storage()
