"""File Attachment Manager.

Keeps a report's single attachment and the organization's storage usage
in step.  Ordering rules:

  attach:   quota check → upload → ledger +size → report fields set
  replace:  quota check on the growth → upload new → report updated
            → ledger += (new - old) → old object deleted
  detach:   object deleted (best-effort) → ledger -size

A failure after the upload tries to remove the new object again.  If
that cleanup also fails the object is orphaned in the bucket: usage
never counts it and no report points at it.  The warning log line is
the only trace.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from urllib.parse import quote
from uuid import UUID

from app.core.config import SETTINGS
from app.core.errors import StorageBackendError, ValidationError
from app.core.metrics import UPLOADED_BYTES
from app.models.organization import Organization
from app.models.report import Attachment, Report
from app.services.quota_ledger import QuotaLedger
from app.services.storage import StorageBackend, generate_key

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024

ALLOWED_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/zip",
        "application/x-zip-compressed",
        "text/plain",
        "image/jpeg",
        "image/png",
        "image/gif",
    }
)


@dataclass(frozen=True, slots=True)
class UploadedFile:
    data: bytes
    filename: str
    content_type: str

    @property
    def size_mb(self) -> float:
        return len(self.data) / BYTES_PER_MB


def validate_upload(file: UploadedFile, *, max_bytes: int | None = None) -> None:
    """Type and size checks.  Run before any quota accounting."""
    max_bytes = max_bytes if max_bytes is not None else SETTINGS.max_upload_bytes
    content_type = (file.content_type or "").split(";")[0].strip().lower()
    if content_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(
            "Invalid file type. Allowed: PDF, DOC, DOCX, ZIP, TXT, JPG, PNG, GIF",
            field="file",
        )
    if not file.data:
        raise ValidationError("File is empty", field="file")
    if len(file.data) > max_bytes:
        raise ValidationError(
            f"File too large. Maximum size is {max_bytes // BYTES_PER_MB}MB",
            field="file",
        )


PersistFn = Callable[[Attachment], Awaitable[Report]]


class AttachmentManager:
    def __init__(self, storage: StorageBackend, ledger: QuotaLedger) -> None:
        self._storage = storage
        self._ledger = ledger

    async def attach(
        self, org: Organization, file: UploadedFile, persist: PersistFn
    ) -> Report:
        """Store ``file`` and hand the new attachment to ``persist``.

        ``persist`` writes the attachment onto the report (creating it,
        for a new report) and returns the stored report.
        """
        validate_upload(file)
        size_mb = file.size_mb
        self._ledger.require_storage(org, size_mb)

        attachment = await self._upload(org, file)
        try:
            await self._ledger.apply_usage_delta(org.id, storage_mb=size_mb)
        except Exception:
            await self._discard(attachment.file_key, reason="ledger update failed")
            raise

        try:
            report = await persist(attachment)
        except Exception:
            await self._ledger.apply_usage_delta(org.id, storage_mb=-size_mb)
            await self._discard(attachment.file_key, reason="report update failed")
            raise

        logger.info(
            "Attachment added org_id=%s report_id=%s key=%s size_mb=%.4f",
            org.id,
            report.id,
            attachment.file_key,
            size_mb,
        )
        return report

    async def replace(
        self,
        org: Organization,
        report: Report,
        file: UploadedFile,
        persist: PersistFn,
    ) -> Report:
        """Swap the report's attachment for ``file``.

        The old object is deleted only once the report points at the new
        one, so a failed upload never loses the existing file.
        """
        old = report.attachment
        if old is None:
            return await self.attach(org, file, persist)

        validate_upload(file)
        delta_mb = file.size_mb - old.file_size_mb
        self._ledger.require_storage(org, delta_mb)

        attachment = await self._upload(org, file)
        try:
            updated = await persist(attachment)
        except Exception:
            await self._discard(attachment.file_key, reason="report update failed")
            raise

        await self._ledger.apply_usage_delta(org.id, storage_mb=delta_mb)
        await self._delete_quietly(old.file_key)
        logger.info(
            "Attachment replaced org_id=%s report_id=%s old_key=%s new_key=%s delta_mb=%+.4f",
            org.id,
            report.id,
            old.file_key,
            attachment.file_key,
            delta_mb,
        )
        return updated

    async def detach(self, org_id: UUID, report: Report) -> None:
        """Release a removed report's attachment.  Never raises for storage."""
        attachment = report.attachment
        if attachment is None:
            return
        await self._delete_quietly(attachment.file_key)
        await self._ledger.apply_usage_delta(
            org_id, storage_mb=-attachment.file_size_mb
        )
        logger.info(
            "Attachment released org_id=%s report_id=%s size_mb=%.4f",
            org_id,
            report.id,
            attachment.file_size_mb,
        )

    async def download_url(self, attachment: Attachment) -> str:
        return await self._storage.download(attachment.file_key)

    async def _upload(self, org: Organization, file: UploadedFile) -> Attachment:
        key = generate_key(org.id, file.filename)
        content_type = file.content_type.split(";")[0].strip().lower()
        await self._storage.upload(
            file.data,
            key,
            content_type,
            {"originalName": quote(file.filename), "organizationId": str(org.id)},
        )
        UPLOADED_BYTES.inc(len(file.data))
        return Attachment(
            file_key=key,
            file_name=file.filename,
            file_type=content_type,
            file_size_mb=file.size_mb,
        )

    async def _delete_quietly(self, key: str) -> None:
        try:
            await self._storage.delete(key)
        except (StorageBackendError, ValidationError) as exc:
            logger.warning("Attachment delete failed key=%s error=%s", key, exc)

    async def _discard(self, key: str, *, reason: str) -> None:
        logger.warning("Discarding uploaded object key=%s reason=%s", key, reason)
        await self._delete_quietly(key)
