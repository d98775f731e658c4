"""Attachment manager: storage objects and storage usage move together.

Each test checks both sides: what is in the upload directory and what
the organization's ``storage_used_mb`` says.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from uuid import uuid4

import pytest

from app.core.errors import QuotaExceededError, StorageBackendError, ValidationError
from app.models.organization import Organization, OrgUsage
from app.models.report import Attachment, Report, ReportType
from app.repos.org_repo import InMemoryOrgRepo
from app.services.attachments import (
    BYTES_PER_MB,
    AttachmentManager,
    UploadedFile,
    validate_upload,
)
from app.services.quota_ledger import QuotaLedger
from app.services.storage import LocalFileStorage


class _FailingUploads(LocalFileStorage):
    async def upload(self, data, key, content_type, metadata=None) -> str:
        raise StorageBackendError("File upload failed")


class _FailingDeletes(LocalFileStorage):
    async def delete(self, key: str) -> None:
        raise StorageBackendError("File delete failed")


def _pdf(size_mb: float = 1.0, name: str = "report.pdf") -> UploadedFile:
    return UploadedFile(
        data=b"x" * int(size_mb * BYTES_PER_MB),
        filename=name,
        content_type="application/pdf",
    )


def _stored_files(base: Path) -> list[Path]:
    if not base.exists():
        return []
    return [p for p in base.rglob("*") if p.is_file()]


@pytest.fixture
def org_repo() -> InMemoryOrgRepo:
    return InMemoryOrgRepo()


def _setup(
    org_repo: InMemoryOrgRepo, backend: LocalFileStorage, *, used_mb: float = 0.0
) -> tuple[AttachmentManager, Organization]:
    org = replace(Organization.new(name="Files Org"), usage=OrgUsage(storage_used_mb=used_mb))
    asyncio.run(org_repo.add(org))
    return AttachmentManager(backend, QuotaLedger(org_repo)), org


def _usage(org_repo: InMemoryOrgRepo, org: Organization) -> float:
    stored = asyncio.run(org_repo.get_by_id(org.id))
    assert stored is not None
    return stored.usage.storage_used_mb


def _new_report(org: Organization) -> Report:
    return Report.new(
        organization_id=org.id,
        intern_id=uuid4(),
        type=ReportType.DAILY,
        summary="Attachment test",
    )


def _echo(report: Report):
    """persist callback that just returns the report with the attachment set."""

    async def _persist(attachment: Attachment) -> Report:
        return replace(report, attachment=attachment)

    return _persist


def test_attach_uploads_and_counts_storage(tmp_path: Path, org_repo) -> None:
    backend = LocalFileStorage(tmp_path)
    manager, org = _setup(org_repo, backend)
    report = _new_report(org)

    stored = asyncio.run(manager.attach(org, _pdf(2.0), _echo(report)))

    assert stored.attachment is not None
    assert stored.attachment.file_key.startswith(f"{org.id}/")
    assert stored.attachment.file_name == "report.pdf"
    assert stored.attachment.file_type == "application/pdf"
    assert stored.file_size_mb == pytest.approx(2.0)
    assert backend.path_for(stored.attachment.file_key).is_file()
    assert _usage(org_repo, org) == pytest.approx(2.0)


def test_quota_exceeded_uploads_nothing(tmp_path: Path, org_repo) -> None:
    backend = LocalFileStorage(tmp_path)
    manager, org = _setup(org_repo, backend, used_mb=99.99)
    report = _new_report(org)

    with pytest.raises(QuotaExceededError) as exc_info:
        asyncio.run(manager.attach(org, _pdf(1.0), _echo(report)))

    assert exc_info.value.upgrade_required is True
    assert _stored_files(tmp_path) == []
    assert _usage(org_repo, org) == pytest.approx(99.99)


def test_invalid_type_rejected_before_quota(tmp_path: Path, org_repo) -> None:
    backend = LocalFileStorage(tmp_path)
    manager, org = _setup(org_repo, backend, used_mb=100.0)
    exe = UploadedFile(data=b"MZ", filename="tool.exe", content_type="application/x-msdownload")

    with pytest.raises(ValidationError, match="Invalid file type"):
        asyncio.run(manager.attach(org, exe, _echo(_new_report(org))))
    assert _stored_files(tmp_path) == []


def test_upload_failure_leaves_usage_untouched(tmp_path: Path, org_repo) -> None:
    manager, org = _setup(org_repo, _FailingUploads(tmp_path), used_mb=5.0)

    with pytest.raises(StorageBackendError):
        asyncio.run(manager.attach(org, _pdf(), _echo(_new_report(org))))

    assert _usage(org_repo, org) == pytest.approx(5.0)


def test_persist_failure_rolls_back_usage_and_object(tmp_path: Path, org_repo) -> None:
    backend = LocalFileStorage(tmp_path)
    manager, org = _setup(org_repo, backend, used_mb=1.0)

    async def _broken(attachment: Attachment) -> Report:
        raise RuntimeError("database went away")

    with pytest.raises(RuntimeError):
        asyncio.run(manager.attach(org, _pdf(), _broken))

    assert _stored_files(tmp_path) == []
    assert _usage(org_repo, org) == pytest.approx(1.0)


def test_replace_charges_only_the_difference(tmp_path: Path, org_repo) -> None:
    backend = LocalFileStorage(tmp_path)
    manager, org = _setup(org_repo, backend)
    report = _new_report(org)
    first = asyncio.run(manager.attach(org, _pdf(2.0, "v1.pdf"), _echo(report)))
    old_key = first.attachment.file_key

    org = asyncio.run(org_repo.get_by_id(org.id))
    second = asyncio.run(
        manager.replace(org, first, _pdf(3.0, "v2.pdf"), _echo(first))
    )

    assert second.attachment.file_name == "v2.pdf"
    assert _usage(org_repo, org) == pytest.approx(3.0)
    assert not backend.path_for(old_key).exists()
    assert backend.path_for(second.attachment.file_key).is_file()


def test_replace_with_smaller_file_releases_space(tmp_path: Path, org_repo) -> None:
    backend = LocalFileStorage(tmp_path)
    manager, org = _setup(org_repo, backend)
    first = asyncio.run(
        manager.attach(org, _pdf(4.0), _echo(_new_report(org)))
    )

    org = asyncio.run(org_repo.get_by_id(org.id))
    asyncio.run(manager.replace(org, first, _pdf(1.0), _echo(first)))

    assert _usage(org_repo, org) == pytest.approx(1.0)
    assert len(_stored_files(tmp_path)) == 1


def test_replace_checks_quota_on_growth_only(tmp_path: Path, org_repo) -> None:
    backend = LocalFileStorage(tmp_path)
    manager, org = _setup(org_repo, backend, used_mb=97.0)
    first = asyncio.run(
        manager.attach(org, _pdf(2.0), _echo(_new_report(org)))
    )
    org = asyncio.run(org_repo.get_by_id(org.id))
    assert org.usage.storage_used_mb == pytest.approx(99.0)

    # 2MB -> 2.5MB grows usage by 0.5MB: fits under 100MB.
    replaced = asyncio.run(
        manager.replace(org, first, _pdf(2.5), _echo(first))
    )
    assert _usage(org_repo, org) == pytest.approx(99.5)

    # 2.5MB -> 4MB needs 1.5MB more: rejected, old file kept.
    org = asyncio.run(org_repo.get_by_id(org.id))
    with pytest.raises(QuotaExceededError):
        asyncio.run(manager.replace(org, replaced, _pdf(4.0), _echo(replaced)))
    assert backend.path_for(replaced.attachment.file_key).is_file()
    assert _usage(org_repo, org) == pytest.approx(99.5)


def test_detach_releases_storage(tmp_path: Path, org_repo) -> None:
    backend = LocalFileStorage(tmp_path)
    manager, org = _setup(org_repo, backend)
    report = asyncio.run(
        manager.attach(org, _pdf(1.5), _echo(_new_report(org)))
    )

    asyncio.run(manager.detach(org.id, report))

    assert _stored_files(tmp_path) == []
    assert _usage(org_repo, org) == pytest.approx(0.0)


def test_detach_survives_storage_delete_failure(tmp_path: Path, org_repo) -> None:
    backend = _FailingDeletes(tmp_path)
    manager, org = _setup(org_repo, backend)
    report = asyncio.run(
        manager.attach(org, _pdf(1.0), _echo(_new_report(org)))
    )

    asyncio.run(manager.detach(org.id, report))

    # The object is orphaned, but usage no longer counts it.
    assert _usage(org_repo, org) == pytest.approx(0.0)


def test_detach_without_attachment_is_a_noop(tmp_path: Path, org_repo) -> None:
    manager, org = _setup(org_repo, LocalFileStorage(tmp_path), used_mb=3.0)
    asyncio.run(manager.detach(org.id, _new_report(org)))
    assert _usage(org_repo, org) == pytest.approx(3.0)


# ---- validate_upload ----


@pytest.mark.parametrize(
    "content_type",
    [
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/zip",
        "text/plain; charset=utf-8",
        "image/jpeg",
        "image/png",
        "image/gif",
    ],
)
def test_validate_upload_accepts_allowed_types(content_type: str) -> None:
    validate_upload(UploadedFile(data=b"data", filename="f", content_type=content_type))


def test_validate_upload_rejects_empty_file() -> None:
    with pytest.raises(ValidationError, match="File is empty"):
        validate_upload(UploadedFile(data=b"", filename="a.txt", content_type="text/plain"))


def test_validate_upload_rejects_oversized_file() -> None:
    big = UploadedFile(data=b"x" * 11, filename="a.txt", content_type="text/plain")
    with pytest.raises(ValidationError, match="File too large"):
        validate_upload(big, max_bytes=10)
