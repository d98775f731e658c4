"""PostgreSQL implementation of ReportRepo."""

from __future__ import annotations

import time
from typing import Any
from uuid import UUID

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import ReportRow
from app.models.report import Attachment, Report, ReportStatus, ReportType
from app.repos.report_repo import ANY_ATTACHMENT, SortKey

_STATUS_RANK = case(
    {s.value: i for i, s in enumerate(ReportStatus)},
    value=ReportRow.status,
)


class PgReportRepo:
    """Satisfies the ReportRepo Protocol using PostgreSQL via SQLAlchemy.

    Status changes are a single ``UPDATE ... WHERE status = :expected``
    (plus ``file_key IS NOT DISTINCT FROM :key`` for attachment swaps)
    so two racing writers cannot both win.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, org_id: UUID, report_id: UUID) -> Report | None:
        stmt = select(ReportRow).where(
            ReportRow.id == report_id, ReportRow.organization_id == org_id
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_report(row)

    async def add(self, report: Report) -> None:
        self._session.add(ReportRow(id=report.id, **_report_values(report)))
        await self._session.flush()

    async def update(
        self,
        org_id: UUID,
        report_id: UUID,
        *,
        expected_status: ReportStatus,
        expected_file_key: str | None = ANY_ATTACHMENT,
        **changes: Any,
    ) -> Report | None:
        values = _change_values(changes)
        values["updated_at"] = int(time.time())
        stmt = update(ReportRow).where(
            ReportRow.id == report_id,
            ReportRow.organization_id == org_id,
            ReportRow.status == expected_status.value,
        )
        if expected_file_key is not ANY_ATTACHMENT:
            stmt = stmt.where(ReportRow.file_key.is_not_distinct_from(expected_file_key))
        stmt = (
            stmt.values(**values)
            .returning(ReportRow)
            .execution_options(synchronize_session=False)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        await self._session.refresh(row)
        return _row_to_report(row)

    async def delete(
        self,
        org_id: UUID,
        report_id: UUID,
        *,
        expected_status: ReportStatus | None = None,
    ) -> Report | None:
        stmt = delete(ReportRow).where(
            ReportRow.id == report_id, ReportRow.organization_id == org_id
        )
        if expected_status is not None:
            stmt = stmt.where(ReportRow.status == expected_status.value)
        stmt = stmt.returning(ReportRow).execution_options(synchronize_session=False)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_report(row)

    async def list_by_intern(self, org_id: UUID, intern_id: UUID) -> list[Report]:
        stmt = (
            select(ReportRow)
            .where(
                ReportRow.organization_id == org_id,
                ReportRow.intern_id == intern_id,
            )
            .order_by(ReportRow.created_at.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_report(r) for r in rows]

    async def list_by_org(
        self,
        org_id: UUID,
        *,
        status: ReportStatus | None = None,
        sort_by: SortKey = "date",
    ) -> list[Report]:
        stmt = select(ReportRow).where(
            ReportRow.organization_id == org_id,
            ReportRow.status != ReportStatus.DRAFT.value,
        )
        if status is not None:
            stmt = stmt.where(ReportRow.status == status.value)
        if sort_by == "status":
            stmt = stmt.order_by(_STATUS_RANK, ReportRow.submitted_at.desc())
        elif sort_by == "intern":
            stmt = stmt.order_by(ReportRow.intern_id, ReportRow.submitted_at.desc())
        else:
            stmt = stmt.order_by(ReportRow.submitted_at.desc())
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_report(r) for r in rows]

    async def count_by_status(
        self, org_id: UUID, *, intern_id: UUID | None = None
    ) -> dict[ReportStatus, int]:
        stmt = (
            select(ReportRow.status, func.count())
            .where(ReportRow.organization_id == org_id)
            .group_by(ReportRow.status)
        )
        if intern_id is not None:
            stmt = stmt.where(ReportRow.intern_id == intern_id)
        counts = {s: 0 for s in ReportStatus}
        for status, n in (await self._session.execute(stmt)).all():
            counts[ReportStatus(status)] = n
        return counts


def _change_values(changes: dict[str, Any]) -> dict[str, Any]:
    """Flatten domain field changes into column values."""
    values = dict(changes)
    if "attachment" in values:
        values.update(_attachment_columns(values.pop("attachment")))
    for key in ("status", "type"):
        if key in values and values[key] is not None:
            values[key] = values[key].value
    return values


def _attachment_columns(attachment: Attachment | None) -> dict[str, Any]:
    if attachment is None:
        return {"file_key": None, "file_name": None, "file_type": None, "file_size_mb": 0.0}
    return {
        "file_key": attachment.file_key,
        "file_name": attachment.file_name,
        "file_type": attachment.file_type,
        "file_size_mb": attachment.file_size_mb,
    }


def _report_values(report: Report) -> dict[str, Any]:
    return {
        "organization_id": report.organization_id,
        "intern_id": report.intern_id,
        "type": report.type.value,
        "summary": report.summary,
        "status": report.status.value,
        **_attachment_columns(report.attachment),
        "rating": report.rating,
        "marks": report.marks,
        "admin_feedback": report.admin_feedback,
        "reviewed_by": report.reviewed_by,
        "submitted_at": report.submitted_at,
        "reviewed_at": report.reviewed_at,
        "created_at": report.created_at,
        "updated_at": report.updated_at,
    }


def _row_to_report(row: ReportRow) -> Report:
    attachment = None
    if row.file_key:
        attachment = Attachment(
            file_key=row.file_key,
            file_name=row.file_name or "",
            file_type=row.file_type or "",
            file_size_mb=row.file_size_mb,
        )
    return Report(
        id=row.id,
        organization_id=row.organization_id,
        intern_id=row.intern_id,
        type=ReportType(row.type),
        summary=row.summary,
        status=ReportStatus(row.status),
        attachment=attachment,
        rating=row.rating,
        marks=row.marks,
        admin_feedback=row.admin_feedback,
        reviewed_by=row.reviewed_by,
        submitted_at=row.submitted_at,
        reviewed_at=row.reviewed_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
