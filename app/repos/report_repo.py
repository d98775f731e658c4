from __future__ import annotations

import time
from dataclasses import replace
from typing import Any, Literal, Protocol
from uuid import UUID

from app.models.report import Report, ReportStatus

SortKey = Literal["date", "status", "intern"]

_STATUS_ORDER = {s: i for i, s in enumerate(ReportStatus)}

# Default for ``expected_file_key``: the attachment is not compared.
ANY_ATTACHMENT: Any = object()


class ReportRepo(Protocol):
    async def get(self, org_id: UUID, report_id: UUID) -> Report | None: ...
    async def add(self, report: Report) -> None: ...
    async def update(
        self,
        org_id: UUID,
        report_id: UUID,
        *,
        expected_status: ReportStatus,
        expected_file_key: str | None = ANY_ATTACHMENT,
        **changes: Any,
    ) -> Report | None:
        """Compare-and-swap on status.

        Applies ``changes`` only if the stored report still has
        ``expected_status`` and, when ``expected_file_key`` is given, still
        points at that attachment key (None: no attachment).  Returns the
        updated report, or None when the report is missing or moved on.
        """
        ...

    async def delete(
        self,
        org_id: UUID,
        report_id: UUID,
        *,
        expected_status: ReportStatus | None = None,
    ) -> Report | None:
        """Remove the report and return what was removed, or None."""
        ...

    async def list_by_intern(self, org_id: UUID, intern_id: UUID) -> list[Report]: ...
    async def list_by_org(
        self,
        org_id: UUID,
        *,
        status: ReportStatus | None = None,
        sort_by: SortKey = "date",
    ) -> list[Report]: ...
    async def count_by_status(
        self, org_id: UUID, *, intern_id: UUID | None = None
    ) -> dict[ReportStatus, int]: ...


class InMemoryReportRepo:
    def __init__(self) -> None:
        self._store: dict[UUID, Report] = {}

    async def get(self, org_id: UUID, report_id: UUID) -> Report | None:
        report = self._store.get(report_id)
        if report is None or report.organization_id != org_id:
            return None
        return report

    async def add(self, report: Report) -> None:
        if report.id in self._store:
            raise ValueError("report already exists")
        self._store[report.id] = report

    async def update(
        self,
        org_id: UUID,
        report_id: UUID,
        *,
        expected_status: ReportStatus,
        expected_file_key: str | None = ANY_ATTACHMENT,
        **changes: Any,
    ) -> Report | None:
        current = await self.get(org_id, report_id)
        if current is None or current.status is not expected_status:
            return None
        if expected_file_key is not ANY_ATTACHMENT:
            current_key = current.attachment.file_key if current.attachment else None
            if current_key != expected_file_key:
                return None
        updated = replace(current, updated_at=int(time.time()), **changes)
        self._store[report_id] = updated
        return updated

    async def delete(
        self,
        org_id: UUID,
        report_id: UUID,
        *,
        expected_status: ReportStatus | None = None,
    ) -> Report | None:
        current = await self.get(org_id, report_id)
        if current is None:
            return None
        if expected_status is not None and current.status is not expected_status:
            return None
        return self._store.pop(report_id)

    async def list_by_intern(self, org_id: UUID, intern_id: UUID) -> list[Report]:
        reports = [
            r
            for r in self._store.values()
            if r.organization_id == org_id and r.intern_id == intern_id
        ]
        return sorted(reports, key=lambda r: r.created_at, reverse=True)

    async def list_by_org(
        self,
        org_id: UUID,
        *,
        status: ReportStatus | None = None,
        sort_by: SortKey = "date",
    ) -> list[Report]:
        reports = [
            r
            for r in self._store.values()
            if r.organization_id == org_id
            and r.status is not ReportStatus.DRAFT
            and (status is None or r.status is status)
        ]
        # Newest submission first, then the primary key (stable sorts)
        reports.sort(key=lambda r: r.submitted_at or 0, reverse=True)
        if sort_by == "status":
            reports.sort(key=lambda r: _STATUS_ORDER[r.status])
        elif sort_by == "intern":
            reports.sort(key=lambda r: str(r.intern_id))
        return reports

    async def count_by_status(
        self, org_id: UUID, *, intern_id: UUID | None = None
    ) -> dict[ReportStatus, int]:
        counts = {s: 0 for s in ReportStatus}
        for r in self._store.values():
            if r.organization_id != org_id:
                continue
            if intern_id is not None and r.intern_id != intern_id:
                continue
            counts[r.status] += 1
        return counts
