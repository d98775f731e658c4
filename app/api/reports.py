"""Report endpoints (/v1/reports).

Intern routes: create, list own, edit draft, submit, undo.
Staff routes (admin or owner): list organization reports, stats,
begin review, grade.  Delete, get-one and download are open to the
author and to staff; the service decides which.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import BaseModel

from app.api.dependencies import CurrentUser, ReportServiceDep, require_role
from app.api.schemas import ReportOut, report_out
from app.core.config import SETTINGS
from app.models.principal import Principal
from app.services.attachments import UploadedFile
from app.services.report_state import Grade

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/reports", tags=["reports"])

InternUser = Annotated[Principal, Depends(require_role("intern"))]
StaffUser = Annotated[Principal, Depends(require_role("admin"))]


class ReportEnvelope(BaseModel):
    success: bool = True
    message: str | None = None
    report: ReportOut


class ReportListEnvelope(BaseModel):
    success: bool = True
    count: int
    reports: list[ReportOut]


class StatsOut(BaseModel):
    total: int
    submitted: int
    under_review: int
    graded: int


class StatsEnvelope(BaseModel):
    success: bool = True
    stats: StatsOut


class DownloadEnvelope(BaseModel):
    success: bool = True
    downloadUrl: str
    fileName: str
    fileType: str


class MessageEnvelope(BaseModel):
    success: bool = True
    message: str


class GradeIn(BaseModel):
    rating: int | None = None
    marks: int | None = None
    adminFeedback: str | None = None


async def _read_upload(file: UploadFile | None) -> UploadedFile | None:
    if file is None or not file.filename:
        return None
    # One byte past the limit is enough to reject an oversized file.
    data = await file.read(SETTINGS.max_upload_bytes + 1)
    return UploadedFile(
        data=data,
        filename=file.filename,
        content_type=file.content_type or "application/octet-stream",
    )


@router.post("", response_model=ReportEnvelope, status_code=status.HTTP_201_CREATED)
async def create_report(
    principal: InternUser,
    service: ReportServiceDep,
    type: Annotated[str | None, Form()] = None,
    summary: Annotated[str | None, Form()] = None,
    submit_now: Annotated[bool, Form(alias="submitNow")] = False,
    file: Annotated[UploadFile | None, File()] = None,
) -> ReportEnvelope:
    report = await service.create(
        principal,
        type=type,
        summary=summary,
        submit_now=submit_now,
        file=await _read_upload(file),
    )
    message = "Report submitted" if submit_now else "Draft saved"
    return ReportEnvelope(message=message, report=report_out(report))


@router.get("/my", response_model=ReportListEnvelope)
async def list_my_reports(
    principal: InternUser, service: ReportServiceDep
) -> ReportListEnvelope:
    reports = await service.list_mine(principal)
    return ReportListEnvelope(
        count=len(reports), reports=[report_out(r) for r in reports]
    )


@router.get("", response_model=ReportListEnvelope)
async def list_org_reports(
    principal: StaffUser,
    service: ReportServiceDep,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    sort_by: Annotated[str | None, Query(alias="sortBy")] = None,
) -> ReportListEnvelope:
    reports = await service.list_org(principal, status=status_filter, sort_by=sort_by)
    return ReportListEnvelope(
        count=len(reports), reports=[report_out(r) for r in reports]
    )


@router.get("/stats", response_model=StatsEnvelope)
async def report_stats(principal: StaffUser, service: ReportServiceDep) -> StatsEnvelope:
    stats = await service.stats(principal)
    return StatsEnvelope(stats=StatsOut(**stats))


@router.get("/{report_id}", response_model=ReportEnvelope)
async def get_report(
    report_id: UUID, principal: CurrentUser, service: ReportServiceDep
) -> ReportEnvelope:
    # Staff opening a submitted report starts its review.
    report = await service.open_report(principal, report_id)
    return ReportEnvelope(report=report_out(report))


@router.get("/{report_id}/download", response_model=DownloadEnvelope)
async def download_report_file(
    report_id: UUID, principal: CurrentUser, service: ReportServiceDep
) -> DownloadEnvelope:
    url, attachment = await service.download(principal, report_id)
    return DownloadEnvelope(
        downloadUrl=url,
        fileName=attachment.file_name,
        fileType=attachment.file_type,
    )


@router.put("/{report_id}", response_model=ReportEnvelope)
async def update_draft(
    report_id: UUID,
    principal: InternUser,
    service: ReportServiceDep,
    type: Annotated[str | None, Form()] = None,
    summary: Annotated[str | None, Form()] = None,
    file: Annotated[UploadFile | None, File()] = None,
) -> ReportEnvelope:
    report = await service.update_draft(
        principal,
        report_id,
        type=type,
        summary=summary,
        file=await _read_upload(file),
    )
    return ReportEnvelope(message="Draft updated", report=report_out(report))


@router.put("/{report_id}/submit", response_model=ReportEnvelope)
async def submit_report(
    report_id: UUID, principal: InternUser, service: ReportServiceDep
) -> ReportEnvelope:
    report = await service.submit(principal, report_id)
    return ReportEnvelope(message="Report submitted successfully", report=report_out(report))


@router.put("/{report_id}/undo", response_model=ReportEnvelope)
async def undo_submission(
    report_id: UUID, principal: InternUser, service: ReportServiceDep
) -> ReportEnvelope:
    report = await service.undo(principal, report_id)
    return ReportEnvelope(message="Report returned to draft", report=report_out(report))


@router.put("/{report_id}/review", response_model=ReportEnvelope)
async def begin_review(
    report_id: UUID, principal: StaffUser, service: ReportServiceDep
) -> ReportEnvelope:
    report = await service.begin_review(principal, report_id)
    return ReportEnvelope(message="Review started", report=report_out(report))


@router.put("/{report_id}/grade", response_model=ReportEnvelope)
async def grade_report(
    report_id: UUID,
    payload: GradeIn,
    principal: StaffUser,
    service: ReportServiceDep,
) -> ReportEnvelope:
    report = await service.grade(
        principal,
        report_id,
        Grade(
            rating=payload.rating,
            marks=payload.marks,
            feedback=payload.adminFeedback,
        ),
    )
    return ReportEnvelope(message="Report graded successfully", report=report_out(report))


@router.delete("/{report_id}", response_model=MessageEnvelope)
async def delete_report(
    report_id: UUID, principal: CurrentUser, service: ReportServiceDep
) -> MessageEnvelope:
    await service.delete(principal, report_id)
    return MessageEnvelope(message="Report deleted")
