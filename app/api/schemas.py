"""Response schemas shared by the routers.

JSON keys are camelCase to match what the browser client reads.
Timestamps are Unix epoch seconds.
"""

from __future__ import annotations

from pydantic import BaseModel

from app.models.organization import Organization
from app.models.report import Report
from app.models.user import User


class UserOut(BaseModel):
    id: str
    organizationId: str
    name: str
    email: str
    role: str
    department: str | None = None
    isActive: bool
    isEmailVerified: bool
    invitePending: bool = False
    createdAt: int


class LimitsOut(BaseModel):
    maxInterns: int
    maxAdmins: int
    maxStorageMB: int


class UsageOut(BaseModel):
    currentInterns: int
    currentAdmins: int
    storageUsedMB: float


class OrganizationOut(BaseModel):
    id: str
    name: str
    slug: str
    plan: str
    isActive: bool
    limits: LimitsOut
    usage: UsageOut


class ReportOut(BaseModel):
    id: str
    organizationId: str
    internId: str
    type: str
    summary: str
    status: str
    canUndo: bool
    fileName: str | None = None
    fileType: str | None = None
    fileSizeMB: float = 0.0
    rating: int | None = None
    marks: int | None = None
    adminFeedback: str | None = None
    reviewedBy: str | None = None
    submittedAt: int | None = None
    reviewedAt: int | None = None
    createdAt: int
    updatedAt: int


def user_out(user: User) -> UserOut:
    return UserOut(
        id=str(user.id),
        organizationId=str(user.organization_id),
        name=user.name,
        email=user.email,
        role=user.role,
        department=user.department,
        isActive=user.is_active,
        isEmailVerified=user.is_email_verified,
        invitePending=user.is_pending_invite,
        createdAt=user.created_at,
    )


def organization_out(org: Organization) -> OrganizationOut:
    limits = org.limits
    return OrganizationOut(
        id=str(org.id),
        name=org.name,
        slug=org.slug,
        plan=org.plan,
        isActive=org.is_active,
        limits=LimitsOut(
            maxInterns=limits.max_interns,
            maxAdmins=limits.max_admins,
            maxStorageMB=limits.max_storage_mb,
        ),
        usage=UsageOut(
            currentInterns=org.usage.current_interns,
            currentAdmins=org.usage.current_admins,
            storageUsedMB=round(org.usage.storage_used_mb, 4),
        ),
    )


def report_out(report: Report) -> ReportOut:
    attachment = report.attachment
    return ReportOut(
        id=str(report.id),
        organizationId=str(report.organization_id),
        internId=str(report.intern_id),
        type=report.type.value,
        summary=report.summary,
        status=report.status.value,
        canUndo=report.can_undo,
        fileName=attachment.file_name if attachment else None,
        fileType=attachment.file_type if attachment else None,
        fileSizeMB=report.file_size_mb,
        rating=report.rating,
        marks=report.marks,
        adminFeedback=report.admin_feedback,
        reviewedBy=str(report.reviewed_by) if report.reviewed_by else None,
        submittedAt=report.submitted_at,
        reviewedAt=report.reviewed_at,
        createdAt=report.created_at,
        updatedAt=report.updated_at,
    )
