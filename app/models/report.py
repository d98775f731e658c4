from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from uuid import UUID, uuid4

SUMMARY_MAX_LENGTH = 5000
FEEDBACK_MAX_LENGTH = 2000


class ReportStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    GRADED = "graded"


class ReportType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


# Statuses an intern has handed over; submitted_at is set in all of them.
SUBMITTED_STATUSES = frozenset(
    {ReportStatus.SUBMITTED, ReportStatus.UNDER_REVIEW, ReportStatus.GRADED}
)


@dataclass(frozen=True, slots=True)
class Attachment:
    file_key: str
    file_name: str
    file_type: str
    file_size_mb: float


@dataclass(frozen=True, slots=True)
class Report:
    id: UUID
    organization_id: UUID
    intern_id: UUID
    type: ReportType
    summary: str
    status: ReportStatus = ReportStatus.DRAFT
    attachment: Attachment | None = None
    rating: int | None = None
    marks: int | None = None
    admin_feedback: str | None = None
    reviewed_by: UUID | None = None
    submitted_at: int | None = None
    reviewed_at: int | None = None
    created_at: int = 0
    updated_at: int = 0

    @property
    def can_undo(self) -> bool:
        return self.status is ReportStatus.SUBMITTED

    @property
    def file_size_mb(self) -> float:
        return self.attachment.file_size_mb if self.attachment else 0.0

    @staticmethod
    def new(
        *,
        organization_id: UUID,
        intern_id: UUID,
        type: ReportType,
        summary: str,
    ) -> Report:
        now = int(time.time())
        return Report(
            id=uuid4(),
            organization_id=organization_id,
            intern_id=intern_id,
            type=type,
            summary=summary,
            created_at=now,
            updated_at=now,
        )
