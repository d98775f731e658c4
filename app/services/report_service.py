"""Report operations: access gate → state machine → attachments → ledger.

One ``ReportService`` is built per request (see
``app.api.dependencies.get_report_service``) around that request's
repositories, so with PostgreSQL a report mutation and its usage delta
share one transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from typing import Any
from uuid import UUID

from app.core.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from app.core.metrics import REPORT_TRANSITIONS
from app.models.principal import Principal
from app.models.report import (
    SUMMARY_MAX_LENGTH,
    Attachment,
    Report,
    ReportStatus,
    ReportType,
)
from app.repos.report_repo import ReportRepo, SortKey
from app.services import access_gate
from app.services.attachments import AttachmentManager, UploadedFile
from app.services.cache import (
    CacheService,
    PendingInvalidations,
    invalidate_org,
    read_through,
    stats_key,
)
from app.services.quota_ledger import QuotaLedger
from app.services.report_state import (
    Actor,
    Grade,
    ReportAction,
    changes_for,
    conflict,
    guard,
    validate_grade,
)

logger = logging.getLogger(__name__)

# Compare-and-swap attempts before giving up on a moving target.
_CAS_ATTEMPTS = 3

SORT_KEYS: tuple[SortKey, ...] = ("date", "status", "intern")


def parse_report_type(raw: str | None) -> ReportType:
    try:
        return ReportType((raw or "").strip().lower())
    except ValueError:
        raise ValidationError(
            "Type must be one of: daily, weekly", field="type"
        ) from None


def validate_summary(summary: str | None) -> str:
    text = (summary or "").strip()
    if not text:
        raise ValidationError("Summary is required", field="summary")
    if len(text) > SUMMARY_MAX_LENGTH:
        raise ValidationError(
            f"Summary cannot exceed {SUMMARY_MAX_LENGTH} characters", field="summary"
        )
    return text


def parse_status_filter(raw: str | None) -> ReportStatus | None:
    if raw is None or raw in ("", "all"):
        return None
    try:
        status = ReportStatus(raw)
    except ValueError:
        raise ValidationError(f"Unknown status {raw!r}", field="status") from None
    if status is ReportStatus.DRAFT:
        raise ValidationError("Drafts are not visible to reviewers", field="status")
    return status


class ReportService:
    def __init__(
        self,
        *,
        reports: ReportRepo,
        ledger: QuotaLedger,
        attachments: AttachmentManager,
        cache: CacheService,
        invalidations: PendingInvalidations | None = None,
    ) -> None:
        self._reports = reports
        self._ledger = ledger
        self._attachments = attachments
        self._cache = cache
        self._invalidations = invalidations

    # ------------------------------------------------------------------
    # Intern operations
    # ------------------------------------------------------------------

    async def create(
        self,
        principal: Principal,
        *,
        type: str | None,
        summary: str | None,
        submit_now: bool = False,
        file: UploadedFile | None = None,
    ) -> Report:
        if not principal.has_role("intern"):
            raise AuthorizationError("Only interns can create reports")
        action = ReportAction.CREATE_SUBMITTED if submit_now else ReportAction.CREATE
        status = guard(None, action, Actor.AUTHOR)

        report = Report.new(
            organization_id=principal.organization_id,
            intern_id=principal.user_id,
            type=parse_report_type(type),
            summary=validate_summary(summary),
        )
        if status is ReportStatus.SUBMITTED:
            report = replace(report, status=status, submitted_at=report.created_at)

        async def _persist(attachment: Attachment | None) -> Report:
            stored = replace(report, attachment=attachment)
            await self._reports.add(stored)
            return stored

        if file is not None:
            org = await self._ledger.get_org(principal.organization_id)
            report = await self._attachments.attach(org, file, _persist)
        else:
            report = await _persist(None)

        await self._after_change(report.organization_id, action, "ok")
        logger.info(
            "Report created report_id=%s org_id=%s intern_id=%s status=%s attachment=%s",
            report.id,
            report.organization_id,
            report.intern_id,
            report.status.value,
            report.attachment is not None,
        )
        return report

    async def list_mine(self, principal: Principal) -> list[Report]:
        if not principal.has_role("intern"):
            raise AuthorizationError("Only interns have their own reports")
        return await self._reports.list_by_intern(
            principal.organization_id, principal.user_id
        )

    async def update_draft(
        self,
        principal: Principal,
        report_id: UUID,
        *,
        type: str | None = None,
        summary: str | None = None,
        file: UploadedFile | None = None,
    ) -> Report:
        report = await access_gate.load_report(principal, self._reports, report_id)
        access_gate.require_author(principal, report)
        guard(report, ReportAction.EDIT, Actor.AUTHOR)

        changes: dict[str, Any] = {}
        if type:
            changes["type"] = parse_report_type(type)
        if summary is not None:
            changes["summary"] = validate_summary(summary)

        if file is None:
            if not changes:
                return report
            updated = await self._compare_and_swap(
                report, ReportAction.EDIT, Actor.AUTHOR, lambda _r: changes
            )
        else:
            org = await self._ledger.get_org(principal.organization_id)
            old_key = report.attachment.file_key if report.attachment else None

            async def _persist(attachment: Attachment) -> Report:
                # The storage delta was computed against ``old_key``.
                stored = await self._reports.update(
                    report.organization_id,
                    report.id,
                    expected_status=ReportStatus.DRAFT,
                    expected_file_key=old_key,
                    attachment=attachment,
                    **changes,
                )
                if stored is None:
                    raise await self._edit_conflict(report)
                return stored

            updated = await self._attachments.replace(org, report, file, _persist)

        await self._after_change(updated.organization_id, ReportAction.EDIT, "ok")
        logger.info(
            "Draft updated report_id=%s fields=%s new_file=%s",
            updated.id,
            ",".join(sorted(changes)) or "-",
            file is not None,
        )
        return updated

    async def submit(self, principal: Principal, report_id: UUID) -> Report:
        return await self._author_transition(principal, report_id, ReportAction.SUBMIT)

    async def undo(self, principal: Principal, report_id: UUID) -> Report:
        return await self._author_transition(principal, report_id, ReportAction.UNDO)

    async def delete(self, principal: Principal, report_id: UUID) -> Report:
        """Remove a report and release its storage exactly once.

        Authors may delete only drafts; staff may delete in any state.
        """
        report = await access_gate.load_report(principal, self._reports, report_id)
        actor = access_gate.actor_for(principal, report)
        try:
            guard(report, ReportAction.DELETE, actor)
        except StateConflictError:
            REPORT_TRANSITIONS.labels(action="delete", outcome="conflict").inc()
            raise

        expected = ReportStatus.DRAFT if actor is Actor.AUTHOR else None
        removed = await self._reports.delete(
            principal.organization_id, report_id, expected_status=expected
        )
        if removed is None:
            current = await self._reports.get(principal.organization_id, report_id)
            if current is None:
                raise NotFoundError("Report not found")
            REPORT_TRANSITIONS.labels(action="delete", outcome="conflict").inc()
            raise conflict(ReportAction.DELETE, current.status)

        await self._attachments.detach(principal.organization_id, removed)
        await self._after_change(removed.organization_id, ReportAction.DELETE, "ok")
        logger.info(
            "Report deleted report_id=%s by=%s actor=%s status=%s",
            removed.id,
            principal.user_id,
            actor.value,
            removed.status.value,
        )
        return removed

    # ------------------------------------------------------------------
    # Review operations
    # ------------------------------------------------------------------

    async def list_org(
        self,
        principal: Principal,
        *,
        status: str | None = None,
        sort_by: str | None = None,
    ) -> list[Report]:
        access_gate.require_staff(principal)
        sort = sort_by or "date"
        if sort not in SORT_KEYS:
            raise ValidationError(
                "sortBy must be one of: date, status, intern", field="sortBy"
            )
        return await self._reports.list_by_org(
            principal.organization_id,
            status=parse_status_filter(status),
            sort_by=sort,  # type: ignore[arg-type]
        )

    async def stats(self, principal: Principal) -> dict[str, int]:
        """Counts per status for the organization, drafts excluded."""
        access_gate.require_staff(principal)
        org_id = principal.organization_id

        async def _load() -> dict[str, int]:
            counts = await self._reports.count_by_status(org_id)
            result = {
                "total": 0,
                "submitted": counts[ReportStatus.SUBMITTED],
                "under_review": counts[ReportStatus.UNDER_REVIEW],
                "graded": counts[ReportStatus.GRADED],
            }
            result["total"] = (
                result["submitted"] + result["under_review"] + result["graded"]
            )
            return result

        return await read_through(self._cache, stats_key(org_id), _load)

    async def get(self, principal: Principal, report_id: UUID) -> Report:
        """Side-effect-free read, for the author or staff."""
        report = await access_gate.load_report(principal, self._reports, report_id)
        access_gate.require_can_view(principal, report)
        return report

    async def open_report(self, principal: Principal, report_id: UUID) -> Report:
        """Read a report; staff opening a submitted report begin its review."""
        report = await self.get(principal, report_id)
        if not principal.is_staff() or report.status is not ReportStatus.SUBMITTED:
            return report
        updated = await self._reports.update(
            principal.organization_id,
            report_id,
            expected_status=ReportStatus.SUBMITTED,
            **changes_for(report, ReportAction.BEGIN_REVIEW, actor_id=principal.user_id),
        )
        if updated is None:
            # Someone else moved it first; show what is persisted now.
            return await self.get(principal, report_id)
        await self._after_change(updated.organization_id, ReportAction.BEGIN_REVIEW, "ok")
        logger.info(
            "Review started on open report_id=%s reviewer=%s",
            updated.id,
            principal.user_id,
        )
        return updated

    async def begin_review(self, principal: Principal, report_id: UUID) -> Report:
        access_gate.require_staff(principal)
        report = await access_gate.load_report(principal, self._reports, report_id)
        updated = await self._compare_and_swap(
            report,
            ReportAction.BEGIN_REVIEW,
            Actor.STAFF,
            lambda r: changes_for(r, ReportAction.BEGIN_REVIEW, actor_id=principal.user_id),
        )
        await self._after_change(updated.organization_id, ReportAction.BEGIN_REVIEW, "ok")
        logger.info("Review started report_id=%s reviewer=%s", updated.id, principal.user_id)
        return updated

    async def grade(self, principal: Principal, report_id: UUID, grade: Grade) -> Report:
        """Grade or re-grade.  Validation runs before anything is written."""
        access_gate.require_staff(principal)
        report = await access_gate.load_report(principal, self._reports, report_id)

        def _changes(current: Report) -> dict[str, Any]:
            validate_grade(grade, first_grade=current.status is not ReportStatus.GRADED)
            return changes_for(
                current, ReportAction.GRADE, actor_id=principal.user_id, grade=grade
            )

        regrade = report.status is ReportStatus.GRADED
        updated = await self._compare_and_swap(
            report, ReportAction.GRADE, Actor.STAFF, _changes
        )
        await self._after_change(updated.organization_id, ReportAction.GRADE, "ok")
        logger.info(
            "Report %s report_id=%s reviewer=%s rating=%s marks=%s",
            "re-graded" if regrade else "graded",
            updated.id,
            principal.user_id,
            updated.rating,
            updated.marks,
        )
        return updated

    async def download(self, principal: Principal, report_id: UUID) -> tuple[str, Attachment]:
        report = await self.get(principal, report_id)
        if report.attachment is None:
            raise NotFoundError("No file attached to this report")
        url = await self._attachments.download_url(report.attachment)
        return url, report.attachment

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _author_transition(
        self, principal: Principal, report_id: UUID, action: ReportAction
    ) -> Report:
        report = await access_gate.load_report(principal, self._reports, report_id)
        access_gate.require_author(principal, report)
        updated = await self._compare_and_swap(
            report,
            action,
            Actor.AUTHOR,
            lambda r: changes_for(r, action, actor_id=principal.user_id),
        )
        await self._after_change(updated.organization_id, action, "ok")
        logger.info(
            "Report %s report_id=%s intern_id=%s status=%s",
            action.value,
            updated.id,
            updated.intern_id,
            updated.status.value,
        )
        return updated

    async def _edit_conflict(self, report: Report) -> StateConflictError:
        current = await self._reports.get(report.organization_id, report.id)
        if current is None:
            raise NotFoundError("Report not found")
        REPORT_TRANSITIONS.labels(action=ReportAction.EDIT.value, outcome="conflict").inc()
        if current.status is not ReportStatus.DRAFT:
            return conflict(ReportAction.EDIT, current.status)
        logger.info(
            "Attachment changed underneath report_id=%s expected=%s actual=%s",
            report.id,
            report.attachment.file_key if report.attachment else None,
            current.attachment.file_key if current.attachment else None,
        )
        return StateConflictError(
            "Report was changed by another request. Reload and try again.",
            current_status=current.status.value,
        )

    async def _compare_and_swap(
        self,
        report: Report,
        action: ReportAction,
        actor: Actor,
        build_changes: Callable[[Report], dict[str, Any]],
        *,
        attempts: int = _CAS_ATTEMPTS,
    ) -> Report:
        """Guard, then write only if the status is still what the guard saw.

        On a lost race the report is re-read and the guard runs again
        against the persisted status, so the caller either succeeds or
        gets a StateConflictError naming the real status.
        """
        current = report
        for _ in range(attempts):
            try:
                guard(current, action, actor)
            except StateConflictError:
                REPORT_TRANSITIONS.labels(action=action.value, outcome="conflict").inc()
                raise
            changes = build_changes(current)
            updated = await self._reports.update(
                current.organization_id,
                current.id,
                expected_status=current.status,
                **changes,
            )
            if updated is not None:
                return updated
            fresh = await self._reports.get(current.organization_id, current.id)
            if fresh is None:
                raise NotFoundError("Report not found")
            logger.info(
                "Status changed underneath report_id=%s action=%s expected=%s actual=%s",
                current.id,
                action.value,
                current.status.value,
                fresh.status.value,
            )
            current = fresh
        REPORT_TRANSITIONS.labels(action=action.value, outcome="conflict").inc()
        raise conflict(action, current.status)

    async def _after_change(self, org_id: UUID, action: ReportAction, outcome: str) -> None:
        REPORT_TRANSITIONS.labels(action=action.value, outcome=outcome).inc()
        await invalidate_org(self._cache, org_id)
        if self._invalidations is not None:
            self._invalidations.add(org_id)
