"""Organization quota ledger.

Seat counts and storage usage are checked against plan limits before a
consuming action, then adjusted with one atomic delta after it.  The
check and the delta are separate statements: two concurrent requests
can both pass the check and both consume, overshooting a limit by the
number of racers.  Storage is a soft cap, so that window is accepted.
"""

from __future__ import annotations

import logging
from uuid import UUID

from app.core.errors import NotFoundError, QuotaExceededError
from app.core.metrics import QUOTA_REJECTIONS
from app.models.organization import UNLIMITED, Organization
from app.repos.org_repo import OrgRepo

logger = logging.getLogger(__name__)


def can_add_intern(org: Organization) -> bool:
    limit = org.limits.max_interns
    return limit == UNLIMITED or org.usage.current_interns < limit


def can_add_admin(org: Organization) -> bool:
    limit = org.limits.max_admins
    return limit == UNLIMITED or org.usage.current_admins < limit


def has_storage_space(org: Organization, delta_mb: float) -> bool:
    limit = org.limits.max_storage_mb
    return limit == UNLIMITED or org.usage.storage_used_mb + delta_mb <= limit


def can_add_seat(org: Organization, role: str) -> bool:
    """Seat check for a member of ``role`` (admin seats cover the owner)."""
    if role == "intern":
        return can_add_intern(org)
    return can_add_admin(org)


class QuotaLedger:
    def __init__(self, org_repo: OrgRepo) -> None:
        self._orgs = org_repo

    async def get_org(self, org_id: UUID) -> Organization:
        org = await self._orgs.get_by_id(org_id)
        if org is None:
            raise NotFoundError("Organization not found")
        return org

    def require_seat(self, org: Organization, role: str, *, action: str = "invite") -> None:
        """Raise QuotaExceededError when ``org`` has no free seat for ``role``."""
        if can_add_seat(org, role):
            return
        resource = "interns" if role == "intern" else "admins"
        QUOTA_REJECTIONS.labels(resource=resource).inc()
        logger.info(
            "Seat limit reached org_id=%s role=%s action=%s", org.id, role, action
        )
        if role == "intern":
            limit = org.limits.max_interns
            label = "Intern"
        else:
            limit = org.limits.max_admins
            label = "Admin"
        if action == "reactivate":
            message = f"{label} limit reached ({limit}). Upgrade to reactivate."
        else:
            message = f"{label} limit reached ({limit}). Please upgrade."
        raise QuotaExceededError(message, resource=resource)

    def require_storage(self, org: Organization, delta_mb: float) -> None:
        if delta_mb <= 0 or has_storage_space(org, delta_mb):
            return
        QUOTA_REJECTIONS.labels(resource="storage").inc()
        logger.info(
            "Storage limit reached org_id=%s used_mb=%.2f delta_mb=%.2f max_mb=%d",
            org.id,
            org.usage.storage_used_mb,
            delta_mb,
            org.limits.max_storage_mb,
        )
        raise QuotaExceededError(
            f"Storage limit exceeded. You have {org.usage.storage_used_mb:.1f}MB "
            f"of {org.limits.max_storage_mb}MB used.",
            resource="storage",
        )

    async def apply_usage_delta(
        self,
        org_id: UUID,
        *,
        interns: int = 0,
        admins: int = 0,
        storage_mb: float = 0.0,
    ) -> Organization:
        """Apply signed deltas to the usage counters (clamped at zero)."""
        if not (interns or admins or storage_mb):
            return await self.get_org(org_id)

        before = await self._orgs.get_by_id(org_id)
        updated = await self._orgs.apply_usage_delta(
            org_id, interns=interns, admins=admins, storage_mb=storage_mb
        )
        if updated is None:
            raise NotFoundError("Organization not found")

        # A counter driven below zero means a bookkeeping bug elsewhere.
        if before is not None:
            usage = before.usage
            if (
                usage.current_interns + interns < 0
                or usage.current_admins + admins < 0
                or usage.storage_used_mb + storage_mb < -1e-9
            ):
                logger.warning(
                    "Usage counter clamped at zero org_id=%s interns=%+d admins=%+d storage_mb=%+.4f",
                    org_id,
                    interns,
                    admins,
                    storage_mb,
                )

        logger.debug(
            "Usage delta applied org_id=%s interns=%+d admins=%+d storage_mb=%+.4f",
            org_id,
            interns,
            admins,
            storage_mb,
        )
        return updated
