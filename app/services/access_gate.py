"""Access control gate for reports and memberships.

Rules, checked in this order:

1. Tenant isolation.  Repos filter by organization id, so a resource in
   another organization is simply not found (404, never 403).
2. Role hierarchy.  Owner satisfies admin checks; admin/owner may view
   every report in their organization; only the authoring intern may
   change their own report content.
3. Self-protection.  Nobody deactivates or demotes themselves or the
   organization owner.
4. Elevation control.  Only the owner invites or promotes to admin;
   admins may invite interns only.
"""

from __future__ import annotations

from uuid import UUID

from app.core.errors import AuthorizationError, NotFoundError, ValidationError
from app.models.principal import Principal
from app.models.report import Report
from app.models.user import ASSIGNABLE_ROLES, User
from app.repos.report_repo import ReportRepo
from app.services.report_state import Actor


async def load_report(principal: Principal, repo: ReportRepo, report_id: UUID) -> Report:
    report = await repo.get(principal.organization_id, report_id)
    if report is None:
        raise NotFoundError("Report not found")
    return report


def actor_for(principal: Principal, report: Report) -> Actor:
    """Classify the principal relative to ``report``.

    Staff act as staff even on their own content; interns must be the
    author.
    """
    if principal.is_staff():
        return Actor.STAFF
    if report.intern_id == principal.user_id:
        return Actor.AUTHOR
    raise AuthorizationError("Not authorized to access this report")


def require_author(principal: Principal, report: Report) -> None:
    if not principal.has_role("intern") or report.intern_id != principal.user_id:
        raise AuthorizationError("Not authorized to modify this report")


def require_staff(principal: Principal) -> None:
    if not principal.is_staff():
        raise AuthorizationError("Admin or owner role required")


def require_owner(principal: Principal) -> None:
    if not principal.is_owner():
        raise AuthorizationError("Only the organization owner can do this")


def require_can_view(principal: Principal, report: Report) -> None:
    actor_for(principal, report)


def require_can_invite(principal: Principal, role: str) -> None:
    if role not in ASSIGNABLE_ROLES:
        raise ValidationError(
            f"Role must be one of: {', '.join(ASSIGNABLE_ROLES)}", field="role"
        )
    require_staff(principal)
    if role == "admin" and not principal.is_owner():
        raise AuthorizationError("Only the owner can invite admins")


def require_can_manage_member(principal: Principal, target: User) -> None:
    """Owner-only member management, never aimed at self or the owner."""
    require_owner(principal)
    if target.id == principal.user_id:
        raise AuthorizationError("You cannot change your own membership")
    if target.is_owner:
        raise AuthorizationError("The organization owner cannot be changed")


def require_can_assign_role(principal: Principal, target: User, role: str) -> None:
    if role not in ASSIGNABLE_ROLES:
        raise ValidationError(
            f"Role must be one of: {', '.join(ASSIGNABLE_ROLES)}", field="role"
        )
    require_can_manage_member(principal, target)
