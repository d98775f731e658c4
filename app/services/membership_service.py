"""Organization membership: signup, invitations and seat management.

Seats are counted on *active* members only.  An invitation reserves
nothing: the seat check runs when the invite is sent (to fail early)
and again when it is accepted, which is where the seat is consumed.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, replace
from uuid import UUID

from app.core.config import SETTINGS
from app.core.errors import NotFoundError, StateConflictError, ValidationError
from app.models.organization import Organization, is_valid_slug, slugify
from app.models.principal import Principal
from app.models.report import ReportStatus
from app.models.user import User
from app.repos.org_repo import OrgRepo
from app.repos.report_repo import ReportRepo
from app.repos.user_repo import UserRepo
from app.services import access_gate
from app.services.auth_service import hash_password, validate_password
from app.services.cache import CacheService, interns_key, read_through
from app.services.mailer import InviteEmail, Mailer
from app.services.quota_ledger import QuotaLedger
from app.services.token_service import hash_invite_token, new_invite_token

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 50
ORG_NAME_MAX_LENGTH = 100
DEPARTMENT_MAX_LENGTH = 100

_ROLE_ORDER = {"owner": 0, "admin": 1, "intern": 2}


@dataclass(frozen=True, slots=True)
class InviteResult:
    user: User
    email_sent: bool


def _normalize_email(email: str | None) -> str:
    value = (email or "").strip().lower()
    local, _, domain = value.partition("@")
    if not local or "." not in domain or " " in value:
        raise ValidationError("Please provide a valid email", field="email")
    return value


def _validate_name(name: str | None, *, field: str = "name") -> str:
    value = (name or "").strip()
    if len(value) > NAME_MAX_LENGTH:
        raise ValidationError(
            f"Name cannot be more than {NAME_MAX_LENGTH} characters", field=field
        )
    return value


def _seat_delta(role: str, sign: int) -> dict[str, int]:
    # Owner and admin share the admin seat pool.
    if role == "intern":
        return {"interns": sign}
    return {"admins": sign}


class MembershipService:
    def __init__(
        self,
        *,
        users: UserRepo,
        orgs: OrgRepo,
        ledger: QuotaLedger,
        mailer: Mailer,
    ) -> None:
        self._users = users
        self._orgs = orgs
        self._ledger = ledger
        self._mailer = mailer

    async def register_organization(
        self,
        *,
        organization_name: str,
        name: str,
        email: str,
        password: str,
    ) -> tuple[Organization, User]:
        """Self-serve signup: a new organization and its owner."""
        org_name = (organization_name or "").strip()
        if not org_name:
            raise ValidationError(
                "Organization name is required", field="organizationName"
            )
        if len(org_name) > ORG_NAME_MAX_LENGTH:
            raise ValidationError(
                f"Name cannot exceed {ORG_NAME_MAX_LENGTH} characters",
                field="organizationName",
            )
        slug = slugify(org_name)
        if not is_valid_slug(slug):
            raise ValidationError(
                "Organization name must contain letters or numbers",
                field="organizationName",
            )
        owner_name = _validate_name(name)
        if not owner_name:
            raise ValidationError("Name is required", field="name")
        email = _normalize_email(email)
        validate_password(password)

        if await self._orgs.get_by_slug(slug) is not None:
            raise ValidationError(
                "Organization name already taken. Please choose another.",
                field="organizationName",
            )

        org = Organization.new(name=org_name, slug=slug)
        owner = User.new(
            organization_id=org.id,
            email=email,
            password_hash=hash_password(password),
            name=owner_name,
            role="owner",
        )
        org = replace(org, owner_id=owner.id)
        await self._orgs.add(org)
        await self._users.add(owner)

        logger.info("Organization registered org_id=%s slug=%s owner=%s", org.id, slug, owner.id)
        return org, owner

    async def invite(
        self,
        principal: Principal,
        *,
        email: str,
        role: str,
        name: str | None = None,
    ) -> InviteResult:
        """Create a pending (inactive) member and mail them an invite link.

        Every check runs before the pending user is written.
        """
        access_gate.require_can_invite(principal, role)
        email = _normalize_email(email)
        display_name = _validate_name(name) or email.split("@")[0]

        org = await self._ledger.get_org(principal.organization_id)
        self._ledger.require_seat(org, role, action="invite")

        if await self._users.get_by_email(org.id, email) is not None:
            raise ValidationError(
                "User already exists in this organization", field="email"
            )

        token, token_hash = new_invite_token()
        now = int(time.time())
        pending = replace(
            User.new(
                organization_id=org.id,
                email=email,
                # Unusable until the invite is accepted
                password_hash=hash_password(secrets.token_hex(16)),
                name=display_name,
                role=role,
                is_active=False,
            ),
            invited_by=principal.user_id,
            invited_at=now,
            invite_token_hash=token_hash,
            invite_token_expires=now + SETTINGS.invite_ttl_hours * 3600,
        )
        await self._users.add(pending)

        inviter = await self._users.get_by_id(principal.user_id)
        email_sent = await self._mailer.send_invite(
            InviteEmail(
                to=email,
                name=display_name,
                org_name=org.name,
                inviter_name=inviter.name if inviter else "",
                role=role,
                token=token,
            )
        )
        logger.info(
            "Member invited org_id=%s user_id=%s role=%s by=%s email_sent=%s",
            org.id,
            pending.id,
            role,
            principal.user_id,
            email_sent,
        )
        return InviteResult(user=pending, email_sent=email_sent)

    async def accept_invite(
        self, token: str, *, password: str, name: str | None = None
    ) -> User:
        """Activate a pending member.  The seat is consumed here."""
        validate_password(password)
        display_name = _validate_name(name)

        user = await self._users.get_by_invite_token_hash(hash_invite_token(token))
        if (
            user is None
            or user.invite_token_expires is None
            or user.invite_token_expires <= int(time.time())
        ):
            raise ValidationError("Invalid or expired invitation", field="token")

        org = await self._ledger.get_org(user.organization_id)
        self._ledger.require_seat(org, user.role, action="accept")

        changes: dict = {
            "password_hash": hash_password(password),
            "is_active": True,
            "is_email_verified": True,
            "invite_token_hash": None,
            "invite_token_expires": None,
        }
        if display_name:
            changes["name"] = display_name
        activated = await self._users.update(user.id, **changes)
        if activated is None:
            raise NotFoundError("User not found")
        await self._ledger.apply_usage_delta(org.id, **_seat_delta(user.role, +1))

        logger.info(
            "Invite accepted org_id=%s user_id=%s role=%s", org.id, user.id, user.role
        )
        return activated

    async def list_team(self, principal: Principal) -> list[User]:
        access_gate.require_staff(principal)
        users = await self._users.list_by_org(principal.organization_id)
        return sorted(users, key=lambda u: (_ROLE_ORDER.get(u.role, 9), u.name.lower()))

    async def list_interns(
        self, principal: Principal, reports: ReportRepo, cache: CacheService
    ) -> list[dict]:
        """Active interns with per-intern report counts."""
        access_gate.require_staff(principal)
        org_id = principal.organization_id
        interns = await self._users.list_by_org(org_id, role="intern", active_only=True)

        async def _load() -> dict[str, dict[str, int]]:
            result = {}
            for intern in interns:
                counts = await reports.count_by_status(org_id, intern_id=intern.id)
                result[str(intern.id)] = {s.value: counts[s] for s in ReportStatus}
            return result

        stats = await read_through(cache, interns_key(org_id), _load)
        rows = []
        for intern in sorted(interns, key=lambda u: u.name.lower()):
            counts = stats.get(str(intern.id)) or {s.value: 0 for s in ReportStatus}
            rows.append(
                {
                    "user": intern,
                    "reportStats": counts,
                    "totalReports": sum(counts.values()),
                    "pendingReview": counts["submitted"] + counts["under_review"],
                }
            )
        return rows

    async def get_user(self, principal: Principal, user_id: UUID) -> User:
        user = await self._users.get_in_org(principal.organization_id, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def update_profile(
        self,
        principal: Principal,
        *,
        name: str | None = None,
        department: str | None = None,
    ) -> User:
        changes: dict = {}
        if name:
            changes["name"] = _validate_name(name)
        if department:
            dept = department.strip()
            if len(dept) > DEPARTMENT_MAX_LENGTH:
                raise ValidationError(
                    f"Department cannot exceed {DEPARTMENT_MAX_LENGTH} characters",
                    field="department",
                )
            changes["department"] = dept
        if not changes:
            return await self.get_user(principal, principal.user_id)
        user = await self._users.update(principal.user_id, **changes)
        if user is None:
            raise NotFoundError("User not found")
        logger.info("Profile updated user_id=%s fields=%s", user.id, ",".join(sorted(changes)))
        return user

    async def deactivate(self, principal: Principal, user_id: UUID) -> User:
        """Soft-delete a member and release their seat."""
        target = await self.get_user(principal, user_id)
        access_gate.require_can_manage_member(principal, target)
        if not target.is_active:
            raise StateConflictError(
                f"{target.name} is already inactive", current_status="inactive"
            )
        updated = await self._users.update(target.id, is_active=False)
        if updated is None:
            raise NotFoundError("User not found")
        await self._ledger.apply_usage_delta(
            principal.organization_id, **_seat_delta(target.role, -1)
        )
        logger.info(
            "Member deactivated org_id=%s user_id=%s role=%s by=%s",
            principal.organization_id,
            target.id,
            target.role,
            principal.user_id,
        )
        return updated

    async def reactivate(self, principal: Principal, user_id: UUID) -> User:
        """Re-admit a deactivated member after a fresh seat check."""
        target = await self.get_user(principal, user_id)
        access_gate.require_can_manage_member(principal, target)
        if target.is_active:
            raise StateConflictError(
                f"{target.name} is already active", current_status="active"
            )
        if target.is_pending_invite:
            raise StateConflictError(
                f"{target.name} has not accepted the invitation yet",
                current_status="invited",
            )
        org = await self._ledger.get_org(principal.organization_id)
        self._ledger.require_seat(org, target.role, action="reactivate")

        updated = await self._users.update(target.id, is_active=True)
        if updated is None:
            raise NotFoundError("User not found")
        await self._ledger.apply_usage_delta(org.id, **_seat_delta(target.role, +1))
        logger.info(
            "Member reactivated org_id=%s user_id=%s role=%s by=%s",
            org.id,
            target.id,
            target.role,
            principal.user_id,
        )
        return updated

    async def change_role(self, principal: Principal, user_id: UUID, role: str) -> User:
        """Move a member between intern and admin, carrying the seat over."""
        target = await self.get_user(principal, user_id)
        access_gate.require_can_assign_role(principal, target, role)
        if target.role == role:
            return target

        org = await self._ledger.get_org(principal.organization_id)
        counts_seat = target.is_active
        if counts_seat:
            self._ledger.require_seat(org, role, action="promote")

        updated = await self._users.update(target.id, role=role)
        if updated is None:
            raise NotFoundError("User not found")
        if counts_seat:
            delta = _seat_delta(target.role, -1)
            for key, value in _seat_delta(role, +1).items():
                delta[key] = delta.get(key, 0) + value
            await self._ledger.apply_usage_delta(org.id, **delta)
        logger.info(
            "Member role changed org_id=%s user_id=%s %s->%s by=%s",
            org.id,
            target.id,
            target.role,
            role,
            principal.user_id,
        )
        return updated
