from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.errors import AuthenticationError, AuthorizationError
from app.db.engine import async_session_factory
from app.middleware.request_context import organization_id_var, user_id_var
from app.models.principal import Principal
from app.repos.org_repo import InMemoryOrgRepo, OrgRepo
from app.repos.pg_org_repo import PgOrgRepo
from app.repos.pg_report_repo import PgReportRepo
from app.repos.pg_user_repo import PgUserRepo
from app.repos.report_repo import InMemoryReportRepo, ReportRepo
from app.repos.user_repo import InMemoryUserRepo, UserRepo
from app.services import cache, mailer, storage, token_service
from app.services.attachments import AttachmentManager
from app.services.cache import PendingInvalidations
from app.services.membership_service import MembershipService
from app.services.quota_ledger import QuotaLedger
from app.services.report_service import ReportService

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# In-memory repositories (used when DATABASE_URL is not set)
# ---------------------------------------------------------------------------
org_repo = InMemoryOrgRepo()
user_repo = InMemoryUserRepo()
report_repo = InMemoryReportRepo()


@dataclass(frozen=True, slots=True)
class Repos:
    orgs: OrgRepo
    users: UserRepo
    reports: ReportRepo
    invalidations: PendingInvalidations


def get_cache() -> cache.CacheService:
    return cache.cache_service


async def get_repos(
    stats_cache: Annotated[cache.CacheService, Depends(get_cache)],
) -> AsyncGenerator[Repos, None]:
    """Request-scoped repositories.

    With PostgreSQL every repo shares one session inside one
    transaction: committed when the handler returns, rolled back when
    it raises.  Report cache entries touched by the request are cleared
    again after the commit.
    """
    pending = PendingInvalidations(stats_cache)
    if async_session_factory is None:
        yield Repos(
            orgs=org_repo, users=user_repo, reports=report_repo, invalidations=pending
        )
        await pending.flush()
        return

    async with async_session_factory() as session:
        async with session.begin():
            yield Repos(
                orgs=PgOrgRepo(session),
                users=PgUserRepo(session),
                reports=PgReportRepo(session),
                invalidations=pending,
            )
    await pending.flush()


RepoDep = Annotated[Repos, Depends(get_repos)]

bearer_scheme = HTTPBearer(auto_error=False)


async def require_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    repos: RepoDep,
) -> Principal:
    """Validate the bearer token and resolve the caller's membership.

    The user and organization are re-read on every request, so a
    deactivated member or organization is locked out immediately.
    """
    if credentials is None:
        raise AuthenticationError("Not authorized, no token")
    try:
        claims = token_service.decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise AuthenticationError("Token expired") from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise AuthenticationError("Invalid token") from None

    try:
        user_id = UUID(claims["sub"])
        org_id = UUID(claims["org"])
    except ValueError:
        raise AuthenticationError("Invalid token") from None

    user = await repos.users.get_by_id(user_id)
    if user is None or user.organization_id != org_id:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthenticationError("Your account has been deactivated")

    org = await repos.orgs.get_by_id(org_id)
    if org is None or not org.is_active:
        logger.warning("Request from inactive organization org_id=%s", org_id)
        raise AuthorizationError("Organization has been deactivated")

    user_id_var.set(str(user.id))
    organization_id_var.set(str(org.id))
    return Principal(
        user_id=user.id,
        organization_id=org.id,
        role=user.role,
        is_active=user.is_active,
    )


CurrentUser = Annotated[Principal, Depends(require_user)]


def require_role(role: str):
    """Dependency factory: demand a role (``admin`` also admits owners).

    Usage: Depends(require_role("admin"))
    """

    def _guard(principal: CurrentUser) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s role=%s required=%s",
                principal.user_id,
                principal.role,
                role,
            )
            raise AuthorizationError("Insufficient permissions")
        return principal

    return _guard


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def get_storage() -> storage.StorageBackend:
    # Looked up per call so tests can swap the module-level backend.
    return storage.storage_backend


def get_mailer() -> mailer.Mailer:
    return mailer.mailer


def get_report_service(
    repos: RepoDep,
    backend: Annotated[storage.StorageBackend, Depends(get_storage)],
    stats_cache: Annotated[cache.CacheService, Depends(get_cache)],
) -> ReportService:
    ledger = QuotaLedger(repos.orgs)
    return ReportService(
        reports=repos.reports,
        ledger=ledger,
        attachments=AttachmentManager(backend, ledger),
        cache=stats_cache,
        invalidations=repos.invalidations,
    )


def get_membership_service(
    repos: RepoDep,
    outbox: Annotated[mailer.Mailer, Depends(get_mailer)],
) -> MembershipService:
    return MembershipService(
        users=repos.users,
        orgs=repos.orgs,
        ledger=QuotaLedger(repos.orgs),
        mailer=outbox,
    )


ReportServiceDep = Annotated[ReportService, Depends(get_report_service)]
MembershipServiceDep = Annotated[MembershipService, Depends(get_membership_service)]
