"""Account endpoints (/v1/auth): signup, login, invitations.

Register and accept-invite return an access token so the client can go
straight to the dashboard.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, status
from pydantic import BaseModel

from app.api.dependencies import CurrentUser, MembershipServiceDep, RepoDep
from app.api.schemas import OrganizationOut, UserOut, organization_out, user_out
from app.core.errors import NotFoundError
from app.services import auth_service, token_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])


# --- Request / Response schemas -------------------------------------------


class RegisterIn(BaseModel):
    organizationName: str
    name: str
    email: str
    password: str


class LoginIn(BaseModel):
    email: str
    password: str
    organization: str | None = None  # slug; needed only for shared emails


class InviteIn(BaseModel):
    email: str
    role: str = "intern"
    name: str | None = None


class AcceptInviteIn(BaseModel):
    password: str
    name: str | None = None


class SessionOut(BaseModel):
    success: bool = True
    message: str | None = None
    token: str
    user: UserOut
    organization: OrganizationOut | None = None


class MeOut(BaseModel):
    success: bool = True
    user: UserOut
    organization: OrganizationOut


class InviteOut(BaseModel):
    success: bool = True
    message: str
    emailSent: bool
    user: UserOut


# --- Endpoints --------------------------------------------------------------


@router.post("/register", response_model=SessionOut, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterIn, service: MembershipServiceDep) -> SessionOut:
    org, owner = await service.register_organization(
        organization_name=payload.organizationName,
        name=payload.name,
        email=payload.email,
        password=payload.password,
    )
    return SessionOut(
        message="Organization created successfully!",
        token=token_service.create_access_token(owner),
        user=user_out(owner),
        organization=organization_out(org),
    )


@router.post("/login", response_model=SessionOut)
async def login(payload: LoginIn, repos: RepoDep) -> SessionOut:
    user = await auth_service.authenticate_user(
        repos.users,
        repos.orgs,
        payload.email,
        payload.password,
        org_slug=payload.organization,
    )
    org = await repos.orgs.get_by_id(user.organization_id)
    logger.info("Login succeeded user_id=%s org_id=%s", user.id, user.organization_id)
    return SessionOut(
        token=token_service.create_access_token(user),
        user=user_out(user),
        organization=organization_out(org) if org else None,
    )


@router.get("/me", response_model=MeOut)
async def me(principal: CurrentUser, repos: RepoDep) -> MeOut:
    user = await repos.users.get_by_id(principal.user_id)
    org = await repos.orgs.get_by_id(principal.organization_id)
    if user is None or org is None:
        raise NotFoundError("User not found")
    return MeOut(user=user_out(user), organization=organization_out(org))


@router.post("/invite", response_model=InviteOut, status_code=status.HTTP_201_CREATED)
async def invite(
    payload: InviteIn, principal: CurrentUser, service: MembershipServiceDep
) -> InviteOut:
    result = await service.invite(
        principal, email=payload.email, role=payload.role, name=payload.name
    )
    return InviteOut(
        message="Invitation sent!" if result.email_sent else "User created but email failed",
        emailSent=result.email_sent,
        user=user_out(result.user),
    )


@router.post("/accept-invite/{token}", response_model=SessionOut)
async def accept_invite(
    token: str, payload: AcceptInviteIn, service: MembershipServiceDep
) -> SessionOut:
    user = await service.accept_invite(token, password=payload.password, name=payload.name)
    return SessionOut(
        message="Welcome to the team!",
        token=token_service.create_access_token(user),
        user=user_out(user),
    )
