from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.dependencies import (
    CurrentUser,
    MembershipServiceDep,
    RepoDep,
    get_cache,
    require_role,
)
from app.api.schemas import UserOut, user_out
from app.models.principal import Principal
from app.services.cache import CacheService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/users", tags=["users"])

StaffUser = Annotated[Principal, Depends(require_role("admin"))]


class UserEnvelope(BaseModel):
    success: bool = True
    message: str | None = None
    user: UserOut


class TeamOut(BaseModel):
    success: bool = True
    count: int
    users: list[UserOut]


class InternOut(UserOut):
    reportStats: dict[str, int]
    totalReports: int
    pendingReview: int


class InternsOut(BaseModel):
    success: bool = True
    count: int
    interns: list[InternOut]


class ProfileIn(BaseModel):
    name: str | None = None
    department: str | None = None


class RoleIn(BaseModel):
    role: str


@router.get("/team", response_model=TeamOut)
async def list_team(principal: StaffUser, service: MembershipServiceDep) -> TeamOut:
    users = await service.list_team(principal)
    return TeamOut(count=len(users), users=[user_out(u) for u in users])


@router.get("/interns", response_model=InternsOut)
async def list_interns(
    principal: StaffUser,
    service: MembershipServiceDep,
    repos: RepoDep,
    stats_cache: Annotated[CacheService, Depends(get_cache)],
) -> InternsOut:
    rows = await service.list_interns(principal, repos.reports, stats_cache)
    interns = [
        InternOut(
            **user_out(row["user"]).model_dump(),
            reportStats=row["reportStats"],
            totalReports=row["totalReports"],
            pendingReview=row["pendingReview"],
        )
        for row in rows
    ]
    return InternsOut(count=len(interns), interns=interns)


@router.put("/profile", response_model=UserEnvelope)
async def update_profile(
    payload: ProfileIn, principal: CurrentUser, service: MembershipServiceDep
) -> UserEnvelope:
    user = await service.update_profile(
        principal, name=payload.name, department=payload.department
    )
    return UserEnvelope(user=user_out(user))


@router.get("/{user_id}", response_model=UserEnvelope)
async def get_user(
    user_id: UUID, principal: CurrentUser, service: MembershipServiceDep
) -> UserEnvelope:
    user = await service.get_user(principal, user_id)
    return UserEnvelope(user=user_out(user))


@router.put("/{user_id}/deactivate", response_model=UserEnvelope)
async def deactivate_user(
    user_id: UUID, principal: CurrentUser, service: MembershipServiceDep
) -> UserEnvelope:
    user = await service.deactivate(principal, user_id)
    return UserEnvelope(message=f"{user.name} has been deactivated", user=user_out(user))


@router.put("/{user_id}/reactivate", response_model=UserEnvelope)
async def reactivate_user(
    user_id: UUID, principal: CurrentUser, service: MembershipServiceDep
) -> UserEnvelope:
    user = await service.reactivate(principal, user_id)
    return UserEnvelope(message=f"{user.name} has been reactivated", user=user_out(user))


@router.put("/{user_id}/role", response_model=UserEnvelope)
async def change_role(
    user_id: UUID,
    payload: RoleIn,
    principal: CurrentUser,
    service: MembershipServiceDep,
) -> UserEnvelope:
    user = await service.change_role(principal, user_id, payload.role)
    return UserEnvelope(message=f"{user.name} is now {user.role}", user=user_out(user))
