from __future__ import annotations

from dataclasses import replace
from typing import Any, Protocol
from uuid import UUID

from app.models.user import User


class UserRepo(Protocol):
    async def get_by_id(self, user_id: UUID) -> User | None: ...
    async def get_in_org(self, org_id: UUID, user_id: UUID) -> User | None: ...
    async def get_by_email(self, org_id: UUID, email: str) -> User | None: ...
    async def find_by_email(self, email: str) -> list[User]: ...
    async def get_by_invite_token_hash(self, token_hash: str) -> User | None: ...
    async def add(self, user: User) -> None: ...
    async def update(self, user_id: UUID, **changes: Any) -> User | None: ...
    async def list_by_org(
        self,
        org_id: UUID,
        *,
        role: str | None = None,
        active_only: bool = False,
    ) -> list[User]: ...


class InMemoryUserRepo:
    """Email is unique per organization, not globally."""

    def __init__(self) -> None:
        self._by_id: dict[UUID, User] = {}

    async def get_by_id(self, user_id: UUID) -> User | None:
        return self._by_id.get(user_id)

    async def get_in_org(self, org_id: UUID, user_id: UUID) -> User | None:
        user = self._by_id.get(user_id)
        if user is None or user.organization_id != org_id:
            return None
        return user

    async def get_by_email(self, org_id: UUID, email: str) -> User | None:
        for user in self._by_id.values():
            if user.organization_id == org_id and user.email == email:
                return user
        return None

    async def find_by_email(self, email: str) -> list[User]:
        return [u for u in self._by_id.values() if u.email == email]

    async def get_by_invite_token_hash(self, token_hash: str) -> User | None:
        for user in self._by_id.values():
            if user.invite_token_hash == token_hash:
                return user
        return None

    async def add(self, user: User) -> None:
        if await self.get_by_email(user.organization_id, user.email) is not None:
            raise ValueError("email already exists in organization")
        self._by_id[user.id] = user

    async def update(self, user_id: UUID, **changes: Any) -> User | None:
        user = self._by_id.get(user_id)
        if user is None:
            return None
        updated = replace(user, **changes)
        self._by_id[user_id] = updated
        return updated

    async def list_by_org(
        self,
        org_id: UUID,
        *,
        role: str | None = None,
        active_only: bool = False,
    ) -> list[User]:
        return [
            u
            for u in self._by_id.values()
            if u.organization_id == org_id
            and (role is None or u.role == role)
            and (not active_only or u.is_active)
        ]
