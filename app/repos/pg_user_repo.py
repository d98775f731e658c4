"""PostgreSQL implementation of UserRepo."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import UserRow
from app.models.user import User


class PgUserRepo:
    """Satisfies the UserRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, user_id: UUID) -> User | None:
        stmt = select(UserRow).where(UserRow.id == user_id)
        return await self._one(stmt)

    async def get_in_org(self, org_id: UUID, user_id: UUID) -> User | None:
        stmt = select(UserRow).where(
            UserRow.id == user_id, UserRow.organization_id == org_id
        )
        return await self._one(stmt)

    async def get_by_email(self, org_id: UUID, email: str) -> User | None:
        stmt = select(UserRow).where(
            UserRow.organization_id == org_id, UserRow.email == email
        )
        return await self._one(stmt)

    async def find_by_email(self, email: str) -> list[User]:
        stmt = select(UserRow).where(UserRow.email == email)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_user(r) for r in rows]

    async def get_by_invite_token_hash(self, token_hash: str) -> User | None:
        stmt = select(UserRow).where(UserRow.invite_token_hash == token_hash)
        return await self._one(stmt)

    async def add(self, user: User) -> None:
        row = UserRow(
            id=user.id,
            organization_id=user.organization_id,
            email=user.email,
            password_hash=user.password_hash,
            name=user.name,
            role=user.role,
            department=user.department,
            is_active=user.is_active,
            is_email_verified=user.is_email_verified,
            invited_by=user.invited_by,
            invited_at=user.invited_at,
            invite_token_hash=user.invite_token_hash,
            invite_token_expires=user.invite_token_expires,
            created_at=user.created_at,
        )
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise ValueError("email already exists in organization") from exc

    async def update(self, user_id: UUID, **changes: Any) -> User | None:
        stmt = (
            update(UserRow)
            .where(UserRow.id == user_id)
            .values(**changes)
            .returning(UserRow)
            .execution_options(synchronize_session=False)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        await self._session.refresh(row)
        return _row_to_user(row)

    async def list_by_org(
        self,
        org_id: UUID,
        *,
        role: str | None = None,
        active_only: bool = False,
    ) -> list[User]:
        stmt = select(UserRow).where(UserRow.organization_id == org_id)
        if role is not None:
            stmt = stmt.where(UserRow.role == role)
        if active_only:
            stmt = stmt.where(UserRow.is_active.is_(True))
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_user(r) for r in rows]

    async def _one(self, stmt) -> User | None:
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_user(row)


def _row_to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        organization_id=row.organization_id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name or "",
        role=row.role,
        department=row.department,
        is_active=row.is_active,
        is_email_verified=row.is_email_verified,
        invited_by=row.invited_by,
        invited_at=row.invited_at,
        invite_token_hash=row.invite_token_hash,
        invite_token_expires=row.invite_token_expires,
        created_at=row.created_at,
    )
