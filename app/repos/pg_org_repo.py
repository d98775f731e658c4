"""PostgreSQL implementation of OrgRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import OrganizationRow
from app.models.organization import Organization, OrgUsage


class PgOrgRepo:
    """Satisfies the OrgRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, org_id: UUID) -> Organization | None:
        stmt = select(OrganizationRow).where(OrganizationRow.id == org_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_org(row)

    async def get_by_slug(self, slug: str) -> Organization | None:
        stmt = select(OrganizationRow).where(OrganizationRow.slug == slug)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_org(row)

    async def add(self, org: Organization) -> None:
        row = OrganizationRow(
            id=org.id,
            name=org.name,
            slug=org.slug,
            owner_id=org.owner_id,
            plan=org.plan,
            current_interns=org.usage.current_interns,
            current_admins=org.usage.current_admins,
            storage_used_mb=org.usage.storage_used_mb,
            is_active=org.is_active,
            created_at=org.created_at,
        )
        self._session.add(row)
        await self._session.flush()

    async def apply_usage_delta(
        self,
        org_id: UUID,
        *,
        interns: int = 0,
        admins: int = 0,
        storage_mb: float = 0.0,
    ) -> Organization | None:
        # One statement: the increment happens in the database, not in Python.
        stmt = (
            update(OrganizationRow)
            .where(OrganizationRow.id == org_id)
            .values(
                current_interns=func.greatest(
                    OrganizationRow.current_interns + interns, 0
                ),
                current_admins=func.greatest(
                    OrganizationRow.current_admins + admins, 0
                ),
                storage_used_mb=func.greatest(
                    OrganizationRow.storage_used_mb + storage_mb, 0.0
                ),
            )
            .returning(OrganizationRow)
            .execution_options(synchronize_session=False)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        await self._session.refresh(row)
        return _row_to_org(row)


def _row_to_org(row: OrganizationRow) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        slug=row.slug,
        owner_id=row.owner_id,
        plan=row.plan,
        usage=OrgUsage(
            current_interns=row.current_interns,
            current_admins=row.current_admins,
            storage_used_mb=row.storage_used_mb,
        ),
        is_active=row.is_active,
        created_at=row.created_at,
    )
