from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.models.organization import Organization, OrgUsage


class OrgRepo(Protocol):
    async def get_by_id(self, org_id: UUID) -> Organization | None: ...
    async def get_by_slug(self, slug: str) -> Organization | None: ...
    async def add(self, org: Organization) -> None: ...
    async def apply_usage_delta(
        self,
        org_id: UUID,
        *,
        interns: int = 0,
        admins: int = 0,
        storage_mb: float = 0.0,
    ) -> Organization | None:
        """Add signed deltas to the usage counters in one atomic step.

        Each counter is clamped at zero.  Returns the updated organization,
        or None if it does not exist.
        """
        ...


class InMemoryOrgRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Organization] = {}
        self._by_slug: dict[str, Organization] = {}

    async def get_by_id(self, org_id: UUID) -> Organization | None:
        return self._by_id.get(org_id)

    async def get_by_slug(self, slug: str) -> Organization | None:
        return self._by_slug.get(slug)

    async def add(self, org: Organization) -> None:
        if org.slug in self._by_slug:
            raise ValueError("slug already exists")
        self._store(org)

    async def apply_usage_delta(
        self,
        org_id: UUID,
        *,
        interns: int = 0,
        admins: int = 0,
        storage_mb: float = 0.0,
    ) -> Organization | None:
        # No await between read and write: atomic within the event loop.
        org = self._by_id.get(org_id)
        if org is None:
            return None
        usage = org.usage
        updated = replace(
            org,
            usage=OrgUsage(
                current_interns=max(0, usage.current_interns + interns),
                current_admins=max(0, usage.current_admins + admins),
                storage_used_mb=max(0.0, usage.storage_used_mb + storage_mb),
            ),
        )
        self._store(updated)
        return updated

    def _store(self, org: Organization) -> None:
        self._by_id[org.id] = org
        self._by_slug[org.slug] = org
