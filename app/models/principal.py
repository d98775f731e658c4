from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated, tenant-resolved identity for one request.

    Built by ``require_user`` from a validated JWT and the current user
    record, so ``role`` and ``is_active`` reflect the store, not the
    token's issue time.
    """

    user_id: UUID
    organization_id: UUID
    role: str  # intern|admin|owner
    is_active: bool = True

    def has_role(self, role: str) -> bool:
        # owner satisfies any check written for admin
        if role == "admin":
            return self.role in ("admin", "owner")
        return self.role == role

    def has_any_role(self, roles: set[str]) -> bool:
        return any(self.has_role(r) for r in roles)

    def is_staff(self) -> bool:
        return self.role in ("admin", "owner")

    def is_owner(self) -> bool:
        return self.role == "owner"
