from __future__ import annotations

import time
from dataclasses import dataclass
from uuid import UUID, uuid4

ROLES = ("intern", "admin", "owner")

# Roles that can be handed out through invitations or role changes.
# "owner" is assigned only at organization signup.
ASSIGNABLE_ROLES = ("intern", "admin")


@dataclass(frozen=True, slots=True)
class User:
    id: UUID
    organization_id: UUID
    email: str
    password_hash: str
    name: str = ""
    role: str = "intern"  # intern|admin|owner
    department: str | None = None
    is_active: bool = True
    is_email_verified: bool = False
    invited_by: UUID | None = None
    invited_at: int | None = None
    invite_token_hash: str | None = None
    invite_token_expires: int | None = None
    created_at: int = 0

    @property
    def is_owner(self) -> bool:
        return self.role == "owner"

    @property
    def is_staff(self) -> bool:
        """Admin or owner: may review and grade reports."""
        return self.role in ("admin", "owner")

    @property
    def is_pending_invite(self) -> bool:
        return self.invite_token_hash is not None

    @staticmethod
    def new(
        *,
        organization_id: UUID,
        email: str,
        password_hash: str,
        name: str = "",
        role: str = "intern",
        is_active: bool = True,
    ) -> User:
        return User(
            id=uuid4(),
            organization_id=organization_id,
            email=email,
            password_hash=password_hash,
            name=name,
            role=role,
            is_active=is_active,
            created_at=int(time.time()),
        )
