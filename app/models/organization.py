from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from uuid import UUID, uuid4

UNLIMITED = -1

PLANS = ("free", "pro", "enterprise")


@dataclass(frozen=True, slots=True)
class PlanLimits:
    max_interns: int
    max_admins: int
    max_storage_mb: int


@dataclass(frozen=True, slots=True)
class OrgUsage:
    current_interns: int = 0
    current_admins: int = 1  # the owner holds an admin seat
    storage_used_mb: float = 0.0


PLAN_LIMITS: dict[str, PlanLimits] = {
    "free": PlanLimits(max_interns=5, max_admins=2, max_storage_mb=100),
    "pro": PlanLimits(max_interns=50, max_admins=10, max_storage_mb=1000),
    "enterprise": PlanLimits(
        max_interns=UNLIMITED, max_admins=UNLIMITED, max_storage_mb=10000
    ),
}


def limits_for_plan(plan: str) -> PlanLimits:
    return PLAN_LIMITS.get(plan, PLAN_LIMITS["free"])


_SLUG_RE = re.compile(r"^[a-z0-9-]+$")


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower())
    return slug.strip("-")


def is_valid_slug(slug: str) -> bool:
    return bool(_SLUG_RE.match(slug))


@dataclass(frozen=True, slots=True)
class Organization:
    id: UUID
    name: str
    slug: str
    owner_id: UUID | None = None
    plan: str = "free"  # free|pro|enterprise
    usage: OrgUsage = field(default_factory=OrgUsage)
    is_active: bool = True
    created_at: int = 0

    @property
    def limits(self) -> PlanLimits:
        return limits_for_plan(self.plan)

    @staticmethod
    def new(
        *,
        name: str,
        slug: str | None = None,
        plan: str = "free",
        owner_id: UUID | None = None,
    ) -> Organization:
        return Organization(
            id=uuid4(),
            name=name,
            slug=slug or slugify(name),
            owner_id=owner_id,
            plan=plan,
            created_at=int(time.time()),
        )
