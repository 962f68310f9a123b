"""Actor abstractions for callers of the booking and payment core."""

from __future__ import annotations

from dataclasses import dataclass

from .core.enums import PLATFORM_ADMIN_ROLES, RoleName

SYSTEM_ACTOR_ID = "system"


@dataclass(frozen=True)
class Actor:
    """The authenticated entity performing an operation."""

    id: str
    role: RoleName

    @property
    def is_platform_admin(self) -> bool:
        return self.role in PLATFORM_ADMIN_ROLES

    @property
    def is_customer(self) -> bool:
        return self.role is RoleName.CUSTOMER

    @property
    def is_system(self) -> bool:
        return self.id == SYSTEM_ACTOR_ID


# Internal actor used when the settlement engine cancels or refunds on its own.
SYSTEM_ACTOR = Actor(id=SYSTEM_ACTOR_ID, role=RoleName.SUPERADMIN)
