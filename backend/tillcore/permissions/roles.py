# Overview: Roles, their fixed capability sets, and the pre-authorized actor.

"""
Every role carries an explicit, frozen capability set. The HTTP boundary
resolves the caller to an ``Actor`` once; services only ask the actor.

Visibility scope:
- CASHIER: own records in own store
- MANAGER: everything in own store
- ADMIN: everything in own company
- SUPER_ADMIN: everything
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .definitions import (
    ADJUST_INVENTORY,
    CREATE_ORDER,
    CREATE_RETURN,
    MANAGE_SHIFTS,
    PROCESS_PAYMENT,
    REFUND_PAYMENT,
    VIEW_REPORTS,
    VOID_ORDER,
)


class Role(str, enum.Enum):
    CASHIER = "CASHIER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"

    @classmethod
    def parse(cls, value: str) -> "Role":
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown role: {value}")


_CASHIER = frozenset({CREATE_ORDER, PROCESS_PAYMENT, CREATE_RETURN})
_MANAGER = _CASHIER | frozenset(
    {REFUND_PAYMENT, VOID_ORDER, MANAGE_SHIFTS, ADJUST_INVENTORY, VIEW_REPORTS}
)

ROLE_CAPABILITIES: dict[Role, frozenset[str]] = {
    Role.CASHIER: _CASHIER,
    Role.MANAGER: _MANAGER,
    Role.ADMIN: _MANAGER,
    Role.SUPER_ADMIN: _MANAGER,
}


@dataclass(frozen=True)
class Actor:
    """Authenticated caller: who, in which role, inside which tenant."""
    user_id: int
    role: Role
    company_id: int | None
    store_id: int | None = None

    def can(self, capability: str) -> bool:
        return capability in ROLE_CAPABILITIES[self.role]

    def can_see(self, company_id: int | None, store_id: int | None = None, owner_id: int | None = None) -> bool:
        """True if a record with this tenant/store/owner falls in the actor's scope."""
        if self.role is Role.SUPER_ADMIN:
            return True
        if company_id != self.company_id:
            return False
        if self.role is Role.ADMIN:
            return True
        if store_id is not None and store_id != self.store_id:
            return False
        if self.role is Role.MANAGER:
            return True
        return owner_id is None or owner_id == self.user_id

    @classmethod
    def from_user(cls, user, *, company_id=None, store_id=None) -> "Actor":
        return cls(
            user_id=user.id,
            role=Role.parse(user.role),
            company_id=company_id if company_id is not None else user.company_id,
            store_id=store_id if store_id is not None else user.store_id,
        )
