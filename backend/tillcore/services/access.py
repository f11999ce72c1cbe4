# Overview: Tenant and role scoping applied to every service read and write.

from __future__ import annotations

from ..errors import AccessDenied, Forbidden
from ..permissions import Actor, Role


def require_capability(actor: Actor, capability: str, message: str | None = None) -> None:
    if not actor.can(capability):
        raise Forbidden(
            message or f"Role {actor.role.value} lacks {capability}",
            details={"required_capability": capability},
        )


def ensure_visible(actor: Actor, *, company_id, store_id=None, owner_id=None, label: str = "Record") -> None:
    if not actor.can_see(company_id, store_id, owner_id):
        raise AccessDenied(f"{label} is outside your access scope")


def scope_query(query, actor: Actor, *, company_col, store_col=None, owner_col=None):
    """Narrow a query to what the actor's role may see."""
    if actor.role is Role.SUPER_ADMIN:
        return query
    query = query.filter(company_col == actor.company_id)
    if actor.role is Role.ADMIN:
        return query
    if store_col is not None:
        query = query.filter(store_col == actor.store_id)
    if actor.role is Role.CASHIER and owner_col is not None:
        query = query.filter(owner_col == actor.user_id)
    return query
