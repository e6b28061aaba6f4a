# Overview: Role capability map and the single authorization check used by routes and services.

"""
Capabilities

Each role maps a resource identifier to the set of actions it may
perform on it. authorize() is the only place that reads this map.

ADMIN bypasses the map entirely. Everyone else gets exactly what is
listed; unknown roles get nothing.
"""

from __future__ import annotations

from typing import Mapping

from .errors import ForbiddenError


ROLE_ADMIN = "ADMIN"
ROLE_MANAGER = "MANAGER"
ROLE_CASHIER = "CASHIER"
ROLE_WAITER = "WAITER"
ROLE_KITCHEN = "KITCHEN"

ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER, ROLE_WAITER, ROLE_KITCHEN)

Capabilities = Mapping[str, frozenset]

ROLE_CAPABILITIES: dict[str, Capabilities] = {
    ROLE_MANAGER: {
        "orders": frozenset({
            "create", "read", "update", "update_status", "update_item_status",
            "void", "transfer", "discount",
        }),
        "payments": frozenset({"create", "read", "void"}),
        "shifts": frozenset({"open", "close", "close_any", "read", "report"}),
        "inventory": frozenset({"read", "adjust", "purchase", "receive"}),
        "audit": frozenset({"read"}),
    },
    ROLE_CASHIER: {
        "orders": frozenset({"create", "read", "update", "update_status", "update_item_status", "transfer"}),
        "payments": frozenset({"create", "read"}),
        "shifts": frozenset({"open", "close", "read"}),
        "inventory": frozenset({"read"}),
    },
    ROLE_WAITER: {
        "orders": frozenset({"create", "read", "update", "update_item_status", "transfer"}),
        "payments": frozenset({"read"}),
    },
    ROLE_KITCHEN: {
        "orders": frozenset({"read", "update_item_status"}),
        "inventory": frozenset({"read"}),
    },
}


def capabilities_for(role: str | None) -> Capabilities:
    return ROLE_CAPABILITIES.get((role or "").upper(), {})


def authorize(actor, resource: str, action: str) -> bool:
    """
    Return True if actor may perform action on resource.

    actor is anything with .role and .is_active (normally a User).
    """
    if actor is None or not getattr(actor, "is_active", False):
        return False
    role = (getattr(actor, "role", None) or "").upper()
    if role == ROLE_ADMIN:
        return True
    return action in capabilities_for(role).get(resource, frozenset())


def require(actor, resource: str, action: str) -> None:
    """Raise ForbiddenError unless authorize() allows the action."""
    if not authorize(actor, resource, action):
        raise ForbiddenError(
            "Permission denied",
            details={"required_permission": f"{resource}:{action}"},
        )


def to_permission_list(role: str | None) -> list[str]:
    """Flattened "resource:action" codes for the client UI."""
    if (role or "").upper() == ROLE_ADMIN:
        return ["*"]
    caps = capabilities_for(role)
    return sorted(f"{resource}:{action}" for resource, actions in caps.items() for action in actions)
