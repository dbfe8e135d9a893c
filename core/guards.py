"""Role-based access guards.

The caller's role comes from the `x-role` cookie; there is no session layer.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Iterable


class Role(str, Enum):
    ADMIN = "ADMIN"
    FM = "FM"
    WHS = "WHS"
    DM = "DM"
    SM = "SM"
    AM = "AM"
    COST_ANALYST = "COST_ANALYST"
    AI_AGENT = "AI_AGENT"


ROLE_COOKIE = "x-role"
ANONYMOUS = "ANON"

# Roles allowed to grant or deny approvals
APPROVER_ROLES = (Role.ADMIN, Role.FM)

_PERMISSIONS: dict[Role, tuple[str, ...]] = {
    Role.ADMIN: ("*",),
    Role.FM: ("read", "write", "approve", "override"),
    Role.WHS: ("read", "write", "execute"),
    Role.DM: ("read", "approve"),
    Role.SM: ("read", "receive"),
    Role.AM: ("read", "receive"),
    Role.COST_ANALYST: ("read",),
    Role.AI_AGENT: ("read", "generate"),
}


def role_from_value(value: str | None) -> Role | None:
    """Parse a cookie value into a Role. Unknown or empty values give None."""
    if not value:
        return None
    try:
        return Role(value.strip().upper())
    except ValueError:
        return None


def require_role(allowed: Iterable[Role]) -> Callable[[Role | None], bool]:
    """Build a predicate that accepts only the given roles."""
    allowed_set = frozenset(allowed)

    def check(role: Role | None) -> bool:
        return role is not None and role in allowed_set

    return check


def has_permission(role: Role | None, action: str) -> bool:
    """Whether `role` may perform `action` under the permission matrix."""
    if role is None:
        return False
    granted = _PERMISSIONS.get(role, ())
    return "*" in granted or action in granted
