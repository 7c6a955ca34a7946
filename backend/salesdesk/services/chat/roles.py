from __future__ import annotations

from typing import FrozenSet, Optional

from salesdesk.models.account import AccountRole

SUPPORT_CAPABLE_ROLES: FrozenSet[str] = frozenset(
    {AccountRole.ADMIN.value, AccountRole.SUPER_ADMIN.value}
)


def normalize_role(role: Optional[str]) -> str:
    if role is None:
        return AccountRole.CUSTOMER.value
    value = role.value if isinstance(role, AccountRole) else str(role)
    return value.strip().lower() or AccountRole.CUSTOMER.value


def is_support_capable(role: Optional[str]) -> bool:
    """Admins and super admins may handle support chats and step into any chat."""
    if role is None:
        return False
    return normalize_role(role) in SUPPORT_CAPABLE_ROLES
