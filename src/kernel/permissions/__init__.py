"""
Permission Core - role-scoped directory access.
"""

from src.kernel.permissions.scope import (
    ROLE_RANK,
    AccessScope,
    DirectoryOperation,
    Principal,
    allowed_role_set,
    assignable_roles,
    can_act_on,
    can_assign_role,
    can_perform,
    resolve_scope,
    scope_for,
)

__all__ = [
    "ROLE_RANK",
    "AccessScope",
    "DirectoryOperation",
    "Principal",
    "allowed_role_set",
    "assignable_roles",
    "can_act_on",
    "can_assign_role",
    "can_perform",
    "resolve_scope",
    "scope_for",
]
