"""
Access scope resolution for the staff/client directory.

Everything here is pure and table-driven. The same scope feeds the list
query and the write guards, so a caller can never change a record it could
not also list.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from src.kernel.models.user import User, UserRole


# Staff hierarchy rank; CLIENT is outside it and ranks below every staff role
ROLE_RANK: Dict[UserRole, int] = {
    UserRole.SUPER_ADMIN: 4,
    UserRole.ADMIN: 3,
    UserRole.SUPERVISOR: 2,
    UserRole.AGENT: 1,
    UserRole.CLIENT: 0,
}

ALL_ROLES: FrozenSet[UserRole] = frozenset(UserRole)

# Roles whose records each caller role may see; None means every role
_VISIBLE_ROLES: Dict[UserRole, Optional[FrozenSet[UserRole]]] = {
    UserRole.SUPER_ADMIN: None,
    UserRole.ADMIN: frozenset({UserRole.SUPERVISOR, UserRole.AGENT, UserRole.CLIENT}),
    UserRole.SUPERVISOR: frozenset({UserRole.AGENT}),
    UserRole.AGENT: frozenset(),
    UserRole.CLIENT: frozenset(),
}

# Roles each caller role may hand out on create/update
_ASSIGNABLE_ROLES: Dict[UserRole, FrozenSet[UserRole]] = {
    UserRole.SUPER_ADMIN: ALL_ROLES,
    UserRole.ADMIN: frozenset({UserRole.SUPERVISOR, UserRole.AGENT, UserRole.CLIENT}),
    UserRole.SUPERVISOR: frozenset({UserRole.AGENT, UserRole.CLIENT}),
    UserRole.AGENT: frozenset(),
    UserRole.CLIENT: frozenset(),
}

# Supervisors are additionally limited to the agents assigned to them
_OWNER_SCOPED_ROLES: FrozenSet[UserRole] = frozenset({UserRole.SUPERVISOR})


class DirectoryOperation(str, Enum):
    """Operations exposed by the directory."""
    LIST = "list"
    VIEW = "view"
    CREATE = "create"
    BATCH = "batch"
    UPDATE = "update"
    ARCHIVE = "archive"
    RESTORE = "restore"
    SET_STATUS = "set_status"
    ASSIGN_SUPERVISOR = "assign_supervisor"
    RESET_PASSWORD = "reset_password"
    SEND_VERIFICATION = "send_verification"
    VERIFY_EMAIL = "verify_email"
    READ_ENTITY_AUDIT = "read_entity_audit"
    READ_GLOBAL_AUDIT = "read_global_audit"


_MANAGERS = frozenset({UserRole.SUPER_ADMIN, UserRole.ADMIN, UserRole.SUPERVISOR})
_ADMINS = frozenset({UserRole.SUPER_ADMIN, UserRole.ADMIN})

_OPERATION_ROLES: Dict[DirectoryOperation, FrozenSet[UserRole]] = {
    DirectoryOperation.LIST: _MANAGERS,
    DirectoryOperation.VIEW: _MANAGERS,
    DirectoryOperation.UPDATE: _MANAGERS,
    DirectoryOperation.CREATE: _ADMINS,
    DirectoryOperation.BATCH: _ADMINS,
    DirectoryOperation.ARCHIVE: _ADMINS,
    DirectoryOperation.RESTORE: _ADMINS,
    DirectoryOperation.SET_STATUS: _ADMINS,
    DirectoryOperation.ASSIGN_SUPERVISOR: _ADMINS,
    DirectoryOperation.RESET_PASSWORD: _ADMINS,
    DirectoryOperation.SEND_VERIFICATION: _ADMINS,
    DirectoryOperation.VERIFY_EMAIL: _ADMINS,
    DirectoryOperation.READ_ENTITY_AUDIT: _ADMINS,
    DirectoryOperation.READ_GLOBAL_AUDIT: frozenset({UserRole.SUPER_ADMIN}),
}


@dataclass(frozen=True)
class Principal:
    """An authenticated caller."""

    id: uuid.UUID
    role: UserRole


@dataclass(frozen=True)
class AccessScope:
    """
    The slice of the directory a caller may see and act on.

    allowed_roles of None means every role; an empty set means no access.
    """

    allowed_roles: Optional[FrozenSet[UserRole]]
    owner_filter: Optional[uuid.UUID] = None

    @property
    def unrestricted(self) -> bool:
        return self.allowed_roles is None

    @property
    def has_access(self) -> bool:
        return self.allowed_roles is None or len(self.allowed_roles) > 0

    def allows_role(self, role: UserRole) -> bool:
        return self.allowed_roles is None or role in self.allowed_roles

    def permits(self, record: User) -> bool:
        """In-memory twin of the query predicate built from this scope."""
        if not self.allows_role(record.role):
            return False
        if self.owner_filter is not None and record.supervisor_id != self.owner_filter:
            return False
        return True


def allowed_role_set(caller_role: UserRole) -> FrozenSet[UserRole]:
    """Roles whose records the caller role may see."""
    visible = _VISIBLE_ROLES[caller_role]
    return ALL_ROLES if visible is None else visible


def resolve_scope(caller_role: UserRole, caller_id: Optional[uuid.UUID]) -> AccessScope:
    """Compute the directory scope for a caller. Total over every role."""
    owner = caller_id if caller_role in _OWNER_SCOPED_ROLES else None
    return AccessScope(allowed_roles=_VISIBLE_ROLES[caller_role], owner_filter=owner)


def scope_for(principal: Principal) -> AccessScope:
    return resolve_scope(principal.role, principal.id)


def outranks(caller_role: UserRole, target_role: UserRole) -> bool:
    """True when caller_role sits strictly above target_role."""
    return ROLE_RANK[caller_role] > ROLE_RANK[target_role]


def can_act_on(caller_role: UserRole, target_role: UserRole) -> bool:
    """
    Privilege ordering: act only on strictly lower roles that are also
    visible, unless the caller is SUPER_ADMIN.
    """
    if caller_role == UserRole.SUPER_ADMIN:
        return True
    return outranks(caller_role, target_role) and target_role in allowed_role_set(caller_role)


def can_assign_role(caller_role: UserRole, new_role: UserRole) -> bool:
    """Role-escalation table check for create/update."""
    return new_role in _ASSIGNABLE_ROLES[caller_role]


def assignable_roles(caller_role: UserRole) -> FrozenSet[UserRole]:
    return _ASSIGNABLE_ROLES[caller_role]


def can_perform(caller_role: UserRole, operation: DirectoryOperation) -> bool:
    return caller_role in _OPERATION_ROLES[operation]
