"""
Stable Kernel Layer

Foundational components of the directory service:
- Directory records and the audit trail (models)
- Access scope resolution (permissions)
- Query engine, lifecycle manager and batch orchestrator (directory)
- Audit ledger (audit)
- Identity Core (credentials, tokens, sign-in)

Architectural invariants:
- Every mutation is audited in the same transaction as the change
- Reads and writes share one scope, so nothing invisible is mutable
- Audit entries are never updated or deleted
"""

from src.kernel.models import (
    AuditAction,
    AuditLog,
    User,
    UserRole,
    UserStatus,
)

__all__ = [
    "AuditAction",
    "AuditLog",
    "User",
    "UserRole",
    "UserStatus",
]
