"""
Audit trail for directory mutations.
"""

from src.kernel.audit.ledger import AuditLedger, NO_META, RequestMeta, USER_ENTITY

__all__ = [
    "AuditLedger",
    "NO_META",
    "RequestMeta",
    "USER_ENTITY",
]
