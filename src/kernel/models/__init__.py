"""
Kernel Data Models

SQLAlchemy models for the directory and its audit trail.
"""

from src.kernel.models.base import Base, TimestampMixin, SoftDeleteMixin, generate_uuid, utcnow
from src.kernel.models.user import User, UserRole, UserStatus
from src.kernel.models.audit_log import AuditLog, AuditAction

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "SoftDeleteMixin",
    "generate_uuid",
    "utcnow",
    # Directory
    "User",
    "UserRole",
    "UserStatus",
    # Audit
    "AuditLog",
    "AuditAction",
]
