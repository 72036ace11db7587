"""
Append-only audit log for directory mutations.

Rows are written in the same transaction as the change they describe and
are never updated or deleted.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Enum as SAEnum, Index, JSON, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from src.kernel.models.base import Base, generate_uuid, utcnow


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    STATUS_CHANGE = "STATUS_CHANGE"
    ROLE_CHANGE = "ROLE_CHANGE"
    ARCHIVE = "ARCHIVE"
    RESTORE = "RESTORE"
    ACCESS_DENIED = "ACCESS_DENIED"
    SUPERVISOR_ASSIGNED = "SUPERVISOR_ASSIGNED"

    # Credentials and verification
    PASSWORD_RESET_TEMP = "PASSWORD_RESET_TEMP"
    PASSWORD_RESET_LINK = "PASSWORD_RESET_LINK"
    VERIFICATION_EMAIL_SENT = "VERIFICATION_EMAIL_SENT"
    EMAIL_VERIFIED_DIRECTLY = "EMAIL_VERIFIED_DIRECTLY"


class AuditLog(Base):
    """
    Immutable audit entry.

    entity_id is empty only for denials that never resolved a target
    (e.g. a forbidden create).
    """

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    action: Mapped[AuditAction] = mapped_column(
        SAEnum(AuditAction, native_enum=False, length=50),
        nullable=False,
    )

    # Entity reference
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(), nullable=True)

    # Actor (no FK: the trail outlives the accounts it mentions)
    actor_id: Mapped[uuid.UUID] = mapped_column(Uuid(), nullable=False)

    changes: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Request metadata
    ip_address: Mapped[Optional[str]] = mapped_column(
        String(45),  # IPv6 max length
        nullable=True,
    )
    user_agent: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        Index("ix_audit_logs_actor_time", "actor_id", "created_at"),
        Index("ix_audit_logs_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.action.value} {self.entity_type}:{self.entity_id}>"
