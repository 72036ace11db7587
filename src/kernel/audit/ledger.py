"""
AuditLedger: append-only record of directory mutations and denials.

Entries are written into the caller's session so they commit (or roll back)
with the change they describe. Each write runs in its own SAVEPOINT, so a
failed audit insert never poisons the surrounding transaction.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.kernel.errors import AuditWriteError
from src.kernel.models.audit_log import AuditAction, AuditLog
from src.logging_config import get_logger

logger = get_logger(__name__)

USER_ENTITY = "User"
USER_AGENT_MAX_LENGTH = 255


@dataclass(frozen=True)
class RequestMeta:
    """Client details stamped onto every entry written for a request."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def as_kwargs(self) -> Dict[str, Optional[str]]:
        return {"ip_address": self.ip_address, "user_agent": self.user_agent}


NO_META = RequestMeta()


class AuditLedger:
    """
    Service for writing and reading the audit trail.

    Usage:
        ledger = AuditLedger(session)
        await ledger.log(
            action=AuditAction.ARCHIVE,
            entity_type="User",
            entity_id=user.id,
            actor_id=principal.id,
            description=f"Archived user {user.email}",
        )

    fail_open defaults to the audit_fail_open setting. When open, a failed
    write is logged and skipped; when closed it raises AuditWriteError.
    """

    def __init__(self, session: AsyncSession, fail_open: Optional[bool] = None):
        self.session = session
        self.fail_open = get_settings().audit_fail_open if fail_open is None else fail_open

    async def log(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: Optional[uuid.UUID],
        actor_id: uuid.UUID,
        changes: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """
        Append an entry to the audit trail.

        Args:
            action: What happened
            entity_type: Kind of entity acted on
            entity_id: The entity, or None for denials without a resolved target
            actor_id: Who did it
            changes: Structured detail (diffs, payloads)
            description: Human-readable summary
            ip_address: Client IP address
            user_agent: Client user agent (truncated to the column width)

        Returns:
            The persisted entry, or None when the write failed fail-open

        Raises:
            AuditWriteError: If the write failed and the ledger is fail-closed
        """
        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            changes=self._serialize_payload(changes) if changes else None,
            description=description,
            ip_address=ip_address,
            user_agent=user_agent[:USER_AGENT_MAX_LENGTH] if user_agent else None,
        )

        try:
            await self._write(entry)
        except Exception as exc:
            if not self.fail_open:
                raise AuditWriteError(
                    f"Failed to write audit entry {action.value} for {entity_type}:{entity_id}"
                ) from exc
            logger.warning(
                "Audit write failed; continuing",
                exc_info=True,
                extra={
                    "audit_action": action.value,
                    "entity_type": entity_type,
                    "entity_id": str(entity_id) if entity_id else None,
                    "audit_actor_id": str(actor_id),
                },
            )
            return None

        return entry

    async def _write(self, entry: AuditLog) -> None:
        async with self.session.begin_nested():
            self.session.add(entry)
            await self.session.flush()

    # ---- convenience writers for directory records ----

    async def log_created(
        self,
        entity_id: uuid.UUID,
        actor_id: uuid.UUID,
        payload: Dict[str, Any],
        meta: RequestMeta = NO_META,
    ) -> Optional[AuditLog]:
        return await self.log(
            AuditAction.CREATE,
            USER_ENTITY,
            entity_id,
            actor_id,
            changes=payload,
            description=f"Created user {payload.get('email', entity_id)}",
            **meta.as_kwargs(),
        )

    async def log_updated(
        self,
        entity_id: uuid.UUID,
        actor_id: uuid.UUID,
        diff: Dict[str, Dict[str, Any]],
        meta: RequestMeta = NO_META,
    ) -> Optional[AuditLog]:
        return await self.log(
            AuditAction.UPDATE,
            USER_ENTITY,
            entity_id,
            actor_id,
            changes=diff,
            description=f"Updated fields: {', '.join(sorted(diff))}",
            **meta.as_kwargs(),
        )

    async def log_status_change(
        self,
        entity_id: uuid.UUID,
        actor_id: uuid.UUID,
        old_status: Any,
        new_status: Any,
        meta: RequestMeta = NO_META,
        restored_from: Optional[datetime] = None,
    ) -> Optional[AuditLog]:
        """restored_from is the cleared deleted_at when an activation doubled as a restore."""
        changes: Dict[str, Any] = {"status": {"from": old_status, "to": new_status}}
        description = f"Status changed from {_text(old_status)} to {_text(new_status)}"
        if restored_from is not None:
            changes["deleted_at"] = {"from": restored_from, "to": None}
            description += " (restored)"
        return await self.log(
            AuditAction.STATUS_CHANGE,
            USER_ENTITY,
            entity_id,
            actor_id,
            changes=changes,
            description=description,
            **meta.as_kwargs(),
        )

    async def log_role_change(
        self,
        entity_id: uuid.UUID,
        actor_id: uuid.UUID,
        old_role: Any,
        new_role: Any,
        meta: RequestMeta = NO_META,
    ) -> Optional[AuditLog]:
        return await self.log(
            AuditAction.ROLE_CHANGE,
            USER_ENTITY,
            entity_id,
            actor_id,
            changes={"role": {"from": old_role, "to": new_role}},
            description=f"Role changed from {_text(old_role)} to {_text(new_role)}",
            **meta.as_kwargs(),
        )

    async def log_archived(
        self,
        entity_id: uuid.UUID,
        actor_id: uuid.UUID,
        old_status: Any,
        meta: RequestMeta = NO_META,
    ) -> Optional[AuditLog]:
        return await self.log(
            AuditAction.ARCHIVE,
            USER_ENTITY,
            entity_id,
            actor_id,
            changes={"status": {"from": old_status, "to": "ARCHIVED"}},
            description="Archived user",
            **meta.as_kwargs(),
        )

    async def log_restored(
        self,
        entity_id: uuid.UUID,
        actor_id: uuid.UUID,
        meta: RequestMeta = NO_META,
    ) -> Optional[AuditLog]:
        return await self.log(
            AuditAction.RESTORE,
            USER_ENTITY,
            entity_id,
            actor_id,
            changes={"status": {"from": "ARCHIVED", "to": "INACTIVE"}},
            description="Restored user as INACTIVE",
            **meta.as_kwargs(),
        )

    async def log_access_denied(
        self,
        actor_id: uuid.UUID,
        operation: str,
        reason: str,
        entity_id: Optional[uuid.UUID] = None,
        meta: RequestMeta = NO_META,
    ) -> Optional[AuditLog]:
        return await self.log(
            AuditAction.ACCESS_DENIED,
            USER_ENTITY,
            entity_id,
            actor_id,
            changes={"operation": operation, "reason": reason},
            description=f"Access denied: {operation} ({reason})",
            **meta.as_kwargs(),
        )

    # ---- reads ----

    async def by_entity(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
        limit: int = 50,
    ) -> List[AuditLog]:
        """Entries about one entity, newest first."""
        query = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(desc(AuditLog.created_at))
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def by_actor(self, actor_id: uuid.UUID, limit: int = 50) -> List[AuditLog]:
        """Entries written by one actor, newest first."""
        query = (
            select(AuditLog)
            .where(AuditLog.actor_id == actor_id)
            .order_by(desc(AuditLog.created_at))
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def recent(self, limit: int = 100) -> List[AuditLog]:
        query = select(AuditLog).order_by(desc(AuditLog.created_at)).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    def _serialize_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Convert payload values to JSON-serializable types."""
        result = {}
        for key, value in payload.items():
            if isinstance(value, dict):
                result[key] = self._serialize_payload(value)
            elif isinstance(value, list):
                result[key] = [
                    self._serialize_payload(v) if isinstance(v, dict) else _scalar(v)
                    for v in value
                ]
            else:
                result[key] = _scalar(value)
        return result


def _scalar(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _text(value: Any) -> str:
    return str(_scalar(value))
