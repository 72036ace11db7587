"""
Directory service: the authorization-aware entry point for every directory
operation.

Guard order for writes:
    1. operation allowed for the caller's role          -> Forbidden
    2. target loaded through the caller's scope          -> NotFound
    3. privilege ordering between caller and target      -> Forbidden
    4. role escalation on create/update                  -> Forbidden

Targets outside the caller's scope are reported exactly like missing ones.
Every Forbidden is recorded as ACCESS_DENIED before it is raised.
"""

import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from src.kernel.audit.ledger import NO_META, USER_ENTITY, AuditLedger, RequestMeta
from src.kernel.directory.batch import BatchOrchestrator, BatchOutcome
from src.kernel.directory.lifecycle import LifecycleManager, PasswordResetOutcome
from src.kernel.directory.query_engine import DirectoryQueryEngine, redact
from src.kernel.errors import ForbiddenError, NotFoundError
from src.kernel.identity.jwt import JWTManager
from src.kernel.models.audit_log import AuditLog
from src.kernel.models.user import User, UserRole, UserStatus
from src.kernel.notifications.dispatcher import NotificationDispatcher
from src.kernel.permissions.scope import (
    DirectoryOperation,
    Principal,
    can_act_on,
    can_assign_role,
    can_perform,
    scope_for,
)
from src.logging_config import get_logger
from src.schemas.directory import (
    BatchUpdateItem,
    DirectoryPage,
    DirectorySearch,
    LookupQuery,
    ResetPasswordMode,
    UserCreate,
    UserRecord,
    UserUpdate,
)

logger = get_logger(__name__)

# Operations a caller may not aim at their own record
_SELF_FORBIDDEN = frozenset({DirectoryOperation.ARCHIVE, DirectoryOperation.SET_STATUS})


class DirectoryService:
    """Authorization-aware façade over the query engine and lifecycle manager."""

    def __init__(
        self,
        session: AsyncSession,
        ledger: Optional[AuditLedger] = None,
        notifier: Optional[NotificationDispatcher] = None,
        jwt_manager: Optional[JWTManager] = None,
    ):
        self.session = session
        self.ledger = ledger or AuditLedger(session)
        self.notifier = notifier or NotificationDispatcher()
        self.queries = DirectoryQueryEngine(session)
        self.lifecycle = LifecycleManager(session, self.ledger, jwt_manager)
        self.batch = BatchOrchestrator(session)

    # ---- guards ----

    async def _deny(
        self,
        principal: Principal,
        operation: DirectoryOperation,
        reason: str,
        meta: RequestMeta,
        target_id: Optional[uuid.UUID] = None,
    ) -> None:
        await self.ledger.log_access_denied(principal.id, operation.value, reason, target_id, meta)
        logger.warning(
            "Directory access denied",
            extra={"operation": operation.value, "reason": reason, "target_id": str(target_id) if target_id else None},
        )
        raise ForbiddenError(reason, {"operation": operation.value})

    async def _require(self, principal: Principal, operation: DirectoryOperation, meta: RequestMeta) -> None:
        if not can_perform(principal.role, operation):
            await self._deny(
                principal, operation, f"Role {principal.role.value} may not {operation.value.replace('_', ' ')}", meta
            )

    def _may_see_deleted(self, principal: Principal) -> bool:
        return can_perform(principal.role, DirectoryOperation.RESTORE)

    async def _load_target(
        self,
        principal: Principal,
        user_id: uuid.UUID,
        operation: DirectoryOperation,
        meta: RequestMeta,
        include_deleted: bool = False,
    ) -> User:
        """Operation guard, scoped load and privilege ordering for one target."""
        await self._require(principal, operation, meta)
        target = await self.queries.get(scope_for(principal), user_id, include_deleted=include_deleted)
        if target is None:
            raise NotFoundError("User", user_id)
        if target.id == principal.id and operation in _SELF_FORBIDDEN:
            await self._deny(principal, operation, "Cannot perform this operation on your own account", meta, target.id)
        if not can_act_on(principal.role, target.role):
            await self._deny(
                principal,
                operation,
                f"Role {principal.role.value} cannot act on {target.role.value} records",
                meta,
                target.id,
            )
        return target

    # ---- reads ----

    async def find_all(self, principal: Principal, search: DirectorySearch, meta: RequestMeta = NO_META) -> DirectoryPage:
        """
        List the caller's slice of the directory.

        include_deleted is honoured only for roles that may restore; for
        everyone else it is silently ignored.
        """
        await self._require(principal, DirectoryOperation.LIST, meta)
        if search.include_deleted and not self._may_see_deleted(principal):
            search = search.model_copy(update={"include_deleted": False})
        return await self.queries.find_all(scope_for(principal), search)

    async def get(
        self,
        principal: Principal,
        user_id: uuid.UUID,
        include_deleted: bool = False,
        meta: RequestMeta = NO_META,
    ) -> UserRecord:
        await self._require(principal, DirectoryOperation.VIEW, meta)
        include_deleted = include_deleted and self._may_see_deleted(principal)
        user = await self.queries.get(scope_for(principal), user_id, include_deleted=include_deleted)
        if user is None:
            raise NotFoundError("User", user_id)
        return redact(user)

    async def find_one(self, principal: Principal, lookup: LookupQuery, meta: RequestMeta = NO_META) -> UserRecord:
        """Look up by id, email or phone within the caller's scope."""
        await self._require(principal, DirectoryOperation.VIEW, meta)
        user = await self.queries.find_one(
            scope_for(principal),
            user_id=lookup.id,
            email=lookup.email,
            phone=lookup.phone,
        )
        if user is None:
            raise NotFoundError("User", lookup.id or lookup.email or lookup.phone)
        return redact(user)

    # ---- single-record writes ----

    async def create(self, principal: Principal, data: UserCreate, meta: RequestMeta = NO_META) -> UserRecord:
        await self._require(principal, DirectoryOperation.CREATE, meta)
        if not can_assign_role(principal.role, data.role):
            await self._deny(
                principal, DirectoryOperation.CREATE,
                f"Role {principal.role.value} cannot create {data.role.value} records", meta,
            )

        user = await self.lifecycle.create(data, principal.id, meta)
        await self.notifier.welcome(user.email, user.first_name)
        return redact(user)

    async def update(
        self,
        principal: Principal,
        user_id: uuid.UUID,
        data: Union[UserUpdate, Mapping[str, Any]],
        meta: RequestMeta = NO_META,
    ) -> UserRecord:
        """
        Update allow-listed fields.

        Changing status needs SET_STATUS and changing supervisor_id needs
        ASSIGN_SUPERVISOR on top of UPDATE. Roles that may restore can edit
        archived records (and revive them by setting ACTIVE).
        """
        changes: Dict[str, Any] = data.changes() if isinstance(data, UserUpdate) else dict(data)
        if changes.get("role") is not None:
            changes["role"] = UserRole(changes["role"])
        if changes.get("status") is not None:
            changes["status"] = UserStatus(changes["status"])
        target = await self._load_target(
            principal, user_id, DirectoryOperation.UPDATE, meta,
            include_deleted=self._may_see_deleted(principal),
        )

        if "role" in changes and changes["role"] is not None and changes["role"] != target.role:
            if not can_assign_role(principal.role, changes["role"]):
                await self._deny(
                    principal, DirectoryOperation.UPDATE,
                    f"Role {principal.role.value} cannot assign role {changes['role'].value}", meta, target.id,
                )
        if "status" in changes and changes["status"] != target.status:
            if not can_perform(principal.role, DirectoryOperation.SET_STATUS):
                await self._deny(
                    principal, DirectoryOperation.SET_STATUS,
                    f"Role {principal.role.value} may not change status", meta, target.id,
                )
            if target.id == principal.id:
                await self._deny(
                    principal, DirectoryOperation.SET_STATUS,
                    "Cannot perform this operation on your own account", meta, target.id,
                )
        if "supervisor_id" in changes and changes["supervisor_id"] != target.supervisor_id:
            if not can_perform(principal.role, DirectoryOperation.ASSIGN_SUPERVISOR):
                await self._deny(
                    principal, DirectoryOperation.ASSIGN_SUPERVISOR,
                    f"Role {principal.role.value} may not reassign supervisors", meta, target.id,
                )

        user = await self.lifecycle.update(target.id, changes, principal.id, meta)
        return redact(user)

    async def archive(self, principal: Principal, user_id: uuid.UUID, meta: RequestMeta = NO_META) -> UserRecord:
        target = await self._load_target(principal, user_id, DirectoryOperation.ARCHIVE, meta, include_deleted=True)
        return redact(await self.lifecycle.soft_delete(target.id, principal.id, meta))

    async def restore(self, principal: Principal, user_id: uuid.UUID, meta: RequestMeta = NO_META) -> UserRecord:
        target = await self._load_target(principal, user_id, DirectoryOperation.RESTORE, meta, include_deleted=True)
        return redact(await self.lifecycle.restore(target.id, principal.id, meta))

    async def set_status(
        self,
        principal: Principal,
        user_id: uuid.UUID,
        status: UserStatus,
        meta: RequestMeta = NO_META,
    ) -> UserRecord:
        target = await self._load_target(principal, user_id, DirectoryOperation.SET_STATUS, meta, include_deleted=True)
        return redact(await self.lifecycle.set_status(target.id, status, principal.id, meta))

    async def assign_supervisor(
        self,
        principal: Principal,
        user_id: uuid.UUID,
        supervisor_id: Optional[uuid.UUID],
        meta: RequestMeta = NO_META,
    ) -> UserRecord:
        target = await self._load_target(principal, user_id, DirectoryOperation.ASSIGN_SUPERVISOR, meta)
        return redact(await self.lifecycle.assign_supervisor(target.id, supervisor_id, principal.id, meta))

    async def reset_password(
        self,
        principal: Principal,
        user_id: uuid.UUID,
        mode: ResetPasswordMode,
        meta: RequestMeta = NO_META,
    ) -> PasswordResetOutcome:
        """Reset a password and send the result to the account holder."""
        target = await self._load_target(principal, user_id, DirectoryOperation.RESET_PASSWORD, meta)
        outcome = await self.lifecycle.reset_password(target.id, mode, principal.id, meta)
        if outcome.temporary_password:
            await self.notifier.temporary_password(outcome.user.email, outcome.temporary_password)
        elif outcome.reset_token:
            await self.notifier.password_reset(outcome.user.email, outcome.reset_token)
        return outcome

    async def send_verification(self, principal: Principal, user_id: uuid.UUID, meta: RequestMeta = NO_META) -> str:
        target = await self._load_target(principal, user_id, DirectoryOperation.SEND_VERIFICATION, meta)
        token = await self.lifecycle.issue_verification(target.id, principal.id, meta)
        if token is None:
            return f"User {target.email} is already verified."
        await self.notifier.verification(target.email, token)
        return f"Verification email sent to {target.email}."

    async def verify_email(self, principal: Principal, user_id: uuid.UUID, meta: RequestMeta = NO_META) -> str:
        target = await self._load_target(principal, user_id, DirectoryOperation.VERIFY_EMAIL, meta, include_deleted=True)
        if not await self.lifecycle.verify_email(target.id, principal.id, meta):
            return f"User {target.email} is already verified."
        return f"Email {target.email} has been verified successfully."

    # ---- batches ----

    async def batch_create(
        self,
        principal: Principal,
        items: Sequence[UserCreate],
        meta: RequestMeta = NO_META,
    ) -> BatchOutcome[UserRecord]:
        await self._require(principal, DirectoryOperation.BATCH, meta)
        return await self.batch.run(
            items,
            lambda data: self.create(principal, data, meta),
            key=lambda data: str(data.email).strip().lower(),
            name="create",
        )

    async def batch_update(
        self,
        principal: Principal,
        items: Sequence[BatchUpdateItem],
        meta: RequestMeta = NO_META,
    ) -> BatchOutcome[UserRecord]:
        await self._require(principal, DirectoryOperation.BATCH, meta)
        return await self.batch.run(
            items,
            lambda item: self.update(principal, item.id, item.data, meta),
            key=lambda item: str(item.id),
            name="update",
        )

    async def batch_archive(self, principal: Principal, ids: Sequence[uuid.UUID], meta: RequestMeta = NO_META):
        await self._require(principal, DirectoryOperation.BATCH, meta)
        return await self.batch.run(ids, lambda uid: self.archive(principal, uid, meta), name="archive")

    async def batch_restore(self, principal: Principal, ids: Sequence[uuid.UUID], meta: RequestMeta = NO_META):
        await self._require(principal, DirectoryOperation.BATCH, meta)
        return await self.batch.run(ids, lambda uid: self.restore(principal, uid, meta), name="restore")

    async def batch_set_status(
        self,
        principal: Principal,
        ids: Sequence[uuid.UUID],
        status: UserStatus,
        meta: RequestMeta = NO_META,
    ) -> BatchOutcome[UserRecord]:
        """Batch activate (ACTIVE) or deactivate (INACTIVE)."""
        await self._require(principal, DirectoryOperation.BATCH, meta)
        return await self.batch.run(
            ids,
            lambda uid: self.set_status(principal, uid, status, meta),
            name=f"set_status:{status.value}",
        )

    async def batch_assign_supervisor(
        self,
        principal: Principal,
        ids: Sequence[uuid.UUID],
        supervisor_id: Optional[uuid.UUID],
        meta: RequestMeta = NO_META,
    ) -> BatchOutcome[UserRecord]:
        await self._require(principal, DirectoryOperation.BATCH, meta)
        if supervisor_id is not None:
            # A bad supervisor fails the whole request, not every item
            await self.lifecycle.validate_supervisor(supervisor_id)
        return await self.batch.run(
            ids,
            lambda uid: self.assign_supervisor(principal, uid, supervisor_id, meta),
            name="assign_supervisor",
        )

    async def batch_send_verification(self, principal: Principal, ids: Sequence[uuid.UUID], meta: RequestMeta = NO_META):
        await self._require(principal, DirectoryOperation.BATCH, meta)
        return await self.batch.run(ids, lambda uid: self.send_verification(principal, uid, meta), name="send_verification")

    async def batch_verify_email(self, principal: Principal, ids: Sequence[uuid.UUID], meta: RequestMeta = NO_META):
        await self._require(principal, DirectoryOperation.BATCH, meta)
        return await self.batch.run(ids, lambda uid: self.verify_email(principal, uid, meta), name="verify_email")

    # ---- audit reads ----

    async def entity_audit(
        self,
        principal: Principal,
        entity_type: str,
        entity_id: uuid.UUID,
        limit: int = 50,
        meta: RequestMeta = NO_META,
    ) -> List[AuditLog]:
        """Trail of one entity. User trails are only readable for users in scope."""
        await self._require(principal, DirectoryOperation.READ_ENTITY_AUDIT, meta)
        if entity_type == USER_ENTITY:
            target = await self.queries.get(scope_for(principal), entity_id, include_deleted=True)
            if target is None:
                raise NotFoundError("User", entity_id)
        return await self.ledger.by_entity(entity_type, entity_id, limit)

    async def actor_audit(
        self,
        principal: Principal,
        actor_id: uuid.UUID,
        limit: int = 50,
        meta: RequestMeta = NO_META,
    ) -> List[AuditLog]:
        await self._require(principal, DirectoryOperation.READ_GLOBAL_AUDIT, meta)
        return await self.ledger.by_actor(actor_id, limit)

    async def recent_audit(self, principal: Principal, limit: int = 100, meta: RequestMeta = NO_META) -> List[AuditLog]:
        await self._require(principal, DirectoryOperation.READ_GLOBAL_AUDIT, meta)
        return await self.ledger.recent(limit)
