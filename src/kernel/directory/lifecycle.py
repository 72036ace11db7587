"""
Lifecycle Manager for directory records.

    new -> ACTIVE <-> INACTIVE -> ARCHIVED (soft delete) -> [restore] -> INACTIVE

ARCHIVED is only reachable through soft_delete, and restore always lands in
INACTIVE. An update that sets ACTIVE on an archived record is the one other
way out of ARCHIVED and clears deleted_at in the same write.

This layer does not authorize. Callers resolve scope and privilege before
calling in; every method here validates its input completely before
touching the record, then writes and audits.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, FrozenSet, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.kernel.audit.ledger import NO_META, AuditLedger, RequestMeta
from src.kernel.errors import ConflictError, NotFoundError, ValidationFailure
from src.kernel.identity.jwt import JWTManager, TokenPurpose
from src.kernel.identity.password import generate_temporary_password, hash_password
from src.kernel.models.audit_log import AuditAction
from src.kernel.models.base import utcnow
from src.kernel.models.user import User, UserRole, UserStatus
from src.logging_config import get_logger
from src.schemas.directory import ResetPasswordMode, UserCreate

logger = get_logger(__name__)

REDACTED = "[REDACTED]"

# Fields an update may touch; anything else is rejected outright
UPDATABLE_FIELDS: FrozenSet[str] = frozenset({
    "email",
    "first_name",
    "last_name",
    "phone",
    "role",
    "status",
    "supervisor_id",
})
_NON_NULLABLE_FIELDS = frozenset({"email", "role", "status"})

# Status moves an update (or set_status) may make
_STATUS_TRANSITIONS: Dict[UserStatus, FrozenSet[UserStatus]] = {
    UserStatus.ACTIVE: frozenset({UserStatus.INACTIVE}),
    UserStatus.INACTIVE: frozenset({UserStatus.ACTIVE}),
    UserStatus.ARCHIVED: frozenset({UserStatus.ACTIVE}),
}

SUPERVISOR_ROLES: FrozenSet[UserRole] = frozenset({UserRole.SUPERVISOR, UserRole.ADMIN})


def normalize_email(email: str) -> str:
    return email.strip().lower()


def can_change_status(from_status: UserStatus, to_status: UserStatus) -> bool:
    return to_status in _STATUS_TRANSITIONS.get(from_status, frozenset())


def check_status_transition(from_status: UserStatus, to_status: UserStatus) -> None:
    """Raise ConflictError for a status move that belongs to archive/restore or does not exist."""
    if to_status == UserStatus.ARCHIVED:
        raise ConflictError("Records are archived through the archive operation, not by setting status")
    if from_status == UserStatus.ARCHIVED and to_status == UserStatus.INACTIVE:
        raise ConflictError("Archived records are brought back through the restore operation")
    if not can_change_status(from_status, to_status):
        raise ConflictError(f"Invalid status transition: {from_status.value} -> {to_status.value}")


@dataclass
class PasswordResetOutcome:
    """What a reset produced; the caller decides how to deliver it."""

    user: User
    mode: ResetPasswordMode
    temporary_password: Optional[str] = None
    reset_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class LifecycleManager:
    """
    Write side of the directory: create, update, archive and restore,
    plus the credential and verification operations.

    Every successful write appends its audit entries to the same session.
    """

    def __init__(
        self,
        session: AsyncSession,
        ledger: Optional[AuditLedger] = None,
        jwt_manager: Optional[JWTManager] = None,
    ):
        self.session = session
        self.ledger = ledger or AuditLedger(session)
        self.jwt_manager = jwt_manager or JWTManager()

    # ---- loading and validation helpers ----

    async def load(self, user_id: uuid.UUID, include_deleted: bool = True) -> User:
        """Fetch a record by id, unscoped. Raises NotFoundError."""
        query = select(User).where(User.id == user_id)
        if not include_deleted:
            query = query.where(User.deleted_at.is_(None))
        user = (await self.session.execute(query)).scalar_one_or_none()
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def email_taken(self, email: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        """Uniqueness check spanning live and archived records."""
        query = select(User.id).where(User.email == normalize_email(email))
        if exclude_id is not None:
            query = query.where(User.id != exclude_id)
        return (await self.session.execute(query.limit(1))).first() is not None

    async def validate_supervisor(
        self,
        supervisor_id: uuid.UUID,
        subject_id: Optional[uuid.UUID] = None,
    ) -> User:
        """A supervisor reference must point at a live SUPERVISOR or ADMIN other than the subject."""
        if subject_id is not None and supervisor_id == subject_id:
            raise ValidationFailure("A user cannot supervise themselves", {"supervisor_id": str(supervisor_id)})
        query = select(User).where(User.id == supervisor_id, User.deleted_at.is_(None))
        supervisor = (await self.session.execute(query)).scalar_one_or_none()
        if supervisor is None or supervisor.role not in SUPERVISOR_ROLES:
            raise ValidationFailure(
                "Supervisor must be an existing SUPERVISOR or ADMIN",
                {"supervisor_id": str(supervisor_id)},
            )
        return supervisor

    async def _commit_changes(self, user: User, changes: Mapping[str, Any], email: Optional[str] = None) -> None:
        """
        Apply attribute changes inside a SAVEPOINT and flush them.

        The unique constraint on email is the final arbiter: losing a race to
        a concurrent writer surfaces as ConflictError, not IntegrityError.
        """
        try:
            async with self.session.begin_nested():
                for field, value in changes.items():
                    setattr(user, field, value)
                if user not in self.session:
                    self.session.add(user)
        except IntegrityError as exc:
            raise ConflictError(
                f"Email {email or user.email} is already in use",
                {"email": email or user.email},
            ) from exc

    # ---- core lifecycle ----

    async def create(
        self,
        data: UserCreate,
        actor_id: uuid.UUID,
        meta: RequestMeta = NO_META,
    ) -> User:
        """
        Create a directory record.

        Args:
            data: Validated creation payload
            actor_id: Who is creating it
            meta: Request details for the audit entry

        Returns:
            The new record

        Raises:
            ConflictError: If the email belongs to any record, archived ones included
            ValidationFailure: If supervisor_id does not reference a usable supervisor
        """
        email = normalize_email(data.email)
        if await self.email_taken(email):
            raise ConflictError(f"Email {email} is already in use", {"email": email})
        if data.supervisor_id is not None:
            await self.validate_supervisor(data.supervisor_id)

        user = User(id=uuid.uuid4(), email=email, password_hash=hash_password(data.password))
        await self._commit_changes(
            user,
            {
                "first_name": data.first_name,
                "last_name": data.last_name,
                "phone": data.phone,
                "role": data.role,
                "status": data.status,
                "supervisor_id": data.supervisor_id,
                "last_password_change_at": utcnow(),
            },
            email=email,
        )

        payload = data.model_dump(mode="json")
        payload["email"] = email
        payload["password"] = REDACTED
        await self.ledger.log_created(user.id, actor_id, payload, meta)

        logger.info("User created", extra={"user_id": str(user.id), "role": user.role.value})
        return user

    async def update(
        self,
        user_id: uuid.UUID,
        changes: Mapping[str, Any],
        actor_id: uuid.UUID,
        meta: RequestMeta = NO_META,
    ) -> User:
        """
        Apply an allow-listed partial update.

        Loads archived records too, so setting status ACTIVE on an archived
        record revives it (deleted_at is cleared in the same write).

        Args:
            user_id: Target record
            changes: Field -> new value; only UPDATABLE_FIELDS are accepted
            actor_id: Who is updating
            meta: Request details for the audit entries

        Returns:
            The updated record (unchanged if nothing differed)

        Raises:
            NotFoundError: If the record does not exist
            ConflictError: If the new email is taken or the status move is invalid
            ValidationFailure: For unknown fields, nulls in required fields,
                or an unusable supervisor reference
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationFailure("Fields cannot be updated", {"fields": sorted(unknown)})
        null_required = sorted(f for f in _NON_NULLABLE_FIELDS if f in changes and changes[f] is None)
        if null_required:
            raise ValidationFailure("Fields cannot be null", {"fields": null_required})

        user = await self.load(user_id, include_deleted=True)

        requested = dict(changes)
        if "email" in requested:
            requested["email"] = normalize_email(requested["email"])
        if "role" in requested:
            requested["role"] = UserRole(requested["role"])
        if "status" in requested:
            requested["status"] = UserStatus(requested["status"])

        diff = {
            field: {"from": getattr(user, field), "to": value}
            for field, value in requested.items()
            if getattr(user, field) != value
        }
        if not diff:
            return user

        # Validate everything before writing anything
        if "email" in diff and await self.email_taken(requested["email"], exclude_id=user.id):
            raise ConflictError(f"Email {requested['email']} is already in use", {"email": requested["email"]})
        if "status" in diff:
            check_status_transition(user.status, requested["status"])
        if "supervisor_id" in diff and requested["supervisor_id"] is not None:
            await self.validate_supervisor(requested["supervisor_id"], subject_id=user.id)

        writes = {field: change["to"] for field, change in diff.items()}
        restored_from = None
        if writes.get("status") == UserStatus.ACTIVE and user.deleted_at is not None:
            restored_from = user.deleted_at
            writes["deleted_at"] = None

        await self._commit_changes(user, writes, email=requested.get("email"))

        role_change = diff.pop("role", None)
        status_change = diff.pop("status", None)
        if role_change:
            await self.ledger.log_role_change(user.id, actor_id, role_change["from"], role_change["to"], meta)
        if status_change:
            await self.ledger.log_status_change(
                user.id, actor_id, status_change["from"], status_change["to"], meta,
                restored_from=restored_from,
            )
        if diff:
            await self.ledger.log_updated(user.id, actor_id, diff, meta)

        logger.info("User updated", extra={"user_id": str(user.id), "fields": sorted(writes)})
        return user

    async def soft_delete(
        self,
        user_id: uuid.UUID,
        actor_id: uuid.UUID,
        meta: RequestMeta = NO_META,
    ) -> User:
        """
        Archive a record: status and deleted_at change in one row write.

        Raises:
            NotFoundError: If the record does not exist
            ConflictError: If it is already archived
        """
        user = await self.load(user_id, include_deleted=True)
        if user.deleted_at is not None or user.status == UserStatus.ARCHIVED:
            raise ConflictError(f"User {user_id} is already archived")

        old_status = user.status
        await self._commit_changes(user, {"status": UserStatus.ARCHIVED, "deleted_at": utcnow()})
        await self.ledger.log_archived(user.id, actor_id, old_status, meta)

        logger.info("User archived", extra={"user_id": str(user.id)})
        return user

    async def restore(
        self,
        user_id: uuid.UUID,
        actor_id: uuid.UUID,
        meta: RequestMeta = NO_META,
    ) -> User:
        """
        Bring an archived record back. It always comes back INACTIVE.

        Raises:
            NotFoundError: If the record does not exist
            ConflictError: If it is not deleted
        """
        user = await self.load(user_id, include_deleted=True)
        if user.deleted_at is None:
            raise ConflictError(f"User {user_id} is not deleted")

        await self._commit_changes(user, {"status": UserStatus.INACTIVE, "deleted_at": None})
        await self.ledger.log_restored(user.id, actor_id, meta)

        logger.info("User restored", extra={"user_id": str(user.id)})
        return user

    # ---- supplementary operations ----

    async def set_status(
        self,
        user_id: uuid.UUID,
        status: UserStatus,
        actor_id: uuid.UUID,
        meta: RequestMeta = NO_META,
    ) -> User:
        """
        Activate or deactivate. A record already in the requested status is a
        Conflict, so batch callers see which items were no-ops.
        """
        if status not in (UserStatus.ACTIVE, UserStatus.INACTIVE):
            raise ValidationFailure("Status must be ACTIVE or INACTIVE", {"status": str(status)})
        user = await self.load(user_id, include_deleted=True)
        if user.status == status:
            raise ConflictError(f"User {user_id} is already {status.value}")
        return await self.update(user_id, {"status": status}, actor_id, meta)

    async def assign_supervisor(
        self,
        user_id: uuid.UUID,
        supervisor_id: Optional[uuid.UUID],
        actor_id: uuid.UUID,
        meta: RequestMeta = NO_META,
    ) -> User:
        """Set or clear the owning supervisor of a live record."""
        user = await self.load(user_id, include_deleted=False)
        if user.supervisor_id == supervisor_id:
            return user
        if supervisor_id is not None:
            await self.validate_supervisor(supervisor_id, subject_id=user.id)

        previous = user.supervisor_id
        await self._commit_changes(user, {"supervisor_id": supervisor_id})
        await self.ledger.log(
            AuditAction.SUPERVISOR_ASSIGNED,
            "User",
            user.id,
            actor_id,
            changes={"supervisor_id": {"from": previous, "to": supervisor_id}},
            description="Supervisor cleared" if supervisor_id is None else "Supervisor assigned",
            **meta.as_kwargs(),
        )
        return user

    async def reset_password(
        self,
        user_id: uuid.UUID,
        mode: ResetPasswordMode,
        actor_id: uuid.UUID,
        meta: RequestMeta = NO_META,
    ) -> PasswordResetOutcome:
        """
        Administrative password reset.

        temp mode replaces the password with a random one and forces a change
        at next login. link mode leaves the password alone and issues a
        signed, expiring reset token.
        """
        settings = get_settings()
        user = await self.load(user_id, include_deleted=False)

        if mode == ResetPasswordMode.TEMP:
            temporary = generate_temporary_password(settings.temp_password_length)
            await self._commit_changes(user, {
                "password_hash": hash_password(temporary),
                "force_password_change": True,
                "last_password_change_at": utcnow(),
                "failed_login_attempts": 0,
                "last_failed_login_at": None,
            })
            await self.ledger.log(
                AuditAction.PASSWORD_RESET_TEMP,
                "User",
                user.id,
                actor_id,
                changes={"mode": mode.value, "force_password_change": True},
                description="Temporary password issued",
                **meta.as_kwargs(),
            )
            return PasswordResetOutcome(user=user, mode=mode, temporary_password=temporary)

        token, expires_at, _ = self.jwt_manager.create_action_token(
            user.id,
            TokenPurpose.PASSWORD_RESET,
            timedelta(hours=settings.password_reset_expire_hours),
        )
        await self.ledger.log(
            AuditAction.PASSWORD_RESET_LINK,
            "User",
            user.id,
            actor_id,
            changes={"mode": mode.value, "expires_at": expires_at},
            description="Password reset link issued",
            **meta.as_kwargs(),
        )
        return PasswordResetOutcome(user=user, mode=mode, reset_token=token, expires_at=expires_at)

    async def issue_verification(
        self,
        user_id: uuid.UUID,
        actor_id: uuid.UUID,
        meta: RequestMeta = NO_META,
    ) -> Optional[str]:
        """Verification token for an unverified live record; None if already verified."""
        settings = get_settings()
        user = await self.load(user_id, include_deleted=False)
        if user.email_verified:
            return None

        token, expires_at, _ = self.jwt_manager.create_action_token(
            user.id,
            TokenPurpose.EMAIL_VERIFICATION,
            timedelta(days=settings.verification_expire_days),
        )
        await self.ledger.log(
            AuditAction.VERIFICATION_EMAIL_SENT,
            "User",
            user.id,
            actor_id,
            changes={"email": user.email, "expires_at": expires_at},
            description=f"Verification email sent to {user.email}",
            **meta.as_kwargs(),
        )
        return token

    async def verify_email(
        self,
        user_id: uuid.UUID,
        actor_id: uuid.UUID,
        meta: RequestMeta = NO_META,
    ) -> bool:
        """Mark an email verified without the link round-trip. False if it already was."""
        user = await self.load(user_id, include_deleted=True)
        if user.email_verified:
            return False

        await self._commit_changes(user, {"email_verified": True, "email_verified_at": utcnow()})
        await self.ledger.log(
            AuditAction.EMAIL_VERIFIED_DIRECTLY,
            "User",
            user.id,
            actor_id,
            changes={"email": user.email, "verified_by": "admin"},
            description=f"Email {user.email} verified by an administrator",
            **meta.as_kwargs(),
        )
        return True
