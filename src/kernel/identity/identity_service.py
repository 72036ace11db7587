"""
Identity service: sign-in and principal resolution.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.kernel.errors import AuthenticationError
from src.kernel.identity.jwt import JWTManager
from src.kernel.identity.password import verify_password
from src.kernel.models.base import utcnow
from src.kernel.models.user import User
from src.kernel.permissions.scope import Principal
from src.logging_config import get_logger

logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


@dataclass
class SignIn:
    user: User
    access_token: str
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        return max(0, int((self.expires_at - utcnow()).total_seconds()))


class IdentityService:
    """
    Service for user identity operations.

    Handles authentication and turning a verified token into a Principal.
    """

    def __init__(self, session: AsyncSession, jwt_manager: Optional[JWTManager] = None):
        self.session = session
        self.jwt_manager = jwt_manager or JWTManager()

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def authenticate(self, email: str, password: str) -> SignIn:
        """
        Check credentials and issue an access token.

        Failed attempts are counted on the account; once the configured limit
        is reached the account stops accepting passwords until an
        administrator resets it.

        Args:
            email: Account email
            password: Plain text password

        Returns:
            The signed-in user and their token

        Raises:
            AuthenticationError: On any failure, with a message that does not
                reveal whether the account exists
        """
        settings = get_settings()
        user = await self.get_user_by_email(email)
        if user is None or user.deleted_at is not None:
            raise AuthenticationError(INVALID_CREDENTIALS)

        if user.failed_login_attempts >= settings.max_failed_logins:
            logger.warning("Sign-in refused for locked account", extra={"user_id": str(user.id)})
            raise AuthenticationError("Account locked after too many failed attempts")

        if not verify_password(password, user.password_hash):
            user.failed_login_attempts += 1
            user.last_failed_login_at = utcnow()
            await self.session.flush()
            logger.info(
                "Sign-in failed",
                extra={"user_id": str(user.id), "failed_attempts": user.failed_login_attempts},
            )
            raise AuthenticationError(INVALID_CREDENTIALS)

        if not user.is_active:
            raise AuthenticationError("Account is not active")

        user.failed_login_attempts = 0
        user.last_failed_login_at = None
        user.last_login_at = utcnow()
        await self.session.flush()

        token, expires_at, _ = self.jwt_manager.create_access_token(
            user_id=user.id,
            email=user.email,
            role=user.role.value,
        )
        logger.info("Sign-in succeeded", extra={"user_id": str(user.id)})
        return SignIn(user=user, access_token=token, expires_at=expires_at)

    async def resolve_principal(self, token: str) -> Principal:
        """
        Principal for a bearer token. The role comes from the stored record,
        so a role change takes effect on the next request.
        """
        payload = self.jwt_manager.verify_access_token(token)
        if payload is None:
            raise AuthenticationError("Invalid or expired token")
        user = await self.get_user_by_id(uuid.UUID(payload.sub))
        if user is None or not user.is_active:
            raise AuthenticationError("Account is not active")
        return Principal(id=user.id, role=user.role)
