"""
JWT tokens: bearer access tokens and single-purpose action tokens
(password reset links, email verification links).
"""

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from src.config import get_settings


class TokenPurpose(str, Enum):
    ACCESS = "access"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


class AccessTokenPayload(BaseModel):
    """JWT access token payload."""

    sub: str  # User ID
    email: str
    role: str
    exp: datetime
    iat: datetime
    jti: str


class ActionTokenPayload(BaseModel):
    """Payload of a single-purpose link token."""

    sub: str
    purpose: TokenPurpose
    exp: datetime
    jti: str


class JWTManager:
    """
    JWT token creation and verification.

    Tokens carry a "type" claim so an action token can never be replayed as
    a bearer token, or the other way round.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        access_token_expire_minutes: Optional[int] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.secret_key
        self.algorithm = algorithm or settings.algorithm
        self.access_token_expire_minutes = (
            access_token_expire_minutes or settings.access_token_expire_minutes
        )

    def _encode(self, claims: dict, expires_delta: timedelta) -> tuple[str, datetime, str]:
        now = datetime.now(timezone.utc)
        expire = now + expires_delta
        jti = str(uuid.uuid4())
        payload = {**claims, "exp": expire, "iat": now, "jti": jti}
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm), expire, jti

    def _decode(self, token: str, purpose: TokenPurpose) -> Optional[dict]:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError:
            return None
        if payload.get("type") != purpose.value:
            return None
        return payload

    def create_access_token(
        self,
        user_id: uuid.UUID,
        email: str,
        role: str,
        expires_delta: Optional[timedelta] = None,
    ) -> tuple[str, datetime, str]:
        """
        Create a new access token.

        Args:
            user_id: User's unique identifier
            email: User's email
            role: User's role
            expires_delta: Optional custom expiration time

        Returns:
            Tuple of (token, expiration_datetime, token_id)
        """
        return self._encode(
            {"sub": str(user_id), "email": email, "role": role, "type": TokenPurpose.ACCESS.value},
            expires_delta or timedelta(minutes=self.access_token_expire_minutes),
        )

    def verify_access_token(self, token: str) -> Optional[AccessTokenPayload]:
        """Decode an access token; None if invalid, expired or of another type."""
        payload = self._decode(token, TokenPurpose.ACCESS)
        if payload is None:
            return None
        return AccessTokenPayload(
            sub=payload["sub"],
            email=payload["email"],
            role=payload["role"],
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            jti=payload["jti"],
        )

    def create_action_token(
        self,
        user_id: uuid.UUID,
        purpose: TokenPurpose,
        expires_delta: timedelta,
    ) -> tuple[str, datetime, str]:
        """Create a link token bound to one user and one purpose."""
        if purpose == TokenPurpose.ACCESS:
            raise ValueError("Use create_access_token for bearer tokens")
        return self._encode({"sub": str(user_id), "type": purpose.value}, expires_delta)

    def verify_action_token(self, token: str, purpose: TokenPurpose) -> Optional[ActionTokenPayload]:
        payload = self._decode(token, purpose)
        if payload is None:
            return None
        return ActionTokenPayload(
            sub=payload["sub"],
            purpose=purpose,
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            jti=payload["jti"],
        )


# Default manager instance
_jwt_manager: Optional[JWTManager] = None


def get_jwt_manager() -> JWTManager:
    """Get or create the default JWT manager."""
    global _jwt_manager
    if _jwt_manager is None:
        _jwt_manager = JWTManager()
    return _jwt_manager


# Convenience functions
def create_access_token(
    user_id: uuid.UUID,
    email: str,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> tuple[str, datetime, str]:
    """Create an access token."""
    return get_jwt_manager().create_access_token(user_id, email, role, expires_delta)


def verify_access_token(token: str) -> Optional[AccessTokenPayload]:
    """Verify an access token."""
    return get_jwt_manager().verify_access_token(token)
