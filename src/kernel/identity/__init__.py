"""
Identity Core - credentials, tokens and authentication.
"""

from src.kernel.identity.password import (
    PasswordHasher,
    generate_temporary_password,
    hash_password,
    verify_password,
)
from src.kernel.identity.jwt import (
    JWTManager,
    TokenPurpose,
    AccessTokenPayload,
    ActionTokenPayload,
    create_access_token,
    verify_access_token,
)
from src.kernel.identity.identity_service import IdentityService, SignIn

__all__ = [
    "PasswordHasher",
    "generate_temporary_password",
    "hash_password",
    "verify_password",
    "JWTManager",
    "TokenPurpose",
    "AccessTokenPayload",
    "ActionTokenPayload",
    "create_access_token",
    "verify_access_token",
    "IdentityService",
    "SignIn",
]
