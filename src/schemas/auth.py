"""
Authentication schemas.
"""

from pydantic import BaseModel, EmailStr

from src.schemas.directory import UserRecord


class LoginRequest(BaseModel):
    """User login request."""

    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Authentication token response."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserRecord
