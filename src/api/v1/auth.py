"""
Authentication endpoints.
"""

from fastapi import APIRouter, HTTPException, status

from src.api.deps import CurrentPrincipal, DbSession
from src.kernel.identity.identity_service import IdentityService
from src.schemas.auth import LoginRequest, TokenResponse
from src.schemas.directory import UserRecord

router = APIRouter()


@router.post("/login", response_model=TokenResponse)
async def login(data: LoginRequest, db: DbSession):
    """
    Authenticate and return a bearer token.

    Failed attempts are counted against the account even though the
    request fails.
    """
    sign_in = await IdentityService(db).authenticate(email=data.email, password=data.password)
    return TokenResponse(
        access_token=sign_in.access_token,
        expires_in=sign_in.expires_in,
        user=UserRecord.model_validate(sign_in.user),
    )


@router.get("/me", response_model=UserRecord)
async def me(principal: CurrentPrincipal, db: DbSession):
    """The caller's own record."""
    user = await IdentityService(db).get_user_by_id(principal.id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserRecord.model_validate(user)
