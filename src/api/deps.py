"""
FastAPI dependencies for database sessions, authentication and the
directory service.
"""

from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import async_session_maker
from src.kernel.audit.ledger import RequestMeta
from src.kernel.directory.service import DirectoryService
from src.kernel.errors import AuthenticationError, DirectoryError
from src.kernel.identity.identity_service import IdentityService
from src.kernel.notifications.dispatcher import NotificationDispatcher, build_dispatcher
from src.kernel.permissions.scope import Principal
from src.logging_config import actor_id_var


# Security scheme
security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that yields a request-scoped session.

    Commits on success. Errors roll back, except domain errors that mark
    their preceding writes as worth keeping (access denials, failed sign-ins).
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except DirectoryError as exc:
            if exc.preserve_writes:
                await session.commit()
            else:
                await session.rollback()
            raise
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_principal(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: DbSession,
) -> Principal:
    """Resolve the bearer token to a Principal or raise 401."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        principal = await IdentityService(db).resolve_principal(credentials.credentials)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    # Logs for the rest of the request carry the caller
    actor_id_var.set(str(principal.id))
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


def get_client_ip(request: Request) -> Optional[str]:
    """Extract client IP from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_user_agent(request: Request) -> Optional[str]:
    """Extract user agent from request."""
    return request.headers.get("User-Agent")


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta(ip_address=get_client_ip(request), user_agent=get_user_agent(request))


Meta = Annotated[RequestMeta, Depends(get_request_meta)]


def get_notifier() -> NotificationDispatcher:
    """Notification channel; overridden in tests."""
    return build_dispatcher()


def get_directory_service(
    db: DbSession,
    notifier: Annotated[NotificationDispatcher, Depends(get_notifier)],
) -> DirectoryService:
    return DirectoryService(db, notifier=notifier)


Directory = Annotated[DirectoryService, Depends(get_directory_service)]
