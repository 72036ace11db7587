"""
Directory endpoints: staff and client records.

Static paths (/batch/..., /search) are declared before /{user_id}.
"""

import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Query, status

from src.api.deps import CurrentPrincipal, Directory, Meta
from src.config import get_settings
from src.kernel.directory.batch import BatchOutcome
from src.kernel.models.user import UserRole, UserStatus
from src.schemas.common import SuccessResponse
from src.schemas.directory import (
    BatchAssignSupervisor,
    BatchCreate,
    BatchError,
    BatchIds,
    BatchResult,
    BatchUpdate,
    DirectoryPage,
    DirectorySearch,
    LookupQuery,
    ResetPasswordRequest,
    ResetPasswordResponse,
    SortOrder,
    UserCreate,
    UserRecord,
    UserUpdate,
)

router = APIRouter()
settings = get_settings()


def _batch_result(outcome: BatchOutcome) -> BatchResult:
    return BatchResult(
        succeeded=outcome.succeeded,
        errors=[BatchError(key=e.key, error=e.error, code=e.code) for e in outcome.errors],
        success_count=outcome.success_count,
        error_count=outcome.error_count,
    )


@router.post("", response_model=UserRecord, status_code=status.HTTP_201_CREATED)
async def create_user(data: UserCreate, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    """Create a staff or client record. A welcome notification is sent."""
    return await directory.create(principal, data, meta)


@router.post("/batch", response_model=BatchResult)
async def batch_create_users(data: BatchCreate, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    """Create many records; failures are reported per email."""
    return _batch_result(await directory.batch_create(principal, data.users, meta))


@router.get("", response_model=DirectoryPage)
async def list_users(
    principal: CurrentPrincipal,
    directory: Directory,
    meta: Meta,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[Optional[int], Query(ge=1, le=settings.max_page_size)] = None,
    sort_by: str = "created_at",
    sort_order: SortOrder = SortOrder.DESC,
    include_deleted: bool = False,
    role: Optional[UserRole] = None,
    user_status: Annotated[Optional[UserStatus], Query(alias="status")] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    email: Optional[str] = None,
    search: Optional[str] = None,
):
    """
    List the records visible to the caller.

    A role filter outside the caller's scope returns an empty page.
    """
    paging = {"limit": limit} if limit is not None else {}
    params = DirectorySearch(
        page=page,
        sort_by=sort_by,
        sort_order=sort_order,
        include_deleted=include_deleted,
        role=role,
        status=user_status,
        first_name=first_name,
        last_name=last_name,
        email=email,
        search=search,
        **paging,
    )
    return await directory.find_all(principal, params, meta)


@router.get("/search", response_model=UserRecord)
async def find_user(
    principal: CurrentPrincipal,
    directory: Directory,
    meta: Meta,
    id: Optional[uuid.UUID] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
):
    """Find one record by id, email or phone."""
    return await directory.find_one(principal, LookupQuery(id=id, email=email, phone=phone), meta)


@router.patch("/batch/update", response_model=BatchResult)
async def batch_update_users(data: BatchUpdate, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    return _batch_result(await directory.batch_update(principal, data.updates, meta))


@router.post("/batch/delete", response_model=BatchResult)
async def batch_archive_users(data: BatchIds, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    return _batch_result(await directory.batch_archive(principal, data.ids, meta))


@router.post("/batch/restore", response_model=BatchResult)
async def batch_restore_users(data: BatchIds, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    return _batch_result(await directory.batch_restore(principal, data.ids, meta))


@router.post("/batch/activate", response_model=BatchResult)
async def batch_activate_users(data: BatchIds, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    return _batch_result(await directory.batch_set_status(principal, data.ids, UserStatus.ACTIVE, meta))


@router.post("/batch/deactivate", response_model=BatchResult)
async def batch_deactivate_users(data: BatchIds, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    return _batch_result(await directory.batch_set_status(principal, data.ids, UserStatus.INACTIVE, meta))


@router.post("/batch/assign-supervisor", response_model=BatchResult)
async def batch_assign_supervisor(
    data: BatchAssignSupervisor,
    principal: CurrentPrincipal,
    directory: Directory,
    meta: Meta,
):
    """Assign (or clear, with supervisor_id null) the supervisor of many records."""
    return _batch_result(
        await directory.batch_assign_supervisor(principal, data.ids, data.supervisor_id, meta)
    )


@router.post("/batch/send-verification", response_model=BatchResult)
async def batch_send_verification(data: BatchIds, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    return _batch_result(await directory.batch_send_verification(principal, data.ids, meta))


@router.post("/batch/verify-email", response_model=BatchResult)
async def batch_verify_email(data: BatchIds, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    return _batch_result(await directory.batch_verify_email(principal, data.ids, meta))


@router.get("/{user_id}", response_model=UserRecord)
async def get_user(
    user_id: uuid.UUID,
    principal: CurrentPrincipal,
    directory: Directory,
    meta: Meta,
    include_deleted: bool = False,
):
    return await directory.get(principal, user_id, include_deleted, meta)


@router.patch("/{user_id}", response_model=UserRecord)
async def update_user(
    user_id: uuid.UUID,
    data: UserUpdate,
    principal: CurrentPrincipal,
    directory: Directory,
    meta: Meta,
):
    """
    Update allow-listed fields.

    Setting status ACTIVE on an archived record also restores it.
    """
    return await directory.update(principal, user_id, data, meta)


@router.delete("/{user_id}", response_model=UserRecord)
async def archive_user(user_id: uuid.UUID, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    """Soft delete: the record becomes ARCHIVED."""
    return await directory.archive(principal, user_id, meta)


@router.post("/{user_id}/restore", response_model=UserRecord)
async def restore_user(user_id: uuid.UUID, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    """Restore an archived record. It comes back INACTIVE."""
    return await directory.restore(principal, user_id, meta)


@router.post("/{user_id}/reset-password", response_model=ResetPasswordResponse)
async def reset_password(
    user_id: uuid.UUID,
    principal: CurrentPrincipal,
    directory: Directory,
    meta: Meta,
    data: Optional[ResetPasswordRequest] = None,
):
    """
    Reset a password.

    mode=link (default) emails a reset link; mode=temp sets a temporary
    password, returns it once and forces a change at next sign-in.
    """
    mode = (data or ResetPasswordRequest()).mode
    outcome = await directory.reset_password(principal, user_id, mode, meta)
    if outcome.temporary_password:
        message = f"Temporary password issued for {outcome.user.email}."
    else:
        message = f"Password reset link sent to {outcome.user.email}."
    return ResetPasswordResponse(message=message, mode=mode, temporary_password=outcome.temporary_password)


@router.post("/{user_id}/send-verification", response_model=SuccessResponse)
async def send_verification(user_id: uuid.UUID, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    return SuccessResponse(message=await directory.send_verification(principal, user_id, meta))


@router.post("/{user_id}/verify-email", response_model=SuccessResponse)
async def verify_email(user_id: uuid.UUID, principal: CurrentPrincipal, directory: Directory, meta: Meta):
    return SuccessResponse(message=await directory.verify_email(principal, user_id, meta))
