"""
Pydantic schemas for API request/response validation.
"""

from src.schemas.directory import (
    BatchAssignSupervisor,
    BatchCreate,
    BatchError,
    BatchIds,
    BatchResult,
    BatchUpdate,
    BatchUpdateItem,
    DirectoryPage,
    DirectorySearch,
    LookupQuery,
    PageMeta,
    ResetPasswordMode,
    ResetPasswordRequest,
    ResetPasswordResponse,
    SortOrder,
    UserCreate,
    UserRecord,
    UserUpdate,
)
from src.schemas.audit import AuditEntryResponse
from src.schemas.auth import LoginRequest, TokenResponse
from src.schemas.common import ErrorResponse, HealthResponse, SuccessResponse

__all__ = [
    # Directory
    "BatchAssignSupervisor",
    "BatchCreate",
    "BatchError",
    "BatchIds",
    "BatchResult",
    "BatchUpdate",
    "BatchUpdateItem",
    "DirectoryPage",
    "DirectorySearch",
    "LookupQuery",
    "PageMeta",
    "ResetPasswordMode",
    "ResetPasswordRequest",
    "ResetPasswordResponse",
    "SortOrder",
    "UserCreate",
    "UserRecord",
    "UserUpdate",
    # Audit
    "AuditEntryResponse",
    # Auth
    "LoginRequest",
    "TokenResponse",
    # Common
    "ErrorResponse",
    "HealthResponse",
    "SuccessResponse",
]
