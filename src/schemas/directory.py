"""
Directory schemas: record payloads, search parameters and batch requests.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from src.config import get_settings
from src.kernel.models.user import UserRole, UserStatus


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class ResetPasswordMode(str, Enum):
    """temp: issue a temporary password. link: email a signed reset link."""
    TEMP = "temp"
    LINK = "link"


class UserCreate(BaseModel):
    """Create a directory record."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    role: UserRole = UserRole.AGENT
    status: UserStatus = UserStatus.ACTIVE
    supervisor_id: Optional[uuid.UUID] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: UserStatus) -> UserStatus:
        if v == UserStatus.ARCHIVED:
            raise ValueError("New records cannot start archived")
        return v


class UserUpdate(BaseModel):
    """
    Partial update. Only fields explicitly sent are applied; sending
    supervisor_id as null clears the assignment.
    """

    model_config = ConfigDict(extra="forbid")

    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
    supervisor_id: Optional[uuid.UUID] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class UserRecord(BaseModel):
    """Redacted directory record. Credential fields are not part of this shape."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: UserRole
    status: UserStatus
    supervisor_id: Optional[uuid.UUID] = None
    email_verified: bool = False
    email_verified_at: Optional[datetime] = None
    force_password_change: bool = False
    last_login_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class DirectorySearch(BaseModel):
    """Listing parameters for the directory."""

    page: int = Field(1, ge=1)
    limit: int = Field(default_factory=lambda: get_settings().default_page_size, ge=1)
    sort_by: str = "created_at"
    sort_order: SortOrder = SortOrder.DESC
    include_deleted: bool = False
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    search: Optional[str] = None

    @field_validator("limit")
    @classmethod
    def cap_limit(cls, v: int) -> int:
        return min(v, get_settings().max_page_size)


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class DirectoryPage(BaseModel):
    data: List[UserRecord]
    meta: PageMeta


# ---- batch payloads ----

class BatchIds(BaseModel):
    ids: List[uuid.UUID] = Field(..., min_length=1, max_length=500)


class BatchCreate(BaseModel):
    users: List[UserCreate] = Field(..., min_length=1, max_length=500)


class BatchUpdateItem(BaseModel):
    id: uuid.UUID
    data: UserUpdate


class BatchUpdate(BaseModel):
    updates: List[BatchUpdateItem] = Field(..., min_length=1, max_length=500)


class BatchAssignSupervisor(BaseModel):
    ids: List[uuid.UUID] = Field(..., min_length=1, max_length=500)
    supervisor_id: Optional[uuid.UUID] = None


class BatchError(BaseModel):
    key: str
    error: str
    code: str


class BatchResult(BaseModel):
    succeeded: List[Any]
    errors: List[BatchError]
    success_count: int
    error_count: int


class ResetPasswordRequest(BaseModel):
    mode: ResetPasswordMode = ResetPasswordMode.LINK


class ResetPasswordResponse(BaseModel):
    """temporary_password is only returned in temp mode."""

    message: str
    mode: ResetPasswordMode
    temporary_password: Optional[str] = None


class LookupQuery(BaseModel):
    """Flexible lookup: exactly one identifier is expected."""

    id: Optional[uuid.UUID] = None
    email: Optional[str] = None
    phone: Optional[str] = None
