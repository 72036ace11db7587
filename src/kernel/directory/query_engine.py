"""
Directory Query Engine.

Builds scoped, filtered, sorted and paginated views over the users table.
Every predicate is built from an AccessScope, so nothing outside the caller's
scope can be returned, counted or looked up.
"""

import math
import uuid
from typing import List, Optional

from sqlalchemy import ColumnElement, and_, asc, desc, false, func, or_, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.kernel.models.user import User
from src.kernel.permissions.scope import AccessScope
from src.schemas.directory import DirectoryPage, DirectorySearch, PageMeta, SortOrder, UserRecord

# Sortable columns, with the camelCase spellings older clients send
_SORT_COLUMNS = {
    "created_at": User.created_at,
    "createdAt": User.created_at,
    "updated_at": User.updated_at,
    "updatedAt": User.updated_at,
    "email": User.email,
    "first_name": User.first_name,
    "firstName": User.first_name,
    "last_name": User.last_name,
    "lastName": User.last_name,
    "role": User.role,
    "status": User.status,
    "last_login_at": User.last_login_at,
    "lastLoginAt": User.last_login_at,
}
DEFAULT_SORT_COLUMN = User.created_at


def scope_conditions(scope: AccessScope, include_deleted: bool = False) -> List[ColumnElement[bool]]:
    """Role, owner and soft-delete restriction for a scope."""
    conditions: List[ColumnElement[bool]] = []
    if not scope.unrestricted:
        if scope.allowed_roles:
            conditions.append(User.role.in_(scope.allowed_roles))
        else:
            conditions.append(false())
    if scope.owner_filter is not None:
        conditions.append(User.supervisor_id == scope.owner_filter)
    if not include_deleted:
        conditions.append(User.deleted_at.is_(None))
    return conditions


def build_search_predicate(scope: AccessScope, search: DirectorySearch) -> ColumnElement[bool]:
    """
    Combine scope and search filters into a single predicate.

    The scope conditions sit at the top of an AND, so every branch of the
    free-text OR inherits the role and owner restriction.
    """
    conditions = scope_conditions(scope, search.include_deleted)

    if search.role is not None:
        # Out-of-scope role filters match nothing rather than raising
        conditions.append(User.role == search.role if scope.allows_role(search.role) else false())

    if search.status is not None:
        conditions.append(User.status == search.status)
    if search.first_name:
        conditions.append(User.first_name.icontains(search.first_name, autoescape=True))
    if search.last_name:
        conditions.append(User.last_name.icontains(search.last_name, autoescape=True))
    if search.email:
        conditions.append(User.email.icontains(search.email, autoescape=True))

    term = (search.search or "").strip()
    if term:
        conditions.append(
            or_(
                User.email.icontains(term, autoescape=True),
                User.first_name.icontains(term, autoescape=True),
                User.last_name.icontains(term, autoescape=True),
                User.phone.icontains(term, autoescape=True),
            )
        )

    return and_(true(), *conditions)


def resolve_sort_column(sort_by: Optional[str]):
    """Unknown sort fields fall back to created_at."""
    return _SORT_COLUMNS.get(sort_by or "", DEFAULT_SORT_COLUMN)


def redact(user: User) -> UserRecord:
    return UserRecord.model_validate(user)


class DirectoryQueryEngine:
    """Read side of the directory."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_all(self, scope: AccessScope, search: DirectorySearch) -> DirectoryPage:
        """
        List records visible to a scope.

        Args:
            scope: The caller's access scope
            search: Filters, sort and pagination

        Returns:
            A page of redacted records plus pagination metadata
        """
        limit = min(search.limit, get_settings().max_page_size)
        predicate = build_search_predicate(scope, search)

        count_query = select(func.count(User.id)).where(predicate)
        total = (await self.session.execute(count_query)).scalar() or 0

        column = resolve_sort_column(search.sort_by)
        direction = asc if search.sort_order == SortOrder.ASC else desc
        query = (
            select(User)
            .where(predicate)
            # id as tiebreaker keeps page boundaries stable
            .order_by(direction(column), direction(User.id))
            .offset((search.page - 1) * limit)
            .limit(limit)
        )
        result = await self.session.execute(query)
        records = [redact(user) for user in result.scalars().all()]

        return DirectoryPage(
            data=records,
            meta=PageMeta(
                total=total,
                page=search.page,
                limit=limit,
                total_pages=math.ceil(total / limit) if total else 0,
            ),
        )

    async def get(
        self,
        scope: AccessScope,
        user_id: uuid.UUID,
        include_deleted: bool = False,
    ) -> Optional[User]:
        """Load one record through the scope; None if absent or out of scope."""
        query = select(User).where(User.id == user_id, *scope_conditions(scope, include_deleted))
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_one(
        self,
        scope: AccessScope,
        *,
        user_id: Optional[uuid.UUID] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Optional[User]:
        """Look a record up by id, email or phone, in that order of preference."""
        if user_id is not None:
            return await self.get(scope, user_id)

        if email:
            identifier = User.email == email.strip().lower()
        elif phone:
            identifier = User.phone == phone.strip()
        else:
            return None

        query = (
            select(User)
            .where(identifier, *scope_conditions(scope))
            .order_by(User.created_at)
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def count(self, scope: AccessScope, include_deleted: bool = False) -> int:
        query = select(func.count(User.id)).where(*scope_conditions(scope, include_deleted))
        return (await self.session.execute(query)).scalar() or 0
