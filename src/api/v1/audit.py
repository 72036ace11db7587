"""
Audit trail read endpoints.
"""

import uuid
from typing import Annotated, List

from fastapi import APIRouter, Query

from src.api.deps import CurrentPrincipal, Directory, Meta
from src.kernel.audit.ledger import USER_ENTITY
from src.schemas.audit import AuditEntryResponse

router = APIRouter()

Limit = Annotated[int, Query(ge=1, le=500)]


@router.get("", response_model=List[AuditEntryResponse])
async def recent_entries(principal: CurrentPrincipal, directory: Directory, meta: Meta, limit: Limit = 100):
    """Most recent entries across the whole trail."""
    return await directory.recent_audit(principal, limit, meta)


@router.get("/entity/{entity_type}/{entity_id}", response_model=List[AuditEntryResponse])
async def entity_entries(
    entity_type: str,
    entity_id: uuid.UUID,
    principal: CurrentPrincipal,
    directory: Directory,
    meta: Meta,
    limit: Limit = 50,
):
    return await directory.entity_audit(principal, entity_type, entity_id, limit, meta)


@router.get("/actor/{actor_id}", response_model=List[AuditEntryResponse])
async def actor_entries(
    actor_id: uuid.UUID,
    principal: CurrentPrincipal,
    directory: Directory,
    meta: Meta,
    limit: Limit = 50,
):
    """Everything one actor did, newest first."""
    return await directory.actor_audit(principal, actor_id, limit, meta)


@router.get("/user/{user_id}", response_model=List[AuditEntryResponse])
async def user_entries(
    user_id: uuid.UUID,
    principal: CurrentPrincipal,
    directory: Directory,
    meta: Meta,
    limit: Limit = 50,
):
    """Shortcut for the trail of a directory record."""
    return await directory.entity_audit(principal, USER_ENTITY, user_id, limit, meta)
