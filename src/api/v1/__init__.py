"""
API v1 routes.
"""

from fastapi import APIRouter

from src.api.v1 import audit, auth, users

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
router.include_router(users.router, prefix="/users", tags=["Directory"])
router.include_router(audit.router, prefix="/audit", tags=["Audit"])
