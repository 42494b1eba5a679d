"""
Admin router package (v1)
=========================

Aggregates admin endpoints by domain (currently: security operations).

Design
------
• Each submodule defines its own `APIRouter` (with admin guard, rate limits, tags).
• This package aggregates them into a single `router` export.
• Mount with a base path in your app:
    app.include_router(admin.router, prefix="/api/v1/admin")

Notes
-----
• Common 401/403/429 response docs are added at include-time for a uniform OpenAPI.
"""

from typing import Any, Dict

from fastapi import APIRouter, status

from .security import router as security_router


COMMON_ADMIN_RESPONSES: Dict[int, Dict[str, Any]] = {
    status.HTTP_401_UNAUTHORIZED: {"description": "Unauthorized (admin key or session)"},
    status.HTTP_403_FORBIDDEN: {"description": "Forbidden"},
    status.HTTP_429_TOO_MANY_REQUESTS: {"description": "Rate limit exceeded"},
}


router = APIRouter()  # callers mount with prefix="/api/v1/admin"
router.include_router(security_router, responses=COMMON_ADMIN_RESPONSES)


__all__ = ["router", "security_router", "COMMON_ADMIN_RESPONSES"]
