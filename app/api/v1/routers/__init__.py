"""
🧭✨ StreamVault • API v1 Router Aggregator
==========================================

Exports both the **combined `router`** (ready to include) and each **individual
sub-router** so callers can mount them as needed.

Quick usage
-----------
    from app.api.v1.routers import router as v1_router
    app.include_router(v1_router, prefix="/api/v1")

Or with the factory:

    from app.api.v1.routers import build_v1_router
    app.include_router(build_v1_router(), prefix="/api/v1")

Security notes
--------------
- 🔐 This layer is a pure aggregator; **auth & rate limits live in child routers**.
- 🧊 Child routers that return signed URLs or tokens set `no-store` themselves.
"""

from fastapi import APIRouter

from .webhooks import router as webhooks_router
from .purchases import router as purchases_router
from .access import router as access_router
from .stream import router as stream_router
from .security import router as security_router
from .admin import router as admin_router


# ─────────────────────────────────────────────────────────────────────────────
# 🧩 Factory: build a combined v1 router with stable path layout
# ─────────────────────────────────────────────────────────────────────────────
def build_v1_router() -> APIRouter:
    """
    Compose the API v1 surface into a single `APIRouter`.

    Returns
    -------
    fastapi.APIRouter
        A router that includes:
          • Payment webhook and purchase verification
          • Access checks and signed stream URLs
          • Client abuse reports
          • Admin endpoints under `/admin`
    """
    r = APIRouter()
    r.include_router(webhooks_router)
    r.include_router(purchases_router)
    r.include_router(access_router)
    r.include_router(stream_router)
    r.include_router(security_router)
    r.include_router(admin_router, prefix="/admin")
    return r


router = build_v1_router()

__all__ = [
    "router",
    "build_v1_router",
    "webhooks_router",
    "purchases_router",
    "access_router",
    "stream_router",
    "security_router",
    "admin_router",
]
