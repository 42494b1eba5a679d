# app/db/base.py
"""
StreamVault — SQLAlchemy Base registry
======================================

Import all ORM models so their tables are registered on `Base.metadata`.
Used by Alembic autogeneration and by test fixtures calling `create_all`.

Tip: Keep this file import-only; no runtime logic.
"""

from app.db.base_class import Base

# ───────────────────────────────────────────────────────────────
# Reference: accounts & catalog
# ───────────────────────────────────────────────────────────────
from app.db.models.user import User
from app.db.models.content import Content

# ───────────────────────────────────────────────────────────────
# Entitlements, audit trail, access tokens
# ───────────────────────────────────────────────────────────────
from app.db.models.entitlement import Entitlement
from app.db.models.security_log import SecurityLog
from app.db.models.access_token import AccessToken

__all__ = [
    "Base",
    "User",
    "Content",
    "Entitlement",
    "SecurityLog",
    "AccessToken",
]
