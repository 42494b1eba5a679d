# app/db/models/__init__.py
"""
StreamVault — ORM models

Reference tables mirrored from the storefront (`User`, `Content`) and the
entitlement subsystem's own tables.
"""

from .user import User
from .content import Content
from .entitlement import Entitlement
from .security_log import SecurityLog
from .access_token import AccessToken

__all__ = [
    "User",
    "Content",
    "Entitlement",
    "SecurityLog",
    "AccessToken",
]
