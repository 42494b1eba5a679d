from __future__ import annotations

"""
👤 StreamVault — User (account reference)
========================================

Accounts are owned by the storefront's identity layer; this table mirrors the
fields the entitlement subsystem needs: the id that entitlements point at and
the e-mail used to resolve a payer when checkout metadata carries no user id.

• E-mail lookups are case-insensitive (stored lower-cased, unique).
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func, true
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base_class import Base, StrIdMixin


class User(StrIdMixin, Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
