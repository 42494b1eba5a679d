from __future__ import annotations

"""
🎟️ StreamVault — Entitlement (who may watch what)
=================================================

One row per **user × content × payment session**. Created by the payment
reconciler, mutated only by the strike tracker (counter, forced expiry) and by
administrators (manual revoke/reset). Rows are never deleted.

Invariants
----------
• `uq_entitlements_user_content_session`: at most one row per
  `(user_id, content_id, payment_session_id)`. Insert collisions are the
  reconciler's idempotency signal.
• A row grants nothing when `is_active` is false or `expires_at <= now`,
  whatever its `status`.
• `expires_at IS NULL` means permanent.
• Revocation sets `expires_at = now` and `strike_count` to the threshold.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base_class import Base, CreatedAtMixin, StrIdMixin


class Entitlement(StrIdMixin, CreatedAtMixin, Base):
    __tablename__ = "entitlements"

    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    content_id: Mapped[str] = mapped_column(String(64), ForeignKey("contents.id", ondelete="RESTRICT"), nullable=False)
    payment_session_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    amount_paid: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    strike_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    bound_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "content_id", "payment_session_id", name="uq_entitlements_user_content_session"),
        CheckConstraint("status IN ('pending', 'completed')", name="status_valid"),
        CheckConstraint("strike_count >= 0", name="strike_count_nonneg"),
        CheckConstraint("amount_paid >= 0", name="amount_nonneg"),
        # Tier 1/2 lookups and the "latest for pair" probe
        Index("ix_entitlements_user_content_created", "user_id", "content_id", text("created_at DESC")),
        # Tier 3: the user's most recent purchases
        Index("ix_entitlements_user_created", "user_id", text("created_at DESC")),
    )
