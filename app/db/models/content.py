from __future__ import annotations

"""
🎬 StreamVault — Content (purchasable unit)
==========================================

A collection or a single video that can be bought. The entitlement subsystem
reads three things from it:

• `price_cents` / `currency`: the source of truth for `Entitlement.amount_paid`
  (a checkout total may cover several items).
• `access_duration_seconds`: NULL means a permanent grant; otherwise each
  entitlement expires `duration` after purchase.
• `storage_path`: the private object key/prefix that signed URLs point at.
  It is never returned to clients except inside a signed URL.
"""

from typing import Optional

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base_class import Base, CreatedAtMixin, StrIdMixin


class Content(StrIdMixin, CreatedAtMixin, Base):
    __tablename__ = "contents"

    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="collection")
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    storage_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    access_duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint("kind IN ('collection', 'video')", name="kind_valid"),
        CheckConstraint("price_cents >= 0", name="price_nonneg"),
        CheckConstraint(
            "(access_duration_seconds IS NULL) OR (access_duration_seconds > 0)",
            name="duration_positive",
        ),
    )
