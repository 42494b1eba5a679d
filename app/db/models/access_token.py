from __future__ import annotations

"""
🔑 StreamVault — Access token (anonymous / e-mail flow)

Opaque, unguessable token minted on every successful purchase verification.
Exchanged for signed URLs until `expires_at`; never extended, never reused
across verifications (several may exist for one entitlement).
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base_class import Base, CreatedAtMixin


class AccessToken(CreatedAtMixin, Base):
    __tablename__ = "access_tokens"

    token: Mapped[str] = mapped_column(String(128), primary_key=True)
    content_id: Mapped[str] = mapped_column(String(64), ForeignKey("contents.id", ondelete="RESTRICT"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
