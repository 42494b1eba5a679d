from __future__ import annotations

"""
🧾 StreamVault — Security log (append-only)
==========================================

Audit trail of abuse reports and administrative overrides against an
entitlement. Rows are only ever inserted; nothing updates or deletes them.

Conventions
-----------
• Avoid the reserved `metadata` attribute name: structured context lives in
  `details` (JSONB on Postgres).
• `ip_address` is a plain string: admin actions record the literal `admin`.
• `seq` is the insertion order; rows written in the same instant (a strike
  and the `access_revoked` it triggers) are listed by it.
"""

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Index, Integer, String, func, text

from app.db.base_class import Base, PortableJSON, new_id


class SecurityLog(Base):
    __tablename__ = "security_logs"

    seq = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False, unique=True, default=new_id)
    entitlement_id = Column(
        String(64),
        ForeignKey("entitlements.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    event_type = Column(String(64), nullable=False, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(1024), nullable=True)
    details = Column(PortableJSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("ix_security_logs_type_created_desc", "event_type", text("created_at DESC")),
        Index("ix_security_logs_entitlement_created_desc", "entitlement_id", text("created_at DESC")),
    )
