# app/db/base_class.py
from __future__ import annotations

"""
# StreamVault — SQLAlchemy Base & Mixins

SQLAlchemy 2.0 declarative **Base** with:
- Global **naming conventions** (Alembic-friendly)
- Automatic **snake_case `__tablename__`** (models may override)
- Helpful `__repr__` for debugging/observability
- Common mixins:
  - `StrIdMixin`: string primary key (UUID4 text by default)
  - `CreatedAtMixin`: `created_at` (UTC, server default; callers may set it)

Notes:
- Identifiers are stored as strings: content and user ids arrive as opaque
  strings in payment-provider metadata, and the schema must run unchanged on
  Postgres and the sqlite used by tests.
- Portable JSON: `PortableJSON` is JSONB on Postgres, JSON elsewhere.
"""

from datetime import datetime
import re
from uuid import uuid4

from sqlalchemy import JSON, DateTime, MetaData, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

# ──────────────────────────────────────────────────────────────────────────────
# 🏷️ Naming conventions (stable constraint names for Alembic)
# ──────────────────────────────────────────────────────────────────────────────

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

PortableJSON = JSON().with_variant(JSONB(), "postgresql")


def _to_snake(name: str) -> str:
    """Convert `CamelCase` / `PascalCase` to `snake_case` for table names."""
    s1 = re.sub("(.)([A-Z][a-z]+)", r"\1_\2", name)
    return re.sub("([a-z0-9])([A-Z])", r"\1_\2", s1).lower()


def new_id() -> str:
    return str(uuid4())


# ──────────────────────────────────────────────────────────────────────────────
# 🧱 Declarative Base
# ──────────────────────────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    """Global declarative base for StreamVault models."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    @declared_attr.directive
    def __tablename__(cls) -> str:  # type: ignore[override]
        return _to_snake(cls.__name__)

    def __repr__(self) -> str:  # pragma: no cover (repr convenience)
        attrs: list[str] = []
        for key in ("id", "user_id", "content_id", "entitlement_id", "event_type"):
            if key in self.__dict__:
                attrs.append(f"{key}={self.__dict__[key]!r}")
        return f"{self.__class__.__name__}({', '.join(attrs)})"


# ──────────────────────────────────────────────────────────────────────────────
# 🧩 Common mixins
# ──────────────────────────────────────────────────────────────────────────────

class StrIdMixin:
    """String UUID primary key generated client-side."""
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)


class CreatedAtMixin:
    """`created_at` set once at insert (server default, overridable)."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


__all__ = [
    "Base",
    "StrIdMixin",
    "CreatedAtMixin",
    "PortableJSON",
    "NAMING_CONVENTION",
    "new_id",
]
