# tests/fixtures/db.py
"""
DB fixtures (async sqlite via aiosqlite):
- Fresh in-memory database per test; tables from `Base.metadata.create_all`
- Function-scoped session with `expire_on_commit=False` (matches the app)
- Seeded with the same users/content as the memory catalog
"""

from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.db import base
from app.db.models.content import Content
from app.db.models.user import User


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(base.Base.metadata.create_all)

    factory = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
    async with factory() as session:
        session.add_all([
            User(id="U1", email="viewer@example.com"),
            User(id="U2", email="other@example.com"),
            Content(id="C1", kind="collection", title="Pilot season", price_cents=1999, currency="usd", storage_path="collections/c1/master.m3u8"),
            Content(id="C2", kind="collection", title="Second season", price_cents=2499, currency="usd", storage_path="collections/c2/master.m3u8"),
            Content(id="V1", kind="video", title="Short rental", price_cents=399, currency="usd", storage_path="videos/v1.mp4", access_duration_seconds=100),
        ])
        await session.commit()
        yield session

    await engine.dispose()


__all__ = ["db_session"]
