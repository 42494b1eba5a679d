# tests/fixtures/app.py
"""
🧩 App fixtures:
- Full application from `create_app()` (middleware, problem+json handlers)
- Collaborators swapped via `app.dependency_overrides`: memory repositories,
  fake payment provider, fake signer, frozen clock
- `client` (sync TestClient) and `async_client` (httpx over ASGI)
"""

from typing import AsyncGenerator, Dict

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from app.api import deps
from app.main import create_app


@pytest.fixture()
def app(repo, catalog, provider, signer, clock) -> FastAPI:
    application = create_app()
    application.dependency_overrides[deps.get_entitlement_repository] = lambda: repo
    application.dependency_overrides[deps.get_catalog_repository] = lambda: catalog
    application.dependency_overrides[deps.get_payment_provider] = lambda: provider
    application.dependency_overrides[deps.get_storage_signer] = lambda: signer
    application.dependency_overrides[deps.get_clock] = lambda: clock
    return application


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture()
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def as_user(user_id: str) -> Dict[str, str]:
    """Dev-auth header (ALLOW_DEV_AUTH=1 in tests)."""
    return {"X-User-Id": user_id}


ADMIN = {"X-Admin": "true"}


__all__ = ["app", "client", "async_client", "as_user", "ADMIN"]
