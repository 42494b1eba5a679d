# tests/conftest.py
"""
Global test bootstrap
- Environment is set BEFORE any app import (settings/limiter read it eagerly)
- Rate limiting bypassed by default; `ratelimit_on` opts a test back in
- sqlite (aiosqlite) stands in for Postgres; no server needed
- Domain fixtures (repositories, fakes, clock, services, client) live in
  tests/fixtures and are star-imported below
"""

from __future__ import annotations

import os
import random

import pytest

# ──────────────────────────────────────────────────────────────────────────────
# 🌱 Test env (must precede app imports)
# ──────────────────────────────────────────────────────────────────────────────
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-with-enough-entropy-0123456789")
os.environ.setdefault("POSTGRES_PASSWORD", "unused")
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATELIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_TEST_BYPASS", "1")
os.environ.setdefault("RATE_LIMIT_NAMESPACE", f"pytest-{random.getrandbits(32)}")
os.environ.setdefault("ALLOW_DEV_AUTH", "1")
os.environ.setdefault("LOG_TO_FILE", "0")
os.environ.setdefault("ENABLE_HTTPS_REDIRECT", "false")
os.environ.pop("ADMIN_API_KEY", None)
os.environ.pop("ENTITLEMENT_REPOSITORY_IMPL", None)
os.environ.pop("CATALOG_REPOSITORY_IMPL", None)

# ──────────────────────────────────────────────────────────────────────────────
# 📦 Fixtures
# ──────────────────────────────────────────────────────────────────────────────
from tests.fixtures.clock import *      # noqa: F401,F403,E402
from tests.fixtures.stores import *     # noqa: F401,F403,E402
from tests.fixtures.services import *   # noqa: F401,F403,E402
from tests.fixtures.app import *        # noqa: F401,F403,E402
from tests.fixtures.db import *         # noqa: F401,F403,E402


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


# ──────────────────────────────────────────────────────────────────────────────
# 🚦 Opt-in fixture to enforce rate limits in a specific test
# ──────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def ratelimit_on(monkeypatch):
    """Limits are read per request, so flipping the env var is enough."""
    monkeypatch.setenv("RATE_LIMIT_TEST_BYPASS", "0")
    yield
