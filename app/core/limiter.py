from __future__ import annotations

"""
StreamVault — HTTP Rate Limiting (SlowAPI)
==========================================

Highlights
----------
- **User/IP aware** keying: per-user once auth has set `request.state.user_id`,
  else per-client-IP.
- **Exemptions**: health/docs/metrics, configurable trusted IPs, and the
  payment webhook path (the provider retries on 429, which only delays grants).
- **Test/CI friendly**:
    - `RATE_LIMIT_NAMESPACE`: prefixes keys so parallel runs don't collide.
    - `RATE_LIMIT_TEST_BYPASS`: disables limits when truthy.
- **Backends**: Redis via `RATELIMIT_STORAGE_URI` / `REDIS_URL`, else in-memory.

Environment
-----------
RATE_LIMIT_ENABLED           default: "true"
DEFAULT_RATE_LIMIT           default: "120/minute"
RATELIMIT_STORAGE_URI        default: "" (falls back to REDIS_URL, then "memory://")
RATELIMIT_STRATEGY           default: "moving-window"
RATE_LIMIT_SKIP_PATHS        default: "/healthz,/readyz,/metrics,/docs,/openapi.json,/api/v1/webhooks/"
RATE_LIMIT_TRUSTED_IPS       default: ""
RATE_LIMIT_NAMESPACE         default: ""
RATE_LIMIT_TEST_BYPASS       default: ""

Usage
-----
    from app.core.limiter import install_rate_limiter, rate_limit, rate_limit_exempt

    @router.post("/security/strikes")
    @rate_limit("30/minute")
    async def report(request: Request, response: Response, ...): ...
"""

import os
from typing import Callable, Optional, List, Set

from dotenv import load_dotenv
from loguru import logger
from starlette.requests import Request
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

# ──────────────────────────────────────────────────────────────
# ⚙️ Environment & defaults
# ──────────────────────────────────────────────────────────────
load_dotenv()

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
DEFAULT_LIMIT = (os.getenv("DEFAULT_RATE_LIMIT") or "120/minute").strip()
STORAGE_URI = (os.getenv("RATELIMIT_STORAGE_URI") or os.getenv("REDIS_URL") or "").strip()
STRATEGY = os.getenv("RATELIMIT_STRATEGY", "moving-window").strip()

SKIP_PATHS: List[str] = [
    p.strip()
    for p in os.getenv(
        "RATE_LIMIT_SKIP_PATHS",
        "/healthz,/readyz,/metrics,/docs,/openapi.json,/api/v1/webhooks/",
    ).split(",")
    if p.strip()
]

TRUSTED_IPS: Set[str] = {ip.strip() for ip in os.getenv("RATE_LIMIT_TRUSTED_IPS", "").split(",") if ip.strip()}

NAMESPACE = os.getenv("RATE_LIMIT_NAMESPACE", "").strip()


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


# ──────────────────────────────────────────────────────────────
# 🧠 Keying & exemptions
# ──────────────────────────────────────────────────────────────
def _client_ip(request: Request) -> str:
    """X-Forwarded-For (first hop) → X-Real-IP → ASGI client.host."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        ip = xff.split(",")[0].strip()
        if ip:
            return ip
    xri = request.headers.get("x-real-ip")
    if xri:
        return xri.strip()
    return get_remote_address(request) or "unknown"


def _with_namespace(key: str) -> str:
    return f"{NAMESPACE}:{key}" if NAMESPACE else key


def get_user_rate_limit_key(request: Request) -> str:
    """`user:<id>` when auth resolved a user, else `ip:<addr>`; namespaced."""
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return _with_namespace(f"user:{user_id}")
    return _with_namespace(f"ip:{_client_ip(request)}")


def _path_is_skipped(path: str) -> bool:
    for prefix in SKIP_PATHS:
        if prefix.endswith("/"):
            if path.startswith(prefix):
                return True
        elif path == prefix or path.startswith(prefix + "/"):
            return True
    return False


def should_exempt_request(request: Optional[Request]) -> bool:
    """
    Exempt a request when the global switch is off, the test bypass is on,
    the path is skipped, or the client IP is trusted.
    """
    # Read env at request time so tests can toggle without re-importing.
    if os.getenv("RATE_LIMIT_ENABLED", "true").strip().lower() != "true":
        return True
    if _truthy(os.getenv("RATE_LIMIT_TEST_BYPASS")):
        return True
    if request is None:
        return False
    if _path_is_skipped(request.url.path):
        return True
    return _client_ip(request) in TRUSTED_IPS


# ──────────────────────────────────────────────────────────────
# 🧰 Limiter instance (Redis / memory)
# ──────────────────────────────────────────────────────────────
def _build_default_limits() -> List[str]:
    return [chunk.strip() for chunk in DEFAULT_LIMIT.split(",") if chunk.strip()]


def _make_limiter() -> Optional[Limiter]:
    storage_uri = STORAGE_URI or "memory://"
    try:
        limiter = Limiter(
            key_func=get_user_rate_limit_key,
            default_limits=_build_default_limits(),
            headers_enabled=True,
            storage_uri=storage_uri,
            strategy=STRATEGY,
        )
    except Exception as e:
        logger.error(f"❌ Failed to init Limiter; limits disabled | err={e}")
        return None
    logger.info(
        "✅ RateLimiter ready | enabled={} | default={} | storage={} | ns={}",
        RATE_LIMIT_ENABLED, _build_default_limits(), storage_uri.split("@")[-1], NAMESPACE,
    )
    return limiter


limiter: Optional[Limiter] = _make_limiter()


# ──────────────────────────────────────────────────────────────
# 🎛 Decorators
# ──────────────────────────────────────────────────────────────
def _exempt_when(request: Optional[Request] = None) -> bool:
    """SlowAPI calls this with or without the request depending on version."""
    return should_exempt_request(request)


def _chain(decorators: List[Callable]) -> Callable:
    def _apply(fn: Callable) -> Callable:
        for deco in reversed(decorators):
            fn = deco(fn)
        return fn
    return _apply


def rate_limit(*limits: str) -> Callable:
    """
    Apply per-route limits with StreamVault exemptions.

    The decorated endpoint must accept `request: Request` and
    `response: Response` (SlowAPI injects headers into the latter).
    """
    if limiter is None:
        def _noop(fn: Callable) -> Callable:
            return fn
        return _noop

    selected = list(limits) if limits else _build_default_limits()
    return _chain([limiter.limit(value, exempt_when=_exempt_when) for value in selected])


def rate_limit_exempt() -> Callable:
    """Explicitly exempt a route from limiting."""
    if limiter is None:
        def _noop(fn: Callable) -> Callable:
            return fn
        return _noop
    return limiter.exempt


# ──────────────────────────────────────────────────────────────
# 🔧 Installer
# ──────────────────────────────────────────────────────────────
def install_rate_limiter(app) -> None:
    """Attach SlowAPI middleware unless disabled by env."""
    if not limiter:
        logger.warning("RateLimiter not initialized; middleware not installed")
        return
    if not RATE_LIMIT_ENABLED:
        logger.info("RateLimiter disabled by env; middleware not installed")
        return

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    logger.info("✅ SlowAPI middleware installed")
