from __future__ import annotations

"""
StreamVault · HTTP Utilities
============================

Shared helpers for API routers:

- ID sanitization (content, entitlement and session ids)
- Client IP resolution (proxy-aware, opt-in)
- Admin check (key-based or JWT-role based with dev fallback)
- No-store JSON helper

Notes
-----
• Rate limiting lives in `app.core.limiter` (SlowAPI).
• Dependency functions return a value on success or raise an
  `AppException` subclass on failure.
"""

import hmac
import ipaddress
import os
import re
from types import MappingProxyType
from typing import Any, Optional

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import AuthenticationError, AuthorizationError, DataError
from app.core.jwt import decode_token, get_bearer_token
from app.security_headers import set_sensitive_cache


__all__ = [
    "sanitize_id",
    "get_client_ip",
    "require_admin",
    "json_no_store",
    "dev_auth_enabled",
]


# ─────────────────────────────────────────────────────────────────────────────
# 🧩 ID Sanitization
# ─────────────────────────────────────────────────────────────────────────────

# Provider session ids (cs_test_...) and UUIDs both fit
_SANITIZE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,255}$")


def sanitize_id(value: str, field: str = "id") -> str:
    """Validate an opaque identifier coming from a client.

    Raises
    ------
    DataError
        422 when the format is invalid.
    """
    value = (value or "").strip()
    if _SANITIZE_ID_RE.match(value):
        return value
    raise DataError(f"Invalid {field} format", code="invalid_identifier", details={"field": field})


# ─────────────────────────────────────────────────────────────────────────────
# 🌐 Client IP Resolution (proxy/CDN aware, opt-in)
# ─────────────────────────────────────────────────────────────────────────────

def _parse_ip(value: Optional[str]) -> Optional[str]:
    """Parse an IP (v4/v6) possibly containing zone IDs or ports; return None if invalid."""
    if not value:
        return None
    try:
        value = value.split("%", 1)[0].strip()
        if value.startswith("["):
            host = value.split("]", 1)[0].lstrip("[")
        else:
            host = value.split(":")[0] if value.count(":") == 1 else value
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def get_client_ip(request: Request) -> str:
    """Best-guess client IP for logging, rate limiting and `bound_ip`.

    Trust behavior (opt-in)
    -----------------------
    • By default, uses the socket peer address.
    • If ``TRUST_FORWARD_HEADERS=1`` is set, consults (in order)
      ``CF-Connecting-IP``, ``True-Client-IP``, ``X-Real-Ip`` and the first
      hop of ``X-Forwarded-For``.
    • ``TRUSTED_PROXY_ONLY=1`` additionally requires the socket peer to be a
      private address before forwarded headers are trusted.

    Returns
    -------
    str
        The best-effort client IP or ``"unknown"`` when not determinable.
    """
    peer = request.client.host if request.client and request.client.host else None
    peer_ip = _parse_ip(peer)

    trust = os.environ.get("TRUST_FORWARD_HEADERS") in {"1", "true", "True"}
    proxy_only = os.environ.get("TRUSTED_PROXY_ONLY") in {"1", "true", "True"}

    if not trust:
        return peer_ip or "unknown"

    if proxy_only and (not peer_ip or not ipaddress.ip_address(peer_ip).is_private):
        return peer_ip or "unknown"

    headers = MappingProxyType({k.lower(): v for k, v in request.headers.items()})

    for hdr in ("cf-connecting-ip", "true-client-ip", "x-real-ip"):
        ip = _parse_ip(headers.get(hdr))
        if ip:
            return ip

    xff = headers.get("x-forwarded-for")
    if xff:
        ip = _parse_ip(xff.split(",")[0].strip())
        if ip:
            return ip

    return peer_ip or "unknown"


# ─────────────────────────────────────────────────────────────────────────────
# 🧳 No-store JSON helper (signed URLs, tokens)
# ─────────────────────────────────────────────────────────────────────────────

def json_no_store(
    payload: Any,
    status_code: int = 200,
    *,
    response: Optional[Response] = None,
) -> JSONResponse:
    """
    Return a JSON response with strict `no-store` caching.

    Pydantic models are dumped by alias so camelCase survives. Propagates
    selected headers (`Location`, `X-Total-Count`, `Link`) from an upstream
    Response if supplied.
    """
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(by_alias=True, mode="json")
    resp = JSONResponse(content=jsonable_encoder(payload), status_code=status_code)
    set_sensitive_cache(resp)

    if response is not None:
        for key in ("Location", "X-Total-Count", "Link"):
            if key in response.headers:
                resp.headers[key] = response.headers[key]
    return resp


# ─────────────────────────────────────────────────────────────────────────────
# 🛡️ Admin Requirement
# ─────────────────────────────────────────────────────────────────────────────

def _compare_ct(a: str, b: str) -> bool:
    """Constant-time string comparison to resist timing attacks."""
    return hmac.compare_digest(str(a), str(b))


def dev_auth_enabled() -> bool:
    return os.environ.get("ALLOW_DEV_AUTH") in {"1", "true", "True"}


def require_admin(request: Request) -> None:
    """Require administrative privileges.

    Strategy (ordered):
      1) If ``ADMIN_API_KEY`` is set → require ``X-Admin-Key`` (constant-time).
      2) Else, accept a Bearer session whose ``role`` claim is ``admin``.
      3) Dev fallback: if ``ALLOW_DEV_AUTH=1`` and ``X-Admin: true``, allow.

    Raises
    ------
    AuthenticationError / AuthorizationError
        401/403 on failure.
    """
    admin_key = settings.ADMIN_API_KEY.get_secret_value() if settings.ADMIN_API_KEY else None
    if admin_key:
        provided = request.headers.get("x-admin-key")
        if not provided or not _compare_ct(provided, admin_key):
            raise AuthenticationError("Invalid or missing admin key", code="admin_key_invalid")
        return

    token = get_bearer_token(request)
    if token:
        claims = decode_token(token)
        if claims.get("role") == "admin":
            request.state.user_id = claims["sub"]
            return

    if dev_auth_enabled() and request.headers.get("x-admin") == "true":
        return

    raise AuthorizationError("Admin privileges required", code="admin_required")
