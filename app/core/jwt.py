# app/core/jwt.py
from __future__ import annotations

"""
StreamVault — JWT helpers
=========================
- `decode_token` with optional issuer/audience enforcement
- Case-insensitive Bearer token extraction
- Token *creation* lives in `app.core.security`

Sessions are issued by the storefront's identity layer and signed with the
shared `JWT_SECRET_KEY`; this service only verifies them. `sub` is the user id,
`role=admin` marks operators.
"""

from typing import Any, Dict, Optional
import logging

from fastapi import Request
from jose import jwt, JWTError, ExpiredSignatureError

from app.core.config import settings
from app.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


def _get_expected_issuer() -> Optional[str]:
    return getattr(settings, "JWT_ISSUER", None) or None


def _get_expected_audience() -> Optional[str]:
    return getattr(settings, "JWT_AUDIENCE", None) or None


# ─────────────────────────────────────────────────────────────
# 🔓 Decode JWT
# ─────────────────────────────────────────────────────────────
def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a session JWT.

    Checks signature, `exp`/`nbf`/`iat`, issuer/audience when configured, and
    the presence of a subject.

    Raises
    ------
    AuthenticationError
        For invalid, expired, or subject-less tokens.
    """
    issuer = _get_expected_issuer()
    audience = _get_expected_audience()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY.get_secret_value(),
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_aud": bool(audience)},
            audience=audience,
            issuer=issuer,
        )
    except ExpiredSignatureError:
        logger.info("Session token expired")
        raise AuthenticationError("Session expired", code="session_expired")
    except JWTError as e:
        logger.warning(f"JWT decoding failed: {e}")
        raise AuthenticationError("Invalid session token", code="invalid_session")

    sub = payload.get("sub") or payload.get("user_id")
    if not sub:
        raise AuthenticationError("Session token missing subject", code="invalid_session")
    payload["sub"] = str(sub)
    return payload


# ─────────────────────────────────────────────────────────────
# 📥 Extract Bearer Token from Authorization Header
# ─────────────────────────────────────────────────────────────
def get_bearer_token(request: Request) -> Optional[str]:
    """Return the Bearer token from `Authorization`, or None when absent."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Malformed Authorization header", code="invalid_session")
    return token.strip()


__all__ = ["decode_token", "get_bearer_token"]
