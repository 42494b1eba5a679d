# app/core/security.py
from __future__ import annotations

"""
Session token minting.

Production sessions are minted by the storefront; this helper exists for
operators' tooling (`scripts/`) and tests, and uses exactly the claims
`app.core.jwt.decode_token` verifies.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from jose import jwt

from app.core.config import settings


def create_access_token(
    subject: str,
    *,
    role: Optional[str] = None,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Mint a signed session JWT for `subject`."""
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims: Dict[str, Any] = {
        "sub": str(subject),
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
        "jti": uuid4().hex,
        "token_type": "access",
    }
    if role:
        claims["role"] = role
    if email:
        claims["email"] = email
    if settings.JWT_ISSUER:
        claims["iss"] = settings.JWT_ISSUER
    if settings.JWT_AUDIENCE:
        claims["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(claims, settings.JWT_SECRET_KEY.get_secret_value(), algorithm=settings.JWT_ALGORITHM)


__all__ = ["create_access_token"]
