"""
StreamVault • Signed stream URLs
================================

- GET /stream/url?content_id=…[&token=…]

With `token` (e-mail / anonymous flow) the access token is exchanged and the
URL lives no longer than the token. Without it the caller's session is
checked against the access resolver.

The response carries `refreshAfterSeconds`; players re-request a URL on that
interval. A lapsed URL just means "ask again". Responses are `no-store` and
the URL itself is never logged.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from app.api.deps import get_optional_user_id, get_signed_url_issuer
from app.api.http_utils import json_no_store, sanitize_id
from app.core.exceptions import AuthenticationError
from app.core.limiter import rate_limit
from app.schemas.entitlements import SignedUrlResponse
from app.services.signed_urls import SignedUrlIssuer

router = APIRouter(
    tags=["Streaming"],
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Purchase required or access expired"},
        404: {"description": "Content not found"},
        503: {"description": "Signing unavailable (retry)"},
    },
)


@router.get("/stream/url", response_model=SignedUrlResponse, summary="Issue a short-lived stream URL")
@rate_limit("60/minute")
async def stream_url(
    request: Request,
    response: Response,
    content_id: str = Query(..., min_length=1, max_length=64),
    token: Optional[str] = Query(None, max_length=128),
    user_id: Optional[str] = Depends(get_optional_user_id),
    issuer: SignedUrlIssuer = Depends(get_signed_url_issuer),
):
    content_id = sanitize_id(content_id, "content_id")
    if token:
        signed = await issuer.exchange_token(token, content_id)
    elif user_id:
        signed = await issuer.issue_for_user(user_id, content_id)
    else:
        raise AuthenticationError("Authentication or access token required", code="authentication_required")

    body = SignedUrlResponse(
        signed_url=signed.url,
        expires_at=signed.expires_at,
        ttl_seconds=signed.ttl_seconds,
        refresh_after_seconds=signed.refresh_after_seconds,
    )
    return json_no_store(body, response=response)


__all__ = ["router"]
