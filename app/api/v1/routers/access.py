"""
StreamVault • Access checks
===========================

- GET  /access/check?content_id=… → tiered access decision for the caller
- POST /access/check             → same, JSON body `{contentId, userId?}`

"No access" is a normal 200 answer (`hasAccess: false`), never an error.
Callers can only ask about themselves.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from app.api.deps import get_access_resolver, get_current_user_id
from app.api.http_utils import sanitize_id
from app.core.exceptions import AuthorizationError
from app.core.limiter import rate_limit
from app.schemas.entitlements import AccessCheckRequest, AccessCheckResponse, EntitlementOut
from app.services.access import AccessResolver

router = APIRouter(tags=["Access"])


async def _check(resolver: AccessResolver, user_id: str, content_id: str, requested_for: Optional[str]) -> AccessCheckResponse:
    if requested_for and requested_for != user_id:
        raise AuthorizationError("Cannot check access for another user", code="forbidden")
    decision = await resolver.has_access(user_id, sanitize_id(content_id, "content_id"))
    return AccessCheckResponse(
        has_access=decision.has_access,
        tier=decision.tier,
        entitlement=EntitlementOut.model_validate(decision.entitlement) if decision.entitlement else None,
    )


@router.get("/access/check", response_model=AccessCheckResponse, summary="Check access to content")
@rate_limit("120/minute")
async def check_access(
    request: Request,
    response: Response,
    content_id: str = Query(..., min_length=1, max_length=64),
    user_id: str = Depends(get_current_user_id),
    resolver: AccessResolver = Depends(get_access_resolver),
) -> AccessCheckResponse:
    return await _check(resolver, user_id, content_id, None)


@router.post("/access/check", response_model=AccessCheckResponse, summary="Check access to content")
@rate_limit("120/minute")
async def check_access_post(
    request: Request,
    response: Response,
    body: AccessCheckRequest,
    user_id: str = Depends(get_current_user_id),
    resolver: AccessResolver = Depends(get_access_resolver),
) -> AccessCheckResponse:
    return await _check(resolver, user_id, body.content_id, body.user_id)


__all__ = ["router"]
