"""
StreamVault • Abuse reports
===========================

- POST /security/strikes → record a client-detected capture attempt

The target is an `entitlementId`, or a `sessionId` (plus `contentId` when
the session bought several items). The reporter is the signed-in user, or
the holder of an access token from the e-mail flow; either way only their
own entitlements can be reported against.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from app.api.deps import get_entitlement_repository, get_optional_user_id, get_strike_tracker
from app.api.http_utils import get_client_ip
from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.limiter import rate_limit
from app.repositories.entitlements import EntitlementRepositoryProtocol
from app.schemas.entitlements import StrikeReportRequest, StrikeReportResponse
from app.services.strikes import StrikeTracker

router = APIRouter(tags=["Security"])


async def _reporter(
    body: StrikeReportRequest,
    user_id: Optional[str],
    repo: EntitlementRepositoryProtocol,
) -> str:
    if user_id:
        return user_id
    if body.token:
        record = await repo.get_token(body.token)
        if record is None:
            raise AuthorizationError("Invalid or expired token", code="invalid_token")
        return record.user_id
    raise AuthenticationError("Authentication or access token required", code="authentication_required")


@router.post("/security/strikes", response_model=StrikeReportResponse, summary="Report a capture attempt")
@rate_limit("30/minute")
async def report_strike(
    request: Request,
    response: Response,
    body: StrikeReportRequest,
    user_id: Optional[str] = Depends(get_optional_user_id),
    repo: EntitlementRepositoryProtocol = Depends(get_entitlement_repository),
    tracker: StrikeTracker = Depends(get_strike_tracker),
) -> StrikeReportResponse:
    owner = await _reporter(body, user_id, repo)
    entitlement = await tracker.find_entitlement(
        entitlement_id=body.entitlement_id,
        session_id=body.session_id,
        content_id=body.content_id,
        user_id=owner,
    )
    outcome = await tracker.report(
        entitlement.id,
        body.event_type,
        ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        details=body.details,
    )
    return StrikeReportResponse(
        entitlement_id=outcome.entitlement_id,
        strike_count=outcome.strike_count,
        threshold=outcome.threshold,
        revoked=outcome.revoked,
        final_warning=outcome.final_warning,
        reason=outcome.reason,
        state=outcome.state.name,
    )


__all__ = ["router"]
