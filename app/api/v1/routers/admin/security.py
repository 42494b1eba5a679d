"""
StreamVault • Admin security operations
=======================================

- POST /admin/security      → `{action: revoke_access|reset_strikes, entitlementId, reason?}`
- GET  /admin/security/logs → paginated security log + 24h event summary

Both overrides are audited (`manual_revocation` / `strikes_reset`) before
the entitlement changes. Guarded by `require_admin`.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from app.api.deps import get_clock, get_strike_tracker
from app.api.http_utils import json_no_store, require_admin
from app.core.limiter import rate_limit
from app.security_headers import set_sensitive_cache
from app.schemas.entitlements import (
    AdminSecurityAction,
    AdminSecurityResponse,
    EntitlementOut,
    Pagination,
    SecurityLogOut,
    SecurityLogPage,
    SecurityLogSummary,
)
from app.services.strikes import StrikeTracker, derive_state
from app.utils.clock import Clock

router = APIRouter(tags=["Admin Security"], dependencies=[Depends(require_admin)])


@router.post("/security", response_model=AdminSecurityResponse, summary="Revoke access or reset strikes")
@rate_limit("30/minute")
async def admin_security_action(
    request: Request,
    response: Response,
    body: AdminSecurityAction,
    tracker: StrikeTracker = Depends(get_strike_tracker),
    clock: Clock = Depends(get_clock),
) -> AdminSecurityResponse:
    if body.action == "revoke_access":
        updated = await tracker.revoke_access(body.entitlement_id, body.reason)
    else:
        updated = await tracker.reset_strikes(body.entitlement_id, body.reason)
    set_sensitive_cache(response)
    return AdminSecurityResponse(
        action=body.action,
        state=derive_state(updated, clock(), tracker.threshold).name,
        entitlement=EntitlementOut.model_validate(updated),
    )


@router.get("/security/logs", response_model=SecurityLogPage, summary="List security log entries")
@rate_limit("60/minute")
async def admin_security_logs(
    request: Request,
    response: Response,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    event_type: Optional[str] = Query(None, max_length=64),
    entitlement_id: Optional[str] = Query(None, max_length=64),
    tracker: StrikeTracker = Depends(get_strike_tracker),
):
    page = await tracker.list_logs(limit=limit, offset=offset, event_type=event_type, entitlement_id=entitlement_id)
    body = SecurityLogPage(
        logs=[SecurityLogOut.model_validate(e) for e in page.entries],
        summary=SecurityLogSummary(total_events_24h=page.total_events_24h, event_counts=page.event_counts),
        pagination=Pagination(limit=page.limit, offset=page.offset, has_more=page.has_more),
    )
    # IPs and user agents: keep out of shared caches
    return json_no_store(body, response=response)


__all__ = ["router"]
